"""
docstore/aggregates.py -- Read-only tour reports.

tour_stats()      -- SQL GROUP BY over the scalar columns
monthly_plan()    -- start dates live in a JSON column, so grouping is done in
                     Python after one SELECT
tours_within()    -- haversine filter over start_location, also in Python:
tour_distances()     SQLite has no geo index and the tour set is small

All four take the tours table's engine and return plain dicts ready to serialise.
"""

from __future__ import annotations

import calendar
from collections import defaultdict
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from core.geo import distance_between, point_coordinates, radius_for
from docstore.schema import tours

STATS_MIN_RATING = 4.5


def tour_stats(engine: Engine) -> list[dict[str, Any]]:
    """Per-difficulty statistics for highly rated tours, cheapest bucket first.

    Tours with ratings_average >= 4.5 are grouped by upper-cased difficulty.
    The EASY bucket is dropped.
    """
    difficulty = func.upper(tours.c.difficulty)
    avg_price = func.avg(tours.c.price)
    stmt = (
        select(
            difficulty.label("difficulty"),
            func.count(tours.c.id).label("tours_count"),
            func.sum(tours.c.ratings_quantity).label("num_ratings"),
            func.avg(tours.c.ratings_average).label("avg_rating"),
            avg_price.label("avg_price"),
            func.min(tours.c.price).label("min_price"),
            func.max(tours.c.price).label("max_price"),
        )
        .where(tours.c.ratings_average >= STATS_MIN_RATING)
        .group_by(difficulty)
        .having(difficulty != "EASY")
        .order_by(avg_price.asc())
    )
    with engine.connect() as conn:
        rows = conn.execute(stmt).fetchall()
    return [
        {
            "difficulty": row.difficulty,
            "tours_count": row.tours_count,
            "num_ratings": row.num_ratings or 0,
            "avg_rating": row.avg_rating,
            "avg_price": row.avg_price,
            "min_price": row.min_price,
            "max_price": row.max_price,
        }
        for row in rows
    ]


def monthly_plan(engine: Engine, year: int) -> list[dict[str, Any]]:
    """Tours starting in each month of year, ordered by month number.

    A tour with several start dates in the same month is counted once per date.
    """
    with engine.connect() as conn:
        rows = conn.execute(select(tours.c.name, tours.c.start_dates)).fetchall()
    by_month: dict[int, list[str]] = defaultdict(list)
    prefix = f"{year:04d}-"
    for row in rows:
        for start in row.start_dates or []:
            if not start.startswith(prefix):
                continue
            by_month[int(start[5:7])].append(row.name)
    return [
        {
            "month": calendar.month_name[month],
            "month_number": month,
            "tour_count": len(names),
            "tours": names,
        }
        for month, names in sorted(by_month.items())
    ]


def _located_tours(engine: Engine) -> list[tuple[tuple[float, float], dict[str, Any]]]:
    """(lat, lng) and the stored document of every tour with a start location."""
    with engine.connect() as conn:
        rows = conn.execute(select(tours).order_by(tours.c.id)).fetchall()
    located = []
    for row in rows:
        doc = {k: v for k, v in row._mapping.items() if k != "version"}
        coords = point_coordinates(doc.get("start_location"))
        if coords is not None:
            located.append((coords, doc))
    return located


def tours_within(engine: Engine, lat: float, lng: float, distance: float, unit: str) -> list[dict[str, Any]]:
    """Tours whose start location lies within distance (in unit) of (lat, lng)."""
    radius_for(unit)
    return [
        doc
        for (t_lat, t_lng), doc in _located_tours(engine)
        if distance_between(lat, lng, t_lat, t_lng, unit) <= distance
    ]


def tour_distances(engine: Engine, lat: float, lng: float, unit: str) -> list[dict[str, Any]]:
    """Name and distance of every located tour, nearest first."""
    radius_for(unit)
    results = [
        {"id": doc["id"], "name": doc["name"], "distance": distance_between(lat, lng, t_lat, t_lng, unit)}
        for (t_lat, t_lng), doc in _located_tours(engine)
    ]
    results.sort(key=lambda r: r["distance"])
    return results
