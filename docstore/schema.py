"""
docstore/schema.py -- SQLAlchemy Core table definitions for every collection.

Scalar attributes are real columns so they can be filtered and sorted.
List and nested attributes (images, start dates, locations, guide ids) are
JSON columns: stored and returned as-is, never filterable.

Every table carries:
  id          -- integer primary key, also the final sort tie-break
  created_at  -- ISO 8601 UTC with microseconds, so text order == time order
  version     -- revision counter bumped on every update; hidden by default

Credential columns on users (password, password_changed_at, password_reset_*)
are listed in SECRET_FIELDS. The generic Collection never returns, filters
on, or sorts by them. Only auth.store.UserStore reads them.
"""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, Float, Integer, MetaData, String, Table, Text

metadata = MetaData()

tours = Table(
    "tours",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(40), nullable=False, unique=True),
    Column("slug", String(64)),
    Column("duration", Integer, nullable=False),
    Column("max_group_size", Integer, nullable=False),
    Column("difficulty", String(20), nullable=False),
    Column("price", Float, nullable=False),
    Column("price_discount", Float),
    Column("rating", Float, server_default="4.5"),
    Column("ratings_average", Float),
    Column("ratings_quantity", Integer, server_default="0"),
    Column("summary", Text, nullable=False),
    Column("description", Text),
    Column("cover", String(255), nullable=False),
    Column("images", JSON),
    Column("start_dates", JSON),  # list of ISO dates
    Column("start_location", JSON),  # GeoJSON point + address/description
    Column("locations", JSON),  # list of GeoJSON points with "day"
    Column("guides", JSON),  # list of user ids
    Column("created_at", String(32), nullable=False),
    Column("version", Integer, nullable=False, server_default="0"),
)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("photo", String(255), server_default="user.png"),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("active", Boolean, nullable=False, server_default="1"),
    Column("password", Text, nullable=False),  # bcrypt hash, never plaintext
    Column("password_changed_at", Float),  # epoch seconds
    Column("password_reset_token", String(64)),  # sha256 hex of the raw token
    Column("password_reset_expires", Float),  # epoch seconds
    Column("created_at", String(32), nullable=False),
    Column("version", Integer, nullable=False, server_default="0"),
)

reviews = Table(
    "reviews",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("review", Text, nullable=False),
    Column("rating", Integer, nullable=False),
    Column("tour", Integer, nullable=False, index=True),
    Column("user", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("version", Integer, nullable=False, server_default="0"),
)

SECRET_FIELDS: dict[str, frozenset[str]] = {
    "tours": frozenset(),
    "users": frozenset({"password", "password_changed_at", "password_reset_token", "password_reset_expires", "active"}),
    "reviews": frozenset(),
}
