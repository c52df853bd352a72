"""
api/routes/v1/tours.py -- Tour CRUD, reports, and geo search.

Routes:
  GET    /api/v1/tours/top-5-cheap                                     -- alias over the list query
  GET    /api/v1/tours/stats                                           -- per-difficulty statistics
  GET    /api/v1/tours/monthly-plan/{year}                             -- start dates grouped by month
  GET    /api/v1/tours/within/{distance}/center/{latlng}/unit/{unit}   -- tours near a point
  GET    /api/v1/tours/distances/{latlng}/unit/{unit}                  -- distance to every tour
  GET    /api/v1/tours                                                 -- list (requires auth)
  POST   /api/v1/tours                                                 -- create; 201 (requires auth)
  GET    /api/v1/tours/{tour_id}                                       -- one tour with guides and reviews (requires auth)
  PATCH  /api/v1/tours/{tour_id}                                       -- update (requires auth)
  DELETE /api/v1/tours/{tour_id}                                       -- delete; 204 (admin, lead-guide)

The literal routes are registered before /tours/{tour_id}.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Path, Request, Response

from api.handlers import create_one, delete_one, get_all, get_one, query_params, update_one
from api.models import DocumentListResponse, DocumentResponse
from auth.dependencies import protect, restrict_to
from auth.models import User
from core.geo import parse_latlng
from docstore import aggregates
from docstore.models import Role
from docstore.store import DocumentStore, Populate

TOP_CHEAP_QUERY = {
    "limit": "5",
    "sort": "-ratings_average,price",
    "fields": "name,price,ratings_average,summary,difficulty",
}

router = APIRouter()


def _tour_populate(store: DocumentStore) -> tuple[Populate, ...]:
    """Eager loads for a single tour: its guides, and its reviews with each author."""
    return (
        Populate("guides", store.users, fields=("name", "email", "photo", "role")),
        Populate(
            "reviews",
            store.reviews,
            local_field="id",
            foreign_field="tour",
            many=True,
            populate=(Populate("user", store.users, fields=("name", "email", "photo")),),
        ),
    )


def _list_limit(request: Request) -> int:
    return request.app.state.settings.default_page_size


# ---------------------------------------------------------------------------
# Aliases and reports (public)
# ---------------------------------------------------------------------------


@router.get("/tours/top-5-cheap", response_model=DocumentListResponse)
def top_five_cheap(request: Request) -> dict:
    params = query_params(request)
    params.update(TOP_CHEAP_QUERY)
    return get_all(request.app.state.store.tours, params)


@router.get("/tours/stats")
def tour_stats(request: Request) -> dict:
    stats = aggregates.tour_stats(request.app.state.store.engine)
    return {"data": stats}


@router.get("/tours/monthly-plan/{year}")
def monthly_plan(request: Request, year: int = Path(ge=1, le=9999)) -> dict:
    plan = aggregates.monthly_plan(request.app.state.store.engine, year)
    return {"results": len(plan), "data": plan}


@router.get("/tours/within/{distance}/center/{latlng}/unit/{unit}", response_model=DocumentListResponse)
def tours_within(request: Request, latlng: str, unit: str, distance: float = Path(ge=0)) -> dict:
    lat, lng = parse_latlng(latlng)
    docs = aggregates.tours_within(request.app.state.store.engine, lat, lng, distance, unit)
    return {"results": len(docs), "data": docs}


@router.get("/tours/distances/{latlng}/unit/{unit}", response_model=DocumentListResponse)
def tour_distances(request: Request, latlng: str, unit: str) -> dict:
    lat, lng = parse_latlng(latlng)
    docs = aggregates.tour_distances(request.app.state.store.engine, lat, lng, unit)
    return {"results": len(docs), "data": docs}


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


@router.get("/tours", response_model=DocumentListResponse)
def list_tours(request: Request, user: User = Depends(protect)) -> dict:
    return get_all(request.app.state.store.tours, query_params(request), default_limit=_list_limit(request))


@router.post("/tours", response_model=DocumentResponse, status_code=201)
def create_tour(request: Request, body: dict[str, Any] = Body(...), user: User = Depends(protect)) -> dict:
    return create_one(request.app.state.store.tours, body)


@router.get("/tours/{tour_id}", response_model=DocumentResponse)
def get_tour(request: Request, tour_id: int, user: User = Depends(protect)) -> dict:
    store: DocumentStore = request.app.state.store
    return get_one(store.tours, tour_id, populate=_tour_populate(store))


@router.patch("/tours/{tour_id}", response_model=DocumentResponse)
def update_tour(
    request: Request,
    tour_id: int,
    body: dict[str, Any] = Body(...),
    user: User = Depends(protect),
) -> dict:
    return update_one(request.app.state.store.tours, tour_id, body)


@router.delete("/tours/{tour_id}", status_code=204)
def delete_tour(
    request: Request,
    tour_id: int,
    user: User = Depends(restrict_to(Role.admin.value, Role.lead_guide.value)),
) -> Response:
    delete_one(request.app.state.store.tours, tour_id)
    return Response(status_code=204)
