"""
api/routes/v1/reviews.py -- Review endpoints, flat and nested under a tour.

Routes:
  GET    /api/v1/reviews                       -- list (requires auth)
  POST   /api/v1/reviews                       -- create; 201 (role user)
  GET    /api/v1/tours/{tour_id}/reviews       -- list for one tour (requires auth)
  POST   /api/v1/tours/{tour_id}/reviews       -- create for one tour; 201 (role user)
  GET    /api/v1/reviews/{review_id}           -- one review (requires auth)
  PATCH  /api/v1/reviews/{review_id}           -- update (requires auth)
  DELETE /api/v1/reviews/{review_id}           -- delete; 204 (admin, user)

Every review read eager-loads the author's name, email and photo into "user".
On create, "tour" defaults to the path's tour_id and "user" to the caller.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Request, Response

from api.handlers import create_one, delete_one, get_all, get_one, query_params, update_one
from api.models import DocumentListResponse, DocumentResponse
from auth.dependencies import protect, restrict_to
from auth.models import User
from core.errors import NotFoundError
from docstore.models import Role
from docstore.store import DocumentStore, Populate

router = APIRouter()


def _author(store: DocumentStore) -> tuple[Populate, ...]:
    return (Populate("user", store.users, fields=("name", "email", "photo")),)


def _list(request: Request, tour_id: Optional[int]) -> dict:
    store: DocumentStore = request.app.state.store
    base_filters = {"tour": tour_id} if tour_id is not None else None
    return get_all(
        store.reviews,
        query_params(request),
        base_filters=base_filters,
        populate=_author(store),
        default_limit=request.app.state.settings.default_page_size,
    )


def _create(request: Request, body: dict[str, Any], user: User, tour_id: Optional[int]) -> dict:
    store: DocumentStore = request.app.state.store
    data = dict(body)
    if data.get("tour") is None and tour_id is not None:
        data["tour"] = tour_id
    if data.get("user") is None:
        data["user"] = user.id
    if isinstance(data.get("tour"), int) and not store.tours.exists(data["tour"]):
        raise NotFoundError("No tour found with that ID.")
    return create_one(store.reviews, data)


# ---------------------------------------------------------------------------
# Collection routes
# ---------------------------------------------------------------------------


@router.get("/reviews", response_model=DocumentListResponse)
def list_reviews(request: Request, user: User = Depends(protect)) -> dict:
    return _list(request, None)


@router.post("/reviews", response_model=DocumentResponse, status_code=201)
def create_review(
    request: Request,
    body: dict[str, Any] = Body(...),
    user: User = Depends(restrict_to(Role.user.value)),
) -> dict:
    return _create(request, body, user, None)


@router.get("/tours/{tour_id}/reviews", response_model=DocumentListResponse)
def list_tour_reviews(request: Request, tour_id: int, user: User = Depends(protect)) -> dict:
    return _list(request, tour_id)


@router.post("/tours/{tour_id}/reviews", response_model=DocumentResponse, status_code=201)
def create_tour_review(
    request: Request,
    tour_id: int,
    body: dict[str, Any] = Body(...),
    user: User = Depends(restrict_to(Role.user.value)),
) -> dict:
    return _create(request, body, user, tour_id)


# ---------------------------------------------------------------------------
# Item routes
# ---------------------------------------------------------------------------


@router.get("/reviews/{review_id}", response_model=DocumentResponse)
def get_review(request: Request, review_id: int, user: User = Depends(protect)) -> dict:
    store: DocumentStore = request.app.state.store
    return get_one(store.reviews, review_id, populate=_author(store))


@router.patch("/reviews/{review_id}", response_model=DocumentResponse)
def update_review(
    request: Request,
    review_id: int,
    body: dict[str, Any] = Body(...),
    user: User = Depends(protect),
) -> dict:
    return update_one(request.app.state.store.reviews, review_id, body)


@router.delete("/reviews/{review_id}", status_code=204)
def delete_review(
    request: Request,
    review_id: int,
    user: User = Depends(restrict_to(Role.admin.value, Role.user.value)),
) -> Response:
    delete_one(request.app.state.store.reviews, review_id)
    return Response(status_code=204)
