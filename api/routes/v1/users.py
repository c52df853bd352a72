"""
api/routes/v1/users.py -- User profile and user administration endpoints.

Routes:
  GET    /api/v1/users/me        -- current user's profile (requires auth)
  PATCH  /api/v1/users/me        -- update own name/email (requires auth)
  DELETE /api/v1/users/me        -- deactivate own account; 204 (requires auth)
  GET    /api/v1/users           -- list users with query features (admin only)
  POST   /api/v1/users           -- always 400: accounts are created via /users/signup (admin only)
  GET    /api/v1/users/{user_id} -- one user (admin only)
  DELETE /api/v1/users/{user_id} -- delete a user; 204 (admin only)

/users/me is registered before /users/{user_id} so "me" never reaches the
integer path converter.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response

from api.handlers import delete_one, get_all, get_one, query_params, update_one
from api.models import DocumentListResponse, DocumentResponse
from auth.dependencies import protect, restrict_to
from auth.models import User
from core.errors import ValidationError
from docstore.models import Role

# Fields a user may change about themselves. Everything else in the body is dropped.
_SELF_EDITABLE = ("name", "email")
_PASSWORD_FIELDS = ("password", "password_confirm", "password_current")

router = APIRouter()


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------


@router.get("/users/me", response_model=DocumentResponse)
def get_me(request: Request, user: User = Depends(protect)) -> dict:
    return get_one(request.app.state.store.users, user.id)


@router.patch("/users/me", response_model=DocumentResponse)
def update_me(
    request: Request,
    body: dict[str, Any] = Body(...),
    user: User = Depends(protect),
) -> dict:
    if any(field in body for field in _PASSWORD_FIELDS):
        raise ValidationError("This route is not for password updates. Please use /users/change-password.")
    filtered = {k: v for k, v in body.items() if k in _SELF_EDITABLE}
    return update_one(request.app.state.store.users, user.id, filtered)


@router.delete("/users/me", status_code=204)
def deactivate_me(request: Request, user: User = Depends(protect)) -> Response:
    request.app.state.auth_flow.users.deactivate(user.id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.get("/users", response_model=DocumentListResponse)
def list_users(request: Request, user: User = Depends(restrict_to(Role.admin.value))) -> dict:
    settings = request.app.state.settings
    return get_all(request.app.state.store.users, query_params(request), default_limit=settings.default_page_size)


@router.post("/users")
def create_user(user: User = Depends(restrict_to(Role.admin.value))) -> None:
    raise ValidationError("This route is not defined. Please use /users/signup instead.")


@router.get("/users/{user_id}", response_model=DocumentResponse)
def get_user(request: Request, user_id: int, user: User = Depends(restrict_to(Role.admin.value))) -> dict:
    return get_one(request.app.state.store.users, user_id)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: int, user: User = Depends(restrict_to(Role.admin.value))) -> Response:
    delete_one(request.app.state.store.users, user_id)
    return Response(status_code=204)
