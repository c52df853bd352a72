"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method: the Authorization: Bearer <token> header.

protect() resolves the header through app.state.auth_flow and stores the
user on request.state.user for anything downstream.
restrict_to(*roles) builds a dependency that runs protect() first and then
checks the role.

Both raise core.errors types (AuthenticationError -> 401,
AuthorizationError -> 403); the exception handlers in api/main.py render them.

Layer rule: auth/dependencies.py may import from fastapi (for Depends/Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import User


def protect(request: Request) -> User:
    """Require a valid bearer token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(protect)): ...
    """
    user = request.app.state.auth_flow.authenticate(request.headers.get("Authorization"))
    request.state.user = user
    return user


def restrict_to(*roles: str):
    """Require a valid bearer token AND one of roles.

    Use as a FastAPI dependency:
        @router.delete("/{id}")
        def route(user: User = Depends(restrict_to("admin", "lead-guide"))): ...
    """

    def dependency(request: Request, user: User = Depends(protect)) -> User:
        return request.app.state.auth_flow.restrict_to(user, roles)

    return dependency
