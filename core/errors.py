"""
core/errors.py -- Error taxonomy shared by every layer.

Components raise these typed errors; the single boundary translator in
api/main.py maps each kind to an HTTP status and a safe message. No component
writes HTTP responses itself.

"Operational" errors are expected failures whose message is safe to show the
client. Anything else (InternalError, or an exception that is not an AppError
at all) is masked behind a generic message unless DEBUG is on.

Layer rule: core/ is the kernel. No imports from api/, auth/, or docstore/.
"""

from __future__ import annotations

from collections.abc import Mapping
from http import HTTPStatus
from typing import Any


class AppError(Exception):
    """Base class. Subclasses pin status, default code, and operational flag."""

    status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    code: str = "internal_error"
    is_operational: bool = True

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = dict(context) if context else None


class ValidationError(AppError):
    """Malformed or missing input."""

    status = HTTPStatus.BAD_REQUEST
    code = "validation_error"


class AuthenticationError(AppError):
    """Missing/invalid/expired token or bad credentials.

    The code distinguishes the cause for client messaging (invalid_token vs
    expired_token, etc.) but every variant maps to 401.
    """

    status = HTTPStatus.UNAUTHORIZED
    code = "unauthenticated"


class AuthorizationError(AppError):
    """Authenticated, but the identity's role is not allowed."""

    status = HTTPStatus.FORBIDDEN
    code = "forbidden"


class NotFoundError(AppError):
    status = HTTPStatus.NOT_FOUND
    code = "not_found"


class DeliveryError(AppError):
    """The mail collaborator failed to dispatch a message."""

    status = HTTPStatus.INTERNAL_SERVER_ERROR
    code = "delivery_failed"


class InternalError(AppError):
    """Unclassified failure or contract violation. Never shown to clients in production."""

    status = HTTPStatus.INTERNAL_SERVER_ERROR
    code = "internal_error"
    is_operational = False
