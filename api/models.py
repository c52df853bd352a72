"""
API request and response models for Tourbook REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from docstore/models.py, which owns the field
constraints of stored documents. Request bodies here are deliberately loose
(every field Optional): AuthFlow and the store decide what is missing or
malformed, so every input failure comes back as the same 400 envelope.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/users/signup."""

    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    password_confirm: Optional[str] = None
    role: Optional[str] = None


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/users/login."""

    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    """Request body for PATCH /api/v1/users/reset-password/{token}."""

    password: Optional[str] = None
    password_confirm: Optional[str] = None


class UpdatePasswordRequest(BaseModel):
    """Request body for PATCH /api/v1/users/change-password."""

    password_current: Optional[str] = None
    password: Optional[str] = None
    password_confirm: Optional[str] = None


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Credential fields never appear here."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    photo: Optional[str] = None
    role: str
    created_at: Optional[str] = None


class TokenResponse(BaseModel):
    """Response for signup, login, reset-password, and change-password."""

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int
    data: UserResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class DocumentResponse(BaseModel):
    """Single-document envelope: {"data": {...}}."""

    data: dict[str, Any]


class DocumentListResponse(BaseModel):
    """List envelope: {"results": n, "data": [...]}."""

    results: int
    data: list[dict[str, Any]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
