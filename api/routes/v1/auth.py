"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST  /api/v1/users/signup                 -- create account; returns a token (201)
  POST  /api/v1/users/login                  -- email + password login; returns a token
  POST  /api/v1/users/forgot-password        -- mail a reset link
  PATCH /api/v1/users/reset-password/{token} -- set a new password with a reset token
  PATCH /api/v1/users/change-password        -- set a new password (requires auth)

All password rules, credential checks and token handling live in
auth.flow.AuthFlow; these handlers only translate between HTTP and AuthFlow.

Security:
  signup, login and forgot-password share the LOGIN_RATE_LIMIT per IP.
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    ResetPasswordRequest,
    SignupRequest,
    TokenResponse,
    UpdatePasswordRequest,
    UserResponse,
)
from auth.dependencies import protect
from auth.flow import AuthFlow, IssuedToken
from auth.models import User, public_fields
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST  /users/signup, /users/login, /users/forgot-password: public, rate-limited
# - PATCH /users/reset-password/{token}: public -- the reset token is the credential
# - PATCH /users/change-password: requires auth (protect)
router = APIRouter()


def _token_response(issued: IssuedToken, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=TokenResponse(
            token=issued.token,
            expires_in=issued.expires_in,
            data=UserResponse(**public_fields(issued.user)),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _reset_url_builder(request: Request):
    base = _settings.public_base_url.rstrip("/") or str(request.base_url).rstrip("/")

    def build(raw_token: str) -> str:
        return f"{base}/api/v1/users/reset-password/{raw_token}"

    return build


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/users/signup", response_model=TokenResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    flow: AuthFlow = request.app.state.auth_flow
    issued = flow.signup(body.name, body.email, body.password, body.password_confirm, body.role)
    return _token_response(issued, status_code=201)


@limiter.limit(_settings.login_rate_limit)
@router.post("/users/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email, wrong password and deactivated account all produce the same
    401 "Incorrect email or password." (code bad_credentials).
    """
    flow: AuthFlow = request.app.state.auth_flow
    return _token_response(flow.login(body.email, body.password))


@limiter.limit(_settings.login_rate_limit)
@router.post("/users/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    flow: AuthFlow = request.app.state.auth_flow
    flow.forgot_password(body.email, _reset_url_builder(request))
    return MessageResponse(message="Token sent to email!")


@router.patch("/users/reset-password/{token}", response_model=TokenResponse)
def reset_password(token: str, request: Request, body: ResetPasswordRequest) -> JSONResponse:
    flow: AuthFlow = request.app.state.auth_flow
    return _token_response(flow.reset_password(token, body.password, body.password_confirm))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.patch("/users/change-password", response_model=TokenResponse)
def change_password(
    request: Request,
    body: UpdatePasswordRequest,
    user: User = Depends(protect),
) -> JSONResponse:
    flow: AuthFlow = request.app.state.auth_flow
    issued = flow.update_password(user, body.password_current, body.password, body.password_confirm)
    return _token_response(issued)
