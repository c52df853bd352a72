"""
auth/flow.py -- Signup, login, token gating, and the password lifecycle.

State machine:
  unauthenticated --signup--> active --login--> token holder
  token holder --update_password--> active (older tokens rejected)
  active --forgot_password--> reset pending --reset_password--> active (older tokens rejected)

AuthFlow receives every collaborator and an explicit AuthConfig at
construction; it never reads global settings. api/main.py builds one instance
per app in the lifespan and stores it on app.state.

Errors are raised as core.errors types. The HTTP boundary in api/main.py
turns them into status codes.

Security design decisions:
  Login failure is one message ("Incorrect email or password.") whether the
  email is unknown, the password is wrong, or the account is deactivated, and
  bcrypt always runs so timing matches too.

  A token is rejected when its subject's password_changed_at >= iat.
  Timestamps are float seconds on both sides.

  forgot_password() stores only the SHA-256 of the reset token. If the mail
  cannot be sent the stored hash is cleared again before DeliveryError
  propagates, so no dangling reset state is left behind.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Optional

from auth.models import User
from auth.store import UserStore
from auth.tokens import PasswordHasher, TokenSigner, generate_reset_token, hash_reset_token
from core.errors import (
    AuthenticationError,
    AuthorizationError,
    DeliveryError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from core.mailer import MailSender
from docstore.models import validate_new_user, validate_password_change

logger = logging.getLogger("tourbook.auth")

BAD_CREDENTIALS = "Incorrect email or password."
INVALID_RESET_TOKEN = "Token is invalid or has expired."


@dataclass(frozen=True)
class AuthConfig:
    reset_token_ttl_seconds: int = 600
    # When true, forgot_password() for an unknown email behaves like success.
    mask_unknown_reset_email: bool = False


@dataclass(frozen=True)
class IssuedToken:
    user: User
    token: str
    expires_in: int


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


class AuthFlow:
    def __init__(
        self,
        users: UserStore,
        hasher: PasswordHasher,
        signer: TokenSigner,
        mailer: MailSender,
        config: AuthConfig = AuthConfig(),
    ) -> None:
        self.users = users
        self.hasher = hasher
        self.signer = signer
        self.mailer = mailer
        self.config = config

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def _issue(self, user: User) -> IssuedToken:
        return IssuedToken(user=user, token=self.signer.sign(user.id), expires_in=self.signer.expire_seconds)

    def authenticate(self, authorization: Optional[str]) -> User:
        """Resolve an Authorization header to an active user or raise AuthenticationError."""
        token = _bearer_token(authorization)
        if token is None:
            raise AuthenticationError(
                "You are not logged in. Please log in to get access.", code="missing_token"
            )
        claims = self.signer.verify(token)
        try:
            user_id = int(claims.subject)
        except ValueError as exc:
            raise AuthenticationError("Invalid token. Please log in again.", code="invalid_token") from exc

        user = self.users.get_by_id(user_id)
        if user is None:
            raise AuthenticationError(
                "The user belonging to this token no longer exists.", code="user_not_found"
            )
        if user.password_changed_at is not None and user.password_changed_at >= claims.issued_at:
            raise AuthenticationError(
                "User recently changed password. Please log in again.", code="password_changed"
            )
        return user

    @staticmethod
    def restrict_to(user: Optional[User], roles: Iterable[str]) -> User:
        """Allow user through only if its role is one of roles."""
        if user is None:
            # Gate ordering bug: restrict_to must run after authenticate.
            raise InternalError("restrict_to called without an authenticated user")
        allowed = {str(getattr(r, "value", r)) for r in roles}
        if user.role not in allowed:
            raise AuthorizationError("You do not have permission to perform this action.")
        return user

    # ------------------------------------------------------------------
    # Signup / login
    # ------------------------------------------------------------------

    def signup(
        self,
        name: Any,
        email: Any,
        password: Any,
        password_confirm: Any,
        role: Any = None,
    ) -> IssuedToken:
        data = {"name": name, "email": email, "password": password, "password_confirm": password_confirm}
        if role is not None:
            data["role"] = role
        fields = validate_new_user(data)
        user = User(
            name=fields["name"],
            email=fields["email"],
            role=fields["role"],
            photo=fields["photo"],
            hashed_password=self.hasher.hash(fields["password"]),
        )
        user.id = self.users.create_user(user)
        logger.info("User %d signed up", user.id)
        return self._issue(self.users.get_by_id(user.id) or user)

    def login(self, email: Any, password: Any) -> IssuedToken:
        if not email or not password or not isinstance(email, str) or not isinstance(password, str):
            raise ValidationError("Please provide email and password.")
        user = self.users.get_by_email(email)
        if user is None or user.hashed_password is None:
            self.hasher.equalize(password)
            logger.info("Login failed for unknown email")
            raise AuthenticationError(BAD_CREDENTIALS, code="bad_credentials")
        if not self.hasher.verify(password, user.hashed_password):
            logger.info("Login failed for user %d", user.id)
            raise AuthenticationError(BAD_CREDENTIALS, code="bad_credentials")
        return self._issue(user)

    # ------------------------------------------------------------------
    # Password lifecycle
    # ------------------------------------------------------------------

    def forgot_password(self, email: Any, reset_url: Callable[[str], str]) -> bool:
        """Mail a reset link to email. Returns True if a mail was sent.

        reset_url builds the link from the raw token.
        """
        if not email or not isinstance(email, str):
            raise ValidationError("Please provide an email address.")
        user = self.users.get_by_email(email)
        if user is None:
            if self.config.mask_unknown_reset_email:
                logger.info("Password reset requested for unknown email (masked)")
                return False
            raise NotFoundError("There is no user with that email address.")

        raw_token, token_hash = generate_reset_token()
        self.users.set_reset_token(user.id, token_hash, time.time() + self.config.reset_token_ttl_seconds)
        minutes = max(1, self.config.reset_token_ttl_seconds // 60)
        body = (
            "Forgot your password? Submit a PATCH request with your new password and "
            f"password_confirm to: {reset_url(raw_token)}\n"
            f"The link is valid for {minutes} minutes.\n"
            "If you didn't forget your password, please ignore this email."
        )
        try:
            self.mailer.send(user.email, f"Your password reset token (valid for {minutes} min)", body)
        except Exception as exc:
            self.users.clear_reset_token(user.id)
            logger.warning("Reset mail for user %d failed; reset token cleared", user.id)
            if isinstance(exc, DeliveryError):
                raise
            raise DeliveryError("There was an error sending the email. Try again later.") from exc
        logger.info("Password reset token issued for user %d", user.id)
        return True

    def reset_password(self, raw_token: str, password: Any, password_confirm: Any) -> IssuedToken:
        token_hash = hash_reset_token(raw_token or "")
        user = self.users.get_by_reset_token(token_hash, time.time())
        if user is None:
            raise AuthenticationError(INVALID_RESET_TOKEN, code="invalid_reset_token")

        fields = validate_password_change({"password": password, "password_confirm": password_confirm})
        hashed = self.hasher.hash(fields["password"])
        changed_at = time.time()
        if not self.users.consume_reset_token(user.id, token_hash, time.time(), hashed, changed_at):
            # Consumed or expired between the lookup and the update.
            raise AuthenticationError(INVALID_RESET_TOKEN, code="invalid_reset_token")
        logger.info("Password reset for user %d", user.id)
        user.password_changed_at = changed_at
        return self._issue(user)

    def update_password(
        self,
        user: User,
        current_password: Any,
        password: Any,
        password_confirm: Any,
    ) -> IssuedToken:
        if not current_password or not isinstance(current_password, str):
            raise ValidationError("Please provide your current password.")
        stored = self.users.get_by_id(user.id)
        if stored is None:
            raise AuthenticationError(
                "The user belonging to this token no longer exists.", code="user_not_found"
            )
        if stored.hashed_password is None or not self.hasher.verify(current_password, stored.hashed_password):
            raise AuthenticationError("Your current password is wrong.", code="incorrect_password")

        fields = validate_password_change({"password": password, "password_confirm": password_confirm})
        changed_at = time.time()
        self.users.set_password(stored.id, self.hasher.hash(fields["password"]), changed_at)
        logger.info("Password changed for user %d", stored.id)
        stored.password_changed_at = changed_at
        return self._issue(stored)
