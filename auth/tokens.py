"""
auth/tokens.py -- Password hashing, JWT signing, and reset-token utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (user id as a string), iat
       (float epoch seconds, so a password change in the same second as a
       login is still ordered correctly), and exp. Verification raises
       AuthenticationError with a specific code -- invalid_token or
       expired_token -- and the HTTP boundary turns either into 401.

  Passwords: bcrypt directly, rounds configurable via BCRYPT_ROUNDS. The
       dummy hash lets AuthFlow.login() run a full bcrypt check for unknown
       emails so response time does not reveal whether an account exists.

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. Only the
       SHA-256 hex digest is stored; the raw token goes out by mail once.
       A plain hash (not bcrypt) keeps lookup by token O(1).

Neither class reads global settings: api/main.py builds them from Settings
at startup and hands them to AuthFlow.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.errors import AuthenticationError

logger = logging.getLogger("tourbook.auth")

ALGORITHM = "HS256"


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


class PasswordHasher:
    """bcrypt hash / verify with a fixed cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Computed once per hasher so the first login is not slower than the rest.
        self._dummy_hash = self.hash("tourbook_timing_dummy")

    def hash(self, plain: str) -> str:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed. Malformed input is a mismatch."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def equalize(self, plain: str) -> None:
        """Spend the same bcrypt work as a real verify, for unknown accounts."""
        self.verify(plain, self._dummy_hash)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    issued_at: float


class TokenSigner:
    """HS256 bearer tokens with a fixed lifetime."""

    def __init__(self, secret_key: str, expire_seconds: int, algorithm: str = ALGORITHM) -> None:
        self.secret_key = secret_key
        self.expire_seconds = expire_seconds
        self.algorithm = algorithm

    def sign(self, subject: int | str) -> str:
        now = time.time()
        payload = {
            "sub": str(subject),
            "iat": now,
            "exp": datetime.fromtimestamp(now, tz=timezone.utc) + timedelta(seconds=self.expire_seconds),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Check signature and expiry and return the claims AuthFlow needs."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise AuthenticationError(
                "Your session has expired. Please log in again.", code="expired_token"
            ) from exc
        except JWTError as exc:
            raise AuthenticationError("Invalid token. Please log in again.", code="invalid_token") from exc

        subject = payload.get("sub")
        issued_at = payload.get("iat")
        if not subject or not isinstance(issued_at, (int, float)):
            raise AuthenticationError("Invalid token. Please log in again.", code="invalid_token")
        return TokenClaims(subject=str(subject), issued_at=float(issued_at))


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


def hash_reset_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_reset_token() -> tuple[str, str]:
    """Return (raw_token, stored_hash). Only the hash is persisted."""
    raw = secrets.token_hex(32)
    return raw, hash_reset_token(raw)
