"""
auth/models.py -- Domain dataclass for the authenticated identity.

Pattern: Data class (pure data container, zero logic). The generic user
Collection returns public documents as dicts; this dataclass is the elevated
view auth.store.UserStore builds, credential fields included. It never leaves
the auth layer unprojected -- routes serialise it through public_fields().

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from docstore.models import Role

PUBLIC_FIELDS = ("id", "name", "email", "photo", "role", "created_at")


@dataclass
class User:
    """A registered user, guide, lead-guide, or admin.

    hashed_password is the bcrypt hash; the plaintext is never held here.
    password_reset_token is the SHA-256 hex digest of the raw reset token that
    was mailed out. password_changed_at and password_reset_expires are epoch
    seconds.
    """

    name: str
    email: str
    role: str = Role.user.value
    id: int | None = None
    photo: str = "user.png"
    active: bool = True
    hashed_password: str | None = None
    password_changed_at: float | None = None
    password_reset_token: str | None = None
    password_reset_expires: float | None = None
    created_at: str | None = None


def public_fields(user: User) -> dict[str, Any]:
    return {name: getattr(user, name) for name in PUBLIC_FIELDS}
