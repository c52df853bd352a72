"""
auth/store.py -- Credential access to the users table.

Pattern: Repository + Data Mapper (same as docstore/store.py).
UserStore is the repository; _row_to_user is the mapper.

This is the one elevated-intent path to the credential columns (password
hash, password_changed_at, reset token and expiry). The generic users
Collection hides them; only AuthFlow reads them, through this class.

Deactivated users (active = false) are invisible to every lookup here, so
they cannot log in, pass protect(), or request a reset.

Security:
  All queries use bound parameters. No f-strings in SQL.
  consume_reset_token() is a single conditional UPDATE: the WHERE clause
  re-checks the token hash and expiry, so two concurrent resets with the same
  token cannot both succeed.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User
from docstore.schema import users as _users
from docstore.store import duplicate_value_error, now_iso

_active = _users.c.active.is_(True)


class UserStore:
    """Repository for User credentials.

    Shares the DocumentStore's engine so both views see the same rows.

    Usage:
        store = UserStore(document_store.engine)
        user_id = store.create_user(User(name="Ann", email="ann@example.com", hashed_password=h))
        user = store.get_by_email("ann@example.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> int:
        """Insert a new user and return its id.

        Raises ValidationError(code="duplicate_value") if the email is taken.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        name=user.name,
                        email=user.email.lower(),
                        photo=user.photo,
                        role=user.role,
                        active=True,
                        password=user.hashed_password,
                        password_changed_at=user.password_changed_at,
                        created_at=now_iso(),
                        version=0,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise duplicate_value_error(exc) from exc
        return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where((_users.c.id == user_id) & _active)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup; emails are stored lowercased."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where((_users.c.email == email.strip().lower()) & _active)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token(self, token_hash: str, now: float) -> User | None:
        """Return the user holding this reset-token hash, if it has not expired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.password_reset_token == token_hash)
                    & (_users.c.password_reset_expires > now)
                    & _active
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def set_reset_token(self, user_id: int, token_hash: str, expires: float) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_reset_token=token_hash, password_reset_expires=expires)
            )
            conn.commit()

    def clear_reset_token(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_reset_token=None, password_reset_expires=None)
            )
            conn.commit()

    def set_password(self, user_id: int, hashed_password: str, changed_at: float) -> bool:
        """Store a new hash and stamp password_changed_at. Returns False if user_id is gone."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & _active)
                .values(
                    password=hashed_password,
                    password_changed_at=changed_at,
                    version=_users.c.version + 1,
                )
            )
            conn.commit()
        return result.rowcount > 0

    def consume_reset_token(
        self,
        user_id: int,
        token_hash: str,
        now: float,
        hashed_password: str,
        changed_at: float,
    ) -> bool:
        """Swap in a new password hash if and only if the reset token is still valid.

        Clears the reset fields in the same statement. Returns False when the
        token was already consumed or has expired in the meantime.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.password_reset_token == token_hash)
                    & (_users.c.password_reset_expires > now)
                    & _active
                )
                .values(
                    password=hashed_password,
                    password_changed_at=changed_at,
                    password_reset_token=None,
                    password_reset_expires=None,
                    version=_users.c.version + 1,
                )
            )
            conn.commit()
        return result.rowcount > 0

    def deactivate(self, user_id: int) -> bool:
        """Soft-delete: the row stays, every lookup stops seeing it."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where((_users.c.id == user_id) & _active).values(active=False)
            )
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        role=row.role,
        photo=row.photo,
        active=bool(row.active),
        hashed_password=row.password,
        password_changed_at=row.password_changed_at,
        password_reset_token=row.password_reset_token,
        password_reset_expires=row.password_reset_expires,
        created_at=row.created_at,
    )
