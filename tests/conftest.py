"""
tests/conftest.py -- Shared test fixtures for Tourbook unit and integration tests.

This module provides:
  - RecordingMailSender: in-memory MailSender that can be told to fail
  - make_store(): isolated in-memory DocumentStore per test module
  - make_flow(): AuthFlow wired to a store, a recording mailer and fast bcrypt
  - _patch_lifespan(): wires test collaborators into app.state, bypassing real startup
  - api_env: TestClient plus one signed-up account per role, for route tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment must be set before any api/ or core/ import: get_settings() is
cached, and api.limiter / api.main read it at import time. DEBUG stays off so
the masking of internal errors is what the tests see.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: configure before any project import.
os.environ.setdefault("SECRET_KEY", "test-secret-key-" + "0123456789abcdef" * 3)
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite:///file:tourbook_default?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.flow import AuthConfig, AuthFlow
from auth.store import UserStore
from auth.tokens import PasswordHasher, TokenSigner
from core.config import get_settings
from core.errors import DeliveryError
from docstore.store import DocumentStore

PASSWORD = "Passw0rd!"

_db_counter = itertools.count()


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class RecordingMailSender:
    """MailSender that keeps every message in .sent; set .fail to raise DeliveryError."""

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []
        self.fail = False

    def send(self, recipient: str, subject: str, body: str) -> None:
        if self.fail:
            raise DeliveryError("There was an error sending the email. Try again later.")
        self.sent.append({"recipient": recipient, "subject": subject, "body": body})

    @property
    def last_token(self) -> str:
        """Raw reset token from the most recent message (last path segment of the link)."""
        body = self.sent[-1]["body"]
        link = next(word for word in body.split() if "/reset-password/" in word)
        return link.rsplit("/", 1)[-1]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(name: str) -> DocumentStore:
    """Create an isolated named shared-memory SQLite DocumentStore.

    A counter is appended so two calls with the same name never share data.
    """
    return DocumentStore(f"sqlite:///file:tourbook_{name}_{next(_db_counter)}?mode=memory&cache=shared&uri=true")


def make_flow(
    store: DocumentStore,
    mailer: RecordingMailSender | None = None,
    config: AuthConfig | None = None,
    expire_seconds: int = 3600,
) -> AuthFlow:
    return AuthFlow(
        users=UserStore(store.engine),
        hasher=PasswordHasher(rounds=4),
        signer=TokenSigner(get_settings().secret_key, expire_seconds),
        mailer=mailer or RecordingMailSender(),
        config=config or AuthConfig(),
    )


def _patch_lifespan(store: DocumentStore, flow: AuthFlow, debug: bool = False):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test collaborators into app.state so TestClient routes
    see isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.debug = debug
        app.state.store = store
        app.state.auth_flow = flow
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiEnv:
    client: TestClient
    store: DocumentStore
    flow: AuthFlow
    mailer: RecordingMailSender
    tokens: dict[str, str] = field(default_factory=dict)
    ids: dict[str, int] = field(default_factory=dict)

    def headers(self, role: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[role]}"}


@pytest.fixture(scope="module")
def api_env(request) -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv with one account per role already signed up.

    tokens / ids are keyed by role: "admin", "lead-guide", "guide", "user".
    """
    store = make_store(request.module.__name__.rsplit(".", 1)[-1])
    mailer = RecordingMailSender()
    flow = make_flow(store, mailer)

    env = ApiEnv(client=None, store=store, flow=flow, mailer=mailer)  # type: ignore[arg-type]
    for role in ("admin", "lead-guide", "guide", "user"):
        slug = role.replace("-", "")
        issued = flow.signup(f"Test {role}", f"{slug}@example.com", PASSWORD, PASSWORD, role)
        env.tokens[role] = issued.token
        env.ids[role] = issued.user.id

    app.router.lifespan_context = _patch_lifespan(store, flow)

    with TestClient(app, raise_server_exceptions=False) as client:
        env.client = client
        yield env

    store.close()


def tour_payload(name: str = "The Forest Hiker", **overrides) -> dict:
    """Minimal valid tour body; overrides replace or add fields."""
    body = {
        "name": name,
        "duration": 5,
        "max_group_size": 25,
        "difficulty": "easy",
        "price": 397,
        "summary": "Breathtaking hike through the Canadian Banff National Park",
        "cover": "tour-1-cover.jpg",
    }
    body.update(overrides)
    return body


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[DocumentStore, None, None]:
    s = make_store("unit")
    yield s
    s.close()


@pytest.fixture
def mailer() -> RecordingMailSender:
    return RecordingMailSender()


@pytest.fixture
def flow(store: DocumentStore, mailer: RecordingMailSender) -> AuthFlow:
    return make_flow(store, mailer)


@pytest.fixture(scope="session")
def tour_body():
    """The tour_payload() factory, for tests that build several tours."""
    return tour_payload
