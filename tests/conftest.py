"""
tests/conftest.py -- Shared test fixtures for Kavyakala integration tests.

This module provides:
  - make_store(): creates an isolated in-memory UserStore
  - RecordingMailer / FailingMailer: mail doubles that capture or refuse messages
  - raw_token_from(): pulls the raw verification token out of a captured mail
  - _patch_lifespan(): wires test doubles into app.state, bypassing real startup
  - app_env: (client, store, mailer) with a fresh store per test
  - admin_token / user_token helpers for Authorization headers

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any core/auth import: settings are
read once at import time by the lru_cache singleton.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("APP_BASE_URL", "http://app.test")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password

# TrustedHostMiddleware only admits localhost-style hosts.
BASE_URL = "http://localhost"

_TOKEN_RE = re.compile(r"/api/v1/auth/verify/([0-9a-f]{64})")


# ---------------------------------------------------------------------------
# Store and mail helpers
# ---------------------------------------------------------------------------


def make_store() -> UserStore:
    """Return a UserStore on a uniquely named shared-memory database."""
    return UserStore(db_url=f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


class RecordingMailer:
    """Mailer double that records every message instead of sending it."""

    enabled = True

    def __init__(self) -> None:
        self.sent: list[dict] = []

    def send(self, to: str, subject: str, text_body: str, html_body: str | None = None) -> bool:
        self.sent.append({"to": to, "subject": subject, "text": text_body, "html": html_body})
        return True

    @property
    def last(self) -> dict:
        return self.sent[-1]


class FailingMailer(RecordingMailer):
    """Mailer double whose transport is always down."""

    def send(self, to: str, subject: str, text_body: str, html_body: str | None = None) -> bool:
        super().send(to, subject, text_body, html_body)
        return False


def raw_token_from(message: dict) -> str:
    """Extract the raw verification token from a captured message's link."""
    match = _TOKEN_RE.search(message["text"])
    assert match, f"no verification link in: {message['text']!r}"
    return match.group(1)


def add_user(
    store: UserStore,
    handle: str,
    *,
    role: Role = Role.user,
    password: str = "secret123",
    is_verified: bool = True,
    is_active: bool = True,
) -> User:
    """Insert an account directly through the store, bypassing signup."""
    return store.create_user(
        User(
            name=handle.title(),
            email=f"{handle}@example.com",
            handle=handle,
            hashed_password=hash_password(password),
            role=role,
            is_verified=is_verified,
            is_active=is_active,
        )
    )


def bearer(user: User) -> dict[str, str]:
    """Authorization header for the given account."""
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, mailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and mail double into app.state so TestClient routes
    never touch the production database or a real SMTP server.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.mailer = mailer
        yield

    return test_lifespan


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    user_store = make_store()
    yield user_store
    user_store.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def client(store: UserStore, mailer: RecordingMailer) -> Generator[TestClient, None, None]:
    """TestClient over the real app with an isolated store and a recording mailer.

    follow_redirects=False so verify-link tests can assert on the redirect
    Location rather than the page it points to.
    """
    app.router.lifespan_context = _patch_lifespan(store, mailer)
    with TestClient(app, base_url=BASE_URL, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def admin(store: UserStore) -> User:
    return add_user(store, "rootadmin", role=Role.admin)


@pytest.fixture
def admin_headers(admin: User) -> dict[str, str]:
    return bearer(admin)
