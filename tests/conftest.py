"""
tests/conftest.py -- Shared test fixtures for Snipshare auth tests.

This module provides:
  - make_store(): an isolated named shared-memory SQLite UserStore
  - store / sessions / credential_service / linker: unit-level fixtures
  - client: TestClient over the assembled ASGI app with a patched lifespan
  - fake_oauth_client: stand-in for an authlib client used by the callback

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

DEBUG and the OAuth client credentials must be set before any auth/core
import: get_settings() is cached on first call, and auth/oauth.py registers
providers at import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

# CRITICAL: Set env before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("GITHUB_CLIENT_ID", "test-github-id")
os.environ.setdefault("GITHUB_CLIENT_SECRET", "test-github-secret")
os.environ.setdefault("GOOGLE_CLIENT_ID", "")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import wire_services
from asgi import app
from auth.credentials import CredentialAuthService
from auth.linking import IdentityLinker
from auth.session import JweSealer, SessionManager
from auth.store import UserStore
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"

# Rate limits are exercised by slowapi itself; they would only make the
# integration tests order-dependent here.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Store / service helpers
# ---------------------------------------------------------------------------


def make_store() -> UserStore:
    """Create an isolated named shared-memory SQLite store."""
    name = f"test_auth_{uuid.uuid4().hex}"
    return UserStore(db_url=f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


def make_sessions(**overrides) -> SessionManager:
    kwargs = {
        "sealer": JweSealer(TEST_SECRET),
        "cookie_name": "test_session",
        "secure": False,
        "default_ttl": 3600,
        "remember_ttl": 30 * 24 * 3600,
    }
    kwargs.update(overrides)
    return SessionManager(**kwargs)


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def sessions() -> SessionManager:
    return make_sessions()


@pytest.fixture
def credential_service(store: UserStore, sessions: SessionManager) -> CredentialAuthService:
    return CredentialAuthService(store, sessions)


@pytest.fixture
def linker(store: UserStore, sessions: SessionManager) -> IdentityLinker:
    return IdentityLinker(store, sessions)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_oauth_client() -> MagicMock:
    """An authlib-like client whose code exchange always succeeds."""
    client = MagicMock()
    client.authorize_access_token = AsyncMock(return_value={"access_token": "tok"})
    return client


def _patch_lifespan(user_store: UserStore, oauth_client: MagicMock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store into app.state so TestClient routes see an isolated
    DB, and mocks the OAuth registry to prevent real network calls.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, user_store, SessionManager.from_settings(get_settings()))
        registry = MagicMock()
        registry.create_client.return_value = oauth_client
        app.state.oauth = registry
        yield

    return test_lifespan


@pytest.fixture
def client(store: UserStore, fake_oauth_client: MagicMock) -> Generator[TestClient, None, None]:
    """TestClient with follow_redirects=False so redirect Locations stay visible."""
    app.router.lifespan_context = _patch_lifespan(store, fake_oauth_client)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c
