"""
tests/conftest.py -- Shared test fixtures for the S4 API test suite.

This module provides:
  - ManualClock: a callable clock tests advance by hand (tickets, tokens)
  - make_settings(): Settings built from keyword arguments, never from .env
  - _patch_lifespan(): wires a test auth core into app.state, bypassing real startup
  - api_client: TestClient for simple (username/password) auth mode
  - client: api_client with rate limits, tickets and cookies reset per test
  - store / resolver: a TicketStore and TokenResolver with no app around them

Design: the ticket store and the JWT codec take an injectable clock so tests
can move time forward instead of sleeping. The app clock starts at the real
current time because python-jose checks exp against the real clock.

ENVIRONMENT and JWT_SECRET are set before any api/auth/core import so no
Settings() built during collection generates a secret or reads a stray .env
value for the environment.
"""

from __future__ import annotations

import os
import time
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any api/auth/core import.
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test-jwt-secret-0123456789abcdef"
os.environ["AUDIT_LOG_ENABLED"] = "true"

import pytest
from fastapi.testclient import TestClient

from api.main import app, configure_state
from auth.models import Identity
from auth.resolver import TokenResolver
from auth.tickets import TicketStore
from auth.tokens import JwtCodec
from core.config import Settings, get_settings

TEST_USERNAME = "admin"
TEST_PASSWORD = "s3cret-pass"
TEST_JWT_SECRET = "test-jwt-secret-0123456789abcdef"
TEST_COOKIE_SECRET = "test-cookie-secret-fedcba9876543210"


class ManualClock:
    """Epoch-seconds clock that only moves when advance() is called."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> Settings:
    """Settings for simple auth mode; keyword arguments override any field."""
    values = {
        "environment": "test",
        "ui_username": TEST_USERNAME,
        "ui_password": TEST_PASSWORD,
        "jwt_secret": TEST_JWT_SECRET,
        "cookie_secret": TEST_COOKIE_SECRET,
        "sse_ticket_ttl_seconds": 60,
        "login_rate_limit": 5,
        "ticket_rate_limit": 20,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def admin_identity() -> Identity:
    return Identity(id="admin", username=TEST_USERNAME, roles=["admin"])


# ---------------------------------------------------------------------------
# Lifespan patching
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, clock: ManualClock):
    """Return an async context manager that replaces the real lifespan.

    Builds the auth core from the given settings and clock. The sweeper is
    not started; tests call TicketStore.sweep() directly.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        configure_state(app, settings, clock)
        yield
        await app.state.ticket_store.stop_sweeper()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, ManualClock], None, None]:
    """Yield (client, token, clock) for API integration tests in simple auth mode.

    token is a valid JWT for the configured admin user, for Authorization
    headers. The clock drives ticket expiry inside the app.
    """
    get_settings.cache_clear()
    clock = ManualClock(start=float(int(time.time())))
    settings = make_settings()
    token = JwtCodec(clock=clock).sign(admin_identity(), settings.jwt_secret, 3600)

    app.router.lifespan_context = _patch_lifespan(settings, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, clock


@pytest.fixture
def client(api_client) -> TestClient:
    """The shared TestClient with per-test state reset.

    Rate-limit counters, tickets, ticket metrics and cookies all start empty
    so tests in one module do not throttle or authenticate each other.
    """
    test_client, _, _ = api_client
    state = app.state
    state.rate_limiter.reset()
    state.ticket_store.clear()
    state.ticket_store.reset_metrics()
    test_client.cookies.clear()
    return test_client


@pytest.fixture
def auth_headers(api_client) -> dict[str, str]:
    _, token, _ = api_client
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Unit-level fixtures -- no app, no event loop
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(clock: ManualClock) -> TicketStore:
    return TicketStore(default_ttl_seconds=60, clock=clock)


@pytest.fixture
def settings_factory():
    """make_settings() for tests that need a non-default configuration."""
    return make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def codec() -> JwtCodec:
    return JwtCodec()


@pytest.fixture
def resolver(settings: Settings, store: TicketStore, codec: JwtCodec) -> TokenResolver:
    return TokenResolver(settings, store, codec)
