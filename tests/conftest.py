"""
tests/conftest.py -- Shared test fixtures for credgate unit and integration tests.

This module provides:
  - make_test_engine(): isolated in-memory SQLite database per test / module
  - FrozenClock: a settable clock wired into app.state.clock
  - RecordingNotifier: captures the links the account flows send
  - _patch_lifespan(): wires test collaborators into app.state, bypassing real startup
  - api_client: TestClient with a verified admin and its session token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY when api.main is imported.
"""

from __future__ import annotations

import base64
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import NamedTuple
from urllib.parse import parse_qs, urlparse

# Set DEBUG before any api/core import so get_settings() can auto-generate
# SECRET_KEY in dev mode.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.limiter import limiter
from api.main import app, wire_services
from auth.accounts import AccountService, LinkBuilder, TokenLifetimes
from auth.ephemeral import EphemeralTokenStore
from auth.keys import SigningKey
from auth.models import Identity, Role, TokenKind
from auth.passwords import hash_password
from auth.schema import make_engine
from auth.store import IdentityStore
from auth.tokens import SessionTokenCodec
from core.config import Settings

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
SECRET = base64.b64encode(b"credgate-test-signing-key-32byte").decode("ascii")
SESSION_TTL_MS = 60 * 60 * 1000

ADMIN_USERNAME = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class RecordingNotifier:
    def __init__(self) -> None:
        self.verifications: list[tuple[str, str]] = []
        self.resets: list[tuple[str, str]] = []

    def send_verification_email(self, address: str, link: str) -> None:
        self.verifications.append((address, link))

    def send_reset_password_email(self, address: str, link: str) -> None:
        self.resets.append((address, link))


def token_from_link(link: str) -> str:
    return parse_qs(urlparse(link).query)["token"][0]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_engine(db_suffix: str) -> Engine:
    """Create an isolated named shared-memory SQLite database.

    Args:
        db_suffix: Unique string appended to the DB name so tests and modules
                   don't share state.
    """
    return make_engine(f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def make_identity(
    store: IdentityStore,
    username: str,
    password: str = "correct-horse",
    role: str = Role.USER,
    verified: bool = True,
    manager_id: int | None = None,
) -> Identity:
    return store.save(
        Identity(
            username=username,
            hashed_password=hash_password(password),
            role=role,
            verified=verified,
            manager_id=manager_id,
        )
    )


# ---------------------------------------------------------------------------
# Unit-level fixtures -- one fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = make_test_engine(uuid.uuid4().hex)
    yield eng
    eng.dispose()


@pytest.fixture
def identity_store(engine: Engine) -> IdentityStore:
    return IdentityStore(engine)


@pytest.fixture
def signing_key() -> SigningKey:
    return SigningKey.from_secret(SECRET)


@pytest.fixture
def codec(signing_key: SigningKey) -> SessionTokenCodec:
    return SessionTokenCodec(signing_key, SESSION_TTL_MS)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def verification_store(engine: Engine) -> EphemeralTokenStore:
    return EphemeralTokenStore(engine, TokenKind.VERIFICATION)


@pytest.fixture
def reset_store(engine: Engine) -> EphemeralTokenStore:
    return EphemeralTokenStore(engine, TokenKind.PASSWORD_RESET)


@pytest.fixture
def invite_store(engine: Engine) -> EphemeralTokenStore:
    return EphemeralTokenStore(engine, TokenKind.INVITE)


@pytest.fixture
def accounts(
    identity_store: IdentityStore,
    verification_store: EphemeralTokenStore,
    reset_store: EphemeralTokenStore,
    invite_store: EphemeralTokenStore,
    notifier: RecordingNotifier,
) -> AccountService:
    return AccountService(
        identities=identity_store,
        verifications=verification_store,
        password_resets=reset_store,
        invites=invite_store,
        notifier=notifier,
        lifetimes=TokenLifetimes(
            verification=timedelta(hours=24),
            password_reset=timedelta(hours=1),
            invite=timedelta(hours=24),
        ),
        links=LinkBuilder("http://api.test", "http://app.test"),
    )


# ---------------------------------------------------------------------------
# Integration fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


class ApiHarness(NamedTuple):
    client: TestClient
    admin_token: str
    clock: FrozenClock
    notifier: RecordingNotifier
    identity_store: IdentityStore


def _patch_lifespan(settings: Settings, engine: Engine, notifier: RecordingNotifier, clock: FrozenClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine, notifier and clock into app.state so TestClient
    routes see an isolated database and a controllable "now".
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, settings, SigningKey.from_secret(settings.secret_key), engine, notifier, clock)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real middleware and route handlers against an in-memory store.
    A verified admin exists before the client starts; admin_token is a
    session token for it issued at NOW.
    """
    engine = make_test_engine(f"api_{uuid.uuid4().hex}")
    identity_store = IdentityStore(engine)
    make_identity(identity_store, ADMIN_USERNAME, ADMIN_PASSWORD, role=Role.ADMIN)

    settings = Settings(
        secret_key=SECRET,
        session_ttl_ms=SESSION_TTL_MS,
        password_reset_token_ttl_ms=60 * 60 * 1000,
        public_base_url="http://api.test",
        frontend_base_url="http://app.test",
    )
    clock = FrozenClock()
    notifier = RecordingNotifier()
    token = SessionTokenCodec(SigningKey.from_secret(SECRET), SESSION_TTL_MS).issue(ADMIN_USERNAME, NOW)

    app.router.lifespan_context = _patch_lifespan(settings, engine, notifier, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client, token, clock, notifier, identity_store)

    engine.dispose()


@pytest.fixture
def api(api_client: ApiHarness) -> ApiHarness:
    """api_client with the clock back at NOW and rate limit counters cleared."""
    api_client.clock.now = NOW
    limiter.reset()
    return api_client
