"""
tests/conftest.py -- Shared test fixtures for AuditDesk tests.

This module provides:
  - make_test_stores(): isolated in-memory UserStore + AuditStore on one engine
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus one active user and token per role
  - user_store / audit_store: single-threaded in-memory stores for unit tests
  - make_user / password: user factory for unit tests and its plaintext password

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the TestClient because it runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment must be set before any auth/core import:
  DEBUG=true              -> get_settings() uses the development SECRET_KEY
  BCRYPT_ROUNDS=4         -> keeps password hashing fast
  RATE_LIMIT_ENABLED=false -> login tests are not throttled
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: set before any auth/core import (get_settings() is cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from audit.store import AuditStore
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.database import create_db_engine

TEST_PASSWORD = "testpass123"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_stores(db_suffix: str) -> tuple[UserStore, AuditStore]:
    """Create isolated named shared-memory SQLite stores sharing one engine.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    engine = create_db_engine(f"sqlite:///file:test_auditdesk_{db_suffix}?mode=memory&cache=shared&uri=true")
    return UserStore(engine), AuditStore(engine)


def _create_user(store: UserStore, email: str, role: Role, **kwargs) -> User:
    """Insert a user with TEST_PASSWORD and return the stored record."""
    user = User(
        email=email,
        first_name=kwargs.pop("first_name", role.value.replace("_", " ").title()),
        last_name=kwargs.pop("last_name", "Tester"),
        role=role,
        password_hash=hash_password(TEST_PASSWORD),
        **kwargs,
    )
    user_id = store.create_user(user)
    return store.get_by_id(user_id)


def _patch_lifespan(user_store: UserStore, audit_store: AuditStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.audit_store = audit_store
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-test stores
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(create_db_engine("sqlite:///:memory:"))
    yield store
    store.engine.dispose()


@pytest.fixture
def audit_store(user_store: UserStore) -> Generator[AuditStore, None, None]:
    """AuditStore on the same in-memory engine as user_store."""
    store = AuditStore(user_store.engine)
    yield store


@pytest.fixture
def password() -> str:
    """The plaintext password every test user is created with."""
    return TEST_PASSWORD


@pytest.fixture
def make_user(user_store: UserStore):
    """Return a factory that inserts a user into user_store and returns it."""

    def factory(email: str, role: Role, **kwargs) -> User:
        return _create_user(user_store, email, role, **kwargs)

    return factory


# ---------------------------------------------------------------------------
# API client -- one per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    """Everything an API test needs: the client, the stores, and a user per role."""

    client: TestClient
    user_store: UserStore
    audit_store: AuditStore
    users: dict[Role, User] = field(default_factory=dict)
    tokens: dict[Role, str] = field(default_factory=dict)
    password: str = TEST_PASSWORD

    def headers(self, role: Role) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[role]}"}

    def token_for(self, user: User) -> str:
        return create_access_token(user.id, user.email, user.role, expire_seconds=3600)

    def create_user(self, email: str, role: Role, **kwargs) -> User:
        return _create_user(self.user_store, email, role, **kwargs)


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext backed by the real app and isolated stores.

    The TestClient uses the real FastAPI app with a patched lifespan, so tests
    hit real middleware, dependencies and route handlers. One active user per
    role is created before the client starts, each with a 1-hour token.
    """
    user_store, audit_store = make_test_stores(request.module.__name__.replace(".", "_"))

    ctx_users: dict[Role, User] = {}
    for role in Role:
        ctx_users[role] = _create_user(user_store, f"{role.value}@audit.test", role)

    app.router.lifespan_context = _patch_lifespan(user_store, audit_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        ctx = ApiContext(client=client, user_store=user_store, audit_store=audit_store, users=ctx_users)
        ctx.tokens = {role: ctx.token_for(user) for role, user in ctx_users.items()}
        yield ctx

    user_store.engine.dispose()
