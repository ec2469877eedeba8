"""
tests/conftest.py -- Shared test fixtures for the Folio test suite.

This module provides:
  - db_url: a fresh named shared-memory SQLite URL per test
  - user_store / permission_store / tag_store: real stores on that URL,
    with the catalog roles, permissions and tags seeded
  - make_user: factory that inserts a user and returns its ID
  - clock: a settable fake clock (FakeClock)
  - fake_repo: an in-memory PermissionRepository that counts loads
  - api_client: TestClient with a patched lifespan and pre-issued tokens

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because the stores each open their own engine and TestClient runs route
handlers in a thread pool. Plain :memory: DBs are per-connection and would
present a blank schema to every other connection. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

The DEBUG env var must be set before any api/ or core/ import so
get_settings() auto-generates SECRET_KEY in dev mode rather than raising
ValueError.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from typing import NamedTuple, Optional

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, close_state, init_state
from auth.models import Permission, Role, User
from auth.permission_store import PermissionStore
from auth.store import UserStore
from auth.tokens import TokenService, hash_password
from core.config import Settings
from library.store import TagStore

TEST_SECRET = "folio-test-secret-0123456789abcdef0123456789"
TEST_PASSWORD = "correct horse battery"

# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


def memory_db_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def db_url() -> str:
    """A database URL no other test uses."""
    return memory_db_url(f"folio_{uuid.uuid4().hex}")


@pytest.fixture
def user_store(db_url: str) -> Generator[UserStore, None, None]:
    store = UserStore(db_url)
    yield store
    store.close()


@pytest.fixture
def permission_store(db_url: str, user_store: UserStore) -> Generator[PermissionStore, None, None]:
    """PermissionStore with the catalog defaults seeded.

    Depends on user_store so the shared in-memory DB stays open for tests
    that also create users.
    """
    store = PermissionStore(db_url)
    store.seed_defaults()
    yield store
    store.close()


@pytest.fixture
def tag_store(db_url: str, permission_store: PermissionStore) -> Generator[TagStore, None, None]:
    """TagStore with the default tags seeded (their permissions exist already)."""
    store = TagStore(db_url)
    store.seed_default_tags()
    yield store
    store.close()


@pytest.fixture
def make_user(user_store: UserStore) -> Callable[..., int]:
    """Return a factory: make_user("a@b.com", username="a", password=...) -> user ID."""

    def factory(email: str, username: Optional[str] = None, password: str = TEST_PASSWORD, is_active: bool = True) -> int:
        return user_store.create_user(
            User(email=email, username=username, hashed_password=hash_password(password), is_active=is_active)
        )

    return factory


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock returning a settable time in seconds."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRepository:
    """In-memory PermissionRepository that records how often it is queried.

    calls counts get_user_permissions() invocations. Setting fail to an
    exception makes the next loads raise it; fail_writes does the same for
    role mutations. on_load, if set, runs inside every load before the
    result is computed.
    """

    def __init__(self) -> None:
        self.calls = 0
        self.fail: Optional[Exception] = None
        self.fail_writes: Optional[Exception] = None
        self.on_load: Optional[Callable[[int], None]] = None
        self._roles: dict[int, Role] = {}
        self._grants: dict[int, set[int]] = {}
        self._user_roles: dict[int, set[int]] = {}
        self._permissions: dict[int, Permission] = {}
        self._ids = itertools.count(1)

    def add_role(self, name: str, *permission_names: str) -> int:
        role_id = next(self._ids)
        self._roles[role_id] = Role(id=role_id, name=name)
        self._grants[role_id] = set()
        for pname in permission_names:
            existing = next((p for p in self._permissions.values() if p.name == pname), None)
            pid = existing.id if existing else self.create_permission(pname, *pname.split(".", 1))
            self.assign_permission_to_role(role_id, pid)
        return role_id

    def get_user_permissions(self, user_id: int) -> list[Permission]:
        self.calls += 1
        if self.on_load is not None:
            self.on_load(user_id)
        if self.fail is not None:
            raise self.fail
        ids = set().union(*(self._grants[r] for r in self._user_roles.get(user_id, set())))
        return sorted((self._permissions[i] for i in ids), key=lambda p: p.name)

    def get_user_roles(self, user_id: int) -> list[Role]:
        return [self._roles[r] for r in sorted(self._user_roles.get(user_id, set()))]

    def assign_role_to_user(self, user_id: int, role_id: int) -> None:
        if self.fail_writes is not None:
            raise self.fail_writes
        self._user_roles.setdefault(user_id, set()).add(role_id)

    def remove_role_from_user(self, user_id: int, role_id: int) -> None:
        if self.fail_writes is not None:
            raise self.fail_writes
        self._user_roles.get(user_id, set()).discard(role_id)

    def get_role_by_name(self, name: str) -> Optional[Role]:
        return next((r for r in self._roles.values() if r.name == name), None)

    def get_role_by_id(self, role_id: int) -> Optional[Role]:
        return self._roles.get(role_id)

    def list_roles(self) -> list[Role]:
        return sorted(self._roles.values(), key=lambda r: r.name)

    def create_permission(self, name: str, resource: str, action: str, description: Optional[str] = None) -> int:
        pid = next(self._ids)
        self._permissions[pid] = Permission(id=pid, name=name, resource=resource, action=action, description=description)
        return pid

    def assign_permission_to_role(self, role_id: int, permission_id: int) -> None:
        self._grants[role_id].add(permission_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_repo() -> FakeRepository:
    return FakeRepository()


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


class ApiContext(NamedTuple):
    client: TestClient
    settings: Settings
    admin_id: int
    admin_token: str
    reader_id: int
    reader_token: str
    guest_id: int
    guest_token: str


def _patch_lifespan(settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    Wires services built from the test settings into app.state, so routes
    see the isolated in-memory DB rather than the production database.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, settings)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        close_state(app)

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    Three accounts exist before the client starts:
      admin@example.com   -- role admin
      reader@example.com  -- role user (books.read, genres.read)
      guest@example.com   -- role guest (books.read)
    All share TEST_PASSWORD. Tokens are signed with the test secret.
    """
    settings = Settings(
        debug=True,
        secret_key=TEST_SECRET,
        database_url=memory_db_url(f"folio_api_{uuid.uuid4().hex}"),
    )
    users = UserStore(settings.database_url)
    perms = PermissionStore(settings.database_url)
    perms.seed_defaults()
    tokens = TokenService(settings.secret_key)

    accounts = {}
    for email, role in (("admin@example.com", "admin"), ("reader@example.com", "user"), ("guest@example.com", "guest")):
        uid = users.create_user(User(email=email, username=email.split("@")[0], hashed_password=hash_password(TEST_PASSWORD)))
        perms.assign_role_to_user(uid, perms.get_role_by_name(role).id)
        token, claims = tokens.issue(uid, email, email.split("@")[0])
        users.create_session(token, uid, claims.expires_at)
        accounts[role] = (uid, token)

    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(settings)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield ApiContext(
            client=client,
            settings=settings,
            admin_id=accounts["admin"][0],
            admin_token=accounts["admin"][1],
            reader_id=accounts["user"][0],
            reader_token=accounts["user"][1],
            guest_id=accounts["guest"][0],
            guest_token=accounts["guest"][1],
        )

    perms.close()
    users.close()
