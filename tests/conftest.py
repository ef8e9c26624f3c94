"""
tests/conftest.py -- fixtures shared by the SnippetVault test suite.

API tests run the real app through one TestClient per module. Its lifespan is
swapped for one that installs that module's stores, so every module starts
from empty databases and no test touches data/.

Databases are named shared-memory SQLite URIs. TestClient runs sync routes on
worker threads and a bare :memory: database exists per connection, so the
workers would each see an empty schema; a named shared-cache database is one
database for every connection in the process.

Store-level tests take the function-scoped `library` and `user_store`
fixtures, which get a fresh database each.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# Settings refuse to load without SECRET_KEY unless DEBUG is on, and the first
# import of core.config below reads it.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.events import AuthStateNotifier, initialize_user_document
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from cache.store import SearchCache
from library.store import LibraryStore

OWNER_EMAIL = "ada@example.com"
OWNER_PASSWORD = "adapass123"


def _memory_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


def _fresh_url(kind: str) -> str:
    return _memory_url(f"snippetvault_{kind}_{uuid.uuid4().hex}")


def _lifespan_with(user_store: UserStore, library: LibraryStore, search_cache: SearchCache):
    """A stand-in lifespan that installs the given stores on app.state.

    OAuth is a MagicMock so nothing reaches Google. purge_task must be a real
    task because shutdown cancels it.
    """

    @asynccontextmanager
    async def lifespan(app):
        state = app.state
        state.user_store = user_store
        state.library = library
        state.search_cache = search_cache
        state.auth_events = AuthStateNotifier()
        unsubscribe = state.auth_events.subscribe(initialize_user_document(user_store))
        state.oauth = MagicMock()
        state.purge_task = asyncio.create_task(asyncio.sleep(3600))
        yield
        state.purge_task.cancel()
        unsubscribe()

    return lifespan


def make_user(user_store: UserStore, email: str, password: str = "password123", name: str = "") -> tuple[int, str]:
    """Create a password account; returns (user_id, session token)."""
    uid = user_store.create_user(User(email=email, display_name=name, hashed_password=hash_password(password)))
    return uid, create_access_token(user_id=uid, email=email, expire_seconds=3600)


@pytest.fixture(autouse=True)
def _reset_client_state(request) -> Generator[None, None, None]:
    """Empty the rate limit counters and the client's cookie jar around each test.

    Every TestClient request shares one client address, so counters would
    carry across tests. A cookie left by a login would outrank the Bearer
    header the next test sends.
    """
    limiter.reset()
    client = request.getfixturevalue("api_client")[0] if "api_client" in request.fixturenames else None
    if client is not None:
        client.cookies.clear()
    yield
    if client is not None:
        client.cookies.clear()


@pytest.fixture(scope="module")
def api_stores() -> Generator[tuple[UserStore, LibraryStore, SearchCache], None, None]:
    user_store = UserStore(db_url=_fresh_url("auth"))
    library = LibraryStore(db_url=_fresh_url("library"))
    search_cache = SearchCache(":memory:", ttl=300)
    yield user_store, library, search_cache
    for store in (search_cache, library, user_store):
        store.close()


@pytest.fixture(scope="module")
def api_client(api_stores) -> Generator[tuple[TestClient, str, int], None, None]:
    """(client, owner token, owner id) with ada@example.com already registered."""
    user_store, library, search_cache = api_stores
    uid, token = make_user(user_store, OWNER_EMAIL, OWNER_PASSWORD, name="Ada")
    app.router.lifespan_context = _lifespan_with(user_store, library, search_cache)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid


@pytest.fixture(scope="module")
def other_user(api_stores, api_client) -> tuple[str, int, str]:
    """(token, user_id, email) for Bob, the usual share recipient."""
    uid, token = make_user(api_stores[0], "bob@example.com", name="Bob")
    return token, uid, "bob@example.com"


@pytest.fixture(scope="module")
def third_user(api_stores, api_client) -> tuple[str, int, str]:
    """(token, user_id, email) for Cy, who is never shared anything."""
    uid, token = make_user(api_stores[0], "cy@example.com", name="Cy")
    return token, uid, "cy@example.com"


@pytest.fixture
def library() -> Generator[LibraryStore, None, None]:
    store = LibraryStore(db_url=_fresh_url("library_unit"))
    yield store
    store.close()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=_fresh_url("auth_unit"))
    yield store
    store.close()
