"""
api/main.py -- the SnippetVault HTTP application.

    uvicorn api.main:app --reload
    python main.py serve

Requests pass TrustedHost, CORS, SlowAPI and then Session middleware (authlib
keeps the OAuth state there) before reaching the /api/v1 routers.

The lifespan opens both stores and the search cache, subscribes the user
document initializer to auth events, and runs the cache purge loop; shutdown
undoes the same steps in reverse.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from api.errors import install_error_handlers
from api.limiter import limiter
from api.models import HealthResponse
from api.routes.v1 import auth, collections, languages, snippets, tags, users
from auth.dependencies import get_current_user
from auth.events import AuthStateNotifier, initialize_user_document
from auth.models import User
from auth.oauth import oauth as oauth_client
from auth.store import UserStore
from cache.store import SearchCache
from core.config import get_settings
from library.store import LibraryStore

VERSION = "0.3.0"
API_PREFIX = "/api/v1"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("snippetvault.api")

_settings = get_settings()

CACHE_PURGE_INTERVAL = 600  # seconds


async def purge_search_cache(cache: SearchCache, interval: float = CACHE_PURGE_INTERVAL) -> None:
    """Drop expired search results forever; ends when the task is cancelled."""
    while True:
        await asyncio.sleep(interval)
        removed = cache.purge_expired()
        if removed:
            logger.info("Search cache: purged %d expired entries", removed)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    state = app.state
    state.user_store = UserStore()
    state.library = LibraryStore()
    state.search_cache = SearchCache(_settings.search_cache_path, ttl=_settings.search_cache_ttl)
    state.auth_events = AuthStateNotifier()
    unsubscribe = state.auth_events.subscribe(initialize_user_document(state.user_store))
    state.oauth = oauth_client
    state.purge_task = asyncio.create_task(purge_search_cache(state.search_cache))
    logger.info("SnippetVault %s ready", VERSION)

    yield

    state.purge_task.cancel()
    unsubscribe()
    for resource in (state.search_cache, state.library, state.user_store):
        resource.close()
    logger.info("SnippetVault stopped")


app = FastAPI(
    title="SnippetVault API",
    description="Personal code snippet library with collections, tags, sharing and search.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,  # served below behind get_current_user
    redoc_url=None,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    max_age=3600,
)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key, https_only=_settings.secure_cookies)
app.state.limiter = limiter  # slowapi finds it here

install_error_handlers(app)


@app.middleware("http")
async def access_log(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s -> %d in %.1fms (%s)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
        request.client.host if request.client else "-",
    )
    return response


for module, tag in (
    (auth, "Auth"),
    (users, "Users"),
    (snippets, "Snippets"),
    (collections, "Collections"),
    (tags, "Tags"),
    (languages, "Languages"),
):
    app.include_router(module.router, prefix=API_PREFIX, tags=[tag])


@app.get("/docs", include_in_schema=False)
async def swagger_docs(user: User = Depends(get_current_user)):
    return get_swagger_ui_html(openapi_url=app.openapi_url, title=app.title)


@app.get("/redoc", include_in_schema=False)
async def redoc_docs(user: User = Depends(get_current_user)):
    return get_redoc_html(openapi_url=app.openapi_url, title=app.title)


def _probe(store) -> str:
    try:
        store.ping()
    except SQLAlchemyError:
        logger.exception("Health probe failed for %s", type(store).__name__)
        return "error"
    return "ok"


@app.get(f"{API_PREFIX}/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Liveness plus a ping of each database; never rate limited or authenticated.

    A failing store reports "error" and turns the status to "degraded" while
    the endpoint itself still answers 200.
    """
    components = {
        "app": "ok",
        "database": _probe(request.app.state.library),
        "auth_database": _probe(request.app.state.user_store),
    }
    status = "healthy" if set(components.values()) == {"ok"} else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
