"""
auth/dependencies.py -- resolve the signed-in user for a request.

A request identifies its caller in one of three ways, tried in this order:

  access_token cookie     browsers, after login/register/Google sign-in
  Authorization: Bearer   API clients holding a JWT
  X-API-Key               scripts and editor plugins holding a long-lived key

A session token that fails to verify does not block the API key check; a
client may send a stale cookie alongside a valid key.

Routes depend on get_current_user(). The auth routes that must also answer
anonymous callers (GET /auth/session, logout) use try_get_current_user().

Layer rule: no imports from library/ or cache/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.store import UserStore
from auth.tokens import decode_access_token, hash_api_key

_BEARER_PREFIX = "Bearer "


def _session_token(request: Request) -> str | None:
    token = request.cookies.get("access_token")
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.startswith(_BEARER_PREFIX):
        return header[len(_BEARER_PREFIX) :] or None
    return None


def _active(user: User | None) -> User | None:
    return user if user is not None and user.is_active else None


def _user_from_session(store: UserStore, token: str) -> User | None:
    claims = decode_access_token(token)
    if claims is None:
        return None
    return _active(store.get_by_id(claims["user_id"]))


def _user_from_api_key(store: UserStore, raw_key: str) -> User | None:
    key = store.get_api_key_by_hash(hash_api_key(raw_key))
    if key is None or not key.is_active:
        return None
    owner = _active(store.get_by_id(key.user_id))
    if owner is not None:
        store.update_api_key_last_used(key.id)
    return owner


def try_get_current_user(request: Request) -> User | None:
    """Return the caller's User, or None when no credential checks out."""
    store: UserStore = request.app.state.user_store

    token = _session_token(request)
    if token:
        user = _user_from_session(store, token)
        if user is not None:
            return user

    raw_key = request.headers.get("X-API-Key")
    if raw_key:
        return _user_from_api_key(store, raw_key)
    return None


def get_current_user(request: Request) -> User:
    """Dependency for every library route; 401 unauthorized when anonymous."""
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Sign in to access your snippets."},
        )
    return user
