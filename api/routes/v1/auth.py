"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Open to anonymous callers:
  POST /auth/register       account + session cookie (403 if self sign-up is off)
  POST /auth/login          session cookie
  POST /auth/logout
  GET  /auth/providers      which sign-in buttons to show
  GET  /auth/oauth/google/login, /auth/oauth/google/callback

Signed-in callers only:
  GET /auth/me, and GET/POST/DELETE under /auth/api-keys

Every successful register, login (password or Google) and logout publishes an
AuthEvent on request.app.state.auth_events.

Notes:
  [H2] register and login share LOGIN_RATE_LIMIT per client address.
  [C1] Password checks go through authenticate_user() and nowhere else.
  [M5] Responses that carry a token are sent with Cache-Control: no-store.
  Revoking a key passes the caller's id to the store, so a foreign key id
  revokes nothing.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import IntegrityError

from api.errors import api_error
from api.limiter import LOGIN_LIMIT, limiter
from api.models import (
    ApiKeyCreate,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    AuthResponse,
    LoginRequest,
    MeResponse,
    OAuthProviderInfo,
    RegisterRequest,
)
from auth.dependencies import get_current_user, try_get_current_user
from auth.events import SIGNED_IN, SIGNED_OUT, SIGNED_UP, AuthEvent
from auth.models import ApiKey, User
from auth.oauth import get_enabled_providers, get_google_user_info
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    generate_api_key,
    hash_api_key,
    hash_password,
    set_auth_cookie,
)
from auth.validation import FieldError, password_strength, validate_login, validate_registration
from core.config import get_settings

logger = logging.getLogger("snippetvault.api.auth")

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _field_errors(errors: list[FieldError]) -> HTTPException:
    return api_error(
        422,
        "validation_error",
        errors[0].message if len(errors) == 1 else "Request validation failed.",
        fields=[(e.field, e.message) for e in errors],
    )


def _token_response(user: User, status_code: int, strength: str | None = None) -> JSONResponse:
    settings = get_settings()
    token = create_access_token(user.id, user.email)
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=settings.token_expire_seconds,
            user_id=user.id,
            email=user.email,
            display_name=user.display_name,
            password_strength=strength,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _publish(request: Request, kind: str, user: User | None, method: str = "password") -> None:
    notifier = getattr(request.app.state, "auth_events", None)
    if notifier is None:
        return
    notifier.publish(
        AuthEvent(
            kind=kind,
            user_id=user.id if user else None,
            email=user.email if user else None,
            method=method,
        )
    )


def _frontend_redirect(error: str | None = None) -> RedirectResponse:
    target = get_settings().frontend_url
    if error:
        sep = "&" if "?" in target else "?"
        target = f"{target}{sep}{urlencode({'error': error})}"
    return RedirectResponse(target, status_code=302)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an email/password account and sign it in.

    Validation failures list every failing field in order. A duplicate email
    answers 409; the UNIQUE constraint on users.email also settles two
    concurrent registrations for the same address.
    """
    if not get_settings().self_registration_enabled:
        raise api_error(403, "registration_disabled", "Registration is disabled on this server.")

    errors = validate_registration(body.email, body.password, body.confirm_password)
    if errors:
        raise _field_errors(errors)

    user_store: UserStore = request.app.state.user_store
    try:
        user_id = user_store.create_user(
            User(
                email=body.email.strip(),
                display_name=body.display_name.strip(),
                hashed_password=hash_password(body.password),
            )
        )
    except IntegrityError as exc:
        raise api_error(409, "conflict", "This email is already registered") from exc

    user_store.update_last_login(user_id)
    user = user_store.get_by_id(user_id)
    logger.info("Registered user_id=%s", user_id)
    _publish(request, SIGNED_UP, user)
    return _token_response(user, 201, password_strength(body.password))


@limiter.limit(LOGIN_LIMIT)  # [H2]
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Password sign-in.

    Unknown email, wrong password and a disabled account all answer the same
    401 bad_credentials [C1].
    """
    errors = validate_login(body.email, body.password)
    if errors:
        raise _field_errors(errors)

    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password"}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    user_store.update_last_login(user.id)
    _publish(request, SIGNED_IN, user)
    return _token_response(user, 200)


@router.post("/auth/logout")
def logout(request: Request) -> JSONResponse:
    """Drop the session cookie. Signed-out callers get the same 200."""
    user = try_get_current_user(request)
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    if user is not None:
        _publish(request, SIGNED_OUT, user)
    return resp


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------


def _google_enabled() -> bool:
    return get_settings().google_enabled


@router.get("/auth/oauth/google/login", include_in_schema=False)
async def google_login(request: Request):
    """Start the Google handshake; 404 when Google is not configured."""
    if not _google_enabled():
        raise api_error(404, "not_found", "Google sign-in is not configured.")
    client = request.app.state.oauth.create_client("google")
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/oauth/google/callback", include_in_schema=False, name="google_callback")
async def google_callback(request: Request) -> RedirectResponse:
    """Finish Google sign-in and send the browser back to FRONTEND_URL.

    The Google identity is matched by subject first, then by verified email
    [H1]; an email match links the identity to that account. With no match a
    new account is created when self sign-up is on. Every failure redirects
    with ?error=<reason> instead of answering an error body, because the
    caller is a browser mid-redirect.
    """
    if not _google_enabled():
        return _frontend_redirect("oauth_failed")

    user_store: UserStore = request.app.state.user_store
    client = request.app.state.oauth.create_client("google")

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("Google token exchange failed")
        return _frontend_redirect("oauth_failed")

    try:
        email, subject, name = get_google_user_info(token)
    except ValueError:
        logger.warning("Google sign-in rejected: unverified or missing email")
        return _frontend_redirect("oauth_failed")

    kind = SIGNED_IN
    user = user_store.get_by_oauth("google", subject)
    if user is None:
        user = user_store.get_by_email(email)
        if user is not None:
            try:
                user_store.link_oauth(user.id, "google", subject)
            except ValueError:
                logger.warning("Google identity already linked to another account (user_id=%s)", user.id)
                return _frontend_redirect("oauth_failed")
            user = user_store.get_by_id(user.id)
        elif get_settings().self_registration_enabled:
            try:
                user_id = user_store.create_user(
                    User(email=email, display_name=name, oauth_provider="google", oauth_subject=subject)
                )
            except IntegrityError:
                return _frontend_redirect("oauth_failed")
            user = user_store.get_by_id(user_id)
            kind = SIGNED_UP
            logger.info("Provisioned user_id=%s from Google sign-in", user_id)
        else:
            return _frontend_redirect("not_provisioned")

    if not user.is_active:
        return _frontend_redirect("account_disabled")

    user_store.update_last_login(user.id)
    _publish(request, kind, user, method="google")
    resp = _frontend_redirect()
    set_auth_cookie(resp, create_access_token(user.id, user.email))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(
        user_id=current_user.id,
        email=current_user.email,
        display_name=current_user.display_name,
        oauth_provider=current_user.oauth_provider,
        created_at=current_user.created_at,
        last_login=current_user.last_login,
    )


# ---------------------------------------------------------------------------
# API key management (authenticated)
# ---------------------------------------------------------------------------


@router.post("/auth/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
def create_api_key(
    request: Request,
    body: ApiKeyCreate,
    current_user: User = Depends(get_current_user),
) -> ApiKeyCreatedResponse:
    """Mint a key for editor plugins and scripts.

    The response is the only place the raw key ever appears. Each account may
    hold MAX_API_KEYS live keys [H3].
    """
    user_store: UserStore = request.app.state.user_store
    cap = get_settings().max_api_keys

    if len(user_store.get_api_keys(current_user.id)) >= cap:  # [H3]
        raise api_error(
            400,
            "key_limit_reached",
            f"Maximum of {cap} API keys per user. Revoke an existing key first.",
        )

    raw_key = generate_api_key()
    key_prefix = raw_key[:12]
    key_id = user_store.create_api_key(
        ApiKey(
            user_id=current_user.id,
            name=body.name,
            key_hash=hash_api_key(raw_key),
            key_prefix=key_prefix,
        )
    )
    created = next((k for k in user_store.get_api_keys(current_user.id) if k.id == key_id), None)
    return ApiKeyCreatedResponse(
        id=key_id,
        name=body.name,
        key_prefix=key_prefix,
        created_at=created.created_at if created and created.created_at else "",
        last_used=None,
        key=raw_key,
    )


@router.get("/auth/api-keys", response_model=list[ApiKeyResponse])
def list_api_keys(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> list[ApiKeyResponse]:
    """Live keys, newest first, identified by prefix only."""
    user_store: UserStore = request.app.state.user_store
    return [ApiKeyResponse.from_api_key(k) for k in user_store.get_api_keys(current_user.id)]


@router.delete("/auth/api-keys/{key_id}", status_code=204)
def revoke_api_key(
    request: Request,
    key_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    """404 for unknown ids and for ids that belong to someone else."""
    user_store: UserStore = request.app.state.user_store
    if not user_store.revoke_api_key(key_id, current_user.id):
        raise api_error(404, "not_found", "API key not found.")
    return Response(status_code=204)
