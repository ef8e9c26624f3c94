"""
auth/oauth.py -- Google sign-in through authlib.

The "google" client is registered at import time, and only when both
GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET are set. The auth routes drive the
redirect/callback dance; authlib keeps the CSRF state in the Starlette
session between the two.

[H1] Accounts are matched by email, so a Google identity is only accepted
when Google reports the address as verified.

Layer rule: no imports from api/, library/, or cache/.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from core.config import get_settings

logger = logging.getLogger("snippetvault.auth.oauth")

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"
GOOGLE_SCOPES = "openid email profile"

oauth = OAuth()

if get_settings().google_enabled:
    _settings = get_settings()
    oauth.register(
        name="google",
        client_id=_settings.google_client_id,
        client_secret=_settings.google_client_secret,
        server_metadata_url=GOOGLE_DISCOVERY_URL,
        client_kwargs={"scope": GOOGLE_SCOPES},
    )
    logger.info("Google sign-in enabled")


def get_enabled_providers() -> list[dict]:
    """Sign-in buttons for the login screen, as [{"name", "label"}]."""
    providers = [{"name": "password", "label": "Email"}]
    if get_settings().google_enabled:
        providers.append({"name": "google", "label": "Google"})
    return providers


def get_google_user_info(token: dict) -> tuple[str, str, str]:
    """Pull (email, subject, display name) out of an authlib token response.

    Raises ValueError when the id_token claims are missing, the email is not
    verified [H1], or email/sub is absent; the callback answers 401.
    """
    claims = token.get("userinfo") or {}
    if not claims:
        raise ValueError("google sign-in: token response has no userinfo")
    if not claims.get("email_verified"):
        raise ValueError("google sign-in: email address is not verified")

    email, subject = claims.get("email"), claims.get("sub")
    if not (email and subject):
        raise ValueError("google sign-in: userinfo lacks email or sub")
    return email, str(subject), claims.get("name") or ""
