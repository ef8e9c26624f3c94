"""
auth/tokens.py -- credentials for SnippetVault sessions.

  sessions   HS256 JWTs (python-jose) whose subject is the account email and
             which carry the numeric user_id used for every library lookup.
             Browsers receive the same token as an httpOnly cookie.
  passwords  bcrypt. authenticate_user() spends one bcrypt round whether or not
             the email is registered, so timing does not leak accounts [C1].
  API keys   "sv_" + 64 hex chars. Only HMAC-SHA256(SECRET_KEY, key) is stored;
             the raw key is shown once at creation.

SECRET_KEY and session lifetime come from core.config.get_settings() [M6].

Layer rule: no imports from api/, library/, or cache/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

_settings = get_settings()

_JWT_ALGORITHM = "HS256"
_API_KEY_PREFIX = "sv_"
_COOKIE_NAME = "access_token"


def _lifetime(expire_seconds: int) -> int:
    # 0 means "use the configured session length".
    return expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds


def hash_password(plain: str) -> str:
    """bcrypt-hash a password. bcrypt reads at most 72 bytes of it."""
    digest = bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt())
    return digest.decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


_PLACEHOLDER_HASH: str = hash_password("snippetvault-placeholder-credential")


def create_access_token(user_id: int, email: str, expire_seconds: int = 0) -> str:
    """Sign a session token for user_id.

    expire_seconds overrides Settings.token_expire_seconds when positive.
    """
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": email,
        "user_id": user_id,
        "iat": issued,
        "exp": issued + timedelta(seconds=_lifetime(expire_seconds)),
    }
    return jwt.encode(claims, _settings.secret_key, algorithm=_JWT_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Return the verified claims, or None for a bad, expired or foreign token."""
    try:
        claims = jwt.decode(token, _settings.secret_key, algorithms=[_JWT_ALGORITHM])
    except JWTError:
        return None
    return claims if "user_id" in claims else None


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password pair; None covers every way of failing.

    Unknown emails, OAuth-only accounts and disabled accounts all come back as
    None after the same bcrypt work as a real check [C1].
    """
    user = store.get_by_email(email)
    candidate = user.hashed_password if user is not None and user.hashed_password else None
    matched = verify_password(password, candidate or _PLACEHOLDER_HASH)
    if candidate is None or not matched or not user.is_active:
        return None
    return user


def generate_api_key() -> str:
    return _API_KEY_PREFIX + secrets.token_hex(32)


def hash_api_key(raw_key: str) -> str:
    """Keyed digest used as the lookup column for API keys."""
    mac = hmac.new(_settings.secret_key.encode(), raw_key.encode(), hashlib.sha256)
    return mac.hexdigest()


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Attach the session token as a cookie that expires with the JWT.

    The cookie is httpOnly and SameSite=Lax; Secure follows SECURE_COOKIES.
    """
    response.set_cookie(
        _COOKIE_NAME,
        value=token,
        max_age=_lifetime(expire_seconds),
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
    )
