"""
core/config.py -- SnippetVault settings.

Every environment read goes through get_settings(); nothing else touches
os.environ. Values come from the process environment, then from .env in the
working directory, then from the defaults below. Env var names are the field
names upper-cased (search_cache_ttl -> SEARCH_CACHE_TTL).

SECRET_KEY policy [M6][M7]: it signs sessions and keys the API-key digests,
so it must be at least 32 characters. With DEBUG=true a missing key is
replaced by a random one for the life of the process; otherwise startup fails.

Layer rule: core/ imports nothing from api/, auth/, library/, or cache/.
"""

import logging
import secrets
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("snippetvault.config")

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
_MIN_SECRET_LENGTH = 32


def now_iso() -> str:
    """UTC now in ISO 8601; the format of every stored timestamp."""
    return datetime.now(timezone.utc).isoformat()


def _sqlite_url(filename: str) -> str:
    return f"sqlite:///{_DATA_DIR / filename}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    debug: bool = False
    secret_key: str = ""

    # storage
    database_url: str = _sqlite_url("snippetvault.db")
    auth_database_url: str = _sqlite_url("snippetvault_auth.db")
    search_cache_path: str = str(_DATA_DIR / "search_cache.db")
    search_cache_ttl: int = 300

    # sessions and sign-up
    secure_cookies: bool = False
    token_expire_seconds: int = 3600
    self_registration_enabled: bool = True
    google_client_id: str = ""
    google_client_secret: str = ""
    frontend_url: str = "/"

    # HTTP surface
    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://localhost:5173"]

    # library limits
    max_collection_depth: int = 5
    max_import_bytes: int = 1024 * 1024
    max_api_keys: int = 10

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        if not self.secret_key:
            if not self.debug:
                raise ValueError("SECRET_KEY must be set unless DEBUG=true (set it in the environment or .env).")
            self.secret_key = secrets.token_hex(_MIN_SECRET_LENGTH)
            logger.warning("SECRET_KEY not set; generated a temporary one. Sessions end when the process exits.")
        if len(self.secret_key) < _MIN_SECRET_LENGTH:
            raise ValueError(f"SECRET_KEY must be at least {_MIN_SECRET_LENGTH} characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings; tests call get_settings.cache_clear() to reload."""
    return Settings()
