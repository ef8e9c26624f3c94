"""
auth/store.py -- accounts, user documents and API keys on SQLAlchemy Core.

UserStore is the only code that issues SQL against the auth database. Rows
come back as the dataclasses in auth/models.py.

Emails are kept trimmed and lower-cased, and users.email is UNIQUE, so two
registrations racing for "Ada@Example.com" and "ada@example.com" cannot both
succeed; the loser gets IntegrityError.

A Google identity belongs to at most one account. SQLite lets any number of
NULL pairs through a composite UNIQUE, so link_oauth() checks this itself.

Layer rule: no imports from api/, library/, or cache/.
"""

from __future__ import annotations

import copy
import json

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, select
from sqlalchemy.engine import Engine

from auth.models import ApiKey, User
from core.config import get_settings, now_iso
from core.db import make_engine

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("display_name", String(100), nullable=False, server_default=""),
    Column("hashed_password", Text),
    Column("oauth_provider", String(30)),
    Column("oauth_subject", Text),
    Column("preferences", Text),  # user document, JSON
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_api_keys = Table(
    "api_keys",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("key_hash", String(64), nullable=False, unique=True),
    Column("key_prefix", String(12), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("last_used", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_EDITABLE_USER_COLUMNS = frozenset({"display_name", "hashed_password", "preferences", "is_active"})

DEFAULT_PREFERENCES: dict = {
    "theme": "light",
    "defaultLanguage": "javascript",
    "keyboardShortcuts": {
        "search": "ctrl+k",
        "newSnippet": "ctrl+n",
        "copySnippet": "ctrl+c",
        "help": "ctrl+/",
    },
}


def normalize_email(email: str) -> str:
    return email.strip().lower()


def default_preferences() -> dict:
    return copy.deepcopy(DEFAULT_PREFERENCES)


class UserStore:
    """Accounts and API keys.

        store = UserStore()                    # AUTH_DATABASE_URL
        store = UserStore("sqlite:///:memory:")
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().auth_database_url)
        metadata.create_all(self.engine)

    # -- plumbing ---------------------------------------------------------

    def _write(self, statement):
        with self.engine.begin() as conn:
            return conn.execute(statement)

    def _first(self, statement):
        with self.engine.connect() as conn:
            return conn.execute(statement).first()

    def _find_user(self, *criteria) -> User | None:
        row = self._first(_users.select().where(*criteria))
        return _user_from_row(row) if row is not None else None

    # -- accounts ---------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert user and return its id.

        The display name defaults to the local part of the email. A taken
        email raises sqlalchemy.exc.IntegrityError; registration turns that
        into 409.
        """
        email = normalize_email(user.email)
        result = self._write(
            _users.insert().values(
                email=email,
                display_name=user.display_name or email.partition("@")[0],
                hashed_password=user.hashed_password,
                oauth_provider=user.oauth_provider,
                oauth_subject=user.oauth_subject,
                preferences=user.preferences,
                created_at=now_iso(),
                is_active=int(user.is_active),
            )
        )
        return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        return self._find_user(_users.c.id == user_id)

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup."""
        return self._find_user(_users.c.email == normalize_email(email))

    def get_by_oauth(self, provider: str, subject: str) -> User | None:
        return self._find_user(_users.c.oauth_provider == provider, _users.c.oauth_subject == subject)

    def link_oauth(self, user_id: int, provider: str, subject: str) -> None:
        """Attach a provider identity to user_id.

        Raises ValueError if that identity already belongs to another account.
        """
        owner = self.get_by_oauth(provider, subject)
        if owner is not None and owner.id != user_id:
            raise ValueError(f"{provider} identity is already linked to another account")
        self._write(
            _users.update().where(_users.c.id == user_id).values(oauth_provider=provider, oauth_subject=subject)
        )

    def update_user(self, user_id: int, **fields) -> bool:
        """Change editable columns; False when user_id does not exist."""
        unknown = fields.keys() - _EDITABLE_USER_COLUMNS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return self.get_by_id(user_id) is not None
        if "is_active" in fields:
            fields["is_active"] = int(bool(fields["is_active"]))
        result = self._write(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        self._write(_users.update().where(_users.c.id == user_id).values(last_login=now_iso()))

    # -- user document ----------------------------------------------------

    def get_preferences(self, user_id: int) -> dict | None:
        """The stored document, defaults if never written, None for no such user."""
        user = self.get_by_id(user_id)
        if user is None:
            return None
        try:
            stored = json.loads(user.preferences) if user.preferences else None
        except json.JSONDecodeError:
            stored = None
        return stored if isinstance(stored, dict) else default_preferences()

    def ensure_preferences(self, user_id: int) -> bool:
        """Seed the default document once; True only when this call wrote it."""
        user = self.get_by_id(user_id)
        if user is None or user.preferences:
            return False
        return self.update_user(user_id, preferences=json.dumps(default_preferences()))

    def update_preferences(self, user_id: int, changes: dict) -> dict | None:
        """Merge changes into the document and return the merged result.

        keyboardShortcuts merges one level deeper so a single binding can be
        changed on its own.
        """
        document = self.get_preferences(user_id)
        if document is None:
            return None
        for key, value in changes.items():
            if key == "keyboardShortcuts" and isinstance(value, dict):
                document[key] = {**(document.get(key) or {}), **value}
            else:
                document[key] = value
        self.update_user(user_id, preferences=json.dumps(document))
        return document

    # -- API keys ---------------------------------------------------------

    def create_api_key(self, api_key: ApiKey) -> int:
        result = self._write(
            _api_keys.insert().values(
                user_id=api_key.user_id,
                name=api_key.name,
                key_hash=api_key.key_hash,
                key_prefix=api_key.key_prefix,
                created_at=now_iso(),
                is_active=1,
            )
        )
        return result.inserted_primary_key[0]

    def get_api_keys(self, user_id: int) -> list[ApiKey]:
        """Live keys for user_id, newest first."""
        query = (
            _api_keys.select()
            .where(_api_keys.c.user_id == user_id, _api_keys.c.is_active == 1)
            .order_by(_api_keys.c.created_at.desc(), _api_keys.c.id.desc())
        )
        with self.engine.connect() as conn:
            return [_api_key_from_row(row) for row in conn.execute(query)]

    def get_api_key_by_hash(self, key_hash: str) -> ApiKey | None:
        row = self._first(_api_keys.select().where(_api_keys.c.key_hash == key_hash, _api_keys.c.is_active == 1))
        return _api_key_from_row(row) if row is not None else None

    def update_api_key_last_used(self, key_id: int) -> None:
        self._write(_api_keys.update().where(_api_keys.c.id == key_id).values(last_used=now_iso()))

    def revoke_api_key(self, key_id: int, user_id: int) -> bool:
        """Deactivate one of user_id's keys.

        The owner is part of the WHERE clause, so another user's key id
        revokes nothing and returns False.
        """
        result = self._write(
            _api_keys.update()
            .where(_api_keys.c.id == key_id, _api_keys.c.user_id == user_id, _api_keys.c.is_active == 1)
            .values(is_active=0)
        )
        return result.rowcount > 0

    def ping(self) -> bool:
        self._first(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


def _user_from_row(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        display_name=row.display_name or "",
        hashed_password=row.hashed_password,
        oauth_provider=row.oauth_provider,
        oauth_subject=row.oauth_subject,
        preferences=row.preferences,
        created_at=row.created_at,
        last_login=row.last_login,
        is_active=bool(row.is_active),
    )


def _api_key_from_row(row) -> ApiKey:
    return ApiKey(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        key_hash=row.key_hash,
        key_prefix=row.key_prefix,
        created_at=row.created_at,
        last_used=row.last_used,
        is_active=bool(row.is_active),
    )
