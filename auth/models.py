"""
auth/models.py -- account and API key records.

Plain dataclasses, same as library/models.py; UserStore reads and writes them.

Layer rule: no imports from api/, library/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A SnippetVault account.

    email is unique and is also the address collaborators share snippets to.
    Accounts created through Google have no hashed_password; password accounts
    gain oauth_provider/oauth_subject on their first Google sign-in.
    preferences holds the user document (theme, default language, shortcuts)
    as JSON and stays None until the account first signs in.
    """

    email: str
    id: int | None = None
    display_name: str = ""
    hashed_password: str | None = None
    oauth_provider: str | None = None
    oauth_subject: str | None = None
    preferences: str | None = None
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True


@dataclass
class ApiKey:
    """Long-lived credential for editor plugins and scripts.

    Only key_hash (HMAC of the raw key) is kept; key_prefix is for display.
    """

    user_id: int
    name: str
    key_hash: str
    key_prefix: str
    id: int | None = None
    created_at: str | None = None
    last_used: str | None = None
    is_active: bool = True
