"""
library/models.py -- Domain dataclasses for the SnippetVault library.

These are pure data containers with zero logic. Persistence lives in
library/store.py, access decisions in library/access.py, and search scoring
in library/search.py.

id is None on every entity before the record is written to the database.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ShareEntry:
    """One person a snippet is shared with, identified by email."""

    email: str
    permission: str = "read"  # "read" | "write"


@dataclass
class SnippetMetadata:
    usage_notes: str = ""
    dependencies: str = ""
    author: str = ""


@dataclass
class Snippet:
    """A user-owned code fragment.

    tags are normalized (lower-case, deduplicated) before they reach the
    store. shared_with lists the people other than the owner who may read the
    snippet; entries with permission "write" may also edit it. is_shared is
    True whenever shared_with is non-empty.
    """

    user_id: int
    title: str
    code: str
    language: str
    id: Optional[int] = None
    description: str = ""
    tags: list[str] = field(default_factory=list)
    collection_id: Optional[int] = None
    metadata: SnippetMetadata = field(default_factory=SnippetMetadata)
    is_shared: bool = False
    shared_with: list[ShareEntry] = field(default_factory=list)
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
    last_edited_by: Optional[int] = None


@dataclass
class SnippetPage:
    """One page of a paginated snippet listing."""

    snippets: list[Snippet]
    has_more: bool
    total: int


@dataclass
class Collection:
    """A folder of snippets, optionally nested and optionally shared with a team.

    path holds the ancestor collection ids from the root down to the direct
    parent, so len(path) is the nesting depth. It is maintained by the store
    and never accepted from clients.
    """

    user_id: int
    name: str
    id: Optional[int] = None
    parent_id: Optional[int] = None
    path: list[int] = field(default_factory=list)
    is_team_collection: bool = False
    team_members: list[int] = field(default_factory=list)
    order: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Tag:
    """A per-user tag with usage statistics for suggestions and sorting."""

    user_id: int
    name: str
    id: Optional[int] = None
    usage_count: int = 0
    created_at: str = ""
    last_used: str = ""
