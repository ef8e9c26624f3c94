"""
library/access.py -- Ownership and sharing rules for every stored document.

Each rule is a pure predicate over the acting Requester and the document it
targets. Routes call the predicates directly; evaluate() exposes the same
rules through a (resource, operation) table so a whole policy can be checked
scenario by scenario.

Rule summary:
  users        read/write: only the user themself
  snippets     read: owner, or anyone listed in shared_with
               create: only with user_id equal to the requester
               update: owner, or a sharee with "write" permission
               delete: owner only
  collections  read: owner or team member
               create: only with user_id equal to the requester
               update: owner or team member (name and order)
               delete/manage (members, move): owner only
  tags         read/write: owner only

An unauthenticated requester (None) is denied everything.

Layer rule: pure functions. Imports only library/models.py.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Union

from library.models import Collection, Snippet, Tag

ALLOWED = "allowed"
DENIED = "denied"


@dataclass(frozen=True)
class Requester:
    """The authenticated actor a rule is evaluated for."""

    user_id: int
    email: str = ""


def _email_key(email: str) -> str:
    return (email or "").strip().lower()


def _share_permission(snippet: Snippet, email: str) -> Optional[str]:
    if not snippet.is_shared or not email:
        return None
    key = _email_key(email)
    for entry in snippet.shared_with:
        if _email_key(entry.email) == key:
            return entry.permission
    return None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def can_access_user_document(requester: Optional[Requester], user_id: int) -> bool:
    return requester is not None and requester.user_id == user_id


# ---------------------------------------------------------------------------
# Snippets
# ---------------------------------------------------------------------------


def can_read_snippet(requester: Optional[Requester], snippet: Snippet) -> bool:
    if requester is None:
        return False
    if snippet.user_id == requester.user_id:
        return True
    return _share_permission(snippet, requester.email) is not None


def can_create_snippet(requester: Optional[Requester], owner_id: Optional[int]) -> bool:
    """A snippet may only be created on behalf of the requester."""
    return requester is not None and owner_id == requester.user_id


def can_update_snippet(requester: Optional[Requester], snippet: Snippet) -> bool:
    if requester is None:
        return False
    if snippet.user_id == requester.user_id:
        return True
    return _share_permission(snippet, requester.email) == "write"


def can_delete_snippet(requester: Optional[Requester], snippet: Snippet) -> bool:
    return requester is not None and snippet.user_id == requester.user_id


# Sharing settings are owner-only, same as delete.
can_share_snippet = can_delete_snippet


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


def _is_team_member(requester: Requester, collection: Collection) -> bool:
    return collection.is_team_collection and requester.user_id in collection.team_members


def can_read_collection(requester: Optional[Requester], collection: Collection) -> bool:
    if requester is None:
        return False
    return collection.user_id == requester.user_id or _is_team_member(requester, collection)


def can_create_collection(requester: Optional[Requester], owner_id: Optional[int]) -> bool:
    return requester is not None and owner_id == requester.user_id


def can_update_collection(requester: Optional[Requester], collection: Collection) -> bool:
    return can_read_collection(requester, collection)


def can_delete_collection(requester: Optional[Requester], collection: Collection) -> bool:
    return requester is not None and collection.user_id == requester.user_id


def can_manage_collection(requester: Optional[Requester], collection: Collection) -> bool:
    """Moving a collection and changing its team are owner-only operations."""
    return can_delete_collection(requester, collection)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


def can_access_tag(requester: Optional[Requester], tag: Tag) -> bool:
    return requester is not None and tag.user_id == requester.user_id


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------

# For "create" the document is the proposed owner id; for "users" it is the
# id of the user document being accessed.
Document = Union[Snippet, Collection, Tag, int, None]

_RULES: dict[tuple[str, str], Callable[[Optional[Requester], Document], bool]] = {
    ("users", "read"): can_access_user_document,
    ("users", "write"): can_access_user_document,
    ("snippets", "read"): can_read_snippet,
    ("snippets", "create"): can_create_snippet,
    ("snippets", "update"): can_update_snippet,
    ("snippets", "delete"): can_delete_snippet,
    ("snippets", "share"): can_share_snippet,
    ("collections", "read"): can_read_collection,
    ("collections", "create"): can_create_collection,
    ("collections", "update"): can_update_collection,
    ("collections", "delete"): can_delete_collection,
    ("collections", "manage"): can_manage_collection,
    ("tags", "read"): can_access_tag,
    ("tags", "write"): can_access_tag,
}


def evaluate(resource: str, operation: str, requester: Optional[Requester], document: Document) -> str:
    """Return "allowed" or "denied" for operation on document.

    Unknown (resource, operation) pairs are denied.
    """
    rule = _RULES.get((resource, operation))
    if rule is None:
        return DENIED
    return ALLOWED if rule(requester, document) else DENIED
