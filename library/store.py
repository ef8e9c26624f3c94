"""
library/store.py -- SQLAlchemy-backed persistence layer for snippets, collections and tags.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in library/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. LibraryStore is the repository (one clean
interface per entity). The _row_to_* functions are the mappers. Route
handlers never touch SQL directly.

Multi-valued fields get their own tables so they can be indexed:
  snippet_tags        (snippet_id, tag) with a (user_id, tag, created_at) index
  snippet_shares      (snippet_id, email, permission) with an (email, snippet_id) index
  collection_members  (collection_id, user_id)
Collection.path and Snippet.metadata are small fixed-shape values and are
stored as JSON text.

Access control is NOT enforced here -- routes consult library/access.py
before calling the store. The store does enforce structural consistency
(collection depth, no cycles, valid share permissions) and raises
ValueError when a request would break it.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = LibraryStore()                               # SQLite default
    store = LibraryStore("postgresql://user:pw@host/db") # PostgreSQL
    snippet_id = store.create_snippet(snippet)
    page = store.list_user_snippets(user_id, limit=25)
    store.close()
"""

import functools
import json
import logging
import time
from dataclasses import asdict
from typing import Optional

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from core.config import get_settings, now_iso
from core.db import make_engine
from core.validation import COLLECTION_NAME_MAX, validate_tag
from library.models import Collection, ShareEntry, Snippet, SnippetMetadata, SnippetPage, Tag

logger = logging.getLogger("snippetvault.library.store")

SHARE_PERMISSIONS = ("read", "write")

# Columns a client may sort snippet listings by. Anything else is rejected
# before it reaches order_by().
SNIPPET_SORT_FIELDS = ("created_at", "updated_at", "title", "language")
TAG_SORT_FIELDS = ("usage_count", "name", "last_used", "created_at")

_SNIPPET_UPDATE_FIELDS = frozenset({"title", "description", "code", "language", "collection_id", "metadata", "tags"})
_COLLECTION_UPDATE_FIELDS = frozenset({"name", "order"})

# Retry policy for transient SQLite contention ("database is locked").
_MAX_ATTEMPTS = 3
_BASE_DELAY = 0.1  # seconds; doubles on each retry

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_snippets = Table(
    "snippets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("title", String(200), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("code", Text, nullable=False),
    Column("language", String(30), nullable=False),
    Column("collection_id", Integer),
    Column("snippet_meta", Text),  # JSON object: usage_notes, dependencies, author
    Column("is_shared", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_edited_by", Integer),
    Index("ix_snippets_user_language_created", "user_id", "language", "created_at"),
    Index("ix_snippets_shared_updated", "is_shared", "updated_at"),
    Index("ix_snippets_collection", "collection_id"),
)

_snippet_tags = Table(
    "snippet_tags",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("snippet_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("tag", String(50), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("snippet_id", "tag", name="uq_snippet_tag"),
    Index("ix_snippet_tags_user_tag_created", "user_id", "tag", "created_at"),
)

_snippet_shares = Table(
    "snippet_shares",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("snippet_id", Integer, nullable=False),
    Column("email", String(320), nullable=False),
    Column("permission", String(10), nullable=False, server_default="read"),
    UniqueConstraint("snippet_id", "email", name="uq_snippet_share"),
    Index("ix_snippet_shares_email_snippet", "email", "snippet_id"),
)

_collections = Table(
    "collections",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("name", String(COLLECTION_NAME_MAX), nullable=False),
    Column("parent_id", Integer, index=True),
    Column("path", Text, nullable=False, server_default="[]"),  # JSON array of ancestor ids
    Column("is_team_collection", Integer, nullable=False, server_default="0"),
    Column("order_index", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_collection_members = Table(
    "collection_members",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("collection_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False),
    UniqueConstraint("collection_id", "user_id", name="uq_collection_member"),
    Index("ix_collection_members_user", "user_id"),
)

_tags = Table(
    "tags",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("name", String(50), nullable=False),
    Column("usage_count", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_used", String(32), nullable=False),
    UniqueConstraint("user_id", "name", name="uq_user_tag"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_transient(exc: OperationalError) -> bool:
    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    return "locked" in message or "busy" in message


def _retry_transient(method):
    """Retry a store method on transient OperationalError with exponential backoff.

    Only lock contention is retried; any other OperationalError (missing
    table, bad SQL) propagates on the first attempt.
    """

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        for attempt in range(_MAX_ATTEMPTS):
            try:
                return method(*args, **kwargs)
            except OperationalError as exc:
                if not _is_transient(exc) or attempt == _MAX_ATTEMPTS - 1:
                    raise
                delay = _BASE_DELAY * (2**attempt)
                logger.warning(
                    "%s hit a transient database error (attempt %d/%d), retrying in %.2fs",
                    method.__name__,
                    attempt + 1,
                    _MAX_ATTEMPTS,
                    delay,
                )
                time.sleep(delay)

    return wrapper


def _metadata_json(value) -> str:
    if isinstance(value, SnippetMetadata):
        return json.dumps(asdict(value))
    value = value or {}
    return json.dumps(
        {
            "usage_notes": value.get("usage_notes") or "",
            "dependencies": value.get("dependencies") or "",
            "author": value.get("author") or "",
        }
    )


def _email_key(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class LibraryStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Snippets
    # ------------------------------------------------------------------

    @_retry_transient
    def create_snippet(self, snippet: Snippet) -> int:
        """Insert a new snippet with its tags and return its assigned database ID.

        Tags must already be normalized (see core.validation.normalize_tags).
        New snippets start unshared; sharing goes through share_snippet().
        """
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _snippets.insert().values(
                    user_id=snippet.user_id,
                    title=snippet.title.strip(),
                    description=snippet.description or "",
                    code=snippet.code,
                    language=snippet.language,
                    collection_id=snippet.collection_id,
                    snippet_meta=_metadata_json(snippet.metadata),
                    is_shared=0,
                    created_at=now,
                    updated_at=now,
                    last_edited_by=snippet.user_id,
                )
            )
            snippet_id = result.inserted_primary_key[0]
            _write_tags(conn, snippet_id, snippet.user_id, snippet.tags, now)
            conn.commit()
        return snippet_id

    @_retry_transient
    def get_snippet(self, snippet_id: int) -> Optional[Snippet]:
        """Fetch a single snippet with tags and shares. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_snippets.select().where(_snippets.c.id == snippet_id)).fetchone()
            if row is None:
                return None
            return _load_snippets(conn, [row])[0]

    @_retry_transient
    def update_snippet(self, snippet_id: int, fields: dict, editor_id: int) -> Optional[Snippet]:
        """Apply a partial update and return the updated snippet.

        Accepts any subset of: title, description, code, language,
        collection_id, metadata, tags. tags replaces the whole tag list.
        updated_at and last_edited_by are always stamped.

        Returns None if snippet_id was not found.

        Raises:
            ValueError: on an unknown field name.
        """
        unknown = set(fields) - _SNIPPET_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown snippet fields: {sorted(unknown)!r}")

        values = {k: v for k, v in fields.items() if k != "tags"}
        if "metadata" in values:
            values["snippet_meta"] = _metadata_json(values.pop("metadata"))
        if "title" in values:
            values["title"] = values["title"].strip()
        if "description" in values:
            values["description"] = values["description"] or ""
        now = now_iso()
        values["updated_at"] = now
        values["last_edited_by"] = editor_id

        with self.engine.connect() as conn:
            row = conn.execute(select(_snippets.c.user_id).where(_snippets.c.id == snippet_id)).fetchone()
            if row is None:
                return None
            conn.execute(_snippets.update().where(_snippets.c.id == snippet_id).values(**values))
            if "tags" in fields:
                conn.execute(_snippet_tags.delete().where(_snippet_tags.c.snippet_id == snippet_id))
                _write_tags(conn, snippet_id, row.user_id, fields["tags"] or [], now)
            conn.commit()
        return self.get_snippet(snippet_id)

    @_retry_transient
    def delete_snippet(self, snippet_id: int) -> bool:
        """Delete a snippet and its tag and share rows. Returns True if it existed."""
        with self.engine.connect() as conn:
            conn.execute(_snippet_tags.delete().where(_snippet_tags.c.snippet_id == snippet_id))
            conn.execute(_snippet_shares.delete().where(_snippet_shares.c.snippet_id == snippet_id))
            result = conn.execute(_snippets.delete().where(_snippets.c.id == snippet_id))
            conn.commit()
        return result.rowcount > 0

    @_retry_transient
    def list_user_snippets(
        self,
        user_id: int,
        collection_id: Optional[int] = None,
        order_by: str = "updated_at",
        direction: str = "desc",
        limit: int = 25,
        offset: int = 0,
    ) -> SnippetPage:
        """Return one page of the user's own snippets.

        Ties on the sort column are broken by id so pages never overlap.

        Raises:
            ValueError: if order_by or direction is not an accepted value.
        """
        if order_by not in SNIPPET_SORT_FIELDS:
            raise ValueError(f"Cannot order snippets by {order_by!r}")
        if direction not in ("asc", "desc"):
            raise ValueError("direction must be 'asc' or 'desc'")

        condition = _snippets.c.user_id == user_id
        if collection_id is not None:
            condition = condition & (_snippets.c.collection_id == collection_id)

        column = _snippets.c[order_by]
        ordering = (column.desc(), _snippets.c.id.desc()) if direction == "desc" else (column.asc(), _snippets.c.id.asc())

        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_snippets).where(condition)).scalar() or 0
            rows = conn.execute(
                _snippets.select().where(condition).order_by(*ordering).limit(limit).offset(offset)
            ).fetchall()
            snippets = _load_snippets(conn, rows)
        return SnippetPage(snippets=snippets, has_more=offset + len(snippets) < total, total=total)

    @_retry_transient
    def list_all_user_snippets(self, user_id: int) -> list[Snippet]:
        """Return every snippet the user owns, most recently updated first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _snippets.select()
                .where(_snippets.c.user_id == user_id)
                .order_by(_snippets.c.updated_at.desc(), _snippets.c.id.desc())
            ).fetchall()
            return _load_snippets(conn, rows)

    @_retry_transient
    def list_shared_with(self, email: str) -> list[Snippet]:
        """Return snippets other users have shared with this email, newest update first."""
        shared_ids = select(_snippet_shares.c.snippet_id).where(_snippet_shares.c.email == _email_key(email))
        with self.engine.connect() as conn:
            rows = conn.execute(
                _snippets.select()
                .where((_snippets.c.is_shared == 1) & (_snippets.c.id.in_(shared_ids)))
                .order_by(_snippets.c.updated_at.desc(), _snippets.c.id.desc())
            ).fetchall()
            return _load_snippets(conn, rows)

    @_retry_transient
    def share_snippet(self, snippet_id: int, entries: list[ShareEntry]) -> Optional[Snippet]:
        """Share a snippet with the given people and return the updated snippet.

        Entries are merged by email: an address already on the list gets its
        permission replaced, a new address is appended. Returns None if the
        snippet does not exist.

        Raises:
            ValueError: if entries is empty, or an entry lacks an email or has
                a permission other than "read"/"write".
        """
        if not entries:
            raise ValueError("At least one user is required")
        for entry in entries:
            if not entry.email or not entry.email.strip() or not entry.permission:
                raise ValueError("Each user must have email and permission")
            if entry.permission not in SHARE_PERMISSIONS:
                raise ValueError("Permission must be 'read' or 'write'")

        with self.engine.connect() as conn:
            exists = conn.execute(select(_snippets.c.id).where(_snippets.c.id == snippet_id)).fetchone()
            if exists is None:
                return None
            current = {
                r.email: r.id
                for r in conn.execute(
                    select(_snippet_shares.c.id, _snippet_shares.c.email).where(
                        _snippet_shares.c.snippet_id == snippet_id
                    )
                )
            }
            for entry in entries:
                email = _email_key(entry.email)
                if email in current:
                    conn.execute(
                        _snippet_shares.update()
                        .where(_snippet_shares.c.id == current[email])
                        .values(permission=entry.permission)
                    )
                else:
                    result = conn.execute(
                        _snippet_shares.insert().values(
                            snippet_id=snippet_id, email=email, permission=entry.permission
                        )
                    )
                    current[email] = result.inserted_primary_key[0]
            conn.execute(
                _snippets.update().where(_snippets.c.id == snippet_id).values(is_shared=1, updated_at=now_iso())
            )
            conn.commit()
        return self.get_snippet(snippet_id)

    @_retry_transient
    def unshare_snippet(self, snippet_id: int, email: str) -> Optional[Snippet]:
        """Remove one person from a snippet's share list.

        is_shared drops back to False once nobody is left. Returns None if
        the snippet does not exist.
        """
        with self.engine.connect() as conn:
            exists = conn.execute(select(_snippets.c.id).where(_snippets.c.id == snippet_id)).fetchone()
            if exists is None:
                return None
            conn.execute(
                _snippet_shares.delete().where(
                    (_snippet_shares.c.snippet_id == snippet_id) & (_snippet_shares.c.email == _email_key(email))
                )
            )
            remaining = (
                conn.execute(
                    select(func.count()).select_from(_snippet_shares).where(_snippet_shares.c.snippet_id == snippet_id)
                ).scalar()
                or 0
            )
            conn.execute(
                _snippets.update()
                .where(_snippets.c.id == snippet_id)
                .values(is_shared=1 if remaining else 0, updated_at=now_iso())
            )
            conn.commit()
        return self.get_snippet(snippet_id)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    @_retry_transient
    def create_collection(self, collection: Collection, max_depth: int = 5) -> int:
        """Insert a collection and return its ID.

        path is computed from parent_id; any path on the input is ignored.

        Raises:
            ValueError: if the parent does not exist, belongs to another
                user, or the new collection would be nested too deep.
        """
        path: list[int] = []
        if collection.parent_id is not None:
            parent = self.get_collection(collection.parent_id)
            if parent is None:
                raise ValueError("Parent collection not found")
            if parent.user_id != collection.user_id:
                raise ValueError("Parent collection belongs to another user")
            path = parent.path + [parent.id]
        if len(path) >= max_depth:
            raise ValueError(f"Collections cannot be nested more than {max_depth} levels deep")

        members = [m for m in dict.fromkeys(collection.team_members) if m != collection.user_id]
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _collections.insert().values(
                    user_id=collection.user_id,
                    name=collection.name.strip(),
                    parent_id=collection.parent_id,
                    path=json.dumps(path),
                    is_team_collection=1 if members else 0,
                    order_index=collection.order or 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            collection_id = result.inserted_primary_key[0]
            for member in members:
                conn.execute(_collection_members.insert().values(collection_id=collection_id, user_id=member))
            conn.commit()
        return collection_id

    @_retry_transient
    def get_collection(self, collection_id: int) -> Optional[Collection]:
        """Fetch a single collection with its team members. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_collections.select().where(_collections.c.id == collection_id)).fetchone()
            if row is None:
                return None
            return _load_collections(conn, [row])[0]

    @_retry_transient
    def update_collection(self, collection_id: int, fields: dict) -> Optional[Collection]:
        """Rename or reorder a collection. Returns None if not found.

        Only name and order are writable here. Structural fields (user_id,
        parent_id, path, created_at, team membership) are silently dropped;
        they change through move_collection() and the member methods.

        Raises:
            ValueError: if the new name is empty or too long.
        """
        values: dict = {}
        for key, value in fields.items():
            if key not in _COLLECTION_UPDATE_FIELDS or value is None:
                continue
            if key == "name":
                if not isinstance(value, str) or not value.strip():
                    raise ValueError("Collection name is required")
                if len(value) > COLLECTION_NAME_MAX:
                    raise ValueError(f"Collection name must be {COLLECTION_NAME_MAX} characters or less")
                values["name"] = value.strip()
            else:
                values["order_index"] = int(value)
        values["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_collections.update().where(_collections.c.id == collection_id).values(**values))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_collection(collection_id)

    @_retry_transient
    def delete_collection(self, collection_id: int, recursive: bool = False) -> bool:
        """Delete a collection. Returns False if it did not exist.

        Snippets filed in any deleted collection are kept and moved back to
        the top level (collection_id = NULL).

        Raises:
            ValueError: if the collection has subcollections and recursive
                is False.
        """
        target = self.get_collection(collection_id)
        if target is None:
            return False
        descendants = self._descendants(target)
        if descendants and not recursive:
            raise ValueError(
                "Cannot delete collection with subcollections. "
                "Delete subcollections first or use recursive delete."
            )
        doomed = [collection_id] + [c.id for c in descendants]
        with self.engine.connect() as conn:
            conn.execute(
                _snippets.update()
                .where(_snippets.c.collection_id.in_(doomed))
                .values(collection_id=None, updated_at=now_iso())
            )
            conn.execute(_collection_members.delete().where(_collection_members.c.collection_id.in_(doomed)))
            conn.execute(_collections.delete().where(_collections.c.id.in_(doomed)))
            conn.commit()
        logger.info("Deleted collection %s (%d subcollections)", collection_id, len(descendants))
        return True

    @_retry_transient
    def list_user_collections(self, user_id: int) -> list[Collection]:
        """Return collections the user owns or is a team member of, by order."""
        member_of = select(_collection_members.c.collection_id).where(_collection_members.c.user_id == user_id)
        with self.engine.connect() as conn:
            rows = conn.execute(
                _collections.select()
                .where(
                    (_collections.c.user_id == user_id)
                    | ((_collections.c.is_team_collection == 1) & (_collections.c.id.in_(member_of)))
                )
                .order_by(_collections.c.order_index, _collections.c.id)
            ).fetchall()
            return _load_collections(conn, rows)

    @_retry_transient
    def get_subcollections(self, parent_id: int) -> list[Collection]:
        """Return the direct children of a collection, by order."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _collections.select()
                .where(_collections.c.parent_id == parent_id)
                .order_by(_collections.c.order_index, _collections.c.id)
            ).fetchall()
            return _load_collections(conn, rows)

    def _descendants(self, collection: Collection) -> list[Collection]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _collections.select().where(
                    (_collections.c.user_id == collection.user_id) & (_collections.c.id != collection.id)
                )
            ).fetchall()
        return [c for c in (_row_to_collection(r) for r in rows) if collection.id in c.path]

    @_retry_transient
    def move_collection(
        self, collection_id: int, new_parent_id: Optional[int], max_depth: int = 5
    ) -> Optional[Collection]:
        """Re-parent a collection (None = move to top level) and rewrite descendant paths.

        Returns None if the collection does not exist.

        Raises:
            ValueError: if the new parent is missing or owned by someone else,
                is the collection itself or one of its descendants, or the
                move would push any collection in the subtree past max_depth.
        """
        target = self.get_collection(collection_id)
        if target is None:
            return None

        new_path: list[int] = []
        if new_parent_id is not None:
            parent = self.get_collection(new_parent_id)
            if parent is None:
                raise ValueError("New parent collection not found")
            if parent.user_id != target.user_id:
                raise ValueError("Cannot move collection into another user's collection")
            if parent.id == collection_id or collection_id in parent.path:
                raise ValueError("Cannot move collection to its own descendant")
            if len(parent.path) >= max_depth - 1:
                raise ValueError(f"Cannot move collection: would exceed maximum depth of {max_depth} levels")
            new_path = parent.path + [parent.id]

        descendants = self._descendants(target)
        old_depth = len(target.path)
        deepest = max((len(d.path) - old_depth for d in descendants), default=0)
        if len(new_path) + deepest >= max_depth:
            raise ValueError(f"Cannot move collection: would exceed maximum depth of {max_depth} levels")

        now = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _collections.update()
                .where(_collections.c.id == collection_id)
                .values(parent_id=new_parent_id, path=json.dumps(new_path), updated_at=now)
            )
            for d in descendants:
                # Keep the part of the path below the moved collection.
                rebased = new_path + [collection_id] + d.path[old_depth + 1 :]
                conn.execute(
                    _collections.update()
                    .where(_collections.c.id == d.id)
                    .values(path=json.dumps(rebased), updated_at=now)
                )
            conn.commit()
        return self.get_collection(collection_id)

    @_retry_transient
    def reorder_collections(self, orders: list[tuple[int, int]]) -> int:
        """Apply (collection_id, order) pairs in one transaction. Returns rows updated."""
        if not orders:
            return 0
        now = now_iso()
        updated = 0
        with self.engine.connect() as conn:
            for collection_id, order in orders:
                result = conn.execute(
                    _collections.update()
                    .where(_collections.c.id == collection_id)
                    .values(order_index=order, updated_at=now)
                )
                updated += result.rowcount
            conn.commit()
        return updated

    @_retry_transient
    def add_team_members(self, collection_id: int, user_ids: list[int]) -> Optional[Collection]:
        """Add members (duplicates ignored) and mark the collection as a team collection.

        The owner is never stored as a member. Returns None if the collection
        does not exist.

        Raises:
            ValueError: if user_ids is empty.
        """
        if not user_ids:
            raise ValueError("At least one user ID is required")
        target = self.get_collection(collection_id)
        if target is None:
            return None
        new_members = [u for u in dict.fromkeys(user_ids) if u != target.user_id and u not in target.team_members]
        with self.engine.connect() as conn:
            for member in new_members:
                conn.execute(_collection_members.insert().values(collection_id=collection_id, user_id=member))
            has_members = bool(target.team_members or new_members)
            conn.execute(
                _collections.update()
                .where(_collections.c.id == collection_id)
                .values(is_team_collection=1 if has_members else 0, updated_at=now_iso())
            )
            conn.commit()
        return self.get_collection(collection_id)

    @_retry_transient
    def remove_team_members(self, collection_id: int, user_ids: list[int]) -> Optional[Collection]:
        """Remove members; the collection stops being a team collection once none remain.

        Returns None if the collection does not exist.

        Raises:
            ValueError: if user_ids is empty.
        """
        if not user_ids:
            raise ValueError("At least one user ID is required")
        with self.engine.connect() as conn:
            exists = conn.execute(select(_collections.c.id).where(_collections.c.id == collection_id)).fetchone()
            if exists is None:
                return None
            conn.execute(
                _collection_members.delete().where(
                    (_collection_members.c.collection_id == collection_id)
                    & (_collection_members.c.user_id.in_(list(user_ids)))
                )
            )
            remaining = (
                conn.execute(
                    select(func.count())
                    .select_from(_collection_members)
                    .where(_collection_members.c.collection_id == collection_id)
                ).scalar()
                or 0
            )
            conn.execute(
                _collections.update()
                .where(_collections.c.id == collection_id)
                .values(is_team_collection=1 if remaining else 0, updated_at=now_iso())
            )
            conn.commit()
        return self.get_collection(collection_id)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    @_retry_transient
    def record_tag_usage(self, user_id: int, name: str) -> Tag:
        """Create the tag at usage_count 1, or increment an existing one.

        Raises:
            ValueError: if the tag name is malformed (see core.validation.validate_tag).
        """
        normalized = validate_tag(name)
        now = now_iso()
        condition = (_tags.c.user_id == user_id) & (_tags.c.name == normalized)
        with self.engine.connect() as conn:
            result = conn.execute(
                _tags.update().where(condition).values(usage_count=_tags.c.usage_count + 1, last_used=now)
            )
            if result.rowcount == 0:
                conn.execute(
                    _tags.insert().values(
                        user_id=user_id, name=normalized, usage_count=1, created_at=now, last_used=now
                    )
                )
            conn.commit()
            row = conn.execute(_tags.select().where(condition)).fetchone()
        return _row_to_tag(row)

    def update_tag_usage(self, user_id: int, tags: list[str]) -> None:
        """Record one use of each tag. Never raises; failures are logged.

        Usage statistics only drive suggestions and sorting, so a failure
        here must not fail the snippet write that triggered it.
        """
        if not user_id or not isinstance(tags, list):
            return
        for name in tags:
            try:
                self.record_tag_usage(user_id, name)
            except (ValueError, SQLAlchemyError) as exc:
                logger.warning("Tag usage update failed for user_id=%s tag=%r: %s", user_id, name, exc)

    @_retry_transient
    def get_user_tags(
        self, user_id: int, sort_by: str = "usage_count", direction: str = "desc", limit: Optional[int] = 100
    ) -> list[Tag]:
        """Return the user's tags sorted by sort_by.

        Raises:
            ValueError: if sort_by or direction is not an accepted value.
        """
        if sort_by not in TAG_SORT_FIELDS:
            raise ValueError(f"Cannot sort tags by {sort_by!r}")
        if direction not in ("asc", "desc"):
            raise ValueError("direction must be 'asc' or 'desc'")
        column = _tags.c[sort_by]
        ordering = (column.desc(), _tags.c.name) if direction == "desc" else (column.asc(), _tags.c.name)
        query = _tags.select().where(_tags.c.user_id == user_id).order_by(*ordering)
        if limit:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_tag(r) for r in rows]

    def search_tags(self, user_id: int, query: str, limit: int = 10) -> list[Tag]:
        """Case-insensitive substring match over the user's 100 most used tags."""
        candidates = self.get_user_tags(user_id, sort_by="usage_count", direction="desc", limit=100)
        needle = (query or "").strip().lower()
        if not needle:
            return candidates[:limit]
        return [t for t in candidates if needle in t.name.lower()][:limit]

    def get_tag_suggestions(self, user_id: int, limit: int = 20) -> list[str]:
        """Return the names of the user's most recently used tags."""
        return [t.name for t in self.get_user_tags(user_id, sort_by="last_used", direction="desc", limit=limit)]

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Child-table helpers
# ---------------------------------------------------------------------------


def _write_tags(conn, snippet_id: int, user_id: int, tags: list[str], now: str) -> None:
    for tag in dict.fromkeys(tags):
        conn.execute(_snippet_tags.insert().values(snippet_id=snippet_id, user_id=user_id, tag=tag, created_at=now))


def _load_snippets(conn, rows) -> list[Snippet]:
    """Map snippet rows and attach their tags and shares with two batched queries."""
    if not rows:
        return []
    ids = [r.id for r in rows]
    tags: dict[int, list[str]] = {i: [] for i in ids}
    for r in conn.execute(
        select(_snippet_tags.c.snippet_id, _snippet_tags.c.tag)
        .where(_snippet_tags.c.snippet_id.in_(ids))
        .order_by(_snippet_tags.c.id)
    ):
        tags[r.snippet_id].append(r.tag)
    shares: dict[int, list[ShareEntry]] = {i: [] for i in ids}
    for r in conn.execute(
        _snippet_shares.select().where(_snippet_shares.c.snippet_id.in_(ids)).order_by(_snippet_shares.c.id)
    ):
        shares[r.snippet_id].append(ShareEntry(email=r.email, permission=r.permission))
    return [_row_to_snippet(r, tags[r.id], shares[r.id]) for r in rows]


def _load_collections(conn, rows) -> list[Collection]:
    if not rows:
        return []
    ids = [r.id for r in rows]
    members: dict[int, list[int]] = {i: [] for i in ids}
    for r in conn.execute(
        _collection_members.select()
        .where(_collection_members.c.collection_id.in_(ids))
        .order_by(_collection_members.c.id)
    ):
        members[r.collection_id].append(r.user_id)
    collections = []
    for r in rows:
        c = _row_to_collection(r)
        c.team_members = members[r.id]
        collections.append(c)
    return collections


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_snippet(row, tags: list[str], shares: list[ShareEntry]) -> Snippet:
    meta = json.loads(row.snippet_meta) if row.snippet_meta else {}
    return Snippet(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        description=row.description or "",
        code=row.code,
        language=row.language,
        tags=tags,
        collection_id=row.collection_id,
        metadata=SnippetMetadata(
            usage_notes=meta.get("usage_notes", ""),
            dependencies=meta.get("dependencies", ""),
            author=meta.get("author", ""),
        ),
        is_shared=bool(row.is_shared),
        shared_with=shares,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_edited_by=row.last_edited_by,
    )


def _row_to_collection(row) -> Collection:
    return Collection(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        parent_id=row.parent_id,
        path=json.loads(row.path) if row.path else [],
        is_team_collection=bool(row.is_team_collection),
        order=row.order_index,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_tag(row) -> Tag:
    return Tag(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        usage_count=row.usage_count,
        created_at=row.created_at,
        last_used=row.last_used,
    )
