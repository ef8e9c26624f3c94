"""
api/routes/v1/snippets.py -- Snippet routes for the SnippetVault REST API.

Routes (in registration order to avoid FastAPI path capture conflicts):
  POST   /snippets                          -- create snippet
  GET    /snippets                          -- own snippets, paginated
  GET    /snippets/shared                   -- snippets shared with the caller
  GET    /snippets/search                   -- ranked search over own snippets
  GET    /snippets/export                   -- download own snippets as JSON
  POST   /snippets/import                   -- upload JSON / VS Code snippets file
  POST   /snippets/detect-language          -- guess the language of a code sample
  GET    /snippets/{snippet_id}             -- read (owner or sharee)
  PATCH  /snippets/{snippet_id}             -- update (owner or write sharee)
  DELETE /snippets/{snippet_id}             -- delete (owner)
  POST   /snippets/{snippet_id}/share       -- add or update sharees (owner)
  DELETE /snippets/{snippet_id}/share/{email} -- remove a sharee (owner)

Access decisions come from library.access; routes only translate a denial
into 403 permission_denied. Every write to a snippet invalidates the search
cache of the snippet's owner.

File uploads:
  /snippets/import accepts multipart/form-data, capped at MAX_IMPORT_BYTES
  (1 MB by default). The format (SnippetVault JSON or VS Code snippets) is
  detected from the content.
"""

import logging
from typing import Annotated, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, UploadFile
from sqlalchemy.exc import SQLAlchemyError

from api.errors import api_error, not_found, permission_denied, validation_failed
from api.limiter import IMPORT_LIMIT, READ_LIMIT, WRITE_LIMIT, limiter
from api.models import (
    DetectLanguageRequest,
    ImportResponse,
    LanguageInfo,
    SearchHitResponse,
    SearchResponse,
    ShareRequest,
    SnippetCreate,
    SnippetListResponse,
    SnippetResponse,
    SnippetUpdate,
)
from auth.dependencies import get_current_user
from auth.models import User
from core.config import get_settings
from core.languages import detect_language, get_language_label, is_language_supported
from core.validation import normalize_tags, validate_snippet_data
from library.access import (
    Requester,
    can_create_snippet,
    can_delete_snippet,
    can_read_snippet,
    can_share_snippet,
    can_update_collection,
    can_update_snippet,
)
from library.models import ShareEntry, Snippet, SnippetMetadata
from library.search import SearchFilters, cache_key, search_snippets
from library.store import LibraryStore
from library.transfer import EXPORT_FILENAME, export_snippets_to_json, parse_import

logger = logging.getLogger("snippetvault.api.snippets")

# All snippet routes require authentication.
router = APIRouter(dependencies=[Depends(get_current_user)])

_IMPORT_EXTENSIONS = (".json", ".code-snippets")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _requester(user: User) -> Requester:
    return Requester(user_id=user.id, email=user.email)


def _load(store: LibraryStore, snippet_id: int) -> Snippet:
    snippet = store.get_snippet(snippet_id)
    if snippet is None:
        raise not_found("snippet_not_found", f"Snippet {snippet_id} not found.")
    return snippet


def _invalidate_search(request: Request, user_id: int) -> None:
    request.app.state.search_cache.invalidate_user(user_id)


def _check_language(language: Optional[str], errors: list[str]) -> None:
    if language and not is_language_supported(language):
        errors.append(f"Programming language is not supported: {language}")


def _check_collection(store: LibraryStore, requester: Requester, collection_id: Optional[int]) -> None:
    """A snippet may be filed only in a collection the requester can write to."""
    if collection_id is None:
        return
    collection = store.get_collection(collection_id)
    if collection is None:
        raise not_found("collection_not_found", f"Collection {collection_id} not found.")
    if not can_update_collection(requester, collection):
        raise permission_denied("You cannot add snippets to this collection.")


# ---------------------------------------------------------------------------
# POST /snippets -- create
# ---------------------------------------------------------------------------


@limiter.limit(WRITE_LIMIT)
@router.post("/snippets", response_model=SnippetResponse, status_code=201)
def create_snippet(
    request: Request,
    body: SnippetCreate,
    current_user: User = Depends(get_current_user),
) -> SnippetResponse:
    """Create a snippet owned by the caller.

    language is detected from the code when omitted. A user_id naming anyone
    other than the caller is refused.
    """
    requester = _requester(current_user)
    owner_id = body.user_id if body.user_id is not None else current_user.id
    if not can_create_snippet(requester, owner_id):
        raise permission_denied("Snippets can only be created for your own account.")

    language = (body.language or "").strip().lower() or (detect_language(body.code) if body.code.strip() else "")
    data = {"title": body.title, "description": body.description, "code": body.code, "language": language}
    errors = validate_snippet_data(data)
    _check_language(language, errors)
    try:
        tags = normalize_tags(body.tags)
    except ValueError as exc:
        errors.append(str(exc))
        tags = []
    if errors:
        raise validation_failed(errors)

    store: LibraryStore = request.app.state.library
    _check_collection(store, requester, body.collection_id)

    snippet_id = store.create_snippet(
        Snippet(
            user_id=current_user.id,
            title=body.title,
            description=body.description,
            code=body.code,
            language=language,
            tags=tags,
            collection_id=body.collection_id,
            metadata=SnippetMetadata(**body.metadata.model_dump()),
        )
    )
    store.update_tag_usage(current_user.id, tags)
    _invalidate_search(request, current_user.id)
    logger.info("Created snippet %s for user_id=%s", snippet_id, current_user.id)
    return SnippetResponse.from_snippet(store.get_snippet(snippet_id))


# ---------------------------------------------------------------------------
# GET /snippets -- own snippets, paginated
# ---------------------------------------------------------------------------


@limiter.limit(READ_LIMIT)
@router.get("/snippets", response_model=SnippetListResponse)
def list_snippets(
    request: Request,
    limit: Annotated[int, Query(ge=1, le=100)] = 25,
    offset: Annotated[int, Query(ge=0)] = 0,
    order_by: Literal["created_at", "updated_at", "title", "language"] = "updated_at",
    direction: Literal["asc", "desc"] = "desc",
    collection_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
) -> SnippetListResponse:
    store: LibraryStore = request.app.state.library
    page = store.list_user_snippets(
        current_user.id,
        collection_id=collection_id,
        order_by=order_by,
        direction=direction,
        limit=limit,
        offset=offset,
    )
    return SnippetListResponse(
        snippets=[SnippetResponse.from_snippet(s) for s in page.snippets],
        total=page.total,
        limit=limit,
        offset=offset,
        has_more=page.has_more,
    )


@router.get("/snippets/shared", response_model=list[SnippetResponse])
def list_shared(request: Request, current_user: User = Depends(get_current_user)) -> list[SnippetResponse]:
    """Return snippets other users have shared with the caller's email."""
    store: LibraryStore = request.app.state.library
    return [
        SnippetResponse.from_snippet(s)
        for s in store.list_shared_with(current_user.email)
        if s.user_id != current_user.id
    ]


# ---------------------------------------------------------------------------
# GET /snippets/search
# ---------------------------------------------------------------------------


@limiter.limit(READ_LIMIT)
@router.get("/snippets/search", response_model=SearchResponse)
def search(
    request: Request,
    q: Annotated[str, Query(max_length=200)] = "",
    language: Annotated[list[str], Query()] = [],  # noqa: B006 -- FastAPI copies query defaults
    tag: Annotated[list[str], Query()] = [],  # noqa: B006
    collection: Annotated[list[int], Query()] = [],  # noqa: B006
    start: Optional[str] = None,
    end: Optional[str] = None,
    current_user: User = Depends(get_current_user),
) -> SearchResponse:
    """Rank the caller's snippets against q after applying the filters.

    Results are cached per user for SEARCH_CACHE_TTL seconds; any write to
    one of the user's snippets drops the cache.
    """
    filters = SearchFilters(languages=language, tags=tag, collections=collection, date_start=start, date_end=end)
    key = cache_key(q, filters)
    cache = request.app.state.search_cache

    cached = cache.get(current_user.id, key)
    if cached is not None:
        results = [SearchHitResponse.model_validate(item) for item in cached]
        return SearchResponse(query=q, total=len(results), results=results, cached=True)

    store: LibraryStore = request.app.state.library
    try:
        hits = search_snippets(store.list_all_user_snippets(current_user.id), q, filters)
    except ValueError as exc:
        raise api_error(
            422,
            "validation_error",
            "Date filters must be ISO 8601 timestamps.",
            detail=str(exc),
            fields=[("start" if start else "end", "Invalid date")],
        ) from exc

    results = [SearchHitResponse.from_hit(h) for h in hits]
    cache.set(current_user.id, key, [r.model_dump() for r in results])
    return SearchResponse(query=q, total=len(results), results=results)


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------


@router.get("/snippets/export")
def export_snippets(
    request: Request,
    include_metadata: bool = True,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Download every snippet the caller owns as snippets-export.json."""
    store: LibraryStore = request.app.state.library
    payload = export_snippets_to_json(store.list_all_user_snippets(current_user.id), include_metadata=include_metadata)
    return Response(
        content=payload,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


@limiter.limit(IMPORT_LIMIT)
@router.post("/snippets/import", response_model=ImportResponse)
async def import_snippets(
    request: Request,
    file: UploadFile,
    language: str = "javascript",
    current_user: User = Depends(get_current_user),
) -> ImportResponse:
    """Import a SnippetVault JSON export or a VS Code snippets file.

    Valid entries are created for the caller; invalid ones are reported in
    errors with their 1-based position. A file that cannot be parsed at all
    comes back with success=false and nothing imported.

    Query params:
      language -- language for VS Code entries that carry no scope
    """
    max_bytes = get_settings().max_import_bytes
    raw = await file.read(max_bytes + 1)
    if len(raw) > max_bytes:
        raise api_error(413, "file_too_large", f"Upload must be {max_bytes // 1024} KB or smaller.")

    filename = (file.filename or "").lower()
    if not filename.endswith(_IMPORT_EXTENSIONS):
        raise api_error(415, "unsupported_format", "File must have a .json or .code-snippets extension.")

    fmt, result = parse_import(raw.decode("utf-8", errors="replace"), language)

    store: LibraryStore = request.app.state.library
    requester = _requester(current_user)
    created: list[int] = []
    for item in result.snippets:
        collection_id = item.collection_id
        if collection_id is not None:
            collection = store.get_collection(collection_id)
            if collection is None or not can_update_collection(requester, collection):
                collection_id = None
        created.append(
            store.create_snippet(
                Snippet(
                    user_id=current_user.id,
                    title=item.title,
                    description=item.description,
                    code=item.code,
                    language=item.language,
                    tags=item.tags,
                    collection_id=collection_id,
                    metadata=item.metadata,
                )
            )
        )
        store.update_tag_usage(current_user.id, item.tags)

    if created:
        _invalidate_search(request, current_user.id)
    logger.info(
        "Imported %d of %d %s snippets for user_id=%s", len(created), result.total_count, fmt, current_user.id
    )
    return ImportResponse.from_result(fmt, result, created)


@router.post("/snippets/detect-language", response_model=LanguageInfo)
def detect(request: Request, body: DetectLanguageRequest) -> LanguageInfo:
    language = detect_language(body.code)
    return LanguageInfo(value=language, label=get_language_label(language))


# ---------------------------------------------------------------------------
# Single snippet
# ---------------------------------------------------------------------------


@router.get("/snippets/{snippet_id}", response_model=SnippetResponse)
def get_snippet(
    request: Request,
    snippet_id: int,
    current_user: User = Depends(get_current_user),
) -> SnippetResponse:
    snippet = _load(request.app.state.library, snippet_id)
    if not can_read_snippet(_requester(current_user), snippet):
        raise permission_denied()
    return SnippetResponse.from_snippet(snippet)


@limiter.limit(WRITE_LIMIT)
@router.patch("/snippets/{snippet_id}", response_model=SnippetResponse)
def update_snippet(
    request: Request,
    snippet_id: int,
    body: SnippetUpdate,
    current_user: User = Depends(get_current_user),
) -> SnippetResponse:
    """Apply a partial update. Only fields present in the body change.

    The owner and sharees with write permission may edit. Storage failures
    are logged and propagate to the generic 500 handler; there is no retry
    at this layer beyond the store's own transient-error retry.
    """
    store: LibraryStore = request.app.state.library
    requester = _requester(current_user)
    snippet = _load(store, snippet_id)
    if not can_update_snippet(requester, snippet):
        raise permission_denied()

    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise api_error(400, "invalid_operation", "No fields to update.")

    if "language" in fields and fields["language"] is not None:
        fields["language"] = fields["language"].strip().lower()
    errors = validate_snippet_data(fields, partial=True)
    _check_language(fields.get("language"), errors)
    if "tags" in fields:
        try:
            fields["tags"] = normalize_tags(fields["tags"] or [])
        except ValueError as exc:
            errors.append(str(exc))
    if errors:
        raise validation_failed(errors)

    if "collection_id" in fields:
        # Filing is the owner's decision; sharees edit content only.
        if snippet.user_id != current_user.id:
            raise permission_denied("Only the owner can move a snippet between collections.")
        _check_collection(store, requester, fields["collection_id"])
    if "metadata" in fields:
        fields["metadata"] = SnippetMetadata(**(fields["metadata"] or {}))

    try:
        updated = store.update_snippet(snippet_id, fields, editor_id=current_user.id)
    except SQLAlchemyError:
        logger.exception("Failed to update snippet %s", snippet_id)
        raise
    if updated is None:
        raise not_found("snippet_not_found", f"Snippet {snippet_id} not found.")

    if "tags" in fields:
        store.update_tag_usage(snippet.user_id, fields["tags"])
    _invalidate_search(request, snippet.user_id)
    return SnippetResponse.from_snippet(updated)


@limiter.limit(WRITE_LIMIT)
@router.delete("/snippets/{snippet_id}", status_code=204)
def delete_snippet(
    request: Request,
    snippet_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    store: LibraryStore = request.app.state.library
    snippet = _load(store, snippet_id)
    if not can_delete_snippet(_requester(current_user), snippet):
        raise permission_denied("Only the owner can delete a snippet.")
    store.delete_snippet(snippet_id)
    _invalidate_search(request, snippet.user_id)
    logger.info("Deleted snippet %s", snippet_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Sharing
# ---------------------------------------------------------------------------


@limiter.limit(WRITE_LIMIT)
@router.post("/snippets/{snippet_id}/share", response_model=SnippetResponse)
def share_snippet(
    request: Request,
    snippet_id: int,
    body: ShareRequest,
    current_user: User = Depends(get_current_user),
) -> SnippetResponse:
    """Share a snippet by email. An address already on the list has its permission replaced."""
    store: LibraryStore = request.app.state.library
    snippet = _load(store, snippet_id)
    if not can_share_snippet(_requester(current_user), snippet):
        raise permission_denied("Only the owner can change sharing.")
    try:
        updated = store.share_snippet(snippet_id, [ShareEntry(email=u.email, permission=u.permission) for u in body.users])
    except ValueError as exc:
        raise api_error(400, "invalid_operation", str(exc)) from exc
    if updated is None:
        raise not_found("snippet_not_found", f"Snippet {snippet_id} not found.")
    _invalidate_search(request, snippet.user_id)
    return SnippetResponse.from_snippet(updated)


@limiter.limit(WRITE_LIMIT)
@router.delete("/snippets/{snippet_id}/share/{email}", response_model=SnippetResponse)
def unshare_snippet(
    request: Request,
    snippet_id: int,
    email: str,
    current_user: User = Depends(get_current_user),
) -> SnippetResponse:
    store: LibraryStore = request.app.state.library
    snippet = _load(store, snippet_id)
    if not can_share_snippet(_requester(current_user), snippet):
        raise permission_denied("Only the owner can change sharing.")
    updated = store.unshare_snippet(snippet_id, email)
    if updated is None:
        raise not_found("snippet_not_found", f"Snippet {snippet_id} not found.")
    _invalidate_search(request, snippet.user_id)
    return SnippetResponse.from_snippet(updated)
