"""
api/routes/v1/collections.py -- Collection routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  POST   /collections                               -- create (optionally nested)
  GET    /collections                               -- owned + team collections
  POST   /collections/reorder                       -- bulk order update
  GET    /collections/{collection_id}               -- read (owner or team member)
  GET    /collections/{collection_id}/children      -- direct subcollections
  PATCH  /collections/{collection_id}               -- rename / reorder one
  DELETE /collections/{collection_id}               -- delete (?recursive=true for subtrees)
  POST   /collections/{collection_id}/move          -- re-parent (owner)
  POST   /collections/{collection_id}/members       -- add team members (owner)
  DELETE /collections/{collection_id}/members/{uid} -- remove a team member (owner)

Nesting is capped at MAX_COLLECTION_DEPTH levels. Structural rule violations
raised by the store as ValueError become 400 invalid_operation.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response

from api.errors import api_error, not_found, permission_denied, validation_failed
from api.limiter import WRITE_LIMIT, limiter
from api.models import (
    CollectionCreate,
    CollectionMove,
    CollectionReorder,
    CollectionResponse,
    CollectionUpdate,
    MembersRequest,
)
from auth.dependencies import get_current_user
from auth.models import User
from core.config import get_settings
from core.validation import validate_collection_data
from library.access import (
    Requester,
    can_create_collection,
    can_delete_collection,
    can_manage_collection,
    can_read_collection,
    can_update_collection,
)
from library.models import Collection
from library.store import LibraryStore

logger = logging.getLogger("snippetvault.api.collections")

router = APIRouter(dependencies=[Depends(get_current_user)])


def _requester(user: User) -> Requester:
    return Requester(user_id=user.id, email=user.email)


def _load(store: LibraryStore, collection_id: int) -> Collection:
    collection = store.get_collection(collection_id)
    if collection is None:
        raise not_found("collection_not_found", f"Collection {collection_id} not found.")
    return collection


def _invalid(exc: ValueError):
    return api_error(400, "invalid_operation", str(exc))


def _check_members(request: Request, user_ids: list[int]) -> None:
    user_store = request.app.state.user_store
    missing = [uid for uid in user_ids if user_store.get_by_id(uid) is None]
    if missing:
        raise api_error(
            400,
            "invalid_operation",
            "Unknown team member ids.",
            detail=", ".join(str(m) for m in missing),
        )


# ---------------------------------------------------------------------------
# Collection-level routes
# ---------------------------------------------------------------------------


@limiter.limit(WRITE_LIMIT)
@router.post("/collections", response_model=CollectionResponse, status_code=201)
def create_collection(
    request: Request,
    body: CollectionCreate,
    current_user: User = Depends(get_current_user),
) -> CollectionResponse:
    owner_id = body.user_id if body.user_id is not None else current_user.id
    if not can_create_collection(_requester(current_user), owner_id):
        raise permission_denied("Collections can only be created for your own account.")

    errors = validate_collection_data({"name": body.name})
    if errors:
        raise validation_failed(errors)
    if body.team_members:
        _check_members(request, body.team_members)

    store: LibraryStore = request.app.state.library
    try:
        collection_id = store.create_collection(
            Collection(
                user_id=current_user.id,
                name=body.name,
                parent_id=body.parent_id,
                team_members=body.team_members,
                order=body.order,
            ),
            max_depth=get_settings().max_collection_depth,
        )
    except ValueError as exc:
        raise _invalid(exc) from exc
    return CollectionResponse.from_collection(store.get_collection(collection_id))


@router.get("/collections", response_model=list[CollectionResponse])
def list_collections(request: Request, current_user: User = Depends(get_current_user)) -> list[CollectionResponse]:
    """Return the collections the caller owns or is a team member of."""
    store: LibraryStore = request.app.state.library
    return [CollectionResponse.from_collection(c) for c in store.list_user_collections(current_user.id)]


@limiter.limit(WRITE_LIMIT)
@router.post("/collections/reorder")
def reorder_collections(
    request: Request,
    body: CollectionReorder,
    current_user: User = Depends(get_current_user),
) -> dict:
    """Set the display order of several collections at once.

    All-or-nothing: if any listed collection is missing or not writable by
    the caller, nothing is changed.
    """
    store: LibraryStore = request.app.state.library
    requester = _requester(current_user)
    for item in body.items:
        if not can_update_collection(requester, _load(store, item.id)):
            raise permission_denied()
    updated = store.reorder_collections([(item.id, item.order) for item in body.items])
    return {"updated": updated}


# ---------------------------------------------------------------------------
# Single collection
# ---------------------------------------------------------------------------


@router.get("/collections/{collection_id}", response_model=CollectionResponse)
def get_collection(
    request: Request,
    collection_id: int,
    current_user: User = Depends(get_current_user),
) -> CollectionResponse:
    collection = _load(request.app.state.library, collection_id)
    if not can_read_collection(_requester(current_user), collection):
        raise permission_denied()
    return CollectionResponse.from_collection(collection)


@router.get("/collections/{collection_id}/children", response_model=list[CollectionResponse])
def get_children(
    request: Request,
    collection_id: int,
    current_user: User = Depends(get_current_user),
) -> list[CollectionResponse]:
    store: LibraryStore = request.app.state.library
    requester = _requester(current_user)
    if not can_read_collection(requester, _load(store, collection_id)):
        raise permission_denied()
    return [
        CollectionResponse.from_collection(c)
        for c in store.get_subcollections(collection_id)
        if can_read_collection(requester, c)
    ]


@limiter.limit(WRITE_LIMIT)
@router.patch("/collections/{collection_id}", response_model=CollectionResponse)
def update_collection(
    request: Request,
    collection_id: int,
    body: CollectionUpdate,
    current_user: User = Depends(get_current_user),
) -> CollectionResponse:
    """Rename or reorder. Team members may do this as well as the owner."""
    store: LibraryStore = request.app.state.library
    if not can_update_collection(_requester(current_user), _load(store, collection_id)):
        raise permission_denied()
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise api_error(400, "invalid_operation", "No fields to update.")
    try:
        updated = store.update_collection(collection_id, fields)
    except ValueError as exc:
        raise validation_failed([str(exc)]) from exc
    if updated is None:
        raise not_found("collection_not_found", f"Collection {collection_id} not found.")
    return CollectionResponse.from_collection(updated)


@limiter.limit(WRITE_LIMIT)
@router.delete("/collections/{collection_id}", status_code=204)
def delete_collection(
    request: Request,
    collection_id: int,
    recursive: bool = False,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Delete a collection; its snippets move back to the top level.

    A collection with subcollections is refused unless recursive=true.
    """
    store: LibraryStore = request.app.state.library
    collection = _load(store, collection_id)
    if not can_delete_collection(_requester(current_user), collection):
        raise permission_denied("Only the owner can delete a collection.")
    try:
        store.delete_collection(collection_id, recursive=recursive)
    except ValueError as exc:
        raise _invalid(exc) from exc
    # Snippets were detached, so cached search results carry stale collection ids.
    request.app.state.search_cache.invalidate_user(collection.user_id)
    return Response(status_code=204)


@limiter.limit(WRITE_LIMIT)
@router.post("/collections/{collection_id}/move", response_model=CollectionResponse)
def move_collection(
    request: Request,
    collection_id: int,
    body: CollectionMove,
    current_user: User = Depends(get_current_user),
) -> CollectionResponse:
    """Move under parent_id, or to the top level when parent_id is null."""
    store: LibraryStore = request.app.state.library
    if not can_manage_collection(_requester(current_user), _load(store, collection_id)):
        raise permission_denied("Only the owner can move a collection.")
    try:
        moved = store.move_collection(collection_id, body.parent_id, max_depth=get_settings().max_collection_depth)
    except ValueError as exc:
        raise _invalid(exc) from exc
    if moved is None:
        raise not_found("collection_not_found", f"Collection {collection_id} not found.")
    return CollectionResponse.from_collection(moved)


@limiter.limit(WRITE_LIMIT)
@router.post("/collections/{collection_id}/members", response_model=CollectionResponse)
def add_members(
    request: Request,
    collection_id: int,
    body: MembersRequest,
    current_user: User = Depends(get_current_user),
) -> CollectionResponse:
    store: LibraryStore = request.app.state.library
    if not can_manage_collection(_requester(current_user), _load(store, collection_id)):
        raise permission_denied("Only the owner can change team members.")
    _check_members(request, body.user_ids)
    try:
        updated = store.add_team_members(collection_id, body.user_ids)
    except ValueError as exc:
        raise _invalid(exc) from exc
    return CollectionResponse.from_collection(updated)


@limiter.limit(WRITE_LIMIT)
@router.delete("/collections/{collection_id}/members/{member_id}", response_model=CollectionResponse)
def remove_member(
    request: Request,
    collection_id: int,
    member_id: int,
    current_user: User = Depends(get_current_user),
) -> CollectionResponse:
    store: LibraryStore = request.app.state.library
    if not can_manage_collection(_requester(current_user), _load(store, collection_id)):
        raise permission_denied("Only the owner can change team members.")
    updated = store.remove_team_members(collection_id, [member_id])
    if updated is None:
        raise not_found("collection_not_found", f"Collection {collection_id} not found.")
    return CollectionResponse.from_collection(updated)
