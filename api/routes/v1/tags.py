"""
api/routes/v1/tags.py -- Per-user tag statistics.

Routes:
  GET /tags               -- the caller's tags, sortable
  GET /tags/search        -- substring match over the most used tags
  GET /tags/suggestions   -- most recently used tag names

Tags are created implicitly when a snippet carrying them is saved; there is
no route to create or delete one directly. Every route only ever reads the
caller's own tags (library.access "tags" rule).
"""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, Request

from api.limiter import READ_LIMIT, limiter
from api.models import TagResponse, TagSuggestionsResponse
from auth.dependencies import get_current_user
from auth.models import User
from library.access import Requester, can_access_tag
from library.store import LibraryStore

router = APIRouter(dependencies=[Depends(get_current_user)])


def _visible(user: User, tags: list) -> list[TagResponse]:
    requester = Requester(user_id=user.id, email=user.email)
    return [TagResponse.from_tag(t) for t in tags if can_access_tag(requester, t)]


@limiter.limit(READ_LIMIT)
@router.get("/tags", response_model=list[TagResponse])
def list_tags(
    request: Request,
    sort_by: Literal["usage_count", "name", "last_used", "created_at"] = "usage_count",
    direction: Literal["asc", "desc"] = "desc",
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    current_user: User = Depends(get_current_user),
) -> list[TagResponse]:
    store: LibraryStore = request.app.state.library
    return _visible(current_user, store.get_user_tags(current_user.id, sort_by=sort_by, direction=direction, limit=limit))


@limiter.limit(READ_LIMIT)
@router.get("/tags/search", response_model=list[TagResponse])
def search_tags(
    request: Request,
    q: Annotated[str, Query(max_length=50)] = "",
    limit: Annotated[int, Query(ge=1, le=50)] = 10,
    current_user: User = Depends(get_current_user),
) -> list[TagResponse]:
    store: LibraryStore = request.app.state.library
    return _visible(current_user, store.search_tags(current_user.id, q, limit=limit))


@router.get("/tags/suggestions", response_model=TagSuggestionsResponse)
def tag_suggestions(
    request: Request,
    limit: Annotated[int, Query(ge=1, le=50)] = 20,
    current_user: User = Depends(get_current_user),
) -> TagSuggestionsResponse:
    store: LibraryStore = request.app.state.library
    return TagSuggestionsResponse(suggestions=store.get_tag_suggestions(current_user.id, limit=limit))
