"""
api/routes/v1/users.py -- User document routes.

Routes:
  GET /api/v1/users/{user_id}               -- profile + preferences
  GET /api/v1/users/{user_id}/preferences   -- preferences only
  PUT /api/v1/users/{user_id}/preferences   -- merge preference changes

A user document is visible to its owner only (library.access "users" rule);
anyone else gets 403, whether or not the id exists.
"""

from fastapi import APIRouter, Depends, Request

from api.errors import api_error, not_found, permission_denied
from api.models import PreferencesUpdate, UserResponse
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from core.languages import is_language_supported
from library.access import Requester, can_access_user_document

router = APIRouter(dependencies=[Depends(get_current_user)])


def _require_self(current_user: User, user_id: int) -> None:
    if not can_access_user_document(Requester(current_user.id, current_user.email), user_id):
        raise permission_denied("You can only access your own user document.")


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int, current_user: User = Depends(get_current_user)) -> UserResponse:
    _require_self(current_user, user_id)
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(user_id)
    if user is None:
        raise not_found("not_found", "User not found.")
    return UserResponse.from_user(user, user_store.get_preferences(user_id))


@router.get("/users/{user_id}/preferences")
def get_preferences(request: Request, user_id: int, current_user: User = Depends(get_current_user)) -> dict:
    _require_self(current_user, user_id)
    prefs = request.app.state.user_store.get_preferences(user_id)
    if prefs is None:
        raise not_found("not_found", "User not found.")
    return prefs


@router.put("/users/{user_id}/preferences")
def update_preferences(
    request: Request,
    user_id: int,
    body: PreferencesUpdate,
    current_user: User = Depends(get_current_user),
) -> dict:
    """Merge the given preferences into the stored document and return it.

    Keyboard shortcuts merge key by key; omitted keys keep their value.
    """
    _require_self(current_user, user_id)
    changes = body.model_dump(by_alias=True, exclude_none=True)
    language = changes.get("defaultLanguage")
    if language is not None and not is_language_supported(language):
        raise api_error(
            422,
            "validation_error",
            f"Unsupported language: {language}",
            fields=[("defaultLanguage", f"Unsupported language: {language}")],
        )
    prefs = request.app.state.user_store.update_preferences(user_id, changes)
    if prefs is None:
        raise not_found("not_found", "User not found.")
    return prefs
