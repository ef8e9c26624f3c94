"""
API request and response models for SnippetVault REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in library/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two, usually through the from_* factory classmethods below.

Separation of concerns: library/ models = domain truth; api/ models = API contract.

Request models for login and registration give every field an empty-string
default on purpose: a missing field must reach auth/validation.py so the
client gets the same ordered, human-readable messages as for a blank one.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import ApiKey, User
from core.languages import get_language_label
from library.models import Collection, Snippet, Tag
from library.search import SearchHit
from library.transfer import ImportResult

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class FieldErrorModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[list[FieldErrorModel]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: str = Field(default="", max_length=320)
    password: str = Field(default="", max_length=128)


class RegisterRequest(BaseModel):
    email: str = Field(default="", max_length=320)
    password: str = Field(default="", max_length=128)
    confirm_password: str = Field(default="", max_length=128)
    display_name: str = Field(default="", max_length=100)


class AuthResponse(BaseModel):
    """Returned by login and register. The same token is also set as a cookie."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: int
    email: str
    display_name: str
    password_strength: Optional[str] = None


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    display_name: str
    oauth_provider: Optional[str] = None
    created_at: Optional[str] = None
    last_login: Optional[str] = None


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ApiKeyCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)


class ApiKeyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    key_prefix: str
    created_at: str
    last_used: Optional[str] = None

    @classmethod
    def from_api_key(cls, key: ApiKey) -> "ApiKeyResponse":
        return cls(
            id=key.id,
            name=key.name,
            key_prefix=key.key_prefix,
            created_at=key.created_at or "",
            last_used=key.last_used,
        )


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Creation response. key is the raw secret and is never shown again."""

    key: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    display_name: str
    created_at: Optional[str] = None
    last_login: Optional[str] = None
    preferences: dict

    @classmethod
    def from_user(cls, user: User, preferences: dict) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            display_name=user.display_name,
            created_at=user.created_at,
            last_login=user.last_login,
            preferences=preferences,
        )


class KeyboardShortcuts(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    search: Optional[str] = Field(default=None, max_length=30)
    new_snippet: Optional[str] = Field(default=None, max_length=30, alias="newSnippet")
    copy_snippet: Optional[str] = Field(default=None, max_length=30, alias="copySnippet")
    help: Optional[str] = Field(default=None, max_length=30)


class PreferencesUpdate(BaseModel):
    """Partial preferences update. Keys use the stored document's camelCase names."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    theme: Optional[Literal["light", "dark"]] = None
    default_language: Optional[str] = Field(default=None, alias="defaultLanguage")
    keyboard_shortcuts: Optional[KeyboardShortcuts] = Field(default=None, alias="keyboardShortcuts")


# ---------------------------------------------------------------------------
# Snippets
# ---------------------------------------------------------------------------


class SnippetMetadataModel(BaseModel):
    usage_notes: str = Field(default="", max_length=2000)
    dependencies: str = Field(default="", max_length=2000)
    author: str = Field(default="", max_length=200)


class ShareEntryModel(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    permission: Literal["read", "write"] = "read"


class SnippetCreate(BaseModel):
    """Body for POST /api/v1/snippets.

    user_id may be omitted; when present it must name the requester.
    language may be omitted, in which case it is detected from code.
    Length and required-field rules are applied by core.validation so the
    messages match those used for imports.
    """

    user_id: Optional[int] = None
    title: str = ""
    description: str = ""
    code: str = ""
    language: Optional[str] = None
    tags: list[str] = Field(default_factory=list, max_length=50)
    collection_id: Optional[int] = None
    metadata: SnippetMetadataModel = Field(default_factory=SnippetMetadataModel)


class SnippetUpdate(BaseModel):
    """Body for PATCH /api/v1/snippets/{id}. Only fields that are sent change."""

    title: Optional[str] = None
    description: Optional[str] = None
    code: Optional[str] = None
    language: Optional[str] = None
    tags: Optional[list[str]] = Field(default=None, max_length=50)
    collection_id: Optional[int] = None
    metadata: Optional[SnippetMetadataModel] = None


class SnippetResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    title: str
    description: str
    code: str
    language: str
    language_label: str
    tags: list[str]
    collection_id: Optional[int] = None
    metadata: SnippetMetadataModel
    is_shared: bool
    shared_with: list[ShareEntryModel]
    created_at: str
    updated_at: str
    last_edited_by: Optional[int] = None

    @classmethod
    def from_snippet(cls, s: Snippet) -> "SnippetResponse":
        return cls(
            id=s.id,
            user_id=s.user_id,
            title=s.title,
            description=s.description,
            code=s.code,
            language=s.language,
            language_label=get_language_label(s.language),
            tags=list(s.tags),
            collection_id=s.collection_id,
            metadata=SnippetMetadataModel(
                usage_notes=s.metadata.usage_notes,
                dependencies=s.metadata.dependencies,
                author=s.metadata.author,
            ),
            is_shared=s.is_shared,
            shared_with=[ShareEntryModel(email=e.email, permission=e.permission) for e in s.shared_with],
            created_at=s.created_at,
            updated_at=s.updated_at,
            last_edited_by=s.last_edited_by,
        )


class SnippetListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    snippets: list[SnippetResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class ShareRequest(BaseModel):
    users: list[ShareEntryModel] = Field(default_factory=list, max_length=100)


class SearchHitResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    snippet: SnippetResponse
    matched_fields: list[str]
    score: int

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "SearchHitResponse":
        return cls(
            snippet=SnippetResponse.from_snippet(hit.snippet),
            matched_fields=hit.matched_fields,
            score=hit.score,
        )


class SearchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    total: int
    results: list[SearchHitResponse]
    cached: bool = False


class DetectLanguageRequest(BaseModel):
    code: str = Field(default="", max_length=50000)


class LanguageInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    label: str


class ImportIssueModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    title: str
    errors: list[str]


class ImportResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    format: str
    success: bool
    total_count: int
    valid_count: int
    error_count: int
    imported: int
    snippet_ids: list[int]
    errors: list[ImportIssueModel]

    @classmethod
    def from_result(cls, fmt: str, result: ImportResult, snippet_ids: list[int]) -> "ImportResponse":
        return cls(
            format=fmt,
            success=result.success,
            total_count=result.total_count,
            valid_count=result.valid_count,
            error_count=result.error_count,
            imported=len(snippet_ids),
            snippet_ids=snippet_ids,
            errors=[ImportIssueModel(index=e.index, title=e.title, errors=e.errors) for e in result.errors],
        )


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


class CollectionCreate(BaseModel):
    user_id: Optional[int] = None
    name: str = ""
    parent_id: Optional[int] = None
    team_members: list[int] = Field(default_factory=list, max_length=100)
    order: int = 0


class CollectionUpdate(BaseModel):
    name: Optional[str] = None
    order: Optional[int] = None


class CollectionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    name: str
    parent_id: Optional[int] = None
    path: list[int]
    depth: int
    is_team_collection: bool
    team_members: list[int]
    order: int
    created_at: str
    updated_at: str

    @classmethod
    def from_collection(cls, c: Collection) -> "CollectionResponse":
        return cls(
            id=c.id,
            user_id=c.user_id,
            name=c.name,
            parent_id=c.parent_id,
            path=list(c.path),
            depth=len(c.path),
            is_team_collection=c.is_team_collection,
            team_members=list(c.team_members),
            order=c.order,
            created_at=c.created_at,
            updated_at=c.updated_at,
        )


class CollectionMove(BaseModel):
    parent_id: Optional[int] = None


class ReorderItem(BaseModel):
    id: int
    order: int


class CollectionReorder(BaseModel):
    items: list[ReorderItem] = Field(min_length=1, max_length=500)


class MembersRequest(BaseModel):
    user_ids: list[int] = Field(min_length=1, max_length=100)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


class TagResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    usage_count: int
    created_at: str
    last_used: str

    @classmethod
    def from_tag(cls, t: Tag) -> "TagResponse":
        return cls(name=t.name, usage_count=t.usage_count, created_at=t.created_at, last_used=t.last_used)


class TagSuggestionsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    suggestions: list[str]
