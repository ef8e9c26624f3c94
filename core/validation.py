"""
core/validation.py -- Business-rule validation for snippet, collection and tag data.

These checks run on plain dicts before anything is written, so the same rules
apply to API bodies, imported files, and CLI input. Validators return a list
of human-readable messages (empty list = valid) rather than raising, which
lets callers report every problem at once. validate_tag() is the exception:
it normalizes as well as checks, so it returns the normalized tag or raises
ValueError.

Layer rule: core/ is the kernel. No imports from api/, auth/, library/, cache/.
"""

import re

TITLE_MAX = 200
DESCRIPTION_MAX = 2000
CODE_MAX = 50000
COLLECTION_NAME_MAX = 100
TAG_MAX = 50

TAG_PATTERN = re.compile(r"^[a-zA-Z0-9-]+$")


def _blank(value) -> bool:
    return not isinstance(value, str) or value.strip() == ""


def validate_snippet_data(data: dict, partial: bool = False) -> list[str]:
    """Return validation errors for snippet fields.

    partial=True validates only the keys present in data (PATCH semantics);
    required-field checks then fire only for keys the caller is changing.
    """
    errors: list[str] = []

    if not partial or "title" in data:
        title = data.get("title")
        if _blank(title):
            errors.append("Title is required")
        elif len(title) > TITLE_MAX:
            errors.append(f"Title must be less than {TITLE_MAX} characters")

    description = data.get("description")
    if description and len(description) > DESCRIPTION_MAX:
        errors.append(f"Description must be less than {DESCRIPTION_MAX} characters")

    if not partial or "code" in data:
        code = data.get("code")
        if _blank(code):
            errors.append("Code content is required")
        elif len(code) > CODE_MAX:
            errors.append(f"Code must be less than {CODE_MAX} characters")

    if not partial or "language" in data:
        if _blank(data.get("language")):
            errors.append("Programming language is required")

    return errors


def validate_collection_data(data: dict, max_depth: int = 5) -> list[str]:
    """Return validation errors for collection fields."""
    errors: list[str] = []

    name = data.get("name")
    if _blank(name):
        errors.append("Collection name is required")
    elif len(name) > COLLECTION_NAME_MAX:
        errors.append(f"Collection name must be {COLLECTION_NAME_MAX} characters or less")

    path = data.get("path") or []
    if len(path) >= max_depth:
        errors.append(f"Collections cannot be nested more than {max_depth} levels deep")

    return errors


def validate_tag(tag) -> str:
    """Validate and normalize a tag name. Returns the lower-cased tag.

    Raises:
        ValueError: with a user-facing message when the tag is malformed.
    """
    if not isinstance(tag, str):
        raise ValueError("Tag must be a non-empty string")
    trimmed = tag.strip()
    if not trimmed:
        raise ValueError("Tag cannot be empty")
    if len(trimmed) > TAG_MAX:
        raise ValueError(f"Tag must be less than {TAG_MAX} characters")
    if not TAG_PATTERN.match(trimmed):
        raise ValueError("Tags can only contain letters, numbers, and hyphens")
    return trimmed.lower()


def normalize_tags(tags: list) -> list[str]:
    """Validate every tag and return them normalized with duplicates removed.

    Order of first appearance is preserved. Raises ValueError on the first
    malformed tag.
    """
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        normalized = validate_tag(tag)
        if normalized not in seen:
            seen.add(normalized)
            result.append(normalized)
    return result
