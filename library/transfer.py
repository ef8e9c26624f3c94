"""
library/transfer.py -- Snippet export and import file formats.

Two formats are understood:
  - SnippetVault JSON: a list of snippet objects (a single object is also
    accepted). This is what export_snippets_to_json() writes.
  - VS Code snippets: an object mapping snippet names to
    {"prefix", "body", "description", "scope"} entries.

Parsers never raise. A malformed file yields an ImportResult with
success=False and a single "Parse Error" issue; individual bad entries are
reported per entry while the good ones still import.

Pipeline:
  upload -> detect_import_format() -> parse_*_import() -> ImportResult
  -> caller: LibraryStore.create_snippet() for each ImportedSnippet

Layer rule: imports only core/ and library/models.py.
"""

import json
from dataclasses import dataclass, field
from typing import Optional

from core.languages import detect_language, is_language_supported
from core.validation import CODE_MAX, DESCRIPTION_MAX, TITLE_MAX, TAG_PATTERN, TAG_MAX
from library.models import Snippet, SnippetMetadata

EXPORT_FILENAME = "snippets-export.json"


@dataclass
class ImportedSnippet:
    """A validated, normalized snippet ready to be written for the importing user."""

    title: str
    code: str
    language: str
    description: str = ""
    tags: list[str] = field(default_factory=list)
    metadata: SnippetMetadata = field(default_factory=SnippetMetadata)
    collection_id: Optional[int] = None


@dataclass
class ImportIssue:
    """Why one entry of an import file was rejected. index is 1-based."""

    index: int
    title: str
    errors: list[str]


@dataclass
class ImportResult:
    success: bool
    snippets: list[ImportedSnippet] = field(default_factory=list)
    errors: list[ImportIssue] = field(default_factory=list)
    total_count: int = 0

    @property
    def valid_count(self) -> int:
        return len(self.snippets)

    @property
    def error_count(self) -> int:
        if not self.success:
            return 1
        return self.total_count - self.valid_count


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def export_snippets_to_json(snippets: list[Snippet], include_metadata: bool = True, pretty: bool = True) -> str:
    """Serialize snippets to the SnippetVault JSON export format.

    Without include_metadata only the portable fields (title, description,
    code, language, tags) are written.
    """
    exported = []
    for s in snippets:
        entry = {
            "title": s.title,
            "description": s.description or "",
            "code": s.code,
            "language": s.language,
            "tags": list(s.tags),
        }
        if include_metadata:
            entry["metadata"] = {
                "usageNotes": s.metadata.usage_notes,
                "dependencies": s.metadata.dependencies,
                "author": s.metadata.author,
            }
            entry["collectionId"] = s.collection_id
            entry["createdAt"] = s.created_at
            entry["updatedAt"] = s.updated_at
        exported.append(entry)
    if pretty:
        return json.dumps(exported, indent=2, ensure_ascii=False)
    return json.dumps(exported, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Validation and normalization
# ---------------------------------------------------------------------------


def validate_imported_snippet(entry) -> list[str]:
    """Return the problems with one raw import entry (empty list = valid)."""
    if not isinstance(entry, dict):
        return ["Snippet must be an object"]

    errors: list[str] = []
    title, code, language = entry.get("title"), entry.get("code"), entry.get("language")
    description, tags = entry.get("description"), entry.get("tags")

    # Whitespace-only title or code counts as missing, as in validate_snippet_data().
    if not isinstance(title, str) or not title.strip():
        errors.append("Missing or invalid title")
    if not isinstance(code, str) or not code.strip():
        errors.append("Missing or invalid code")
    if not language or not isinstance(language, str):
        errors.append("Missing or invalid language")
    if description and not isinstance(description, str):
        errors.append("Invalid description format")

    if tags is not None and not isinstance(tags, list):
        errors.append("Tags must be an array")
    elif tags:
        invalid = [
            str(t) for t in tags if not isinstance(t, str) or len(t) > TAG_MAX or not TAG_PATTERN.match(t)
        ]
        if invalid:
            errors.append(
                f"Invalid tag format: {', '.join(invalid)}. Tags must be alphanumeric with hyphens only."
            )

    if isinstance(title, str) and len(title) > TITLE_MAX:
        errors.append(f"Title exceeds {TITLE_MAX} characters")
    if isinstance(description, str) and len(description) > DESCRIPTION_MAX:
        errors.append(f"Description exceeds {DESCRIPTION_MAX} characters")
    if isinstance(code, str) and len(code) > CODE_MAX:
        errors.append(f"Code exceeds {CODE_MAX} characters")

    return errors


def _normalize_language(language: str, code: str) -> str:
    # VS Code scopes may list several languages ("javascript,typescript").
    value = language.split(",")[0].strip().lower()
    if is_language_supported(value):
        return value
    return detect_language(code)


def _metadata_from(entry: dict) -> SnippetMetadata:
    meta = entry.get("metadata")
    if not isinstance(meta, dict):
        return SnippetMetadata()
    return SnippetMetadata(
        usage_notes=str(meta.get("usageNotes") or meta.get("usage_notes") or ""),
        dependencies=str(meta.get("dependencies") or ""),
        author=str(meta.get("author") or ""),
    )


def _normalize(entry: dict) -> ImportedSnippet:
    collection_id = entry.get("collectionId")
    return ImportedSnippet(
        title=entry["title"].strip(),
        description=(entry.get("description") or "").strip(),
        code=entry["code"],
        language=_normalize_language(entry["language"], entry["code"]),
        tags=list(dict.fromkeys(t.lower() for t in entry.get("tags") or [])),
        metadata=_metadata_from(entry),
        collection_id=collection_id if isinstance(collection_id, int) else None,
    )


def _parse_error(message: str) -> ImportResult:
    return ImportResult(
        success=False,
        errors=[ImportIssue(index=0, title="Parse Error", errors=[message])],
    )


# ---------------------------------------------------------------------------
# SnippetVault JSON
# ---------------------------------------------------------------------------


def parse_json_import(content: str) -> ImportResult:
    """Parse a SnippetVault JSON export. Never raises."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, TypeError) as exc:
        return _parse_error(f"Invalid JSON format: {exc}")

    entries = data if isinstance(data, list) else [data]
    result = ImportResult(success=True, total_count=len(entries))
    for index, entry in enumerate(entries, start=1):
        problems = validate_imported_snippet(entry)
        if problems:
            title = entry.get("title") if isinstance(entry, dict) else None
            result.errors.append(
                ImportIssue(index=index, title=title if isinstance(title, str) and title else "Untitled", errors=problems)
            )
        else:
            result.snippets.append(_normalize(entry))
    return result


# ---------------------------------------------------------------------------
# VS Code snippets
# ---------------------------------------------------------------------------


def _vscode_entry(name: str, value: dict, language: str) -> dict:
    body = value.get("body")
    code = "\n".join(str(line) for line in body) if isinstance(body, list) else (body or "")
    prefix = value.get("prefix")
    if isinstance(prefix, list):
        prefix = prefix[0] if prefix else None
    return {
        "title": name,
        "description": value.get("description") or prefix or "",
        "code": code,
        "language": value.get("scope") or language,
        "tags": [prefix] if prefix else [],
        "metadata": {"usageNotes": f"Trigger: {prefix}" if prefix else ""},
    }


def _convert_vscode(data: dict, language: str) -> tuple[list[ImportedSnippet], list[ImportIssue]]:
    converted: list[ImportedSnippet] = []
    rejected: list[ImportIssue] = []
    for index, (name, value) in enumerate(data.items(), start=1):
        problems = ["Invalid VS Code snippet entry"]
        if isinstance(value, dict):
            entry = _vscode_entry(name, value, language)
            problems = validate_imported_snippet(entry)
            if not problems:
                converted.append(_normalize(entry))
                continue
        rejected.append(ImportIssue(index=index, title=name, errors=problems))
    return converted, rejected


def convert_vscode_snippets(data, language: str = "javascript") -> list[ImportedSnippet]:
    """Convert a parsed VS Code snippets object; invalid entries are dropped.

    body lines are joined with newlines, the prefix becomes both a tag and
    a usage note, and scope (when present) overrides language.
    """
    if not isinstance(data, dict):
        return []
    return _convert_vscode(data, language)[0]


def parse_vscode_import(content: str, language: str = "javascript") -> ImportResult:
    """Parse a VS Code snippets file. Never raises."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, TypeError) as exc:
        return _parse_error(f"Invalid VS Code snippet format: {exc}")
    if not isinstance(data, dict):
        return _parse_error("Invalid VS Code snippet format: expected an object of named snippets")

    snippets, rejected = _convert_vscode(data, language)
    return ImportResult(success=True, snippets=snippets, errors=rejected, total_count=len(data))


def detect_import_format(content: str) -> str:
    """Return "vscode" for a VS Code snippets object, otherwise "json"."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return "json"
    if isinstance(data, dict) and data:
        first = next(iter(data.values()))
        if isinstance(first, dict) and first.get("prefix") and first.get("body"):
            return "vscode"
    return "json"


def parse_import(content: str, language: str = "javascript") -> tuple[str, ImportResult]:
    """Detect the format of content and parse it. Returns (format, result)."""
    fmt = detect_import_format(content)
    if fmt == "vscode":
        return fmt, parse_vscode_import(content, language)
    return fmt, parse_json_import(content)
