"""
library/search.py -- Relevance search and filtering over a user's snippets.

Everything here is a pure function over lists of Snippet objects, so it can
run on whatever the store returned and be tested without a database.

Scoring (case-insensitive substring match on the trimmed query):
    title        10
    description   5
    code          3
    each tag      7
Results are sorted by score, highest first; ties keep their input order.
Filters are applied before the query.
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

from library.models import Snippet

TITLE_WEIGHT = 10
DESCRIPTION_WEIGHT = 5
CODE_WEIGHT = 3
TAG_WEIGHT = 7

DateLike = Union[str, datetime, None]


@dataclass
class SearchFilters:
    languages: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    collections: list[int] = field(default_factory=list)
    date_start: DateLike = None
    date_end: DateLike = None


@dataclass
class SearchHit:
    snippet: Snippet
    matched_fields: list[str] = field(default_factory=list)
    score: int = 0


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


def search_by_query(snippets: list[Snippet], query: str) -> list[SearchHit]:
    """Score every snippet against query and drop the ones that do not match.

    An empty or whitespace-only query matches everything with score 0.
    """
    if not query or not query.strip():
        return [SearchHit(snippet=s) for s in snippets]

    needle = query.strip().lower()
    hits: list[SearchHit] = []
    for snippet in snippets:
        matched: list[str] = []
        score = 0
        if needle in snippet.title.lower():
            matched.append("title")
            score += TITLE_WEIGHT
        if needle in (snippet.description or "").lower():
            matched.append("description")
            score += DESCRIPTION_WEIGHT
        if needle in snippet.code.lower():
            matched.append("code")
            score += CODE_WEIGHT
        tag_matches = sum(1 for tag in snippet.tags if needle in tag.lower())
        if tag_matches:
            matched.append("tags")
            score += TAG_WEIGHT * tag_matches
        if matched:
            hits.append(SearchHit(snippet=snippet, matched_fields=matched, score=score))

    hits.sort(key=lambda h: h.score, reverse=True)
    return hits


def highlight_matches(text: str, query: str) -> list[tuple[str, bool]]:
    """Split text into (segment, highlighted) pairs around every occurrence of query.

    Matching is case-insensitive but segments keep the original casing.
    """
    if not query or not text:
        return [(text, False)]

    segments: list[tuple[str, bool]] = []
    last = 0
    for match in re.finditer(re.escape(query), text, re.IGNORECASE):
        if match.start() > last:
            segments.append((text[last : match.start()], False))
        segments.append((match.group(), True))
        last = match.end()
    if last < len(text):
        segments.append((text[last:], False))
    return segments


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def filter_by_language(snippets: list[Snippet], languages: list[str]) -> list[Snippet]:
    if not languages:
        return snippets
    wanted = set(languages)
    return [s for s in snippets if s.language in wanted]


def filter_by_tags(snippets: list[Snippet], tags: list[str]) -> list[Snippet]:
    """Keep snippets carrying at least one of tags."""
    if not tags:
        return snippets
    wanted = {t.lower() for t in tags}
    return [s for s in snippets if wanted.intersection(s.tags)]


def filter_by_collections(snippets: list[Snippet], collections: list[int]) -> list[Snippet]:
    if not collections:
        return snippets
    wanted = set(collections)
    return [s for s in snippets if s.collection_id in wanted]


def _as_utc(value: DateLike) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def filter_by_date_range(snippets: list[Snippet], start: DateLike = None, end: DateLike = None) -> list[Snippet]:
    """Keep snippets created within [start, end]. Either bound may be None.

    Raises:
        ValueError: if a bound is a string that is not ISO 8601.
    """
    lo, hi = _as_utc(start), _as_utc(end)
    if lo is None and hi is None:
        return snippets
    kept = []
    for s in snippets:
        created = _as_utc(s.created_at)
        if created is None:
            continue
        if lo is not None and created < lo:
            continue
        if hi is not None and created > hi:
            continue
        kept.append(s)
    return kept


def apply_filters(snippets: list[Snippet], filters: Optional[SearchFilters] = None) -> list[Snippet]:
    if filters is None:
        return list(snippets)
    result = filter_by_language(list(snippets), filters.languages)
    result = filter_by_tags(result, filters.tags)
    result = filter_by_collections(result, filters.collections)
    return filter_by_date_range(result, filters.date_start, filters.date_end)


def search_snippets(
    snippets: list[Snippet], query: str = "", filters: Optional[SearchFilters] = None
) -> list[SearchHit]:
    """Filter, then score and rank."""
    return search_by_query(apply_filters(snippets, filters), query)


def cache_key(query: str, filters: Optional[SearchFilters] = None) -> str:
    """Return a stable key for a (query, filters) pair.

    List filters are sorted so the same selection in a different order hits
    the same cache entry.
    """
    filters = filters or SearchFilters()
    payload = {
        "q": (query or "").strip().lower(),
        "languages": sorted(filters.languages),
        "tags": sorted(t.lower() for t in filters.tags),
        "collections": sorted(filters.collections),
        "start": str(filters.date_start or ""),
        "end": str(filters.date_end or ""),
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()
