"""
core/languages.py -- Supported language catalogue and auto-detection.

The catalogue is the closed set of language values a snippet may carry for
syntax highlighting. detect_language() asks Pygments for its best guess and
maps the winning lexer back onto the catalogue; anything it cannot place
confidently becomes "plaintext".

Layer rule: core/ is the kernel. No imports from api/, auth/, library/, cache/.
"""

import logging

from pygments.lexers import guess_lexer
from pygments.util import ClassNotFound

logger = logging.getLogger("snippetvault.languages")

SUPPORTED_LANGUAGES: list[tuple[str, str]] = [
    ("javascript", "JavaScript"),
    ("typescript", "TypeScript"),
    ("python", "Python"),
    ("java", "Java"),
    ("cpp", "C++"),
    ("c", "C"),
    ("csharp", "C#"),
    ("go", "Go"),
    ("rust", "Rust"),
    ("php", "PHP"),
    ("ruby", "Ruby"),
    ("swift", "Swift"),
    ("kotlin", "Kotlin"),
    ("html", "HTML"),
    ("css", "CSS"),
    ("scss", "SCSS"),
    ("sql", "SQL"),
    ("bash", "Bash"),
    ("shell", "Shell"),
    ("json", "JSON"),
    ("xml", "XML"),
    ("yaml", "YAML"),
    ("markdown", "Markdown"),
    ("plaintext", "Plain Text"),
]

_LABELS: dict[str, str] = dict(SUPPORTED_LANGUAGES)

# Pygments aliases that differ from the catalogue value.
_ALIASES: dict[str, str] = {
    "js": "javascript",
    "ts": "typescript",
    "py": "python",
    "python3": "python",
    "c++": "cpp",
    "c#": "csharp",
    "cs": "csharp",
    "golang": "go",
    "rs": "rust",
    "rb": "ruby",
    "sh": "bash",
    "zsh": "bash",
    "md": "markdown",
    "text": "plaintext",
}

# Minimum Pygments analyse_text() score to trust a guess.
_MIN_CONFIDENCE = 0.1


def _catalogue_value(aliases: list[str]) -> str | None:
    for alias in aliases:
        alias = alias.lower()
        if alias in _LABELS:
            return alias
        if alias in _ALIASES:
            return _ALIASES[alias]
    return None


def detect_language(code: str) -> str:
    """Return the catalogue value for the language code appears to be written in.

    Empty or whitespace-only input, a low-confidence guess, or a lexer with no
    catalogue counterpart all fall back to "plaintext".
    """
    if not code or not isinstance(code, str) or not code.strip():
        return "plaintext"

    try:
        lexer = guess_lexer(code)
    except ClassNotFound:
        return "plaintext"

    if lexer.analyse_text(code) < _MIN_CONFIDENCE:
        return "plaintext"

    value = _catalogue_value(list(lexer.aliases))
    if value is None:
        logger.debug("Detected lexer %r has no catalogue entry", lexer.name)
        return "plaintext"
    return value


def is_language_supported(language: str) -> bool:
    return language in _LABELS


def get_language_label(language: str) -> str:
    """Return the display label, or the raw value when it is not catalogued."""
    return _LABELS.get(language, language)
