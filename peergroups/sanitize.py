"""Escaping and word censoring for untrusted chat text."""

from __future__ import annotations

import re
from collections.abc import Iterable

from .constants import CENSOR_MASK, MAX_NICKNAME_LENGTH, MAX_TEXT_LENGTH

_HTML_REPLACEMENTS = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#39;"),
)
_REFERENCES = "|".join(re.escape(reference) for _, reference in _HTML_REPLACEMENTS)


def escape_html(text: object) -> str:
    """Escape HTML special characters to prevent markup injection.

    Ampersands are replaced first so the references introduced by later
    substitutions are not escaped twice.

    Args:
        text: Untrusted value; non-strings are converted with str()

    Returns:
        Escaped text
    """
    escaped = str(text)
    for char, reference in _HTML_REPLACEMENTS:
        escaped = escaped.replace(char, reference)
    return escaped


def normalize_word(word: str) -> str | None:
    """Normalize a banned word to lowercase and stripped.

    Args:
        word: Word to normalize

    Returns:
        Normalized word, or None if invalid
    """
    if not isinstance(word, str):
        return None

    normalized = word.strip().lower()
    if not normalized:
        return None

    return normalized


def compile_banned_words(words: Iterable[str]) -> re.Pattern[str] | None:
    """Build one case-insensitive whole-word pattern for a banned-word set.

    Words are matched in their escaped form, since censoring runs on text
    that has already been through escape_html(). The captured group matches
    the character references escape_html() emits, so they are consumed whole
    and never masked.

    Returns:
        Compiled pattern, or None when there is nothing to censor
    """
    alternatives = sorted({re.escape(escape_html(w)) for w in words if w}, key=len, reverse=True)
    if not alternatives:
        return None
    return re.compile(
        r"\b(?:" + "|".join(alternatives) + r")\b|(" + _REFERENCES + ")", re.IGNORECASE
    )


def censor(text: str, banned_words: Iterable[str]) -> str:
    """Mask whole-word, case-insensitive occurrences of banned words.

    Substrings inside larger words are left alone ("ass" does not touch
    "class").

    Args:
        text: Text to censor
        banned_words: Words to mask

    Returns:
        Censored text (the input itself when nothing matched)
    """
    pattern = compile_banned_words(banned_words)
    if pattern is None:
        return text
    return pattern.sub(lambda m: m.group(1) or CENSOR_MASK, text)


def sanitize_text_input(text: str, max_length: int = MAX_TEXT_LENGTH) -> str | None:
    """Sanitize chat text before sending.

    Escaping is not done here; the host escapes every payload it accepts.

    Args:
        text: Text to sanitize
        max_length: Maximum allowed length

    Returns:
        Sanitized text, or None if invalid
    """
    if not isinstance(text, str):
        return None

    sanitized = text.strip()
    if not sanitized:
        return None

    if len(sanitized) > max_length:
        return None

    for char in sanitized:
        code = ord(char)
        if code < 32 and code not in (9, 10, 13):
            return None
        if code == 0xFFFE or code == 0xFFFF:
            return None

    return sanitized


def sanitize_display_name(name: str, max_length: int = MAX_NICKNAME_LENGTH) -> str | None:
    """Sanitize nicknames.

    Removes control characters and limits length. More permissive than
    sanitize_text_input as these are display-only and don't allow newlines.

    Args:
        name: Name to sanitize
        max_length: Maximum allowed length

    Returns:
        Sanitized name, or None if invalid
    """
    if not isinstance(name, str):
        return None

    sanitized = name.strip()
    if not sanitized:
        return None

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length]

    cleaned = "".join(
        char for char in sanitized if not (ord(char) < 32 or ord(char) in (0x7F, 0xFFFE, 0xFFFF))
    )

    if not cleaned:
        return None

    return cleaned
