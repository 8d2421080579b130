"""Turn free-form descriptions into safe filename stems."""

from __future__ import annotations

import re
from datetime import date

from namewatch.config.models import NamingRules

from .errors import NamingError

_ARTICLES = frozenset({"a", "an", "the"})
_CHAT_PREFIX_LIMIT = 30
_QUOTES = "\"'`"


def sanitize_description(description: str, rules: NamingRules | None = None) -> str:
    """Return ``description`` reduced to a filename-safe stem.

    The first non-empty line is used. A short chat prefix such as ``Filename:`` is
    dropped, quotes and punctuation are removed, leading articles are stripped, and
    words are joined with the configured separator.

    Examples:
        >>> sanitize_description("A beach at sunset")
        'beach_at_sunset'
        >>> sanitize_description('Sure! Here it is: "Quarterly Report"')
        'quarterly_report'
    """
    rules = rules or NamingRules()
    line = next((line.strip() for line in description.splitlines() if line.strip()), "")

    colon = line.find(":")
    if 0 <= colon < _CHAT_PREFIX_LIMIT and line[colon + 1 :].strip():
        line = line[colon + 1 :].strip()

    line = line.strip().strip(_QUOTES).strip()
    line = "".join(char for char in line if char.isalnum() or char in " _-")
    words = [word for word in re.split(r"[\s_]+", line) if word.strip("-")]

    if rules.strip_articles:
        while len(words) > 1 and words[0].lower() in _ARTICLES:
            words.pop(0)

    separator = rules.separator
    stem = separator.join(words)
    if rules.lowercase:
        stem = stem.lower()
    stem = re.sub(r"[_-]{2,}", separator, stem)
    return stem.strip("_-")


def build_stem(description: str, rules: NamingRules | None = None, *, today: date | None = None) -> str:
    """Return the full stem: optional date prefix plus sanitized description.

    Raises:
        NamingError: If nothing usable remains after sanitizing.
    """
    rules = rules or NamingRules()
    name = sanitize_description(description, rules)
    if not name:
        raise NamingError(f"description {description[:40]!r} yields an empty filename")

    if rules.date_prefix:
        name = f"{(today or date.today()).strftime(rules.date_format)}{rules.separator}{name}"
    stem = name[: rules.max_length].rstrip("_-")
    if not stem:
        raise NamingError(f"description {description[:40]!r} yields an empty filename")
    return stem


__all__ = ["sanitize_description", "build_stem"]
