"""Text normalisation for harvested metadata."""

import re
from datetime import date
from typing import Any, Iterable, Optional

from bs4 import BeautifulSoup

_TAG_RE = re.compile(r"<[a-zA-Z/!][^>]*>")


def normalize_whitespace(text: Optional[str]) -> str:
    """Collapse runs of whitespace (OAI titles wrap across lines)."""
    if not text:
        return ""
    return " ".join(text.split())


def _strip_markup(text: str) -> str:
    """Drop HTML/MathML tags, keeping their text content."""
    if not _TAG_RE.search(text):
        return text
    soup = BeautifulSoup(text, "html.parser")
    for math_tag in soup.find_all(["math", "mml:math"]):
        math_tag.decompose()
    return soup.get_text(" ")


def clean_title(text: Optional[str]) -> str:
    """Clean a title: strip markup and normalise whitespace."""
    if not text:
        return ""
    return normalize_whitespace(_strip_markup(text))


def clean_abstract(text: Optional[str]) -> str:
    """Clean an abstract.

    1. Strip HTML/MathML markup (rare, but present in some API responses).
    2. Strip a leading "Abstract" prefix.
    3. Normalise whitespace.
    """
    if not text:
        return ""
    text = _strip_markup(text)
    text = re.sub(r"^\s*abstract[\s.:;—–-]+", "", text, flags=re.IGNORECASE)
    return normalize_whitespace(text)


def format_authors(authors: Iterable[dict[str, Any]]) -> str:
    """Join structured author records into arXiv's comma-separated form.

    Each record may carry ``forenames``, ``keyname`` and ``suffix``.
    """
    names = []
    for author in authors:
        parts = [author.get("forenames") or "", author.get("keyname") or ""]
        if author.get("suffix"):
            parts.append(author["suffix"])
        name = " ".join(p for p in parts if p).strip()
        if name:
            names.append(name)
    return ", ".join(names)


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a date or timestamp string into a :class:`date`.

    Args:
        value: ``YYYY-MM-DD`` or an RFC 3339 timestamp

    Returns:
        The calendar date, or None if missing or unparseable
    """
    from dateutil import parser as dtparser

    if not value:
        return None
    try:
        return dtparser.parse(value).date()
    except (ValueError, OverflowError):
        return None
