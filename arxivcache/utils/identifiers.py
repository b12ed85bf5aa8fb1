"""arXiv identifier helpers.

Two identifier shapes exist:

* new style ``YYMM.NNNNN`` (four to six digits after the dot since 2007),
* legacy ``archive/YYMMNNN`` (e.g. ``hep-th/9901001``, ``math.CO/0001001``).

Both may carry a ``vN`` version suffix in the wild; the canonical form
used as a storage key has it stripped.
"""

import re
from typing import Optional

NEW_ID_RE = re.compile(r"^\d{4}\.\d{4,6}$")
LEGACY_ID_RE = re.compile(r"^[a-z][a-z\-]*(?:\.[a-z]{2})?/\d{7}$", re.IGNORECASE)
VERSION_RE = re.compile(r"(?<=.)v\d+$")

_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def is_arxiv_id(value: str) -> bool:
    """Return True if *value* is an unversioned new-style or legacy ID."""
    value = value.strip()
    return bool(NEW_ID_RE.match(value) or LEGACY_ID_RE.match(value))


def is_legacy_id(paper_id: str) -> bool:
    return "/" in paper_id


def strip_version(paper_id: str) -> str:
    """Strip a trailing ``vN`` suffix: ``2301.00001v2`` -> ``2301.00001``."""
    return VERSION_RE.sub("", paper_id.strip())


def extract_arxiv_id(value: str) -> Optional[str]:
    """Extract a canonical ID from a plain ID or an ``/abs/`` / ``/pdf/`` URL.

    Examples:
        >>> extract_arxiv_id("https://arxiv.org/pdf/2301.00001v2.pdf")
        '2301.00001'
        >>> extract_arxiv_id("not an id") is None
        True
    """
    value = value.strip()
    candidate = strip_version(value)
    if is_arxiv_id(candidate):
        return candidate

    for marker in ("/abs/", "/pdf/"):
        idx = value.find(marker)
        if idx < 0:
            continue
        tail = value[idx + len(marker):]
        tail = re.split(r"[?#]", tail, maxsplit=1)[0]
        if tail.endswith(".pdf"):
            tail = tail[: -len(".pdf")]
        tail = strip_version(tail.rstrip("/"))
        if is_arxiv_id(tail):
            return tail
    return None


def paper_prefix(paper_id: str) -> str:
    """Shard directory for a paper: ``2301`` for new IDs, the archive for legacy ones."""
    if is_legacy_id(paper_id):
        return paper_id.split("/", 1)[0]
    return paper_id[:4]


def artifact_stem(paper_id: str) -> str:
    """File/dir name of a paper's artifacts inside its shard directory."""
    if is_legacy_id(paper_id):
        return paper_id.split("/", 1)[1]
    return paper_id


def _date_segment(paper_id: str) -> str:
    if is_legacy_id(paper_id):
        return paper_id.split("/", 1)[1]
    return paper_id.split(".", 1)[0]


def year_from_id(paper_id: str) -> int:
    """Derive the submission year from the ``YY`` digits of an identifier.

    91-99 map to 1991-1999; every other value maps to 2000-2090.
    Returns 0 when the identifier carries no date segment.
    """
    yy = _date_segment(strip_version(paper_id))[:2]
    if len(yy) != 2 or not yy.isdigit():
        return 0
    value = int(yy)
    return 1900 + value if value >= 91 else 2000 + value


def month_from_id(paper_id: str) -> int:
    mm = _date_segment(strip_version(paper_id))[2:4]
    if len(mm) != 2 or not mm.isdigit():
        return 0
    month = int(mm)
    return month if 1 <= month <= 12 else 0


def id_to_date(paper_id: str) -> str:
    """Human date encoded in an identifier, e.g. ``2302.13971`` -> ``Feb 2023``."""
    year, month = year_from_id(paper_id), month_from_id(paper_id)
    if not year or not month:
        return ""
    return f"{_MONTHS[month - 1]} {year}"
