"""Reference extraction from downloaded TeX sources.

The extractor is a pure function of on-disk content: it never touches the
network or the store. Each line of every ``.bbl``/``.bib``/``.tex`` file is run
through an ordered battery of matchers; results are version-stripped and
deduplicated in first-seen order (walk order, then line order, then matcher
order).
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from arxivcache.utils.identifiers import strip_version
from arxivcache.utils.pdf_text import extract_pdf_text

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = frozenset({".bbl", ".bib", ".tex"})

_NEW = r"(?<!\d)(\d{4}\.\d{4,6}(?:v\d+)?)(?!\d)"
_NEW_BARE = r"(?<!\d)(\d{4}\.\d{4,6})(?!\d)"
_LEGACY = r"([a-z-]+/\d{7}(?:v\d+)?)"


@dataclass(frozen=True)
class Matcher:
    """A named identifier pattern; group 1 of every match is the ID."""

    name: str
    pattern: re.Pattern

    def find(self, text: str) -> list[str]:
        return [m.group(1) for m in self.pattern.finditer(text)]


def _matcher(name: str, regex: str, flags: int = 0) -> Matcher:
    return Matcher(name, re.compile(regex, flags))


# Order matters only for first-seen ordering of the output.
MATCHERS: tuple[Matcher, ...] = (
    # arXiv:2301.00001, arXiv 2301.00001v2
    _matcher("arxiv_prefix", r"arXiv[:\s]+" + _NEW, re.IGNORECASE),
    # arXiv preprint arXiv:2301.00001 (common in .bbl files)
    _matcher("arxiv_preprint", r"arXiv\s+preprint\s+arXiv[:\s]+" + _NEW, re.IGNORECASE),
    # arxiv.org/abs/2301.00001
    _matcher("abs_url", r"arxiv\.org/abs/" + _NEW, re.IGNORECASE),
    # arxiv.org/pdf/2301.00001
    _matcher("pdf_url", r"arxiv\.org/pdf/" + _NEW, re.IGNORECASE),
    # arXiv:hep-th/9901001
    _matcher("arxiv_prefix_legacy", r"arXiv[:\s]+" + _LEGACY, re.IGNORECASE),
    # arxiv.org/abs/hep-th/9901001
    _matcher("abs_url_legacy", r"arxiv\.org/abs/" + _LEGACY, re.IGNORECASE),
    # ar{X}iv:{\tt 1308.0850} and similar macro-mangled renderings
    _matcher("mangled_arxiv", r"ar.{0,5}iv.{0,20}?" + _NEW_BARE),
    # BibTeX: eprint = {2301.00001}
    _matcher("eprint_field", r"eprint\s*=\s*[{\"']?" + _NEW, re.IGNORECASE),
    # hep-th/9901001, cond-mat/0001234
    _matcher("legacy_hyphenated", r"\b([a-z]+-[a-z]+/\d{7})\b"),
    # cs/0001001, math/0001001
    _matcher(
        "legacy_single",
        r"\b((?:cs|math|astro-ph|gr-qc|nlin|nucl-ex|nucl-th|physics|q-bio|q-fin|stat)/\d{7})\b",
    ),
    # cs.LG/0001001, math.CO/0001001
    _matcher("legacy_subject_class", r"\b([a-z]+(?:-[a-z]+)?\.[A-Z]{2}/\d{7})\b"),
)


def normalize_reference(raw: str) -> str:
    """Canonical dedup key of a matched ID (version suffix removed)."""
    return strip_version(raw)


def find_ids(text: str, matchers: Iterable[Matcher] = MATCHERS) -> list[str]:
    """Run the battery over *text* line by line; raw matches, in order."""
    matchers = tuple(matchers)
    found = []
    for line in text.splitlines():
        for matcher in matchers:
            found.extend(matcher.find(line))
    return found


def _walk(source_dir: Path) -> Iterable[Path]:
    """Yield files under *source_dir* in a deterministic (sorted) order."""
    for root, dirs, files in os.walk(source_dir):
        dirs.sort()
        for name in sorted(files):
            yield Path(root) / name


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug("Skipping unreadable file %s: %s", path, e)
        return None


def extract_references(
    source_dir: Union[str, Path],
    paper_id: Optional[str] = None,
) -> list[str]:
    """Extract normalised arXiv IDs cited by the source tree at *source_dir*.

    Falls back to the text layer of embedded PDFs when no bibliography-type
    file yields a match.

    Args:
        source_dir: Extracted source directory
        paper_id: The citing paper's own ID; matches equal to it are dropped

    Returns:
        Deduplicated, version-stripped IDs in first-seen order
    """
    if not source_dir:
        return []
    source_dir = Path(source_dir)
    if not source_dir.is_dir():
        return []

    own_id = normalize_reference(paper_id) if paper_id else None
    seen: set[str] = set()
    refs: list[str] = []

    def collect(text: str) -> None:
        for raw in find_ids(text):
            ref = normalize_reference(raw)
            if ref == own_id or ref in seen:
                continue
            seen.add(ref)
            refs.append(ref)

    pdf_files = []
    for path in _walk(source_dir):
        ext = path.suffix.lower()
        if ext == ".pdf":
            pdf_files.append(path)
            continue
        if ext not in TEXT_EXTENSIONS:
            continue
        text = _read_text(path)
        if text is not None:
            collect(text)

    if not refs and pdf_files:
        for pdf_path in pdf_files:
            try:
                text = extract_pdf_text(pdf_path)
            except Exception as e:
                logger.debug("Skipping unreadable PDF %s: %s", pdf_path, e)
                continue
            collect(text)

    return refs
