"""Search over cached papers.

Two paths:

* exact search over the title/abstract FTS index (delegated to the store),
* approximate search over extracted PDF text, scored by a pluggable
  character-similarity function with a fixed acceptance threshold.
"""

import logging
import threading
from typing import Callable, Optional

from arxivcache.database.repository import PaperRepository
from arxivcache.errors import ArtifactMissingError, check_cancelled
from arxivcache.models.paper import Paper
from arxivcache.models.search import PDFSearchResult
from arxivcache.utils.pdf_text import extract_pdf_text

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.6
CONTEXT_LENGTH = 200
MIN_TOKEN_LENGTH = 3
DEFAULT_PDF_LIMIT = 50

Similarity = Callable[[str, str], float]


def char_overlap_similarity(a: str, b: str) -> float:
    """Fraction of positions where *a* and *b* hold the same character.

    Normalised by the longer string, so ``1.0`` means identical.
    """
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    matches = sum(1 for x, y in zip(a, b) if x == y)
    return matches / max(len(a), len(b))


def best_window_match(
    text: str, query: str, similarity: Similarity = char_overlap_similarity
) -> tuple[float, int]:
    """Best similarity of *query* against every query-length window of *text*.

    Returns:
        ``(score, position)``; position is -1 when *text* is shorter than *query*
    """
    n = len(query)
    if n == 0 or len(text) < n:
        return 0.0, -1
    exact = text.find(query)
    if exact >= 0:
        return 1.0, exact

    best, best_pos = 0.0, -1
    for i in range(len(text) - n + 1):
        score = similarity(text[i:i + n], query)
        if score > best:
            best, best_pos = score, i
    return best, best_pos


def best_token_match(
    text: str, query: str, similarity: Similarity = char_overlap_similarity
) -> tuple[float, int]:
    """Best similarity of *query* against individual whitespace-delimited tokens."""
    best, best_pos = 0.0, -1
    pos = 0
    for token in text.split():
        pos = text.find(token, pos)
        if len(token) >= MIN_TOKEN_LENGTH:
            score = similarity(token, query)
            if score > best:
                best, best_pos = score, pos
        pos += len(token)
    return best, best_pos


def extract_context(text: str, pos: int, match_len: int, context_len: int = CONTEXT_LENGTH) -> str:
    """Snippet of *text* centred on ``text[pos:pos + match_len]``.

    Elided ends are marked with ``...``. With ``pos == -1`` the leading
    *context_len* characters are returned instead.
    """
    if pos < 0:
        if len(text) > context_len:
            return text[:context_len] + "..."
        return text

    start = max(0, pos - context_len // 2)
    end = min(len(text), pos + match_len + context_len // 2)
    snippet = text[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return snippet


class SearchService:
    """Service for exact (indexed) and approximate (PDF text) search."""

    def __init__(
        self,
        repo: PaperRepository,
        similarity: Similarity = char_overlap_similarity,
        threshold: float = FUZZY_THRESHOLD,
    ):
        """Initialize search service.

        Args:
            repo: Paper repository
            similarity: Scoring function for approximate matches
            threshold: Minimum score (exclusive) for an approximate match
        """
        self.repo = repo
        self.similarity = similarity
        self.threshold = threshold

    def search(self, query: str, category: Optional[str] = None, limit: int = 20) -> list[Paper]:
        """Full-text search over titles and abstracts, best match first.

        Raises:
            SearchQueryError: If *query* is not valid FTS5 syntax
        """
        if not query.strip():
            return []
        return self.repo.search(query, category=category, limit=limit)

    def search_by_author(self, author: str, limit: int = 100) -> list[Paper]:
        return self.repo.search_by_author(author, limit)

    def ensure_pdf_text(self, paper_id: str, cancel: Optional[threading.Event] = None) -> str:
        """Return the extracted text of a downloaded PDF, extracting it once.

        Raises:
            PaperNotFoundError: If the paper is unknown
            ArtifactMissingError: If the PDF has not been downloaded
        """
        paper = self.repo.get(paper_id, fresh=True)
        if not paper.pdf_downloaded or not paper.pdf_path:
            raise ArtifactMissingError(paper_id, "PDF")
        if paper.pdf_text:
            return paper.pdf_text

        check_cancelled(cancel)
        text = extract_pdf_text(paper.pdf_path)
        self.repo.set_pdf_text(paper_id, text)
        logger.debug("Stored %d chars of PDF text for %s", len(text), paper_id)
        return text

    def search_pdfs(
        self,
        query: str,
        limit: int = DEFAULT_PDF_LIMIT,
        fuzzy: bool = False,
    ) -> list[PDFSearchResult]:
        """Search the extracted text of downloaded PDFs.

        Exact mode is a case-insensitive substring match with score 1.0.
        Fuzzy mode keeps the better of the sliding-window and per-token
        scores and accepts documents above the threshold.

        Returns:
            Results ordered by descending score, at most *limit*
        """
        if limit <= 0:
            limit = DEFAULT_PDF_LIMIT
        needle = query.lower().strip()
        if not needle:
            return []

        results = []
        for paper_id, text in self.repo.papers_with_pdf_text():
            lowered = text.lower()
            # Offsets index into ``lowered``; some characters lengthen when lowered.
            snippet_source = text if len(lowered) == len(text) else lowered
            if fuzzy:
                score, pos = self._fuzzy_score(lowered, needle)
                if score <= self.threshold:
                    continue
            else:
                pos = lowered.find(needle)
                if pos < 0:
                    continue
                score = 1.0
            results.append(
                PDFSearchResult(
                    paper_id=paper_id,
                    context=extract_context(snippet_source, pos, len(needle)),
                    score=score,
                )
            )

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    def _fuzzy_score(self, text: str, query: str) -> tuple[float, int]:
        window = best_window_match(text, query, self.similarity)
        if window[0] >= 1.0:
            return window
        token = best_token_match(text, query, self.similarity)
        return max(window, token, key=lambda r: r[0])
