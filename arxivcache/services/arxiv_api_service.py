"""arXiv query API service for point lookups by ID."""

import logging
from typing import Any, Optional

import feedparser
import requests

from arxivcache.errors import PaperNotFoundError, RateLimitedError, RemoteError
from arxivcache.models.paper import Paper
from arxivcache.utils.identifiers import strip_version
from arxivcache.utils.text import clean_abstract, clean_title, parse_date

logger = logging.getLogger(__name__)

API_BASE_URL = "https://export.arxiv.org/api/query"

# The API accepts roughly 100 IDs per id_list request.
MAX_BATCH = 100


class ArxivAPIService:
    """Service for looking up paper metadata on the arXiv Atom API."""

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        user_agent: Optional[str] = None,
        timeout: float = 60.0,
    ):
        """Initialize API service.

        Args:
            base_url: Atom query endpoint
            user_agent: User-Agent header value
            timeout: Request timeout in seconds
        """
        self.base_url = base_url
        self.timeout = timeout
        self._headers = {"User-Agent": user_agent} if user_agent else {}

    def lookup(self, paper_id: str) -> Paper:
        """Look up a single paper.

        Raises:
            PaperNotFoundError: If arXiv returns no entry for *paper_id*
            RemoteError: On network or HTTP errors
        """
        papers = self.lookup_batch([paper_id])
        if not papers:
            raise PaperNotFoundError(paper_id)
        return papers[0]

    def lookup_batch(self, ids: list[str]) -> list[Paper]:
        """Look up up to :data:`MAX_BATCH` papers in one request.

        Unknown IDs are simply absent from the result.
        """
        if not ids:
            return []
        if len(ids) > MAX_BATCH:
            raise ValueError(f"at most {MAX_BATCH} IDs per request, got {len(ids)}")

        params = {"id_list": ",".join(ids), "max_results": len(ids)}
        try:
            response = requests.get(
                self.base_url, params=params, headers=self._headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise RemoteError(f"fetch: {e}", url=self.base_url) from e

        if response.status_code in (429, 503):
            raise RateLimitedError(
                f"rate limited ({response.status_code})",
                url=response.url,
                status=response.status_code,
            )
        if response.status_code != 200:
            raise RemoteError(
                f"http {response.status_code}", url=response.url, status=response.status_code
            )
        return parse_atom_feed(response.text)


def parse_atom_feed(text: str) -> list[Paper]:
    """Convert an Atom response into papers, skipping error/empty entries."""
    parsed = feedparser.parse(text)
    papers = []
    for entry in parsed.entries:
        paper = entry_to_paper(entry)
        if paper is not None:
            papers.append(paper)
    return papers


def entry_to_paper(entry: dict[str, Any]) -> Optional[Paper]:
    """Convert one Atom entry to a :class:`Paper`.

    The entry id is an abs URL (``http://arxiv.org/abs/2301.00001v1``);
    the stored ID has the version removed.
    """
    entry_id = entry.get("id", "")
    idx = entry_id.rfind("/abs/")
    if idx < 0:
        return None
    paper_id = strip_version(entry_id[idx + len("/abs/"):])
    if not paper_id:
        return None

    authors = [a.get("name", "").strip() for a in entry.get("authors", [])]
    categories = [t.get("term", "") for t in entry.get("tags", []) if t.get("term")]

    return Paper(
        id=paper_id,
        title=clean_title(entry.get("title")),
        abstract=clean_abstract(entry.get("summary")),
        authors=", ".join(a for a in authors if a),
        categories=" ".join(categories),
        comments=(entry.get("arxiv_comment") or "").strip(),
        journal_ref=(entry.get("arxiv_journal_ref") or "").strip(),
        doi=(entry.get("arxiv_doi") or "").strip(),
        created=parse_date(entry.get("published")),
        updated=parse_date(entry.get("updated")),
    )
