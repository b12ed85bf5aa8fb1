"""Store-aware metadata lookups.

``fetch`` answers from the store when the paper is known and only goes to the
arXiv API on a miss; whatever the API returns is upserted before returning.
"""

import logging
from typing import Iterable

from arxivcache.database.repository import PaperRepository
from arxivcache.errors import InvalidPaperIDError, PaperNotFoundError
from arxivcache.models.paper import Paper
from arxivcache.services.arxiv_api_service import MAX_BATCH, ArxivAPIService
from arxivcache.utils.identifiers import extract_arxiv_id

logger = logging.getLogger(__name__)


class MetadataService:
    """Service combining the local store with remote API lookups."""

    def __init__(self, repo: PaperRepository, api: ArxivAPIService):
        self.repo = repo
        self.api = api

    def fetch(self, paper_id: str) -> Paper:
        """Return metadata for *paper_id*, fetching and storing it on a miss.

        *paper_id* may also be an abs/pdf URL or carry a version suffix.

        Raises:
            InvalidPaperIDError: If *paper_id* is not an arXiv identifier
            PaperNotFoundError: If arXiv has no such paper
            RemoteError: On network or HTTP errors
        """
        canonical = _canonical(paper_id)
        paper = self.repo.find_by_id(canonical)
        if paper is not None and paper.has_metadata:
            return paper

        logger.info("Fetching metadata for %s", canonical)
        remote = self.api.lookup(canonical)
        self.repo.upsert(remote)
        return self.repo.get(remote.id, fresh=True)

    def fetch_batch(self, paper_ids: Iterable[str]) -> list[Paper]:
        """Fetch metadata for up to 100 IDs in one API request and store them.

        IDs arXiv does not know are simply missing from the result.
        """
        ids = list(dict.fromkeys(_canonical(pid) for pid in paper_ids))
        if not ids:
            return []
        if len(ids) > MAX_BATCH:
            raise ValueError(f"at most {MAX_BATCH} IDs per batch, got {len(ids)}")

        papers = self.api.lookup_batch(ids)
        self.repo.upsert_many(papers)
        logger.debug("Fetched %d/%d papers", len(papers), len(ids))
        return papers

    def ensure_known(self, paper_id: str) -> Paper:
        """Return the stored record, fetching metadata first if absent."""
        try:
            return self.repo.get(_canonical(paper_id))
        except PaperNotFoundError:
            return self.fetch(paper_id)


def _canonical(value: str) -> str:
    paper_id = extract_arxiv_id(value)
    if paper_id is None:
        raise InvalidPaperIDError(value)
    return paper_id
