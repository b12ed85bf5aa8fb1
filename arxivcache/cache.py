"""ArxivCache: one object wiring the store and every service together.

    cache = ArxivCache.open()
    paper = cache.fetch_and_download("2301.00001")
    graph = cache.citations.build_graph(paper.id)
    cache.close()
"""

import logging
import threading
from typing import Optional

import httpx

from arxivcache.config import Settings
from arxivcache.database.repository import PaperRepository
from arxivcache.models.paper import CacheStats, Paper
from arxivcache.services.arxiv_api_service import ArxivAPIService
from arxivcache.services.background import BackgroundTasks
from arxivcache.services.citation_service import CitationService
from arxivcache.services.download_service import DownloadService
from arxivcache.services.metadata_service import MetadataService
from arxivcache.services.oai_service import OAIClient
from arxivcache.services.search_service import SearchService
from arxivcache.services.sync_service import SyncService

logger = logging.getLogger(__name__)


class ArxivCache:
    """Local arXiv cache rooted at ``settings.cache_dir``."""

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.Client] = None,
        oai_client: Optional[OAIClient] = None,
        api: Optional[ArxivAPIService] = None,
        background: Optional[BackgroundTasks] = None,
    ):
        self.settings = settings
        settings.pdf_dir.mkdir(parents=True, exist_ok=True)
        settings.src_dir.mkdir(parents=True, exist_ok=True)

        self.repo = PaperRepository(settings.db_path, settings.lru_capacity)
        self.background = background or BackgroundTasks(settings.background_workers)

        self.api = api or ArxivAPIService(
            base_url=settings.api_base_url,
            user_agent=settings.user_agent,
            timeout=settings.http_timeout,
        )
        self.metadata = MetadataService(self.repo, self.api)
        self.citations = CitationService(self.repo, self.metadata, settings)
        self.search = SearchService(self.repo)
        self.downloads = DownloadService(
            self.repo,
            settings,
            client=http_client,
            citations=self.citations,
            search=self.search,
            background=self.background,
        )
        self.sync = SyncService(self.repo, oai_client, settings)

    @classmethod
    def open(cls, settings: Optional[Settings] = None, **kwargs) -> "ArxivCache":
        """Open (creating if needed) the cache described by *settings*."""
        settings = settings or Settings.load()
        logger.debug("Opening cache at %s", settings.cache_dir)
        return cls(settings, **kwargs)

    def close(self, wait: bool = True) -> None:
        """Stop background work and release the HTTP client."""
        self.background.shutdown(wait_for_tasks=wait)
        self.downloads.close()

    def __enter__(self) -> "ArxivCache":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Convenience operations ────────────────────────────────────────

    def get(self, paper_id: str) -> Paper:
        """Look up a paper in the store only (no network)."""
        return self.repo.get(paper_id)

    def fetch(self, paper_id: str) -> Paper:
        return self.metadata.fetch(paper_id)

    def fetch_and_download(
        self,
        paper_id: str,
        want_pdf: bool = True,
        want_source: bool = True,
        cancel: Optional[threading.Event] = None,
    ) -> Paper:
        """Fetch metadata if missing, then ensure the requested artifacts."""
        paper = self.metadata.ensure_known(paper_id)
        return self.downloads.ensure_artifacts(paper.id, want_pdf, want_source, cancel)

    def stats(self) -> CacheStats:
        return self.repo.stats()
