"""Paper data model."""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

ARXIV_BASE_URL = "https://arxiv.org"


@dataclass
class Paper:
    """An arXiv paper's metadata plus the state of its local artifacts.

    ``pdf_path``/``src_path`` are only ever set together with the matching
    downloaded flag, through a single store update.
    """

    id: str
    title: str = ""
    abstract: str = ""
    authors: str = ""
    categories: str = ""
    comments: str = ""
    journal_ref: str = ""
    doi: str = ""
    license: str = ""
    created: Optional[date] = None
    updated: Optional[date] = None

    # Local artifact state (managed by the store)
    pdf_path: Optional[str] = None
    src_path: Optional[str] = None
    pdf_text: Optional[str] = None
    pdf_downloaded: bool = False
    src_downloaded: bool = False
    metadata_updated: Optional[datetime] = None

    @property
    def primary_category(self) -> str:
        """Return the first listed category, or an empty string."""
        cats = self.category_list
        return cats[0] if cats else ""

    @property
    def category_list(self) -> list[str]:
        return self.categories.split()

    @property
    def has_metadata(self) -> bool:
        return bool(self.title)

    def pdf_url(self, base_url: str = ARXIV_BASE_URL) -> str:
        return f"{base_url}/pdf/{self.id}.pdf"

    def source_url(self, base_url: str = ARXIV_BASE_URL) -> str:
        return f"{base_url}/e-print/{self.id}"

    def abstract_url(self, base_url: str = ARXIV_BASE_URL) -> str:
        return f"{base_url}/abs/{self.id}"


@dataclass
class CacheStats:
    """Aggregate counts derived from the store."""

    total_papers: int = 0
    pdfs_downloaded: int = 0
    sources_downloaded: int = 0
    queued_downloads: int = 0


@dataclass
class CategoryCount:
    name: str
    count: int


@dataclass
class DownloadQueueItem:
    """A pending artifact download (``kind`` is ``pdf``, ``source`` or ``both``)."""

    paper_id: str
    kind: str = "source"
    priority: int = 0
    added: Optional[datetime] = None
    attempts: int = 0
    last_error: Optional[str] = None
