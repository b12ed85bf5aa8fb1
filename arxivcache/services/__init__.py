"""Service layer."""

from arxivcache.services.arxiv_api_service import ArxivAPIService
from arxivcache.services.background import BackgroundTasks
from arxivcache.services.citation_service import CitationService
from arxivcache.services.download_service import DownloadService
from arxivcache.services.metadata_service import MetadataService
from arxivcache.services.oai_service import OAIClient, OAIPage
from arxivcache.services.reference_extractor import extract_references
from arxivcache.services.search_service import SearchService
from arxivcache.services.sync_service import SyncProgress, SyncService

__all__ = [
    "ArxivAPIService",
    "BackgroundTasks",
    "CitationService",
    "DownloadService",
    "MetadataService",
    "OAIClient",
    "OAIPage",
    "SearchService",
    "SyncProgress",
    "SyncService",
    "extract_references",
]
