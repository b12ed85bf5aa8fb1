"""Download and extraction pipeline for paper artifacts.

Layout under the cache root::

    pdf/<prefix>/<stem>.pdf
    src/<prefix>/<stem>/...

``<prefix>`` is the ``YYMM`` of a new-style ID or the archive of a legacy one.

Every artifact is first written under a ``.part-`` name in its shard
directory and revealed with a single rename. The store flag is set only after
the rename, so a set flag always points at a complete artifact and an
interrupted run leaves nothing at the final path.
"""

import gzip
import logging
import os
import shutil
import tarfile
import tempfile
import threading
import zlib
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

import httpx

from arxivcache.config import Settings
from arxivcache.database.repository import PaperRepository
from arxivcache.errors import (
    DownloadError,
    PaperNotFoundError,
    RateLimitedError,
    RemoteError,
    check_cancelled,
)
from arxivcache.models.paper import Paper
from arxivcache.services.background import BackgroundTasks, interruptible_sleep
from arxivcache.utils.identifiers import artifact_stem, paper_prefix

if TYPE_CHECKING:
    from arxivcache.services.citation_service import CitationService
    from arxivcache.services.search_service import SearchService

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
RAW_SOURCE_NAME = "main.tex"
PART_PREFIX = ".part-"

_GZIP_MAGIC = b"\x1f\x8b"

# Errors meaning "this payload is not a readable gzip+tar archive".
_ARCHIVE_ERRORS = (tarfile.TarError, EOFError, zlib.error, gzip.BadGzipFile)


class DownloadService:
    """Service for fetching PDFs and source archives into the cache."""

    def __init__(
        self,
        repo: PaperRepository,
        settings: Optional[Settings] = None,
        *,
        client: Optional[httpx.Client] = None,
        citations: Optional["CitationService"] = None,
        search: Optional["SearchService"] = None,
        background: Optional[BackgroundTasks] = None,
    ):
        """Initialize download service.

        Args:
            repo: Paper repository
            settings: Settings instance (defaults to the singleton)
            client: HTTP client; one is created from settings when omitted
            citations: Citation service updated after each source download
            search: Search service used for lazy PDF text extraction
            background: Pool for detached follow-up work
        """
        self.repo = repo
        self.settings = settings or Settings.load()
        self.citations = citations
        self.search = search
        self.background = background
        self._client = client or httpx.Client(
            timeout=self.settings.http_timeout,
            follow_redirects=True,
            headers={"User-Agent": self.settings.user_agent},
        )

    def close(self) -> None:
        self._client.close()

    # ── Paths ─────────────────────────────────────────────────────────

    def pdf_path_for(self, paper_id: str) -> Path:
        return (
            self.settings.pdf_dir / paper_prefix(paper_id) / f"{artifact_stem(paper_id)}.pdf"
        )

    def source_dir_for(self, paper_id: str) -> Path:
        return self.settings.src_dir / paper_prefix(paper_id) / artifact_stem(paper_id)

    # ── Pipeline ──────────────────────────────────────────────────────

    def ensure_artifacts(
        self,
        paper_id: str,
        want_pdf: bool = True,
        want_source: bool = True,
        cancel: Optional[threading.Event] = None,
    ) -> Paper:
        """Make sure the requested artifacts of a known paper are on disk.

        Artifacts the store already records are not downloaded again. Both
        requested artifacts are attempted even if the first one fails.

        Args:
            paper_id: Canonical arXiv ID (must already have a store record)
            want_pdf: Fetch the PDF
            want_source: Fetch and extract the source archive
            cancel: Cancellation signal, checked between chunks and entries

        Returns:
            The refreshed paper record

        Raises:
            PaperNotFoundError: If the store has no record for *paper_id*
            DownloadError: If any requested artifact failed
            OperationCancelled: If *cancel* was set
        """
        paper = self.repo.get(paper_id, fresh=True)
        failures: dict[str, Exception] = {}

        if want_pdf:
            try:
                self._ensure_pdf(paper, cancel)
            except (RemoteError, OSError) as e:
                logger.warning("PDF download failed for %s: %s", paper_id, e)
                failures["pdf"] = e

        if want_source:
            try:
                self._ensure_source(paper, cancel)
            except (RemoteError, OSError) as e:
                logger.warning("Source download failed for %s: %s", paper_id, e)
                failures["source"] = e

        if failures:
            raise DownloadError(paper_id, failures)
        return self.repo.get(paper_id, fresh=True)

    def _ensure_pdf(self, paper: Paper, cancel: Optional[threading.Event]) -> Path:
        if paper.pdf_downloaded and paper.pdf_path and Path(paper.pdf_path).is_file():
            logger.debug("PDF already cached for %s", paper.id)
            return Path(paper.pdf_path)

        dest = self.pdf_path_for(paper.id)
        if not dest.is_file():
            logger.info("Downloading PDF %s", paper.id)
            tmp = self._download_to_temp(
                paper.pdf_url(self.settings.arxiv_base_url), dest.parent, cancel
            )
            try:
                os.replace(tmp, dest)
            finally:
                _unlink_quietly(tmp)
        self.repo.mark_pdf_downloaded(paper.id, dest)

        if self.background is not None and self.search is not None:
            self.background.submit(self.search.ensure_pdf_text, paper.id)
        return dest

    def _ensure_source(self, paper: Paper, cancel: Optional[threading.Event]) -> Path:
        if paper.src_downloaded and paper.src_path and Path(paper.src_path).is_dir():
            logger.debug("Source already cached for %s", paper.id)
            return Path(paper.src_path)

        dest = self.source_dir_for(paper.id)
        if not dest.is_dir():
            logger.info("Downloading source %s", paper.id)
            archive = self._download_to_temp(
                paper.source_url(self.settings.arxiv_base_url), dest.parent, cancel
            )
            staging: Optional[Path] = None
            try:
                staging = Path(tempfile.mkdtemp(prefix=PART_PREFIX, dir=dest.parent))
                if not extract_source(
                    archive, staging, self.settings.max_entry_size, cancel
                ):
                    logger.info("Source for %s is not a tar.gz; storing as %s",
                                paper.id, RAW_SOURCE_NAME)
                    _clear_dir(staging)
                    write_raw_source(archive, staging / RAW_SOURCE_NAME,
                                     self.settings.max_entry_size)
                _reveal_dir(staging, dest)
            finally:
                _unlink_quietly(archive)
                if staging is not None and staging.exists():
                    shutil.rmtree(staging, ignore_errors=True)

        self.repo.mark_source_downloaded(paper.id, dest)
        self._index_citations(paper.id, dest)
        return dest

    def _index_citations(self, paper_id: str, src_dir: Path) -> None:
        """Best effort: a failure here never fails the download."""
        if self.citations is None:
            return
        try:
            self.citations.update_from_source(paper_id, src_dir)
        except Exception as e:
            logger.warning("Citation update failed for %s: %s", paper_id, e)
            return
        if self.background is not None:
            self.background.submit(self.citations.prefetch_reference_titles, paper_id)

    def _download_to_temp(
        self, url: str, directory: Path, cancel: Optional[threading.Event]
    ) -> Path:
        """Stream *url* into a new ``.part-`` file in *directory*.

        The caller owns the returned file. On any failure nothing is left
        behind.

        Raises:
            RateLimitedError: On HTTP 429/503
            RemoteError: On other non-200 statuses and transport errors
            OperationCancelled: If *cancel* is set mid-stream
        """
        check_cancelled(cancel)
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=PART_PREFIX, dir=directory)
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                with self._client.stream("GET", url) as response:
                    _raise_for_status(response, url)
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        check_cancelled(cancel)
                        out.write(chunk)
        except httpx.HTTPError as e:
            _unlink_quietly(tmp)
            raise RemoteError(f"fetch {url}: {e}", url=url) from e
        except BaseException:
            _unlink_quietly(tmp)
            raise
        return tmp

    # ── Bulk helpers ──────────────────────────────────────────────────

    def download_category(
        self,
        category: str,
        limit: int = 0,
        want_pdf: bool = False,
        want_source: bool = True,
        progress: Optional[Callable[[str, int, int], None]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """Download missing artifacts for papers in *category*, newest first.

        Requests are spaced by ``request_delay``. Per-paper failures are
        logged and skipped.

        Returns:
            Number of papers whose artifacts are now complete
        """
        ids = self.repo.ids_missing_artifacts(category, want_pdf, want_source, limit)
        logger.info("Downloading %d papers in %s", len(ids), category)
        done = 0
        for i, paper_id in enumerate(ids, 1):
            if i > 1:
                interruptible_sleep(self.settings.request_delay, cancel)
            if progress:
                progress(paper_id, i, len(ids))
            try:
                self.ensure_artifacts(paper_id, want_pdf, want_source, cancel)
                done += 1
            except (DownloadError, PaperNotFoundError) as e:
                logger.warning("Skipping %s: %s", paper_id, e)
        return done

    def enqueue(self, paper_id: str, kind: str = "source", priority: int = 0) -> None:
        if kind not in ("pdf", "source", "both"):
            raise ValueError(f"unknown artifact kind: {kind}")
        self.repo.enqueue_download(paper_id, kind, priority)

    def process_queue(
        self,
        limit: int = 100,
        progress: Optional[Callable[[str, int, int], None]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """Work through queued downloads, highest priority first.

        Successful items leave the queue; failed ones stay with their attempt
        count and last error recorded. A rate-limit response stops the run.

        Returns:
            Number of items completed
        """
        items = self.repo.queued_downloads(limit)
        done = 0
        for i, item in enumerate(items, 1):
            if i > 1:
                interruptible_sleep(self.settings.request_delay, cancel)
            if progress:
                progress(item.paper_id, i, len(items))
            want_pdf = item.kind in ("pdf", "both")
            want_source = item.kind in ("source", "both")
            try:
                self.ensure_artifacts(item.paper_id, want_pdf, want_source, cancel)
            except (DownloadError, PaperNotFoundError) as e:
                self.repo.record_queue_failure(item.paper_id, str(e))
                if isinstance(e, DownloadError) and any(
                    isinstance(err, RateLimitedError) for err in e.failures.values()
                ):
                    logger.warning("Rate limited; stopping queue run")
                    break
                continue
            self.repo.remove_from_queue(item.paper_id)
            done += 1
        return done


# ---------------------------------------------------------------------------
# Archive handling
# ---------------------------------------------------------------------------

def extract_source(
    archive: Path,
    dest_dir: Path,
    max_entry_size: int,
    cancel: Optional[threading.Event] = None,
) -> bool:
    """Extract a gzip-compressed tar archive into *dest_dir*.

    Entries whose cleaned path escapes *dest_dir*, entries larger than
    *max_entry_size* and anything that is not a regular file or directory are
    skipped with a warning.

    Returns:
        False if *archive* is not a readable gzip+tar stream
    """
    try:
        tar = tarfile.open(archive, mode="r:gz")
    except (*_ARCHIVE_ERRORS, OSError):
        return False

    with tar:
        try:
            for member in tar:
                check_cancelled(cancel)
                try:
                    _extract_member(tar, member, dest_dir, max_entry_size)
                except _ARCHIVE_ERRORS:
                    raise
                except OSError as e:
                    logger.warning("Skipping archive entry %r: %s", member.name, e)
        except _ARCHIVE_ERRORS as e:
            logger.warning("Corrupt archive %s: %s", archive, e)
            return False
    return True


def _extract_member(
    tar: tarfile.TarFile, member: tarfile.TarInfo, dest_dir: Path, max_entry_size: int
) -> None:
    name = os.path.normpath(member.name)
    if name == ".":
        return
    if name == ".." or name.startswith(".." + os.sep) or os.path.isabs(name):
        logger.warning("Skipping unsafe archive entry %r", member.name)
        return

    target = dest_dir / name
    if member.isdir():
        target.mkdir(parents=True, exist_ok=True)
        return
    if not member.isfile():
        logger.debug("Skipping non-regular archive entry %r", member.name)
        return
    if member.size > max_entry_size:
        logger.warning(
            "Skipping oversized archive entry %r (%d bytes)", member.name, member.size
        )
        return

    source = tar.extractfile(member)
    if source is None:
        return
    target.parent.mkdir(parents=True, exist_ok=True)
    with source, open(target, "wb") as out:
        shutil.copyfileobj(source, out, CHUNK_SIZE)


def write_raw_source(payload: Path, target: Path, max_size: int) -> None:
    """Store a non-archive payload as a single source file.

    Single-file submissions arrive as gzip-compressed TeX; those are stored
    decompressed (up to *max_size* bytes). Anything else is copied verbatim.
    """
    with open(payload, "rb") as f:
        magic = f.read(2)

    if magic == _GZIP_MAGIC:
        try:
            with gzip.open(payload, "rb") as src, open(target, "wb") as out:
                _copy_limited(src, out, max_size)
            return
        except (OSError, EOFError, zlib.error) as e:
            logger.debug("Payload %s is not valid gzip (%s); copying as is", payload, e)

    shutil.copyfile(payload, target)


def _copy_limited(src, out, limit: int) -> None:
    remaining = limit
    while remaining > 0:
        chunk = src.read(min(CHUNK_SIZE, remaining))
        if not chunk:
            return
        out.write(chunk)
        remaining -= len(chunk)
    if src.read(1):
        logger.warning("Source payload truncated at %d bytes", limit)


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------

def _raise_for_status(response: httpx.Response, url: str) -> None:
    status = response.status_code
    if status in (429, 503):
        retry_after = response.headers.get("Retry-After")
        raise RateLimitedError(
            f"rate limited ({status})",
            url=url,
            status=status,
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if status != 200:
        raise RemoteError(f"http {status}", url=url, status=status)


def _reveal_dir(staging: Path, dest: Path) -> None:
    """Rename *staging* to *dest*; a concurrent winner's copy is kept."""
    try:
        os.rename(staging, dest)
    except OSError:
        if dest.is_dir():
            logger.debug("%s was revealed concurrently; discarding ours", dest)
            return
        raise


def _clear_dir(path: Path) -> None:
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
