"""Exception taxonomy for the arXiv cache.

Malformed archives and rejected archive entries are recovered locally and
never raised. Citation bookkeeping failures after a download are logged only.
"""

from typing import Optional


class ArxivCacheError(Exception):
    """Base class for all cache errors."""


class PaperNotFoundError(ArxivCacheError):
    """Raised when a paper is unknown locally (and remotely, for fetches)."""

    def __init__(self, paper_id: str):
        super().__init__(f"paper not found: {paper_id}")
        self.paper_id = paper_id


class InvalidPaperIDError(ArxivCacheError):
    """Raised when input cannot be interpreted as an arXiv identifier."""

    def __init__(self, value: str):
        super().__init__(f"not an arXiv identifier: {value!r}")
        self.value = value


class RemoteError(ArxivCacheError):
    """Transient remote failure: non-2xx status, timeout, connection error."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.url = url
        self.status = status


class RateLimitedError(RemoteError):
    """Upstream throttling (HTTP 503/429)."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, url=url, status=status)
        self.retry_after = retry_after


class DownloadError(ArxivCacheError):
    """One or more requested artifacts failed for a paper.

    ``failures`` maps the artifact kind (``"pdf"`` / ``"source"``) to the
    exception that caused it. Artifacts not listed either succeeded or were
    already present.
    """

    def __init__(self, paper_id: str, failures: dict[str, Exception]):
        detail = "; ".join(f"{kind}: {err}" for kind, err in failures.items())
        super().__init__(f"download {paper_id}: {detail}")
        self.paper_id = paper_id
        self.failures = failures


class SearchQueryError(ArxivCacheError):
    """The full-text query could not be parsed by the index."""


class OperationCancelled(ArxivCacheError):
    """The caller's cancellation signal was set."""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class ArtifactMissingError(ArxivCacheError):
    """An operation needs a local artifact that has not been downloaded."""

    def __init__(self, paper_id: str, kind: str):
        super().__init__(f"{kind} not downloaded for paper {paper_id}")
        self.paper_id = paper_id
        self.kind = kind


def check_cancelled(cancel) -> None:
    """Raise :class:`OperationCancelled` if *cancel* (a ``threading.Event``) is set."""
    if cancel is not None and cancel.is_set():
        raise OperationCancelled()
