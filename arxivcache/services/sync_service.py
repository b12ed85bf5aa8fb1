"""Resumable OAI-PMH metadata harvester.

Records are buffered and written in batches. The resumption token is stored
in the same transaction as the batch that covers every record up to it, so
after a crash the persisted cursor never points past uncommitted work. A
restart resumes from the stored token; records re-received after a restart
are idempotent upserts.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from arxivcache.config import Settings
from arxivcache.database.repository import (
    LAST_SYNC_KEY,
    RESUMPTION_TOKEN_KEY,
    PaperRepository,
)
from arxivcache.errors import ArxivCacheError, OperationCancelled, check_cancelled
from arxivcache.models.paper import Paper
from arxivcache.services.background import interruptible_sleep
from arxivcache.services.oai_service import OAIClient
from arxivcache.utils.text import parse_date

logger = logging.getLogger(__name__)


@dataclass
class SyncProgress:
    """Snapshot handed to the progress callback after every page."""

    fetched: int = 0
    committed: int = 0
    pages: int = 0
    complete_list_size: int = 0
    resumed: bool = False


class SyncService:
    """Service for harvesting arXiv metadata into the store."""

    def __init__(
        self,
        repo: PaperRepository,
        client: Optional[OAIClient] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize sync service.

        Args:
            repo: Paper repository
            client: OAI-PMH client (created from settings when omitted)
            settings: Settings instance (defaults to the singleton)
        """
        self.repo = repo
        self.settings = settings or Settings.load()
        self.client = client or OAIClient(
            base_url=self.settings.oai_base_url,
            user_agent=self.settings.user_agent,
            timeout=self.settings.http_timeout,
        )

    def last_sync(self) -> Optional[date]:
        return parse_date(self.repo.get_sync_value(LAST_SYNC_KEY))

    def pending_token(self) -> Optional[str]:
        """Cursor of an interrupted harvest, if any."""
        return self.repo.get_sync_value(RESUMPTION_TOKEN_KEY)

    def reset(self) -> None:
        """Forget an interrupted harvest so the next run starts over."""
        self.repo.delete_sync_value(RESUMPTION_TOKEN_KEY)

    def sync(
        self,
        set_spec: Optional[str] = None,
        from_date: Optional[date] = None,
        until_date: Optional[date] = None,
        batch_size: Optional[int] = None,
        progress: Optional[Callable[[SyncProgress], None]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """Harvest metadata, resuming an interrupted run when a cursor exists.

        Without a stored cursor and without *from_date*, harvesting starts
        from the last completed sync (everything if there was none).

        Args:
            set_spec: OAI set to restrict the harvest to (e.g. ``cs``)
            from_date: Only records updated on or after this date
            until_date: Only records updated on or before this date
            batch_size: Records per commit (defaults to ``settings.batch_size``)
            progress: Called after every page
            cancel: Cancellation signal, checked between pages

        Returns:
            Number of records written

        Raises:
            RemoteError: If a page request fails; committed work and its
                cursor are preserved
            OperationCancelled: If *cancel* was set; same guarantees
        """
        batch_size = batch_size or self.settings.batch_size
        state = SyncProgress()

        token = self.pending_token()
        if token:
            state.resumed = True
            logger.info("Resuming interrupted sync")
        elif from_date is None:
            from_date = self.last_sync()
            if from_date:
                logger.info("Incremental sync from %s", from_date.isoformat())
            else:
                logger.info("Full sync (no previous sync recorded)")

        buffer: list[Paper] = []
        # Token that follows the last record in ``buffer``.
        pending: Optional[str] = None

        def flush() -> None:
            nonlocal buffer, pending
            if not buffer and not pending:
                return
            self.repo.commit_harvest_batch(buffer, pending)
            state.committed += len(buffer)
            logger.info("Committed %d records (total %d)", len(buffer), state.committed)
            buffer, pending = [], None

        first = True
        while True:
            try:
                check_cancelled(cancel)
                if not first:
                    interruptible_sleep(self.settings.request_delay, cancel)
            except OperationCancelled:
                flush()
                raise
            first = False

            try:
                page = self.client.list_records(
                    set_spec=set_spec,
                    from_date=from_date if not token else None,
                    until_date=until_date if not token else None,
                    resumption_token=token,
                )
            except ArxivCacheError:
                flush()
                raise

            state.pages += 1
            state.fetched += len(page.papers)
            state.complete_list_size = page.complete_list_size or state.complete_list_size
            buffer.extend(page.papers)
            token = page.resumption_token

            if not token:
                self.repo.commit_harvest_batch(buffer, None, completed_on=date.today())
                state.committed += len(buffer)
                if progress:
                    progress(state)
                logger.info(
                    "Sync complete: %d records in %d pages", state.committed, state.pages
                )
                return state.committed

            pending = token
            if len(buffer) >= batch_size:
                flush()
            if progress:
                progress(state)
