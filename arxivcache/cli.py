"""Command-line interface handlers."""

import argparse
import logging
import signal
import sys
import threading
from datetime import date
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from arxivcache import __version__
from arxivcache.cache import ArxivCache
from arxivcache.config import Settings, save_settings
from arxivcache.console import ConsoleUI
from arxivcache.database.repository import LAST_SYNC_KEY
from arxivcache.errors import ArxivCacheError, OperationCancelled
from arxivcache.services.sync_service import SyncProgress

logger = logging.getLogger(__name__)


class ArxivCacheCLI:
    """CLI application for the arXiv cache."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        cancel: Optional[threading.Event] = None,
    ):
        """Initialize CLI with settings.

        Args:
            settings: Application settings (loads from disk if not provided)
            cancel: Set on Ctrl-C to stop long-running commands cleanly
        """
        self.settings = settings or Settings.load()
        self.cancel = cancel or threading.Event()
        self.ui = ConsoleUI()
        self.cache = ArxivCache.open(self.settings)

    def close(self) -> None:
        self.cache.close()

    def _progress(self) -> Progress:
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=self.ui.console,
        )

    # ── Metadata ──────────────────────────────────────────────────────

    def cmd_fetch(self, ids: list[str], pdf: bool = False, source: bool = True) -> int:
        """Fetch metadata and artifacts for one or more papers."""
        failures = 0
        for i, paper_id in enumerate(ids):
            if i > 0:
                self.cancel.wait(self.settings.request_delay)
            if self.cancel.is_set():
                raise OperationCancelled()
            self.ui.info(f"Fetching {paper_id}...")
            try:
                paper = self.cache.fetch_and_download(paper_id, pdf, source, self.cancel)
            except OperationCancelled:
                raise
            except ArxivCacheError as e:
                self.ui.error(str(e))
                failures += 1
                continue
            self.ui.display_paper(paper, self.cache.citations.cited_by_count(paper.id))
        return 1 if failures else 0

    def cmd_get(self, paper_id: str, fetch: bool = False, as_json: bool = False) -> int:
        """Show a cached paper, optionally fetching it when missing."""
        paper = self.cache.fetch(paper_id) if fetch else self.cache.get(paper_id)
        if as_json:
            self.ui.print_json(
                {
                    "id": paper.id,
                    "title": paper.title,
                    "authors": paper.authors,
                    "categories": paper.categories,
                    "abstract": paper.abstract,
                    "created": paper.created.isoformat() if paper.created else None,
                    "pdf_path": paper.pdf_path,
                    "src_path": paper.src_path,
                }
            )
        else:
            self.ui.display_paper(paper, self.cache.citations.cited_by_count(paper.id))
        return 0

    def cmd_sync(
        self,
        set_spec: Optional[str] = None,
        from_date: Optional[date] = None,
        until_date: Optional[date] = None,
        batch_size: Optional[int] = None,
        restart: bool = False,
    ) -> int:
        """Harvest metadata over OAI-PMH (resumes an interrupted run)."""
        if restart:
            self.cache.sync.reset()

        with Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            console=self.ui.console,
        ) as progress:
            task = progress.add_task("Harvesting...", total=None)

            def on_page(state: SyncProgress) -> None:
                total = f"/{state.complete_list_size:,}" if state.complete_list_size else ""
                progress.update(
                    task,
                    description=(
                        f"Page {state.pages}: {state.fetched:,}{total} fetched, "
                        f"{state.committed:,} committed"
                    ),
                )

            count = self.cache.sync.sync(
                set_spec=set_spec,
                from_date=from_date,
                until_date=until_date,
                batch_size=batch_size,
                progress=on_page,
                cancel=self.cancel,
            )
        self.ui.sync_complete(count)
        return 0

    # ── Queries ───────────────────────────────────────────────────────

    def cmd_stats(self) -> int:
        last_sync = self.cache.repo.get_sync_value(LAST_SYNC_KEY)
        self.ui.display_stats(self.cache.stats(), last_sync)
        if self.cache.sync.pending_token():
            self.ui.warning("an interrupted sync will resume on the next `sync`")
        return 0

    def cmd_search(
        self,
        query: str,
        category: Optional[str] = None,
        limit: int = 20,
        author: bool = False,
    ) -> int:
        if author:
            papers = self.cache.search.search_by_author(query, limit)
        else:
            papers = self.cache.search.search(query, category, limit)
        self.ui.display_papers(papers, title=f"Results for {query!r}")
        return 0

    def cmd_pdfsearch(self, query: str, limit: int = 50, fuzzy: bool = False) -> int:
        results = self.cache.search.search_pdfs(query, limit=limit, fuzzy=fuzzy)
        self.ui.display_pdf_results(results)
        return 0

    def cmd_list(
        self,
        category: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        source_only: bool = False,
    ) -> int:
        papers = self.cache.repo.list_papers(category, offset, limit, source_only)
        self.ui.display_papers(papers, title=category or "Recent papers")
        return 0

    def cmd_categories(self, limit: int = 50) -> int:
        self.ui.display_categories(self.cache.repo.list_categories(), limit)
        return 0

    def cmd_refs(self, paper_id: str, limit: int = 50, prefetch: bool = False) -> int:
        """Show references and citing papers of a cached paper."""
        citations = self.cache.citations
        if prefetch:
            fetched = citations.prefetch_reference_titles(paper_id, cancel=self.cancel)
            self.ui.info(f"Fetched metadata for {fetched} references")
        self.ui.display_references(
            paper_id, citations.references(paper_id), citations.cited_by(paper_id, limit)
        )
        uncached = citations.uncached_reference_count(paper_id)
        if uncached:
            self.ui.info(f"{uncached} references have no local metadata (use --prefetch)")
        return 0

    def cmd_graph(self, paper_id: str, as_json: bool = False) -> int:
        graph = self.cache.citations.build_graph(paper_id)
        if as_json:
            self.ui.print_json(graph.to_dict())
        else:
            self.ui.display_graph(graph)
        return 0

    # ── Maintenance ───────────────────────────────────────────────────

    def cmd_reindex(self) -> int:
        """Rebuild the full-text index and every citation edge."""
        self.ui.info("Rebuilding FTS index...")
        self.cache.repo.rebuild_fts_index()

        self.ui.info("Rebuilding citations...")
        with self._progress() as progress:
            task = progress.add_task("Extracting references", total=None)

            def on_paper(done: int, total: int) -> None:
                progress.update(task, completed=done, total=total)

            count = self.cache.citations.rebuild_all(progress=on_paper, cancel=self.cancel)
        self.ui.success(f"Done. Citations rebuilt for {count} papers.")
        return 0

    def cmd_download(
        self,
        category: Optional[str] = None,
        limit: int = 0,
        pdf: bool = False,
        source: bool = True,
        queue: bool = False,
    ) -> int:
        """Bulk-download artifacts for a category or from the download queue."""
        with self._progress() as progress:
            task = progress.add_task("Downloading", total=None)

            def on_paper(paper_id: str, done: int, total: int) -> None:
                progress.update(task, description=paper_id, completed=done - 1, total=total)

            if queue:
                count = self.cache.downloads.process_queue(
                    limit or 100, progress=on_paper, cancel=self.cancel
                )
            else:
                count = self.cache.downloads.download_category(
                    category, limit, pdf, source, progress=on_paper, cancel=self.cancel
                )
        self.ui.success(f"Done. {count} papers downloaded.")
        return 0

    def cmd_queue(self, ids: list[str], kind: str = "source", priority: int = 0) -> int:
        for paper_id in ids:
            paper = self.cache.metadata.ensure_known(paper_id)
            self.cache.downloads.enqueue(paper.id, kind, priority)
        self.ui.success(f"Queued {len(ids)} papers.")
        return 0

    def cmd_config(self, pairs: list[str]) -> int:
        """Show settings, or set ``key=value`` pairs and persist them."""
        if not pairs:
            for key, value in sorted(vars(self.settings).items()):
                self.ui.info(f"{key} = {value}")
            return 0

        updates = {}
        for pair in pairs:
            key, sep, raw = pair.partition("=")
            if not sep:
                raise ValueError(f"expected key=value, got {pair!r}")
            current = getattr(self.settings, key, None)
            updates[key] = type(current)(raw) if current is not None else raw
        self.settings.update(**updates)
        path = save_settings(self.settings)
        self.ui.success(f"Saved {path}")
        return 0


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from e


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="arxivcache",
        description="Local arXiv cache: OAI-PMH metadata, PDFs, TeX sources, citations",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Cache root (default: $ARXIV_CACHE or ~/.cache/arxiv)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # fetch command
    fetch_parser = subparsers.add_parser("fetch", help="Fetch papers and download artifacts")
    fetch_parser.add_argument("ids", nargs="+", help="arXiv IDs or abs/pdf URLs")
    fetch_parser.add_argument("--pdf", action="store_true", help="Download the PDF")
    fetch_parser.add_argument(
        "--no-source", action="store_false", dest="source", help="Skip the TeX source"
    )
    fetch_parser.add_argument("--all", action="store_true", help="Download PDF and source")

    # get command
    get_parser = subparsers.add_parser("get", help="Show a cached paper")
    get_parser.add_argument("id")
    get_parser.add_argument("--fetch", action="store_true", help="Fetch from arXiv if missing")
    get_parser.add_argument("--json", action="store_true", dest="as_json")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Harvest metadata via OAI-PMH")
    sync_parser.add_argument("--set", dest="set_spec", help="OAI set (e.g. cs, physics)")
    sync_parser.add_argument("--from", dest="from_date", type=_parse_date, help="YYYY-MM-DD")
    sync_parser.add_argument("--until", dest="until_date", type=_parse_date, help="YYYY-MM-DD")
    sync_parser.add_argument("--batch-size", type=int, default=None)
    sync_parser.add_argument(
        "--restart", action="store_true", help="Discard an interrupted harvest's cursor"
    )

    # stats command
    subparsers.add_parser("stats", help="Show cache statistics")

    # search command
    search_parser = subparsers.add_parser("search", help="Full-text search titles/abstracts")
    search_parser.add_argument("query")
    search_parser.add_argument("--category", help="Filter by category substring")
    search_parser.add_argument("--limit", type=int, default=20)
    search_parser.add_argument("--author", action="store_true", help="Search author names")

    # pdfsearch command
    pdf_parser = subparsers.add_parser("pdfsearch", help="Search extracted PDF text")
    pdf_parser.add_argument("query")
    pdf_parser.add_argument("--limit", type=int, default=50)
    pdf_parser.add_argument("--fuzzy", action="store_true", help="Typo-tolerant matching")

    # list command
    list_parser = subparsers.add_parser("list", help="List cached papers, newest first")
    list_parser.add_argument("--category")
    list_parser.add_argument("--limit", type=int, default=20)
    list_parser.add_argument("--offset", type=int, default=0)
    list_parser.add_argument("--source-only", action="store_true")

    # categories command
    cat_parser = subparsers.add_parser("categories", help="Paper counts per category")
    cat_parser.add_argument("--limit", type=int, default=50)

    # refs command
    refs_parser = subparsers.add_parser("refs", help="References and citing papers")
    refs_parser.add_argument("id")
    refs_parser.add_argument("--limit", type=int, default=50, help="Max citing papers")
    refs_parser.add_argument(
        "--prefetch", action="store_true", help="Fetch metadata for uncached references"
    )

    # graph command
    graph_parser = subparsers.add_parser("graph", help="Local citation graph of a paper")
    graph_parser.add_argument("id")
    graph_parser.add_argument("--json", action="store_true", dest="as_json")

    # reindex command
    subparsers.add_parser("reindex", help="Rebuild FTS index and citations")

    # download command
    dl_parser = subparsers.add_parser("download", help="Bulk-download artifacts")
    target = dl_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--category", help="Papers whose categories contain this")
    target.add_argument("--queue", action="store_true", help="Process the download queue")
    dl_parser.add_argument("--limit", type=int, default=0)
    dl_parser.add_argument("--pdf", action="store_true")
    dl_parser.add_argument("--no-source", action="store_false", dest="source")

    # queue command
    queue_parser = subparsers.add_parser("queue", help="Queue papers for download")
    queue_parser.add_argument("ids", nargs="+")
    queue_parser.add_argument("--kind", choices=["pdf", "source", "both"], default="source")
    queue_parser.add_argument("--priority", type=int, default=0)

    # config command
    config_parser = subparsers.add_parser("config", help="Show or set settings")
    config_parser.add_argument("pairs", nargs="*", metavar="key=value")

    return parser


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=verbose, show_path=verbose)],
    )
    if not verbose:
        for noisy in ("httpx", "httpcore", "urllib3", "pdfminer"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


def _install_interrupt_handler(cancel: threading.Event) -> None:
    """First Ctrl-C requests a clean stop; a second one aborts."""

    def handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupt received, stopping after the current step...")
        cancel.set()

    signal.signal(signal.SIGINT, handler)


def dispatch(cli: ArxivCacheCLI, args: argparse.Namespace) -> int:
    if args.command == "fetch":
        return cli.cmd_fetch(args.ids, args.pdf or args.all, args.source or args.all)
    if args.command == "get":
        return cli.cmd_get(args.id, args.fetch, args.as_json)
    if args.command == "sync":
        return cli.cmd_sync(
            args.set_spec, args.from_date, args.until_date, args.batch_size, args.restart
        )
    if args.command == "stats":
        return cli.cmd_stats()
    if args.command == "search":
        return cli.cmd_search(args.query, args.category, args.limit, args.author)
    if args.command == "pdfsearch":
        return cli.cmd_pdfsearch(args.query, args.limit, args.fuzzy)
    if args.command == "list":
        return cli.cmd_list(args.category, args.limit, args.offset, args.source_only)
    if args.command == "categories":
        return cli.cmd_categories(args.limit)
    if args.command == "refs":
        return cli.cmd_refs(args.id, args.limit, args.prefetch)
    if args.command == "graph":
        return cli.cmd_graph(args.id, args.as_json)
    if args.command == "reindex":
        return cli.cmd_reindex()
    if args.command == "download":
        return cli.cmd_download(args.category, args.limit, args.pdf, args.source, args.queue)
    if args.command == "queue":
        return cli.cmd_queue(args.ids, args.kind, args.priority)
    if args.command == "config":
        return cli.cmd_config(args.pairs)
    raise ValueError(f"unknown command: {args.command}")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    settings = Settings.load(args.cache_dir)
    cancel = threading.Event()
    _install_interrupt_handler(cancel)

    cli = ArxivCacheCLI(settings, cancel)
    try:
        return dispatch(cli, args)
    except OperationCancelled:
        cli.ui.warning("cancelled; committed progress is kept")
        return 130
    except (ArxivCacheError, ValueError) as e:
        cli.ui.error(str(e))
        return 1
    finally:
        cli.close()


def run_cli() -> None:
    sys.exit(main())
