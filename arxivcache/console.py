"""Console UI for terminal output using Rich."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from arxivcache.models.citation import CitationGraph, CitingPaper, Reference
from arxivcache.models.paper import CacheStats, CategoryCount, Paper
from arxivcache.models.search import PDFSearchResult
from arxivcache.utils.identifiers import id_to_date


def _yes_no(flag: bool) -> str:
    return "[green]yes[/green]" if flag else "-"


class ConsoleUI:
    """Rich-based console UI for paper display and notifications."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize console."""
        self._console = console or Console()

    @property
    def console(self) -> Console:
        return self._console

    def info(self, message: str) -> None:
        """Print an info message."""
        self._console.print(message)

    def success(self, message: str) -> None:
        """Print a success message in green."""
        self._console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        """Print a warning message in yellow."""
        self._console.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        """Print an error message in red."""
        self._console.print(f"[red]Error:[/red] {message}")

    def sync_complete(self, count: int) -> None:
        self._console.print(
            f"\n[green]Done.[/green] Records written: [bold]{count}[/bold]"
        )

    def display_paper(self, paper: Paper, cited_by: int = 0) -> None:
        """Display one paper's metadata and local artifact state."""
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column(style="bold")
        table.add_column(overflow="fold")
        table.add_row("ID", paper.id)
        table.add_row("Title", paper.title or "-")
        table.add_row("Authors", paper.authors or "-")
        table.add_row("Categories", ", ".join(paper.category_list) or "-")
        table.add_row("Submitted", id_to_date(paper.id) or "-")
        table.add_row("Created", paper.created.isoformat() if paper.created else "-")
        table.add_row("URL", paper.abstract_url())
        if paper.journal_ref:
            table.add_row("Journal", paper.journal_ref)
        if paper.doi:
            table.add_row("DOI", paper.doi)
        table.add_row("PDF", paper.pdf_path or "-")
        table.add_row("Source", paper.src_path or "-")
        table.add_row("Cited by", str(cited_by))
        self._console.print(table)
        if paper.abstract:
            self._console.print(f"\n{paper.abstract}")

    def display_papers(self, papers: list[Paper], title: str = "Papers") -> None:
        """Display papers in a formatted table.

        Args:
            papers: List of papers to display
            title: Table title
        """
        if not papers:
            self._console.print("No papers found.")
            return

        table = Table(title=title)
        table.add_column("ID", no_wrap=True)
        table.add_column("Date", width=10)
        table.add_column("Category")
        table.add_column("Title", overflow="fold")
        table.add_column("PDF", justify="center")
        table.add_column("Src", justify="center")

        for paper in papers:
            table.add_row(
                paper.id,
                paper.created.isoformat() if paper.created else "-",
                paper.primary_category or "-",
                paper.title,
                _yes_no(paper.pdf_downloaded),
                _yes_no(paper.src_downloaded),
            )

        self._console.print(table)

    def display_stats(self, stats: CacheStats, last_sync: Optional[str] = None) -> None:
        table = Table(title="Cache statistics", show_header=False)
        table.add_column(style="bold")
        table.add_column(justify="right")
        table.add_row("Papers", f"{stats.total_papers:,}")
        table.add_row("PDFs downloaded", f"{stats.pdfs_downloaded:,}")
        table.add_row("Sources downloaded", f"{stats.sources_downloaded:,}")
        table.add_row("Queued downloads", f"{stats.queued_downloads:,}")
        table.add_row("Last sync", last_sync or "never")
        self._console.print(table)

    def display_categories(self, categories: list[CategoryCount], limit: int = 50) -> None:
        table = Table(title="Categories")
        table.add_column("Category")
        table.add_column("Papers", justify="right")
        for cat in categories[:limit]:
            table.add_row(cat.name, f"{cat.count:,}")
        self._console.print(table)

    def display_references(
        self, paper_id: str, refs: list[Reference], cited_by: list[CitingPaper]
    ) -> None:
        """Display a paper's references and the local papers citing it."""
        table = Table(title=f"References of {paper_id} ({len(refs)})")
        table.add_column("ID", no_wrap=True)
        table.add_column("Title", overflow="fold")
        table.add_column("Src", justify="center")
        for ref in refs:
            table.add_row(ref.id, ref.title or "[dim]not cached[/dim]", _yes_no(ref.has_source))
        self._console.print(table)

        table = Table(title=f"Cited by ({len(cited_by)})")
        table.add_column("ID", no_wrap=True)
        table.add_column("Title", overflow="fold")
        for paper in cited_by:
            table.add_row(paper.id, paper.title)
        self._console.print(table)

    def display_graph(self, graph: CitationGraph) -> None:
        table = Table(title=f"Citation graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges")
        table.add_column("ID", no_wrap=True)
        table.add_column("Year", justify="right")
        table.add_column("Cited by", justify="right")
        table.add_column("Title", overflow="fold")
        for node in graph.nodes:
            table.add_row(node.id, str(node.year or "-"), str(node.citations), node.title or "-")
        self._console.print(table)

    def display_pdf_results(self, results: list[PDFSearchResult]) -> None:
        if not results:
            self._console.print("No matches.")
            return
        for result in results:
            self._console.print(
                f"[bold]{result.paper_id}[/bold] [dim](score {result.score:.2f})[/dim]"
            )
            self._console.print(f"  {result.context}\n", markup=False)

    def print_json(self, data) -> None:
        self._console.print_json(data=data)
