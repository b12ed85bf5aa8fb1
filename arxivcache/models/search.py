"""Search result models."""

from dataclasses import dataclass


@dataclass
class PDFSearchResult:
    """A paper whose extracted PDF text matched a query."""

    paper_id: str
    context: str
    score: float
