"""Citation graph data models."""

from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class Reference:
    """A paper cited by another, left-joined against the store.

    ``has_title`` is False when the cited paper has no metadata locally;
    ``title`` is then None.
    """

    id: str
    title: Optional[str] = None
    has_title: bool = False
    has_source: bool = False


@dataclass
class CitingPaper:
    id: str
    title: str


@dataclass
class GraphNode:
    id: str
    title: str
    authors: str = ""
    year: int = 0
    citations: int = 0
    cached: bool = False


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str


@dataclass
class CitationGraph:
    """Citation neighbourhood of one paper, ready for JSON serialisation."""

    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [asdict(n) for n in self.nodes],
            "edges": [asdict(e) for e in self.edges],
        }


@dataclass
class PaperListItem:
    """Row of the combined references / cited-by list."""

    id: str
    title: str
    authors: str = ""
    year: int = 0
    citations: int = 0
    cached: bool = False
    is_ref: bool = False
    is_citing: bool = False
