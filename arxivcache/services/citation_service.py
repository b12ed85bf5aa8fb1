"""Citation graph maintenance and queries.

Edges are ``(from_id, to_id)`` rows in the store. Each citing paper's edge set
is derived from its downloaded source and replaced wholesale whenever the
source is re-processed.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Union

from arxivcache.config import Settings
from arxivcache.database.repository import PaperRepository
from arxivcache.errors import ArxivCacheError
from arxivcache.models.citation import (
    CitationGraph,
    CitingPaper,
    GraphEdge,
    GraphNode,
    PaperListItem,
    Reference,
)
from arxivcache.models.paper import Paper
from arxivcache.services.background import interruptible_sleep
from arxivcache.services.reference_extractor import extract_references
from arxivcache.utils.identifiers import year_from_id

if TYPE_CHECKING:
    from arxivcache.services.metadata_service import MetadataService

logger = logging.getLogger(__name__)

CITED_BY_LIMIT = 50
GRAPH_CITED_BY_LIMIT = 100
PREFETCH_CHUNK = 50


class CitationService:
    """Service for building and querying the local citation graph."""

    def __init__(
        self,
        repo: PaperRepository,
        metadata: Optional["MetadataService"] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize citation service.

        Args:
            repo: Paper repository
            metadata: Remote metadata lookups, used to prefetch reference titles
            settings: Settings instance (defaults to the singleton)
        """
        self.repo = repo
        self.metadata = metadata
        self.settings = settings or Settings.load()

    # ── Edge maintenance ──────────────────────────────────────────────

    def update_citations(self, paper_id: str, refs: Iterable[str]) -> int:
        """Replace *paper_id*'s outgoing edges with *refs*.

        Returns:
            Number of edges stored
        """
        count = self.repo.replace_citations(paper_id, refs)
        logger.debug("Stored %d citation edges for %s", count, paper_id)
        return count

    def update_from_source(self, paper_id: str, src_path: Union[str, Path]) -> int:
        """Extract references from an extracted source tree and store them."""
        refs = extract_references(src_path, paper_id)
        return self.update_citations(paper_id, refs)

    def rebuild_all(
        self,
        progress: Optional[Callable[[int, int], None]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """Clear every edge and re-extract from all downloaded sources.

        A failure on one paper is logged and skipped.

        Returns:
            Number of papers processed successfully
        """
        self.repo.clear_citations()
        sources = self.repo.papers_with_source()
        done = 0
        for i, (paper_id, src_path) in enumerate(sources, 1):
            if cancel is not None and cancel.is_set():
                logger.info("Citation rebuild cancelled after %d papers", done)
                break
            try:
                self.update_from_source(paper_id, src_path)
                done += 1
            except (ArxivCacheError, OSError, sqlite3.Error) as e:
                logger.warning("Skipping citations for %s: %s", paper_id, e)
            if progress:
                progress(i, len(sources))
        logger.info("Rebuilt citations for %d/%d papers", done, len(sources))
        return done

    # ── Queries ───────────────────────────────────────────────────────

    def cited_by_count(self, paper_id: str) -> int:
        return self.repo.cited_by_count(paper_id)

    def references(self, paper_id: str) -> list[Reference]:
        return self.repo.references(paper_id)

    def cited_by(self, paper_id: str, limit: int = CITED_BY_LIMIT) -> list[CitingPaper]:
        if limit <= 0:
            limit = CITED_BY_LIMIT
        return self.repo.cited_by(paper_id, limit)

    def uncached_reference_count(self, paper_id: str) -> int:
        return self.repo.uncached_reference_count(paper_id)

    def build_graph(self, center_id: str) -> CitationGraph:
        """Build the local neighbourhood graph of *center_id*.

        Nodes are the centre, its references and up to 100 citing papers.
        Edges are ``center -> ref``, ``citing -> center`` and any
        ``ref -> ref`` edge between two of the centre's references.
        No node or edge appears twice.
        """
        nodes: list[GraphNode] = []
        node_ids: set[str] = set()
        edges: list[GraphEdge] = []
        edge_set: set[GraphEdge] = set()

        def add_node(paper_id: str, fallback_title: str = "") -> None:
            if paper_id in node_ids:
                return
            node_ids.add(paper_id)
            nodes.append(self._node(paper_id, fallback_title))

        def add_edge(source: str, target: str) -> None:
            edge = GraphEdge(source=source, target=target)
            if source == target or edge in edge_set:
                return
            edge_set.add(edge)
            edges.append(edge)

        add_node(center_id)

        refs = self.repo.references(center_id)
        ref_ids = {ref.id for ref in refs}
        for ref in refs:
            add_node(ref.id, ref.title or "")
            add_edge(center_id, ref.id)

        for citing in self.repo.cited_by(center_id, GRAPH_CITED_BY_LIMIT):
            add_node(citing.id, citing.title)
            add_edge(citing.id, center_id)

        for ref_id in sorted(ref_ids):
            for target in self.repo.outgoing_citations(ref_id):
                if target in ref_ids:
                    add_edge(ref_id, target)

        return CitationGraph(nodes=nodes, edges=edges)

    def paper_list(self, center_id: str) -> list[PaperListItem]:
        """Flat listing of the centre's references and citing papers."""
        refs = self.repo.references(center_id)
        ref_ids = {ref.id for ref in refs}
        citing = self.repo.cited_by(center_id, GRAPH_CITED_BY_LIMIT)
        citing_ids = {c.id for c in citing}

        items: list[PaperListItem] = []
        seen: set[str] = set()
        for paper_id in [r.id for r in refs] + [c.id for c in citing]:
            if paper_id in seen:
                continue
            seen.add(paper_id)
            node = self._node(paper_id)
            items.append(
                PaperListItem(
                    id=paper_id,
                    title=node.title,
                    authors=node.authors,
                    year=node.year,
                    citations=node.citations,
                    cached=node.cached,
                    is_ref=paper_id in ref_ids,
                    is_citing=paper_id in citing_ids,
                )
            )
        return items

    def _node(self, paper_id: str, fallback_title: str = "") -> GraphNode:
        paper = self.repo.find_by_id(paper_id)
        if paper is None or not paper.has_metadata:
            return GraphNode(
                id=paper_id,
                title=fallback_title,
                year=year_from_id(paper_id),
                citations=self.repo.cited_by_count(paper_id),
                cached=False,
            )
        return GraphNode(
            id=paper_id,
            title=paper.title,
            authors=paper.authors,
            year=_paper_year(paper),
            citations=self.repo.cited_by_count(paper_id),
            cached=paper.src_downloaded,
        )

    # ── Reference title prefetch ──────────────────────────────────────

    def prefetch_reference_titles(
        self, paper_id: str, cancel: Optional[threading.Event] = None
    ) -> int:
        """Fetch metadata for references that have no local record yet.

        Lookups go out in chunks of 50 with ``prefetch_delay`` between them.
        A failed chunk is logged and skipped.

        Returns:
            Number of papers fetched
        """
        if self.metadata is None:
            return 0
        missing = [ref.id for ref in self.repo.references(paper_id) if not ref.has_title]
        if not missing:
            return 0

        logger.info("Prefetching %d reference titles for %s", len(missing), paper_id)
        fetched = 0
        for start in range(0, len(missing), PREFETCH_CHUNK):
            if start > 0:
                interruptible_sleep(self.settings.prefetch_delay, cancel)
            chunk = missing[start:start + PREFETCH_CHUNK]
            try:
                fetched += len(self.metadata.fetch_batch(chunk))
            except ArxivCacheError as e:
                logger.warning("Reference prefetch chunk failed for %s: %s", paper_id, e)
        return fetched


def _paper_year(paper: Paper) -> int:
    if paper.created:
        return paper.created.year
    return year_from_id(paper.id)
