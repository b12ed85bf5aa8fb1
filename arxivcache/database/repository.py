"""Paper repository for database operations.

A single SQLite file holds every table:

* ``papers``         metadata + local artifact state, keyed by arXiv ID
* ``papers_fts``     FTS5 index over title/abstract, kept in lockstep by triggers
* ``citations``      directed ``(from_id, to_id)`` edges
* ``sync_state``     harvester cursor (``resumption_token``) and ``last_sync``
* ``download_queue`` pending artifact downloads

Point lookups go through an in-memory LRU; every write path that touches a
paper row evicts that row's entry after the commit.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from arxivcache.errors import PaperNotFoundError, SearchQueryError
from arxivcache.models.citation import CitingPaper, Reference
from arxivcache.models.paper import CacheStats, CategoryCount, DownloadQueueItem, Paper
from arxivcache.utils.lru import DEFAULT_CAPACITY, LRUCache
from arxivcache.utils.text import parse_date

logger = logging.getLogger(__name__)

RESUMPTION_TOKEN_KEY = "resumption_token"
LAST_SYNC_KEY = "last_sync"

_PAPER_COLUMNS = """
    id, created, updated, title, abstract, authors, categories, comments,
    journal_ref, doi, license, pdf_path, src_path, pdf_text,
    pdf_downloaded, src_downloaded, metadata_updated
"""

# Re-ingestion only touches metadata; artifact columns survive a re-harvest.
_UPSERT_SQL = """
    INSERT INTO papers
    (id, created, updated, title, abstract, authors, categories, comments,
     journal_ref, doi, license, metadata_updated)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(id) DO UPDATE SET
        created = excluded.created,
        updated = excluded.updated,
        title = excluded.title,
        abstract = excluded.abstract,
        authors = excluded.authors,
        categories = excluded.categories,
        comments = excluded.comments,
        journal_ref = excluded.journal_ref,
        doi = excluded.doi,
        license = excluded.license,
        metadata_updated = excluded.metadata_updated
"""

_SCHEMA = """
CREATE TABLE IF NOT EXISTS papers (
    id TEXT PRIMARY KEY,
    created TEXT,
    updated TEXT,
    title TEXT NOT NULL DEFAULT '',
    abstract TEXT NOT NULL DEFAULT '',
    authors TEXT NOT NULL DEFAULT '',
    categories TEXT NOT NULL DEFAULT '',
    comments TEXT NOT NULL DEFAULT '',
    journal_ref TEXT NOT NULL DEFAULT '',
    doi TEXT NOT NULL DEFAULT '',
    license TEXT NOT NULL DEFAULT '',
    pdf_path TEXT,
    src_path TEXT,
    pdf_text TEXT,
    pdf_downloaded INTEGER NOT NULL DEFAULT 0,
    src_downloaded INTEGER NOT NULL DEFAULT 0,
    metadata_updated TEXT
);

CREATE INDEX IF NOT EXISTS idx_papers_created ON papers(created);
CREATE INDEX IF NOT EXISTS idx_papers_updated ON papers(updated);
CREATE INDEX IF NOT EXISTS idx_papers_categories ON papers(categories);

CREATE TABLE IF NOT EXISTS sync_state (
    key TEXT PRIMARY KEY,
    value TEXT
);

CREATE TABLE IF NOT EXISTS download_queue (
    paper_id TEXT PRIMARY KEY,
    type TEXT NOT NULL DEFAULT 'source',
    priority INTEGER NOT NULL DEFAULT 0,
    added TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT
);

CREATE TABLE IF NOT EXISTS citations (
    from_id TEXT NOT NULL,
    to_id TEXT NOT NULL,
    PRIMARY KEY (from_id, to_id),
    CHECK (from_id != to_id)
);

CREATE INDEX IF NOT EXISTS idx_citations_to_id ON citations(to_id);

CREATE VIRTUAL TABLE IF NOT EXISTS papers_fts USING fts5(
    title,
    abstract,
    content='papers',
    content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS papers_ai AFTER INSERT ON papers BEGIN
    INSERT INTO papers_fts(rowid, title, abstract)
    VALUES (NEW.rowid, NEW.title, NEW.abstract);
END;

CREATE TRIGGER IF NOT EXISTS papers_ad AFTER DELETE ON papers BEGIN
    INSERT INTO papers_fts(papers_fts, rowid, title, abstract)
    VALUES ('delete', OLD.rowid, OLD.title, OLD.abstract);
END;

CREATE TRIGGER IF NOT EXISTS papers_au AFTER UPDATE OF title, abstract ON papers BEGIN
    INSERT INTO papers_fts(papers_fts, rowid, title, abstract)
    VALUES ('delete', OLD.rowid, OLD.title, OLD.abstract);
    INSERT INTO papers_fts(rowid, title, abstract)
    VALUES (NEW.rowid, NEW.title, NEW.abstract);
END;
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _date_str(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _paper_params(paper: Paper, now: str) -> tuple:
    return (
        paper.id,
        _date_str(paper.created),
        _date_str(paper.updated),
        paper.title,
        paper.abstract,
        paper.authors,
        paper.categories,
        paper.comments,
        paper.journal_ref,
        paper.doi,
        paper.license,
        now,
    )


def _row_to_paper(row: sqlite3.Row) -> Paper:
    metadata_updated = None
    if row["metadata_updated"]:
        try:
            metadata_updated = datetime.fromisoformat(row["metadata_updated"])
        except ValueError:
            metadata_updated = None
    return Paper(
        id=row["id"],
        created=parse_date(row["created"]),
        updated=parse_date(row["updated"]),
        title=row["title"],
        abstract=row["abstract"],
        authors=row["authors"],
        categories=row["categories"],
        comments=row["comments"],
        journal_ref=row["journal_ref"],
        doi=row["doi"],
        license=row["license"],
        pdf_path=row["pdf_path"],
        src_path=row["src_path"],
        pdf_text=row["pdf_text"],
        pdf_downloaded=bool(row["pdf_downloaded"]),
        src_downloaded=bool(row["src_downloaded"]),
        metadata_updated=metadata_updated,
    )


class PaperRepository:
    """Repository for papers, citations and sync state using SQLite."""

    def __init__(self, db_path: Path, lru_capacity: int = DEFAULT_CAPACITY):
        """Initialize repository with database path.

        Args:
            db_path: Path to SQLite database file
            lru_capacity: Entries kept by the read-through cache
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.cache = LRUCache(lru_capacity)
        self._generation = 0
        self._generation_lock = threading.Lock()
        self._init_db()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _invalidate(self, paper_ids: Iterable[str]) -> None:
        """Drop cached rows after a committed write.

        Bumping the generation stops a concurrent reader from caching the
        snapshot it took before the write.
        """
        with self._generation_lock:
            self._generation += 1
            for paper_id in paper_ids:
                self.cache.delete(paper_id)

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
            conn.commit()

    # ── Papers: writes ────────────────────────────────────────────────

    def upsert(self, paper: Paper) -> None:
        """Insert a paper or update its metadata in place (keyed by ID)."""
        self.upsert_many([paper])

    def upsert_many(self, papers: Iterable[Paper]) -> int:
        """Upsert a batch of papers in one transaction.

        Returns:
            Number of papers written
        """
        papers = list(papers)
        if not papers:
            return 0
        now = _now()
        with self._connection() as conn:
            with conn:
                conn.executemany(_UPSERT_SQL, [_paper_params(p, now) for p in papers])
        self._invalidate(p.id for p in papers)
        return len(papers)

    def commit_harvest_batch(
        self,
        papers: list[Paper],
        resumption_token: Optional[str],
        *,
        completed_on: Optional[date] = None,
    ) -> None:
        """Write a harvest batch and the cursor that follows it atomically.

        Args:
            papers: Records fetched since the previous commit
            resumption_token: Cursor for the next page to request, or None
                to leave the persisted cursor untouched
            completed_on: When set the harvest is finished; the cursor is
                cleared and this date is recorded as ``last_sync``
        """
        now = _now()
        with self._connection() as conn:
            with conn:
                if papers:
                    conn.executemany(_UPSERT_SQL, [_paper_params(p, now) for p in papers])
                if completed_on is not None:
                    conn.execute(
                        "DELETE FROM sync_state WHERE key = ?", (RESUMPTION_TOKEN_KEY,)
                    )
                    conn.execute(
                        "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                        (LAST_SYNC_KEY, completed_on.isoformat()),
                    )
                elif resumption_token:
                    conn.execute(
                        "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                        (RESUMPTION_TOKEN_KEY, resumption_token),
                    )
        self._invalidate(p.id for p in papers)

    def mark_pdf_downloaded(self, paper_id: str, pdf_path: Path) -> None:
        """Set ``pdf_path`` and ``pdf_downloaded`` together."""
        self._mark_downloaded(paper_id, "pdf_path", "pdf_downloaded", pdf_path)

    def mark_source_downloaded(self, paper_id: str, src_path: Path) -> None:
        """Set ``src_path`` and ``src_downloaded`` together."""
        self._mark_downloaded(paper_id, "src_path", "src_downloaded", src_path)

    def _mark_downloaded(
        self, paper_id: str, path_column: str, flag_column: str, path: Path
    ) -> None:
        with self._connection() as conn:
            with conn:
                cursor = conn.execute(
                    f"UPDATE papers SET {path_column} = ?, {flag_column} = 1 WHERE id = ?",
                    (str(path), paper_id),
                )
        self._invalidate([paper_id])
        if cursor.rowcount == 0:
            raise PaperNotFoundError(paper_id)

    def set_pdf_text(self, paper_id: str, text: str) -> None:
        with self._connection() as conn:
            with conn:
                conn.execute("UPDATE papers SET pdf_text = ? WHERE id = ?", (text, paper_id))
        self._invalidate([paper_id])

    def rebuild_fts_index(self) -> None:
        """Rebuild the full-text index from the papers table."""
        with self._connection() as conn:
            with conn:
                conn.execute("INSERT INTO papers_fts(papers_fts) VALUES ('rebuild')")

    # ── Papers: reads ─────────────────────────────────────────────────

    def find_by_id(self, paper_id: str, *, fresh: bool = False) -> Optional[Paper]:
        """Find a single paper by ID.

        Args:
            paper_id: arXiv ID to find
            fresh: Bypass the read-through cache and read the store directly

        Returns:
            Paper object if found, None otherwise
        """
        if not fresh:
            cached, found = self.cache.get(paper_id)
            if found:
                return cached

        generation = self._generation
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_PAPER_COLUMNS} FROM papers WHERE id = ?", (paper_id,)
            ).fetchone()

        if row is None:
            return None
        paper = _row_to_paper(row)
        with self._generation_lock:
            if generation == self._generation:
                self.cache.put(paper_id, paper)
        return paper

    def get(self, paper_id: str, *, fresh: bool = False) -> Paper:
        """Like :meth:`find_by_id` but raises :class:`PaperNotFoundError`."""
        paper = self.find_by_id(paper_id, fresh=fresh)
        if paper is None:
            raise PaperNotFoundError(paper_id)
        return paper

    def exists(self, paper_id: str) -> bool:
        _, found = self.cache.get(paper_id)
        if found:
            return True
        with self._connection() as conn:
            row = conn.execute("SELECT 1 FROM papers WHERE id = ?", (paper_id,)).fetchone()
        return row is not None

    def list_papers(
        self,
        category: Optional[str] = None,
        offset: int = 0,
        limit: int = 100,
        source_only: bool = False,
    ) -> list[Paper]:
        """List papers newest-first, optionally filtered by category substring."""
        clauses, params = [], []
        if category:
            clauses.append("categories LIKE '%' || ? || '%'")
            params.append(category)
        if source_only:
            clauses.append("src_downloaded = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_PAPER_COLUMNS} FROM papers
                {where}
                ORDER BY created DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                params,
            ).fetchall()
        return [_row_to_paper(row) for row in rows]

    def search(self, query: str, category: Optional[str] = None, limit: int = 20) -> list[Paper]:
        """Full-text search over title/abstract, best match first.

        Raises:
            SearchQueryError: If the FTS5 query syntax is invalid
        """
        sql = f"""
            SELECT {', '.join('p.' + c.strip() for c in _PAPER_COLUMNS.split(','))}
            FROM papers p
            JOIN papers_fts ON p.rowid = papers_fts.rowid
            WHERE papers_fts MATCH ?
        """
        params: list = [query]
        if category:
            sql += " AND p.categories LIKE '%' || ? || '%'"
            params.append(category)
        sql += " ORDER BY rank LIMIT ?"
        params.append(limit)

        with self._connection() as conn:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.OperationalError as e:
                raise SearchQueryError(f"invalid search query {query!r}: {e}") from e
        return [_row_to_paper(row) for row in rows]

    def search_by_author(self, author: str, limit: int = 100) -> list[Paper]:
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_PAPER_COLUMNS} FROM papers
                WHERE authors LIKE '%' || ? || '%'
                ORDER BY created DESC
                LIMIT ?
                """,
                (author, limit),
            ).fetchall()
        return [_row_to_paper(row) for row in rows]

    def list_categories(self) -> list[CategoryCount]:
        """Count papers per individual category token, most common first."""
        counts: dict[str, int] = {}
        with self._connection() as conn:
            for row in conn.execute("SELECT categories FROM papers WHERE categories != ''"):
                for cat in row["categories"].split():
                    counts[cat] = counts.get(cat, 0) + 1
        return [
            CategoryCount(name=name, count=count)
            for name, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        ]

    def papers_with_pdf_text(self) -> list[tuple[str, str]]:
        """Return ``(id, pdf_text)`` for downloaded PDFs with extracted text."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, pdf_text FROM papers
                WHERE pdf_downloaded = 1 AND pdf_text IS NOT NULL AND pdf_text != ''
                """
            ).fetchall()
        return [(row["id"], row["pdf_text"]) for row in rows]

    def papers_with_source(self) -> list[tuple[str, str]]:
        """Return ``(id, src_path)`` for every paper with a downloaded source."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, src_path FROM papers
                WHERE src_downloaded = 1 AND src_path IS NOT NULL
                ORDER BY id
                """
            ).fetchall()
        return [(row["id"], row["src_path"]) for row in rows]

    def ids_missing_artifacts(
        self,
        category: str,
        want_pdf: bool,
        want_source: bool,
        limit: int = 0,
    ) -> list[str]:
        """IDs in *category* (newest first) lacking any requested artifact."""
        sql = """
            SELECT id FROM papers
            WHERE categories LIKE '%' || ? || '%'
            AND ((? = 1 AND pdf_downloaded = 0) OR (? = 1 AND src_downloaded = 0))
            ORDER BY created DESC
        """
        params: list = [category, int(want_pdf), int(want_source)]
        if limit > 0:
            sql += " LIMIT ?"
            params.append(limit)
        with self._connection() as conn:
            return [row["id"] for row in conn.execute(sql, params).fetchall()]

    def stats(self) -> CacheStats:
        """Return paper, download and queue counts."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       COALESCE(SUM(pdf_downloaded), 0) AS pdfs,
                       COALESCE(SUM(src_downloaded), 0) AS sources
                FROM papers
                """
            ).fetchone()
            queued = conn.execute("SELECT COUNT(*) AS cnt FROM download_queue").fetchone()["cnt"]
        return CacheStats(
            total_papers=row["total"],
            pdfs_downloaded=row["pdfs"],
            sources_downloaded=row["sources"],
            queued_downloads=queued,
        )

    # ── Sync state ────────────────────────────────────────────────────

    def get_sync_value(self, key: str) -> Optional[str]:
        with self._connection() as conn:
            row = conn.execute("SELECT value FROM sync_state WHERE key = ?", (key,)).fetchone()
        if row is None or not row["value"]:
            return None
        return row["value"]

    def set_sync_value(self, key: str, value: str) -> None:
        with self._connection() as conn:
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)", (key, value)
                )

    def delete_sync_value(self, key: str) -> None:
        with self._connection() as conn:
            with conn:
                conn.execute("DELETE FROM sync_state WHERE key = ?", (key,))

    # ── Citations ─────────────────────────────────────────────────────

    def replace_citations(self, from_id: str, refs: Iterable[str]) -> int:
        """Replace every outgoing edge of *from_id* with ``from_id -> ref``.

        Self-citations are dropped; duplicates are ignored.

        Returns:
            Number of edges stored
        """
        edges = [(from_id, ref) for ref in refs if ref and ref != from_id]
        with self._connection() as conn:
            with conn:
                conn.execute("DELETE FROM citations WHERE from_id = ?", (from_id,))
                conn.executemany(
                    "INSERT OR IGNORE INTO citations (from_id, to_id) VALUES (?, ?)", edges
                )
                count = conn.execute(
                    "SELECT COUNT(*) AS cnt FROM citations WHERE from_id = ?", (from_id,)
                ).fetchone()["cnt"]
        return count

    def clear_citations(self) -> None:
        with self._connection() as conn:
            with conn:
                conn.execute("DELETE FROM citations")

    def cited_by_count(self, paper_id: str) -> int:
        with self._connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) AS cnt FROM citations WHERE to_id = ?", (paper_id,)
            ).fetchone()["cnt"]

    def references(self, paper_id: str) -> list[Reference]:
        """Papers cited by *paper_id*, including ones without local metadata."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT c.to_id AS id, p.title AS title,
                       CASE WHEN p.id IS NOT NULL AND p.title != '' THEN 1 ELSE 0 END AS has_title,
                       CASE WHEN p.src_downloaded = 1 THEN 1 ELSE 0 END AS has_source
                FROM citations c
                LEFT JOIN papers p ON c.to_id = p.id
                WHERE c.from_id = ?
                ORDER BY c.to_id DESC
                """,
                (paper_id,),
            ).fetchall()
        return [
            Reference(
                id=row["id"],
                title=row["title"] if row["has_title"] else None,
                has_title=bool(row["has_title"]),
                has_source=bool(row["has_source"]),
            )
            for row in rows
        ]

    def cited_by(self, paper_id: str, limit: int = 50) -> list[CitingPaper]:
        """Locally known papers citing *paper_id*, newest first."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT p.id, p.title
                FROM citations c
                JOIN papers p ON c.from_id = p.id
                WHERE c.to_id = ?
                ORDER BY p.created DESC, p.id DESC
                LIMIT ?
                """,
                (paper_id, limit),
            ).fetchall()
        return [CitingPaper(id=row["id"], title=row["title"]) for row in rows]

    def outgoing_citations(self, paper_id: str) -> list[str]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT to_id FROM citations WHERE from_id = ? ORDER BY to_id", (paper_id,)
            ).fetchall()
        return [row["to_id"] for row in rows]

    def uncached_reference_count(self, paper_id: str) -> int:
        """Count references of *paper_id* that have no local metadata."""
        with self._connection() as conn:
            return conn.execute(
                """
                SELECT COUNT(*) AS cnt FROM citations c
                LEFT JOIN papers p ON c.to_id = p.id
                WHERE c.from_id = ? AND (p.id IS NULL OR p.title = '')
                """,
                (paper_id,),
            ).fetchone()["cnt"]

    # ── Download queue ────────────────────────────────────────────────

    def enqueue_download(self, paper_id: str, kind: str = "source", priority: int = 0) -> None:
        """Queue an artifact download; re-queuing keeps the higher priority."""
        with self._connection() as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO download_queue (paper_id, type, priority, added)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(paper_id) DO UPDATE SET
                        type = excluded.type,
                        priority = MAX(priority, excluded.priority)
                    """,
                    (paper_id, kind, priority, _now()),
                )

    def queued_downloads(self, limit: int = 100) -> list[DownloadQueueItem]:
        """Queued downloads, highest priority then oldest first."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT paper_id, type, priority, added, attempts, last_error
                FROM download_queue
                ORDER BY priority DESC, added ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            DownloadQueueItem(
                paper_id=row["paper_id"],
                kind=row["type"],
                priority=row["priority"],
                added=datetime.fromisoformat(row["added"]) if row["added"] else None,
                attempts=row["attempts"],
                last_error=row["last_error"],
            )
            for row in rows
        ]

    def remove_from_queue(self, paper_id: str) -> None:
        with self._connection() as conn:
            with conn:
                conn.execute("DELETE FROM download_queue WHERE paper_id = ?", (paper_id,))

    def record_queue_failure(self, paper_id: str, error: str) -> None:
        with self._connection() as conn:
            with conn:
                conn.execute(
                    """
                    UPDATE download_queue
                    SET attempts = attempts + 1, last_error = ?
                    WHERE paper_id = ?
                    """,
                    (error, paper_id),
                )
