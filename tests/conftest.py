"""Shared fixtures."""

import io
import tarfile
from datetime import date

import pytest

from arxivcache.config import Settings
from arxivcache.database.repository import PaperRepository
from arxivcache.models.paper import Paper


@pytest.fixture
def settings(tmp_path):
    """Fresh singleton rooted in a temp dir, with inter-request delays off."""
    Settings.reset()
    s = Settings.load(tmp_path / "cache")
    s.update(request_delay=0.0, prefetch_delay=0.0)
    s.pdf_dir.mkdir(parents=True, exist_ok=True)
    s.src_dir.mkdir(parents=True, exist_ok=True)
    yield s
    Settings.reset()


@pytest.fixture
def repo(settings):
    return PaperRepository(settings.db_path, lru_capacity=100)


@pytest.fixture
def make_paper():
    def _make(paper_id: str, title: str = "", **kwargs) -> Paper:
        kwargs.setdefault("abstract", f"Abstract of {paper_id}")
        kwargs.setdefault("categories", "cs.LG")
        kwargs.setdefault("created", date(2023, 1, 5))
        return Paper(id=paper_id, title=title or f"Paper {paper_id}", **kwargs)

    return _make


@pytest.fixture
def make_tarball():
    """Build an in-memory ``.tar.gz`` from ``{name: content}``."""

    def _make(files: dict[str, bytes]) -> bytes:
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            for name, content in files.items():
                info = tarfile.TarInfo(name)
                info.size = len(content)
                tar.addfile(info, io.BytesIO(content))
        return buf.getvalue()

    return _make
