"""Tests for the download and extraction pipeline."""

import gzip
import threading

import httpx
import pytest

from arxivcache.errors import (
    DownloadError,
    OperationCancelled,
    PaperNotFoundError,
    RateLimitedError,
    RemoteError,
)
from arxivcache.services.citation_service import CitationService
from arxivcache.services.download_service import DownloadService

PDF_BYTES = b"%PDF-1.4 fake pdf body"


class FailingStream(httpx.SyncByteStream):
    """Yields one chunk, then drops the connection."""

    def __iter__(self):
        yield b"%PDF-1.4 partial"
        raise httpx.ReadError("connection reset")


class FakeArxiv:
    """Programmable stand-in for arxiv.org, counting requests per path."""

    def __init__(self, pdf=PDF_BYTES, source=b""):
        self.pdf = pdf
        self.source = source
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request.url.path)
        if request.url.path.startswith("/pdf/"):
            body = self.pdf
        else:
            body = self.source
        if isinstance(body, httpx.Response):
            return body
        if isinstance(body, httpx.SyncByteStream):
            return httpx.Response(200, stream=body)
        return httpx.Response(200, content=body)

    def count(self, prefix):
        return sum(1 for path in self.requests if path.startswith(prefix))


@pytest.fixture
def arxiv(make_tarball):
    return FakeArxiv(source=make_tarball({"main.tex": b"\\documentclass{article}"}))


@pytest.fixture
def citations(repo, settings):
    return CitationService(repo, settings=settings)


@pytest.fixture
def service(repo, settings, arxiv, citations):
    client = httpx.Client(transport=httpx.MockTransport(arxiv))
    svc = DownloadService(repo, settings, client=client, citations=citations)
    yield svc
    svc.close()


@pytest.fixture
def known(repo, make_paper):
    repo.upsert(make_paper("2301.00001"))
    return "2301.00001"


def _leftovers(directory):
    return [p.name for p in directory.rglob(".part-*")]


def test_downloads_both_artifacts_into_sharded_layout(service, settings, known, repo):
    paper = service.ensure_artifacts(known)

    pdf = settings.pdf_dir / "2301" / "2301.00001.pdf"
    src = settings.src_dir / "2301" / "2301.00001"
    assert pdf.read_bytes() == PDF_BYTES
    assert (src / "main.tex").exists()
    assert paper.pdf_downloaded and paper.pdf_path == str(pdf)
    assert paper.src_downloaded and paper.src_path == str(src)


def test_second_call_does_no_network_io(service, arxiv, known):
    service.ensure_artifacts(known)
    service.ensure_artifacts(known)

    assert arxiv.count("/pdf/") == 1
    assert arxiv.count("/e-print/") == 1


def test_legacy_id_layout(service, settings, repo, make_paper, arxiv):
    repo.upsert(make_paper("hep-th/9901001"))

    service.ensure_artifacts("hep-th/9901001")

    assert (settings.pdf_dir / "hep-th" / "9901001.pdf").exists()
    assert (settings.src_dir / "hep-th" / "9901001" / "main.tex").exists()
    assert "/pdf/hep-th/9901001.pdf" in arxiv.requests


def test_unknown_paper(service):
    with pytest.raises(PaperNotFoundError):
        service.ensure_artifacts("2301.99999")


def test_mid_stream_failure_leaves_no_partial_file(service, arxiv, settings, known, repo):
    arxiv.pdf = FailingStream()

    with pytest.raises(DownloadError) as excinfo:
        service.ensure_artifacts(known, want_pdf=True, want_source=False)

    assert isinstance(excinfo.value.failures["pdf"], RemoteError)
    shard = settings.pdf_dir / "2301"
    assert not (shard / "2301.00001.pdf").exists()
    assert _leftovers(settings.pdf_dir) == []
    assert repo.get(known, fresh=True).pdf_downloaded is False


def test_failures_are_per_artifact(service, arxiv, known, repo):
    arxiv.pdf = httpx.Response(404)

    with pytest.raises(DownloadError) as excinfo:
        service.ensure_artifacts(known)

    assert set(excinfo.value.failures) == {"pdf"}
    assert excinfo.value.failures["pdf"].status == 404
    paper = repo.get(known, fresh=True)
    assert paper.pdf_downloaded is False
    assert paper.src_downloaded is True


def test_rate_limit_is_reported(service, arxiv, known):
    arxiv.pdf = httpx.Response(503, headers={"Retry-After": "30"})

    with pytest.raises(DownloadError) as excinfo:
        service.ensure_artifacts(known, want_source=False)

    err = excinfo.value.failures["pdf"]
    assert isinstance(err, RateLimitedError)
    assert err.retry_after == 30.0


def test_path_traversal_entries_are_skipped(service, arxiv, settings, known, make_tarball):
    arxiv.source = make_tarball(
        {
            "../evil.tex": b"pwned",
            "sub/../../also-evil.tex": b"pwned",
            "main.tex": b"ok",
            "figs/plot.tex": b"ok",
        }
    )

    service.ensure_artifacts(known, want_pdf=False)

    src = settings.src_dir / "2301" / "2301.00001"
    assert (src / "main.tex").read_bytes() == b"ok"
    assert (src / "figs" / "plot.tex").exists()
    assert not (settings.src_dir / "2301" / "evil.tex").exists()
    assert not (settings.src_dir / "2301" / "also-evil.tex").exists()


def test_oversized_entries_are_skipped(service, arxiv, settings, known, make_tarball):
    settings.update(max_entry_size=10)
    arxiv.source = make_tarball({"big.tex": b"x" * 100, "small.tex": b"tiny"})

    service.ensure_artifacts(known, want_pdf=False)

    src = settings.src_dir / "2301" / "2301.00001"
    assert not (src / "big.tex").exists()
    assert (src / "small.tex").read_bytes() == b"tiny"


def test_colliding_entry_is_skipped_without_failing_extraction(
    service, arxiv, settings, known, repo, make_tarball
):
    arxiv.source = make_tarball(
        {"refs.bbl": b"refs", "figs": b"a file", "figs/plot.tex": b"clash", "main.tex": b"ok"}
    )

    service.ensure_artifacts(known, want_pdf=False)

    src = settings.src_dir / "2301" / "2301.00001"
    assert (src / "refs.bbl").read_bytes() == b"refs"
    assert (src / "figs").read_bytes() == b"a file"
    assert (src / "main.tex").read_bytes() == b"ok"
    assert repo.get(known, fresh=True).src_downloaded is True


def test_non_archive_payload_is_stored_raw(service, arxiv, settings, known, repo):
    arxiv.source = b"\\documentclass{article}\\begin{document}hi\\end{document}"

    service.ensure_artifacts(known, want_pdf=False)

    main = settings.src_dir / "2301" / "2301.00001" / "main.tex"
    assert main.read_bytes() == arxiv.source
    assert repo.get(known, fresh=True).src_downloaded is True


def test_gzipped_single_file_is_decompressed(service, arxiv, settings, known):
    tex = b"\\documentclass{article} single file submission"
    arxiv.source = gzip.compress(tex)

    service.ensure_artifacts(known, want_pdf=False)

    assert (settings.src_dir / "2301" / "2301.00001" / "main.tex").read_bytes() == tex


def test_source_download_updates_citations(service, arxiv, known, repo, make_tarball):
    arxiv.source = make_tarball({"main.bbl": b"arXiv:2201.00001\narXiv:2201.00002v1\n"})

    service.ensure_artifacts(known, want_pdf=False)

    assert repo.outgoing_citations(known) == ["2201.00001", "2201.00002"]


def test_citation_failure_does_not_fail_download(service, citations, known, repo, mocker):
    mocker.patch.object(citations, "update_from_source", side_effect=RuntimeError("boom"))

    paper = service.ensure_artifacts(known, want_pdf=False)

    assert paper.src_downloaded is True


def test_existing_artifact_is_adopted_without_download(service, arxiv, settings, known, repo):
    pdf = settings.pdf_dir / "2301" / "2301.00001.pdf"
    pdf.parent.mkdir(parents=True)
    pdf.write_bytes(PDF_BYTES)

    service.ensure_artifacts(known, want_source=False)

    assert arxiv.requests == []
    assert repo.get(known, fresh=True).pdf_path == str(pdf)


def test_cancellation_propagates(service, arxiv, settings, known, repo):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        service.ensure_artifacts(known, cancel=cancel)

    assert arxiv.requests == []
    assert repo.get(known, fresh=True).pdf_downloaded is False


def test_follow_up_work_is_scheduled(repo, settings, arxiv, known, mocker):
    background = mocker.MagicMock()
    search = mocker.MagicMock()
    citations = mocker.MagicMock()
    client = httpx.Client(transport=httpx.MockTransport(arxiv))
    service = DownloadService(
        repo, settings, client=client, citations=citations, search=search, background=background
    )

    service.ensure_artifacts(known)

    background.submit.assert_any_call(search.ensure_pdf_text, known)
    background.submit.assert_any_call(citations.prefetch_reference_titles, known)
    citations.update_from_source.assert_called_once()


def test_process_queue(service, arxiv, repo, make_paper, known):
    repo.upsert(make_paper("2301.00002"))
    service.enqueue(known, "pdf", priority=1)
    service.enqueue("2301.00002", "source")
    service.enqueue("2301.99999", "pdf")

    assert service.process_queue() == 2

    (left,) = repo.queued_downloads()
    assert left.paper_id == "2301.99999"
    assert left.attempts == 1
    assert "not found" in left.last_error


def test_enqueue_rejects_unknown_kind(service, known):
    with pytest.raises(ValueError):
        service.enqueue(known, "html")


def test_download_category_skips_failures(service, arxiv, repo, make_paper):
    repo.upsert(make_paper("2301.00001", categories="cs.LG"))
    repo.upsert(make_paper("2301.00002", categories="cs.LG"))
    repo.upsert(make_paper("2301.00003", categories="math.CO"))
    seen = []

    assert service.download_category("cs.LG", progress=lambda pid, i, n: seen.append(pid)) == 2
    assert sorted(seen) == ["2301.00001", "2301.00002"]
    assert repo.ids_missing_artifacts("cs.LG", want_pdf=False, want_source=True) == []
