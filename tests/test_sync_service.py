"""Tests for the resumable harvester."""

import threading
from datetime import date

import pytest

from arxivcache.database.repository import LAST_SYNC_KEY, RESUMPTION_TOKEN_KEY
from arxivcache.errors import OperationCancelled, RateLimitedError
from arxivcache.models.paper import Paper
from arxivcache.services.oai_service import OAIPage
from arxivcache.services.sync_service import SyncService


class FakeOAIClient:
    """Serves ``n_pages`` pages of two records each; token ``tN`` selects page N."""

    def __init__(self, n_pages=5, fail_at=None):
        self.n_pages = n_pages
        self.fail_at = fail_at
        self.calls = []

    def list_records(self, set_spec=None, from_date=None, until_date=None, resumption_token=None):
        self.calls.append(
            {"set_spec": set_spec, "from_date": from_date, "token": resumption_token}
        )
        index = int(resumption_token[1:]) if resumption_token else 0
        if index == self.fail_at:
            raise RateLimitedError("rate limited (503)", status=503)
        papers = [
            Paper(id=f"2301.{index:02d}{n:03d}", title=f"Paper {index}-{n}") for n in range(2)
        ]
        next_token = f"t{index + 1}" if index + 1 < self.n_pages else None
        return OAIPage(papers=papers, resumption_token=next_token, complete_list_size=10)


@pytest.fixture
def make_service(repo, settings):
    def _make(client):
        return SyncService(repo, client, settings)

    return _make


def test_full_sync_records_last_sync(make_service, repo):
    client = FakeOAIClient()

    assert make_service(client).sync() == 10

    assert repo.stats().total_papers == 10
    assert repo.get_sync_value(RESUMPTION_TOKEN_KEY) is None
    assert repo.get_sync_value(LAST_SYNC_KEY) == date.today().isoformat()


def test_failure_then_resume_from_failed_page(make_service, repo):
    failing = FakeOAIClient(fail_at=2)

    with pytest.raises(RateLimitedError):
        make_service(failing).sync()

    # Pages 0 and 1 are durable together with the cursor for page 2.
    assert repo.stats().total_papers == 4
    assert repo.get_sync_value(RESUMPTION_TOKEN_KEY) == "t2"
    assert repo.get_sync_value(LAST_SYNC_KEY) is None

    healthy = FakeOAIClient()
    assert make_service(healthy).sync() == 6

    assert healthy.calls[0]["token"] == "t2"
    assert repo.stats().total_papers == 10
    assert repo.get_sync_value(RESUMPTION_TOKEN_KEY) is None


def test_cursor_is_committed_with_its_batch(make_service, repo, mocker):
    spy = mocker.spy(repo, "commit_harvest_batch")

    make_service(FakeOAIClient(n_pages=5)).sync(batch_size=4)

    commits = [(len(c.args[0]), c.args[1]) for c in spy.call_args_list]
    # 2 pages per batch: the stored token always follows the last committed page.
    assert commits == [(4, "t2"), (4, "t4"), (2, None)]
    assert spy.call_args_list[-1].kwargs["completed_on"] == date.today()


def test_incremental_sync_starts_from_last_sync(make_service, repo):
    repo.set_sync_value(LAST_SYNC_KEY, "2024-01-02")
    client = FakeOAIClient(n_pages=1)

    make_service(client).sync(set_spec="cs")

    assert client.calls[0]["from_date"] == date(2024, 1, 2)
    assert client.calls[0]["set_spec"] == "cs"


def test_explicit_from_date_wins(make_service, repo):
    repo.set_sync_value(LAST_SYNC_KEY, "2024-01-02")
    client = FakeOAIClient(n_pages=1)

    make_service(client).sync(from_date=date(2020, 1, 1))

    assert client.calls[0]["from_date"] == date(2020, 1, 1)


def test_cancellation_keeps_committed_progress(make_service, repo):
    cancel = threading.Event()
    client = FakeOAIClient()

    with pytest.raises(OperationCancelled):
        make_service(client).sync(progress=lambda state: cancel.set(), cancel=cancel)

    assert len(client.calls) == 1
    assert repo.stats().total_papers == 2
    assert repo.get_sync_value(RESUMPTION_TOKEN_KEY) == "t1"


def test_already_cancelled_sync_makes_no_request(make_service, repo):
    cancel = threading.Event()
    cancel.set()
    client = FakeOAIClient()

    with pytest.raises(OperationCancelled):
        make_service(client).sync(cancel=cancel)

    assert client.calls == []
    assert repo.stats().total_papers == 0


def test_empty_harvest_completes(make_service, repo):
    class EmptyClient:
        def list_records(self, **kwargs):
            return OAIPage()

    assert make_service(EmptyClient()).sync() == 0
    assert repo.get_sync_value(LAST_SYNC_KEY) == date.today().isoformat()


def test_reset_discards_cursor(make_service, repo):
    repo.set_sync_value(RESUMPTION_TOKEN_KEY, "t3")
    service = make_service(FakeOAIClient())

    service.reset()

    assert service.pending_token() is None
