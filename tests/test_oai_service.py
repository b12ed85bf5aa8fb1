"""Tests for the OAI-PMH client."""

from datetime import date

import pytest
import requests

from arxivcache.errors import RateLimitedError, RemoteError
from arxivcache.services.oai_service import OAIClient, parse_list_records

PAGE = b"""<?xml version="1.0" encoding="UTF-8"?>
<OAI-PMH xmlns="http://www.openarchives.org/OAI/2.0/">
  <responseDate>2024-01-01T00:00:00Z</responseDate>
  <ListRecords>
    <record>
      <header>
        <identifier>oai:arXiv.org:2301.00001</identifier>
        <datestamp>2023-01-03</datestamp>
      </header>
      <metadata>
        <arXiv xmlns="http://arxiv.org/OAI/arXiv/">
          <id>2301.00001</id>
          <created>2023-01-01</created>
          <updated>2023-01-02</updated>
          <authors>
            <author><keyname>Lovelace</keyname><forenames>Ada</forenames></author>
            <author><keyname>Turing</keyname><forenames>Alan M.</forenames><suffix>Jr</suffix></author>
          </authors>
          <title>A Study of
   Wrapped Titles</title>
          <categories>cs.LG stat.ML</categories>
          <comments>10 pages</comments>
          <journal-ref>JMLR 1 (2023)</journal-ref>
          <doi>10.1000/xyz</doi>
          <license>http://creativecommons.org/licenses/by/4.0/</license>
          <abstract>  Abstract: We study things.  </abstract>
        </arXiv>
      </metadata>
    </record>
    <record>
      <header status="deleted">
        <identifier>oai:arXiv.org:2301.00002</identifier>
      </header>
    </record>
    <resumptionToken cursor="0" completeListSize="2500">token|1001</resumptionToken>
  </ListRecords>
</OAI-PMH>
"""

NO_RECORDS = b"""<?xml version="1.0" encoding="UTF-8"?>
<OAI-PMH xmlns="http://www.openarchives.org/OAI/2.0/">
  <error code="noRecordsMatch">No records</error>
</OAI-PMH>
"""


def test_parse_list_records():
    page = parse_list_records(PAGE)

    assert page.resumption_token == "token|1001"
    assert page.complete_list_size == 2500
    (paper,) = page.papers
    assert paper.id == "2301.00001"
    assert paper.title == "A Study of Wrapped Titles"
    assert paper.authors == "Ada Lovelace, Alan M. Turing Jr"
    assert paper.abstract == "We study things."
    assert paper.categories == "cs.LG stat.ML"
    assert paper.journal_ref == "JMLR 1 (2023)"
    assert paper.created == date(2023, 1, 1)
    assert paper.updated == date(2023, 1, 2)


def test_last_page_has_no_token():
    body = PAGE.replace(
        b'<resumptionToken cursor="0" completeListSize="2500">token|1001</resumptionToken>',
        b'<resumptionToken cursor="1000" completeListSize="1001"/>',
    )
    assert parse_list_records(body).resumption_token is None


def test_no_records_match_is_empty_page():
    page = parse_list_records(NO_RECORDS)
    assert page.papers == []
    assert page.resumption_token is None


def test_other_oai_errors_raise():
    body = NO_RECORDS.replace(b"noRecordsMatch", b"badResumptionToken")
    with pytest.raises(RemoteError):
        parse_list_records(body)


def test_malformed_xml_raises():
    with pytest.raises(RemoteError):
        parse_list_records(b"<not-xml")


def _response(mocker, status, content=b"", headers=None):
    response = mocker.MagicMock()
    response.status_code = status
    response.content = content
    response.headers = headers or {}
    response.url = "https://export.arxiv.org/oai2"
    return response


def test_first_page_sends_filters(mocker):
    session = mocker.MagicMock()
    session.headers = {}
    session.get.return_value = _response(mocker, 200, PAGE)
    client = OAIClient(session=session, user_agent="test-agent")

    client.list_records(set_spec="cs", from_date=date(2024, 1, 2))

    params = session.get.call_args.kwargs["params"]
    assert params == {
        "verb": "ListRecords",
        "metadataPrefix": "arXiv",
        "set": "cs",
        "from": "2024-01-02",
    }
    assert session.headers["User-Agent"] == "test-agent"


def test_resumed_page_sends_only_token(mocker):
    session = mocker.MagicMock()
    session.get.return_value = _response(mocker, 200, PAGE)

    OAIClient(session=session).list_records(set_spec="cs", resumption_token="token|1001")

    params = session.get.call_args.kwargs["params"]
    assert params == {"verb": "ListRecords", "resumptionToken": "token|1001"}


def test_503_is_rate_limited(mocker):
    session = mocker.MagicMock()
    session.get.return_value = _response(mocker, 503, headers={"Retry-After": "600"})

    with pytest.raises(RateLimitedError) as excinfo:
        OAIClient(session=session).list_records()

    assert excinfo.value.retry_after == 600.0


def test_transport_error_is_remote_error(mocker):
    session = mocker.MagicMock()
    session.get.side_effect = requests.ConnectionError("down")

    with pytest.raises(RemoteError):
        OAIClient(session=session).list_records()
