"""Tests for Atom API lookups."""

from datetime import date

import pytest

from arxivcache.errors import PaperNotFoundError, RemoteError
from arxivcache.services import arxiv_api_service
from arxivcache.services.arxiv_api_service import ArxivAPIService, parse_atom_feed

FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom" xmlns:arxiv="http://arxiv.org/schemas/atom">
  <title>ArXiv Query</title>
  <entry>
    <id>http://arxiv.org/abs/1706.03762v7</id>
    <updated>2023-08-02T00:41:18Z</updated>
    <published>2017-06-12T17:57:34Z</published>
    <title>Attention Is All
      You Need</title>
    <summary>  The dominant sequence transduction models...  </summary>
    <author><name>Ashish Vaswani</name></author>
    <author><name>Noam Shazeer</name></author>
    <arxiv:comment>15 pages, 5 figures</arxiv:comment>
    <arxiv:doi>10.48550/arXiv.1706.03762</arxiv:doi>
    <category term="cs.CL" scheme="http://arxiv.org/schemas/atom"/>
    <category term="cs.LG" scheme="http://arxiv.org/schemas/atom"/>
  </entry>
</feed>
"""

EMPTY_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"><title>ArXiv Query</title></feed>
"""


def test_parse_atom_feed():
    (paper,) = parse_atom_feed(FEED)

    assert paper.id == "1706.03762"
    assert paper.title == "Attention Is All You Need"
    assert paper.authors == "Ashish Vaswani, Noam Shazeer"
    assert paper.categories == "cs.CL cs.LG"
    assert paper.comments == "15 pages, 5 figures"
    assert paper.doi == "10.48550/arXiv.1706.03762"
    assert paper.created == date(2017, 6, 12)


def _response(mocker, status, text=""):
    response = mocker.MagicMock()
    response.status_code = status
    response.text = text
    response.url = arxiv_api_service.API_BASE_URL
    return response


def test_lookup_batch_sends_id_list(mocker):
    get = mocker.patch.object(
        arxiv_api_service.requests, "get", return_value=_response(mocker, 200, FEED)
    )

    papers = ArxivAPIService().lookup_batch(["1706.03762", "2301.00001"])

    assert [p.id for p in papers] == ["1706.03762"]
    params = get.call_args.kwargs["params"]
    assert params == {"id_list": "1706.03762,2301.00001", "max_results": 2}


def test_lookup_missing_paper(mocker):
    mocker.patch.object(
        arxiv_api_service.requests, "get", return_value=_response(mocker, 200, EMPTY_FEED)
    )

    with pytest.raises(PaperNotFoundError):
        ArxivAPIService().lookup("2301.99999")


def test_http_error(mocker):
    mocker.patch.object(
        arxiv_api_service.requests, "get", return_value=_response(mocker, 500)
    )

    with pytest.raises(RemoteError):
        ArxivAPIService().lookup("2301.00001")


def test_batch_limit():
    with pytest.raises(ValueError):
        ArxivAPIService().lookup_batch([f"2301.{i:05d}" for i in range(101)])
