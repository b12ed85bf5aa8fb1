"""OAI-PMH client for bulk arXiv metadata harvesting."""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

import requests

from arxivcache.errors import RateLimitedError, RemoteError
from arxivcache.models.paper import Paper
from arxivcache.utils.text import clean_abstract, clean_title, format_authors, parse_date

logger = logging.getLogger(__name__)

OAI_BASE_URL = "https://export.arxiv.org/oai2"
METADATA_PREFIX = "arXiv"


@dataclass
class OAIPage:
    """One ListRecords page.

    An empty ``resumption_token`` means the list is complete.
    """

    papers: list[Paper] = field(default_factory=list)
    resumption_token: Optional[str] = None
    complete_list_size: int = 0
    cursor: int = 0


class OAIClient:
    """Service for paging through arXiv's OAI-PMH ``ListRecords`` verb."""

    def __init__(
        self,
        base_url: str = OAI_BASE_URL,
        user_agent: Optional[str] = None,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize OAI client.

        Args:
            base_url: OAI-PMH endpoint
            user_agent: User-Agent header value
            timeout: Request timeout in seconds
            session: Optional pre-configured requests session
        """
        self.base_url = base_url
        self.timeout = timeout
        self._session = session or requests.Session()
        if user_agent:
            self._session.headers["User-Agent"] = user_agent

    def list_records(
        self,
        set_spec: Optional[str] = None,
        from_date: Optional[date] = None,
        until_date: Optional[date] = None,
        resumption_token: Optional[str] = None,
    ) -> OAIPage:
        """Fetch one page of records.

        The first page is requested with the filters; later pages carry only
        the resumption token, which already encodes the position.

        Raises:
            RateLimitedError: On HTTP 503/429 (arXiv's throttling response)
            RemoteError: On any other network, HTTP or protocol failure
        """
        params: dict[str, str] = {"verb": "ListRecords"}
        if resumption_token:
            params["resumptionToken"] = resumption_token
        else:
            params["metadataPrefix"] = METADATA_PREFIX
            if set_spec:
                params["set"] = set_spec
            if from_date:
                params["from"] = from_date.isoformat()
            if until_date:
                params["until"] = until_date.isoformat()

        try:
            response = self._session.get(self.base_url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteError(f"fetch: {e}", url=self.base_url) from e

        if response.status_code in (429, 503):
            retry_after = _retry_after(response.headers.get("Retry-After"))
            raise RateLimitedError(
                f"rate limited ({response.status_code})",
                url=response.url,
                status=response.status_code,
                retry_after=retry_after,
            )
        if response.status_code != 200:
            raise RemoteError(
                f"unexpected status: {response.status_code}",
                url=response.url,
                status=response.status_code,
            )

        page = parse_list_records(response.content)
        logger.debug(
            "OAI page: %d records, cursor=%d, size=%d",
            len(page.papers), page.cursor, page.complete_list_size,
        )
        return page


def _retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _text(elem: Optional[ET.Element], path: str) -> str:
    if elem is None:
        return ""
    child = elem.find(path)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _int_attr(elem: ET.Element, name: str) -> int:
    try:
        return int(elem.get(name) or 0)
    except ValueError:
        return 0


def parse_list_records(payload: bytes) -> OAIPage:
    """Parse a ListRecords response body.

    ``noRecordsMatch`` is an empty, complete page rather than an error.

    Raises:
        RemoteError: On malformed XML or any other OAI error code
    """
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as e:
        raise RemoteError(f"parse xml: {e}") from e

    error = root.find("{*}error")
    if error is not None:
        code = error.get("code", "")
        if code == "noRecordsMatch":
            return OAIPage()
        raise RemoteError(f"oai error {code}: {(error.text or '').strip()}")

    page = OAIPage()
    list_records = root.find("{*}ListRecords")
    if list_records is None:
        return page

    for record in list_records.findall("{*}record"):
        header = record.find("{*}header")
        if header is not None and header.get("status") == "deleted":
            continue
        meta = record.find("{*}metadata/{*}arXiv")
        if meta is None:
            continue
        paper = _record_to_paper(meta)
        if paper.id:
            page.papers.append(paper)

    token = list_records.find("{*}resumptionToken")
    if token is not None:
        page.resumption_token = (token.text or "").strip() or None
        page.complete_list_size = _int_attr(token, "completeListSize")
        page.cursor = _int_attr(token, "cursor")
    return page


def _record_to_paper(meta: ET.Element) -> Paper:
    authors = [
        {
            "keyname": _text(author, "{*}keyname"),
            "forenames": _text(author, "{*}forenames"),
            "suffix": _text(author, "{*}suffix"),
        }
        for author in meta.findall("{*}authors/{*}author")
    ]
    created = parse_date(_text(meta, "{*}created"))
    updated = parse_date(_text(meta, "{*}updated")) or created
    return Paper(
        id=_text(meta, "{*}id"),
        title=clean_title(_text(meta, "{*}title")),
        abstract=clean_abstract(_text(meta, "{*}abstract")),
        authors=format_authors(authors),
        categories=_text(meta, "{*}categories"),
        comments=_text(meta, "{*}comments"),
        journal_ref=_text(meta, "{*}journal-ref"),
        doi=_text(meta, "{*}doi"),
        license=_text(meta, "{*}license"),
        created=created,
        updated=updated,
    )
