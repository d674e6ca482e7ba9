"""
Recursive crawler for metadata-and-url feeds.

Legacy connectors running in metadata-and-url mode only announce root URLs;
the documents, their ACLs and their metadata are served by the connector
itself, as pages linking to each other with the per-document controls in
response headers.

Header mapping:
    X-gsa-doc-controls       acl=<url-encoded JSON> or <record attribute>=<value>
    X-gsa-external-metadata  comma separated name=value pairs, url-encoded
    Last-modified            record last-modified
    anything else            metadata named after the header

Invariants:
    - Only URLs starting with the root URL are crawled
    - Every URL is fetched at most once per crawl
    - Links are made absolute and lose their query string and fragment
    - Non-200 pages become DELETE records when delete_on_invalid_url is set

How to change safely:
    - Keep the crawl iterative (connector trees can be deep)
    - Test with httpx.MockTransport
"""

from __future__ import annotations

import json
import logging
from urllib.parse import unquote, urljoin, urlsplit, urlunsplit

import httpx
from bs4 import BeautifulSoup

from ..feed.models import FeedAcl, FeedError, FeedMeta, FeedRecord, RecordAction

logger = logging.getLogger(__name__)

DOC_CONTROLS_HEADER = "x-gsa-doc-controls"
EXTERNAL_METADATA_HEADER = "x-gsa-external-metadata"
LAST_MODIFIED_HEADER = "last-modified"


def build_absolute_url(base_url: str, link: str) -> str:
    """Resolve a link against the page that contains it, dropping query and fragment."""
    parts = urlsplit(urljoin(base_url, link.strip()))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def acl_from_encoded_json(value: str, document_url: str) -> FeedAcl:
    """Build an ACL from the url-encoded JSON of a doc-controls header.

    Raises:
        FeedError: If the value is not a JSON object
    """
    try:
        data = json.loads(unquote(value))
    except json.JSONDecodeError as e:
        raise FeedError(f"Invalid ACL JSON for {document_url}: {e}")
    if not isinstance(data, dict):
        raise FeedError(f"ACL of {document_url} is not a JSON object")
    return FeedAcl.from_dict(data, document_url)


def record_from_response(url: str, response: httpx.Response) -> FeedRecord:
    """Build an ADD record from a fetched page.

    Raises:
        FeedError: If the doc-controls ACL cannot be parsed
    """
    record = FeedRecord(url=url, action=RecordAction.ADD)
    metadata: list[FeedMeta] = []

    for raw_name, raw_value in response.headers.raw:
        name = raw_name.decode("latin-1")
        value = raw_value.decode("latin-1")
        key = name.lower()

        if key == DOC_CONTROLS_HEADER:
            control, _, control_value = value.partition("=")
            if control.strip().lower() == "acl":
                record.acl = acl_from_encoded_json(control_value, url)
            elif not record.set_property(control, unquote(control_value)):
                logger.warning(f"Unknown doc control '{control}' on {url}")
        elif key == EXTERNAL_METADATA_HEADER:
            for pair in value.split(","):
                meta_name, sep, meta_value = pair.partition("=")
                if not sep:
                    continue
                metadata.append(
                    FeedMeta(name=unquote(meta_name.strip()), content=unquote(meta_value))
                )
        elif key == LAST_MODIFIED_HEADER:
            record.last_modified_raw = value
        else:
            metadata.append(FeedMeta(name=unquote(name), content=unquote(value)))

    record.metadata = metadata
    record.body = response.content
    return record


class WebParser:
    """Crawls a connector's pages from a root URL.

    Example:
        >>> with httpx.Client() as client:
        ...     records = WebParser(client).extract_records("http://connector:5678/doc/")
        >>> [r.action for r in records]
        [<RecordAction.ADD: 'add'>, ...]
    """

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    def extract_records(self, root_url: str, delete_on_invalid_url: bool = True) -> list[FeedRecord]:
        """Crawl every page under root_url.

        Args:
            root_url: First page, and prefix every crawled URL must share
            delete_on_invalid_url: Emit DELETE records for pages that fail

        Returns:
            Records in crawl order (depth first, in link order)
        """
        records: list[FeedRecord] = []
        visited: set[str] = set()
        stack = [root_url]

        while stack:
            url = stack.pop()
            if url in visited:
                continue
            visited.add(url)

            try:
                response = self._client.get(url)
            except httpx.HTTPError as e:
                logger.warning(f"Invalid URL ({url}): {e}")
                if delete_on_invalid_url:
                    records.append(FeedRecord(url=url, action=RecordAction.DELETE))
                continue

            if response.status_code != httpx.codes.OK:
                logger.warning(f"Invalid URL ({url}). Code: {response.status_code}")
                if delete_on_invalid_url:
                    records.append(FeedRecord(url=url, action=RecordAction.DELETE))
                continue

            try:
                records.append(record_from_response(url, response))
            except FeedError as e:
                logger.error(f"Skipping {url}: {e}")

            links = [
                link
                for link in self._links(url, response)
                if link.startswith(root_url) and link not in visited
            ]
            stack.extend(reversed(links))

        logger.info(f"Crawled {len(visited)} URLs under {root_url}, {len(records)} records")
        return records

    @staticmethod
    def _links(page_url: str, response: httpx.Response) -> list[str]:
        content_type = response.headers.get("content-type", "")
        if content_type and not content_type.startswith("text/"):
            return []
        soup = BeautifulSoup(response.text, "html.parser")
        return [build_absolute_url(page_url, a["href"]) for a in soup.find_all("a", href=True)]
