"""
Unit tests for the metadata-and-url crawler.

Tests cover:
- Record building from response headers (doc controls, external metadata)
- Link following restricted to the root URL
- DELETE records for invalid URLs
"""

import json
from urllib.parse import quote

import httpx
import pytest

from bridge.feedpush_server.crawl.web_parser import (
    WebParser,
    acl_from_encoded_json,
    build_absolute_url,
    record_from_response,
)
from bridge.feedpush_server.feed.models import FeedError, InheritanceType, RecordAction

ROOT = "http://connector:5678/doc/"

ACL_JSON = json.dumps(
    {
        "inherit_from": "http://connector:5678/doc/folder",
        "inheritance_type": "CHILD_OVERRIDES",
        "entries": [{"scope": "user", "access": "permit", "name": "alice"}],
    }
)


class Site:
    """MockTransport handler serving a fixed set of pages."""

    def __init__(self, pages):
        self.pages = pages
        self.fetched = []

    def __call__(self, request):
        url = str(request.url)
        self.fetched.append(url)
        if url not in self.pages:
            return httpx.Response(404, text="not found")
        return self.pages[url]


def crawl(pages, delete_on_invalid_url=True):
    site = Site(pages)
    with httpx.Client(transport=httpx.MockTransport(site)) as client:
        records = WebParser(client).extract_records(ROOT, delete_on_invalid_url)
    return records, site


class TestHelpers:
    """Tests for URL and ACL helpers."""

    def test_build_absolute_url(self):
        assert build_absolute_url(ROOT, "a?x=1#top") == f"{ROOT}a"
        assert build_absolute_url(f"{ROOT}folder/", "../b") == f"{ROOT}b"
        assert build_absolute_url(ROOT, "http://other/x") == "http://other/x"

    def test_acl_from_encoded_json(self):
        acl = acl_from_encoded_json(quote(ACL_JSON), f"{ROOT}a")

        assert acl.document_url == f"{ROOT}a"
        assert acl.inherit_from == "http://connector:5678/doc/folder"
        assert acl.inheritance_type == InheritanceType.CHILD_OVERRIDES
        assert acl.principals[0].value == "alice"

    def test_acl_invalid_json(self):
        with pytest.raises(FeedError):
            acl_from_encoded_json("not-json", f"{ROOT}a")

    def test_acl_not_object(self):
        with pytest.raises(FeedError):
            acl_from_encoded_json(quote("[1, 2]"), f"{ROOT}a")


class TestRecordFromResponse:
    """Tests for record_from_response."""

    def test_headers(self):
        response = httpx.Response(
            200,
            headers=[
                ("X-gsa-doc-controls", f"acl={quote(ACL_JSON)}"),
                ("X-gsa-doc-controls", f"display_url={quote('http://view/a')}"),
                ("X-gsa-doc-controls", "lock=true"),
                ("X-gsa-external-metadata", "author=alice,title=Hello%20World"),
                ("Last-Modified", "Fri, 20 Jan 2017 21:07:26 GMT"),
                ("X-Custom", "value"),
            ],
            content=b"body",
        )

        record = record_from_response(f"{ROOT}a", response)

        assert record.action == RecordAction.ADD
        assert record.acl.principals[0].value == "alice"
        assert record.display_url == "http://view/a"
        assert record.lock
        assert record.last_modified.year == 2017
        metadata = record.metadata_dict()
        assert metadata["author"] == "alice"
        assert metadata["title"] == "Hello World"
        assert metadata["X-Custom"] == "value"
        assert record.body == b"body"

    def test_unknown_doc_control(self, caplog):
        response = httpx.Response(200, headers=[("X-gsa-doc-controls", "colour=blue")])

        record = record_from_response(f"{ROOT}a", response)

        assert record.acl is None
        assert "colour" in caplog.text

    def test_invalid_acl(self):
        response = httpx.Response(200, headers=[("X-gsa-doc-controls", "acl=%7Bbroken")])

        with pytest.raises(FeedError):
            record_from_response(f"{ROOT}a", response)


class TestWebParser:
    """Tests for WebParser.extract_records."""

    def test_follows_links_under_root(self):
        pages = {
            ROOT: httpx.Response(
                200,
                html='<a href="a">a</a> <a href="folder/">f</a> <a href="http://elsewhere/x">x</a>',
            ),
            f"{ROOT}a": httpx.Response(200, text="doc a", headers={"Content-Type": "text/plain"}),
            f"{ROOT}folder/": httpx.Response(200, html='<a href="b">b</a> <a href="../a">a</a>'),
            f"{ROOT}folder/b": httpx.Response(
                200, content=b"%PDF", headers={"Content-Type": "application/pdf"}
            ),
        }

        records, site = crawl(pages)

        assert [r.url for r in records] == [ROOT, f"{ROOT}a", f"{ROOT}folder/", f"{ROOT}folder/b"]
        assert all(r.action == RecordAction.ADD for r in records)
        assert "http://elsewhere/x" not in site.fetched
        assert len(site.fetched) == len(set(site.fetched))

    def test_binary_pages_are_not_parsed_for_links(self):
        pages = {
            ROOT: httpx.Response(
                200,
                content=b'<a href="hidden">x</a>',
                headers={"Content-Type": "application/octet-stream"},
            ),
        }

        records, site = crawl(pages)

        assert [r.url for r in records] == [ROOT]
        assert site.fetched == [ROOT]

    def test_invalid_url_becomes_delete(self):
        pages = {ROOT: httpx.Response(200, html='<a href="gone">gone</a>')}

        records, _ = crawl(pages)

        assert [(r.url, r.action) for r in records] == [
            (ROOT, RecordAction.ADD),
            (f"{ROOT}gone", RecordAction.DELETE),
        ]

    def test_invalid_url_ignored_without_flag(self):
        pages = {ROOT: httpx.Response(200, html='<a href="gone">gone</a>')}

        records, _ = crawl(pages, delete_on_invalid_url=False)

        assert [r.url for r in records] == [ROOT]

    def test_transport_error_becomes_delete(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        with httpx.Client(transport=httpx.MockTransport(refuse)) as client:
            records = WebParser(client).extract_records(ROOT)

        assert [(r.url, r.action) for r in records] == [(ROOT, RecordAction.DELETE)]

    def test_bad_acl_page_skipped_but_crawled(self):
        """A page with an unreadable ACL is skipped, its links are still followed."""
        pages = {
            ROOT: httpx.Response(
                200,
                html='<a href="a">a</a>',
                headers={"X-gsa-doc-controls": "acl=%7Bbroken"},
            ),
            f"{ROOT}a": httpx.Response(200, text="doc a"),
        }

        records, _ = crawl(pages)

        assert [r.url for r in records] == [f"{ROOT}a"]
