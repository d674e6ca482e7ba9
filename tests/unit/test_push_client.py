"""
Unit tests for the HTTP push client and the Push API document model.

Tests cover:
- Endpoint paths, query parameters and headers
- Error mapping to PushApiError
- Ordering id monotonicity
- Document conversion from feed records
"""

import base64
import json
import zlib
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from bridge.feedpush_server.acl.permissions import (
    PermissionMaterializer,
    identity_for_acl,
)
from bridge.feedpush_server.config import PushApiConfig
from bridge.feedpush_server.feed.models import (
    ContentEncoding,
    FeedAcl,
    FeedContent,
    FeedMeta,
    FeedPrincipal,
    FeedRecord,
    InheritanceType,
    RecordAction,
)
from bridge.feedpush_server.push.base import (
    OrderingIdGenerator,
    PushApiError,
    PushClient,
    SourceStatus,
)
from bridge.feedpush_server.push.http_client import HttpPushClient
from bridge.feedpush_server.push.models import COMPRESSION_TYPE, PushDocument, compress_content

CONFIG = PushApiConfig(
    push_endpoint="https://push.example.com/push/v1/",
    organization_id="org1",
    api_key="secret-key",
    provider_id="provider1",
    default_source_id="source1",
)

SOURCE_URL = "https://push.example.com/push/v1/organizations/org1/sources/source1"


class Recorder:
    """MockTransport handler keeping the requests it served."""

    def __init__(self, status_code=202):
        self.requests = []
        self.status_code = status_code

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(self.status_code, text="{}")


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def client(recorder):
    http = httpx.Client(transport=httpx.MockTransport(recorder))
    push = HttpPushClient(CONFIG, client=http)
    yield push
    push.close()


class TestHttpPushClient:
    """Tests for HttpPushClient."""

    def test_is_push_client(self, client):
        assert isinstance(client, PushClient)

    def test_add_document(self, client, recorder):
        document = PushDocument("http://host/doc1", metadata={"title": "Doc"}, data="hello")

        ordering_id = client.add_or_update_document("source1", document)

        request = recorder.requests[0]
        assert request.method == "PUT"
        assert str(request.url).startswith(f"{SOURCE_URL}/documents?")
        assert request.url.params["documentId"] == "http://host/doc1"
        assert request.url.params["orderingId"] == str(ordering_id)
        assert request.headers["Authorization"] == "Bearer secret-key"
        assert request.headers["Content-Type"] == "application/json"
        body = json.loads(request.content)
        assert body["title"] == "Doc"
        assert body["data"] == "hello"
        assert body["permissions"] == []

    def test_delete_document(self, client, recorder):
        client.delete_document("source1", "http://host/doc1")

        request = recorder.requests[0]
        assert request.method == "DELETE"
        assert request.url.path.endswith("/sources/source1/documents")
        assert request.url.params["documentId"] == "http://host/doc1"

    def test_delete_older_than(self, client, recorder):
        client.delete_documents_older_than("source1", 1234, 5)

        request = recorder.requests[0]
        assert request.method == "DELETE"
        assert request.url.path.endswith("/sources/source1/documents/olderthan")
        assert request.url.params["orderingId"] == "1234"
        assert request.url.params["queueDelay"] == "5"

    def test_update_status(self, client, recorder):
        client.update_source_status("source1", SourceStatus.REFRESH)

        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path.endswith("/sources/source1/status")
        assert request.url.params["statusType"] == "REFRESH"

    def test_identity(self, client, recorder):
        allow, _ = identity_for_acl(FeedAcl("http://host/doc1", principals=[FeedPrincipal("alice")]))

        client.add_or_update_identity("provider1", allow)

        request = recorder.requests[0]
        assert request.method == "PUT"
        assert request.url.path == "/push/v1/organizations/org1/providers/provider1/permissions"
        assert json.loads(request.content)["identity"]["name"] == "http://host/doc1-allowed"

    def test_ordering_ids_increase(self, client):
        first = client.delete_document("source1", "a")
        second = client.delete_document("source1", "b")

        assert second > first

    def test_error_status(self):
        http = httpx.Client(transport=httpx.MockTransport(Recorder(status_code=500)))
        client = HttpPushClient(CONFIG, client=http)

        with pytest.raises(PushApiError) as exc_info:
            client.update_source_status("source1", SourceStatus.IDLE)

        assert exc_info.value.status_code == 500
        assert "secret-key" not in str(exc_info.value)

    def test_transport_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = HttpPushClient(CONFIG, client=httpx.Client(transport=httpx.MockTransport(refuse)))

        with pytest.raises(PushApiError) as exc_info:
            client.delete_document("source1", "http://host/doc1")

        assert exc_info.value.status_code is None


class TestOrderingIdGenerator:
    """Tests for OrderingIdGenerator."""

    def test_strictly_increasing(self):
        ids = OrderingIdGenerator()

        values = [ids.next() for _ in range(1000)]

        assert values == sorted(set(values))

    def test_concurrent_unique(self):
        ids = OrderingIdGenerator()

        with ThreadPoolExecutor(max_workers=8) as pool:
            values = list(pool.map(lambda _: ids.next(), range(2000)))

        assert len(set(values)) == 2000


class TestPushDocument:
    """Tests for PushDocument conversion."""

    def test_text_content(self):
        record = FeedRecord(
            url="http://host/doc1",
            action=RecordAction.ADD,
            mimetype="text/plain",
            last_modified_raw="Fri, 20 Jan 2017 21:07:26 GMT",
            metadata=[FeedMeta("author", "alice")],
            content=FeedContent(base64.b64encode(b"hello").decode(), ContentEncoding.BASE64_BINARY),
        )

        body = PushDocument.from_record(record, []).to_dict()

        assert body["data"] == "hello"
        assert "compressedBinaryData" not in body
        assert body["author"] == "alice"
        assert body["MimeType"] == "text/plain"
        assert body["Url"] == "http://host/doc1"
        assert body["clickableuri"] == "http://host/doc1"
        assert body["Lock"] is False
        assert "DisplayUrl" not in body
        assert body["date"].startswith("2017-01-20T21:07:26")

    def test_display_url_is_clickable(self):
        record = FeedRecord(url="http://host/doc1", display_url="http://view/doc1")

        body = PushDocument.from_record(record, []).to_dict()

        assert body["clickableuri"] == "http://view/doc1"
        assert body["DisplayUrl"] == "http://view/doc1"

    def test_compressed_content_passthrough(self):
        compressed = base64.b64encode(zlib.compress(b"hello")).decode()
        record = FeedRecord(
            url="http://host/doc1",
            content=FeedContent(f"\n{compressed}\n", ContentEncoding.BASE64_COMPRESSED),
        )

        body = PushDocument.from_record(record, []).to_dict()

        assert body["compressedBinaryData"] == compressed
        assert body["compressionType"] == COMPRESSION_TYPE
        assert "data" not in body

    def test_crawled_body_compressed(self):
        record = FeedRecord(url="http://host/page", body=b"<html>page</html>")

        body = PushDocument.from_record(record, []).to_dict()

        raw = zlib.decompress(base64.b64decode(body["compressedBinaryData"]))
        assert raw == b"<html>page</html>"

    def test_no_content(self):
        body = PushDocument.from_record(FeedRecord(url="http://host/doc1"), []).to_dict()

        assert "data" not in body
        assert "compressedBinaryData" not in body
        assert "date" not in body

    def test_permissions(self):
        chain = [
            FeedAcl("http://host/doc1", InheritanceType.CHILD_OVERRIDES, "http://host/f"),
            FeedAcl("http://host/f", InheritanceType.LEAF_NODE),
        ]
        levels = PermissionMaterializer().materialize(chain).levels

        body = PushDocument.from_record(FeedRecord(url="http://host/doc1"), levels).to_dict()

        assert len(body["permissions"]) == 2
        allowed = body["permissions"][1]["permissionSets"][0]["allowedPermissions"]
        assert allowed[0]["identity"] == "http://host/f-allowed"

    def test_compress_content(self):
        encoded = compress_content(b"abc")

        assert zlib.decompress(base64.b64decode(encoded)) == b"abc"
