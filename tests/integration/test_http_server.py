"""
Integration tests for the HTTP listeners.

Tests cover:
- Feed and groups endpoints answering "Success"
- Bad requests for other methods
- Health endpoint statistics
- Authentication mock
"""

import pytest
from aiohttp.test_utils import TestClient, TestServer

from bridge.feedpush_server.api.http_server import (
    AUTH_RESPONSE,
    SUCCESS_RESPONSE,
    create_auth_app,
    create_http_app,
)
from bridge.feedpush_server.config import BridgeConfig, PushApiConfig
from bridge.feedpush_server.connector import FeedConnector
from bridge.feedpush_server.push.memory import InMemoryPushClient

FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<gsafeed>
  <header><datasource>fileshare</datasource><feedtype>incremental</feedtype></header>
  <group>
    <record url="http://host/doc1" mimetype="text/plain">
      <acl inheritance-type="leaf-node"><principal>alice</principal></acl>
      <content>hello</content>
    </record>
  </group>
</gsafeed>
"""

GROUPS = b"""<?xml version="1.0" encoding="UTF-8"?>
<xmlgroups>
  <membership>
    <principal scope="group">eng</principal>
    <members><principal>alice</principal></members>
  </membership>
</xmlgroups>
"""


@pytest.fixture
def push():
    return InMemoryPushClient()


@pytest.fixture
def connector(push):
    config = BridgeConfig(
        push=PushApiConfig(
            organization_id="org",
            api_key="key",
            provider_id="provider",
            default_source_id="src",
        )
    )
    conn = FeedConnector(config, push)
    yield conn
    conn.close()


class TestFeedListener:
    """Tests for the feed listener application."""

    @pytest.mark.asyncio
    async def test_post_feed(self, connector, push):
        async with TestClient(TestServer(create_http_app(connector))) as client:
            response = await client.post("/xmlfeed", data=FEED)

            assert response.status == 200
            assert await response.text() == SUCCESS_RESPONSE

        assert push.documents("src") == ["http://host/doc1"]

    @pytest.mark.asyncio
    async def test_form_data_wrapped_feed(self, connector, push):
        body = b'--xyz\r\nContent-Disposition: form-data; name="data"\r\n\r\n' + FEED + b"--<<--xyz--"

        async with TestClient(TestServer(create_http_app(connector))) as client:
            response = await client.post("/xmlfeed", data=body)

            assert await response.text() == SUCCESS_RESPONSE

        assert push.documents("src") == ["http://host/doc1"]

    @pytest.mark.asyncio
    async def test_get_is_bad_request(self, connector):
        async with TestClient(TestServer(create_http_app(connector))) as client:
            response = await client.get("/xmlfeed")

            assert response.status == 400
            text = await response.text()
            assert text.startswith("Bad request '")
            assert text.endswith("/xmlfeed'.")

    @pytest.mark.asyncio
    async def test_malformed_feed_still_success(self, connector, push):
        """Connectors retry anything but Success, so failures are only logged."""
        async with TestClient(TestServer(create_http_app(connector))) as client:
            response = await client.post("/xmlfeed", data=b"<?xml version='1.0'?><gsafeed>")

            assert response.status == 200
            assert await response.text() == SUCCESS_RESPONSE

        assert push.calls == []
        assert len(connector.manager) == 0

    @pytest.mark.asyncio
    async def test_post_groups(self, connector, push):
        async with TestClient(TestServer(create_http_app(connector))) as client:
            response = await client.post("/xmlgroups", data=GROUPS)

            assert await response.text() == SUCCESS_RESPONSE

        assert ("provider", "eng") in push.identities

    @pytest.mark.asyncio
    async def test_put_groups_is_bad_request(self, connector):
        async with TestClient(TestServer(create_http_app(connector))) as client:
            response = await client.put("/xmlgroups", data=GROUPS)

            assert response.status == 400

    @pytest.mark.asyncio
    async def test_health(self, connector):
        async with TestClient(TestServer(create_http_app(connector))) as client:
            await client.post("/xmlfeed", data=FEED)
            response = await client.get("/v1/health")

            assert response.status == 200
            data = await response.json()

        assert data["healthy"] is True
        assert data["nodes"] == 1
        assert data["ready"] == 1
        assert data["known_roots"] == 1


class TestAuthListener:
    """Tests for the authentication mock."""

    @pytest.mark.asyncio
    async def test_client_login(self):
        async with TestClient(TestServer(create_auth_app())) as client:
            response = await client.post(
                "/accounts/ClientLogin", data={"Email": "user", "Passwd": "secret"}
            )

            assert response.status == 200
            assert await response.text() == AUTH_RESPONSE

    @pytest.mark.asyncio
    async def test_get_is_bad_request(self):
        async with TestClient(TestServer(create_auth_app())) as client:
            response = await client.get("/accounts/ClientLogin")

            assert response.status == 400
