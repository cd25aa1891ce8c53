"""
Tests for the httpx push transport, against httpx.MockTransport.
"""

import httpx
import pytest

from dosepush.infrastructure.push_transport import HttpxPushTransport

ENDPOINT = "https://fcm.googleapis.com/fcm/send/abc123"
HEADERS = {
    "TTL": "60",
    "Authorization": "vapid t=a.b.c, k=PUBLIC",
    "Crypto-Key": "p256ecdsa=PUBLIC",
}


def make_transport(handler) -> HttpxPushTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpxPushTransport(client=client, timeout=12.0)


class TestHttpxPushTransport:
    """Tests for HttpxPushTransport.post."""

    @pytest.mark.asyncio
    async def test_created_is_success_and_request_is_empty_post(self):
        """Test a 201 response and the shape of the outgoing request."""
        captured = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(201)

        result = await make_transport(handler).post(ENDPOINT, HEADERS)

        assert result.ok is True
        assert result.status_code == 201
        assert result.error is None
        assert result.transport == "httpx"

        request = captured[0]
        assert request.method == "POST"
        assert str(request.url) == ENDPOINT
        assert request.content == b""
        assert request.headers["TTL"] == "60"
        assert request.headers["Authorization"] == "vapid t=a.b.c, k=PUBLIC"
        assert request.headers["Crypto-Key"] == "p256ecdsa=PUBLIC"

    @pytest.mark.asyncio
    async def test_gone_surfaces_status_and_body(self):
        """Test that a 410 keeps its status code for the caller to branch on."""
        result = await make_transport(lambda request: httpx.Response(410, text="push subscription has unsubscribed or expired.\n")).post(ENDPOINT, HEADERS)

        assert result.ok is False
        assert result.status_code == 410
        assert result.is_gone
        assert result.error == "push subscription has unsubscribed or expired."

    @pytest.mark.asyncio
    async def test_server_error_without_body(self):
        """Test the fallback error text for an empty error response."""
        result = await make_transport(lambda request: httpx.Response(500)).post(ENDPOINT, HEADERS)

        assert result.ok is False
        assert result.status_code == 500
        assert not result.is_gone
        assert result.error == "Push request failed with status 500."

    @pytest.mark.asyncio
    async def test_connection_error_never_raises(self):
        """Test that network errors become an error field."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await make_transport(handler).post(ENDPOINT, HEADERS)

        assert result.ok is False
        assert result.status_code == 0
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_timeout_never_raises(self):
        """Test that a hung push service becomes a timeout error."""
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        result = await make_transport(handler).post(ENDPOINT, HEADERS)

        assert result.ok is False
        assert result.status_code == 0
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self):
        """Test that a transport closes the client it created itself."""
        transport = HttpxPushTransport(timeout=1.0)
        client = transport._get_client()

        await transport.aclose()

        assert client.is_closed

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "url",
        ["https://push.example.com/send/\x01abc", "https://push.example.com/" + "a" * 70000],
    )
    async def test_unsendable_url_never_raises(self, url):
        """Test that URLs httpx refuses to build become an error field."""
        called = []

        def handler(request):
            called.append(request)
            return httpx.Response(201)

        result = await make_transport(handler).post(url, HEADERS)

        assert result.ok is False
        assert result.status_code == 0
        assert result.transport == "httpx"
        assert result.error
        assert called == []
