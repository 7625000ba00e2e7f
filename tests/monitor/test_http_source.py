"""Tests for HttpPositionSource."""

import httpx
import pytest

from monitor.http_source import HttpPositionSource
from monitor.models import PositionFetchError


def make_source(handler) -> HttpPositionSource:
    client = httpx.AsyncClient(
        base_url="https://backend.test",
        transport=httpx.MockTransport(handler),
    )
    return HttpPositionSource(base_url="https://backend.test", client=client)


class TestHttpPositionSource:
    """Tests for fetching positions over HTTP."""

    @pytest.mark.asyncio
    async def test_fetch_list_body(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json=[{"symbol": "BTC"}])

        source = make_source(handler)
        positions = await source.fetch_open_positions()
        await source.close()

        assert positions == [{"symbol": "BTC"}]
        assert seen == ["/positions"]

    @pytest.mark.asyncio
    async def test_fetch_wrapped_body(self):
        source = make_source(
            lambda request: httpx.Response(200, json={"positions": [{"symbol": "ETH"}]})
        )

        positions = await source.fetch_open_positions()
        await source.close()

        assert positions == [{"symbol": "ETH"}]

    @pytest.mark.asyncio
    async def test_empty_list_is_valid(self):
        source = make_source(lambda request: httpx.Response(200, json=[]))

        assert await source.fetch_open_positions() == []
        await source.close()

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        source = make_source(lambda request: httpx.Response(503, text="unavailable"))

        with pytest.raises(PositionFetchError, match="HTTP 503"):
            await source.fetch_open_positions()
        await source.close()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        source = make_source(handler)

        with pytest.raises(PositionFetchError, match="unreachable"):
            await source.fetch_open_positions()
        await source.close()

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        source = make_source(lambda request: httpx.Response(200, text="not json"))

        with pytest.raises(PositionFetchError, match="invalid JSON"):
            await source.fetch_open_positions()
        await source.close()

    @pytest.mark.asyncio
    async def test_missing_positions_list(self):
        source = make_source(lambda request: httpx.Response(200, json={"status": "ok"}))

        with pytest.raises(PositionFetchError, match="no positions list"):
            await source.fetch_open_positions()
        await source.close()

    @pytest.mark.asyncio
    async def test_api_key_sent_as_bearer(self):
        source = HttpPositionSource(base_url="https://backend.test", api_key="secret")

        assert source._client.headers["Authorization"] == "Bearer secret"
        await source.close()
