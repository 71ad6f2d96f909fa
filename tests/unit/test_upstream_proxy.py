"""
Unit Tests for the Upstream API Proxy

These tests verify that UpstreamProxy:
- Builds cache keys from provider, path and sorted query parameters
- Serves repeated requests from the TTL cache and refetches after expiry
- Maps upstream failures to UpstreamError with the right status
- Normalizes news and CoinMarketCap bodies

HTTP is served by httpx.MockTransport; nothing leaves the process.

Run with:
    pytest tests/unit/test_upstream_proxy.py -v
"""

import httpx
import pytest

from core.config import settings
from services.upstream_proxy import UpstreamError, UpstreamProxy
from storage.ttl_cache import TTLCache


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class Upstream:
    """Records requests and answers with a scripted handler"""

    def __init__(self, handler):
        self.handler = handler
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


def make_proxy(handler, clock=None):
    upstream = Upstream(handler)
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    cache = TTLCache(ttl_seconds=10, clock=clock or FakeClock(), name="proxy")
    return UpstreamProxy(cache, client=client), upstream


UPBIT_TICKER = [{"market": "KRW-BTC", "trade_price": 91_000_000}]


# ============================================
# Tests for Caching
# ============================================

class TestCaching:
    """Tests for cache keys and TTL behaviour"""

    def test_cache_key_format(self):
        key = UpstreamProxy.cache_key("upbit", "/v1/ticker", {"markets": "KRW-BTC"})

        assert key == 'upbit_/v1/ticker_{"markets": "KRW-BTC"}'

    def test_cache_key_ignores_param_order(self):
        a = UpstreamProxy.cache_key("bitget", "/api/v2/spot/market/tickers", {"b": "2", "a": "1"})
        b = UpstreamProxy.cache_key("bitget", "/api/v2/spot/market/tickers", {"a": "1", "b": "2"})

        assert a == b

    @pytest.mark.asyncio
    async def test_repeated_request_served_from_cache(self):
        proxy, upstream = make_proxy(lambda request: httpx.Response(200, json=UPBIT_TICKER))

        first = await proxy.get("upbit", "/v1/ticker", {"markets": "KRW-BTC"})
        second = await proxy.get("upbit", "/v1/ticker", {"markets": "KRW-BTC"})

        assert first == UPBIT_TICKER
        assert second == UPBIT_TICKER
        assert len(upstream.requests) == 1
        assert upstream.requests[0].url.host == "api.upbit.com"
        assert upstream.requests[0].url.params["markets"] == "KRW-BTC"

    @pytest.mark.asyncio
    async def test_different_params_are_different_entries(self):
        proxy, upstream = make_proxy(lambda request: httpx.Response(200, json=UPBIT_TICKER))

        await proxy.get("upbit", "/v1/ticker", {"markets": "KRW-BTC"})
        await proxy.get("upbit", "/v1/ticker", {"markets": "KRW-ETH"})

        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_refetches_after_ttl(self):
        clock = FakeClock()
        proxy, upstream = make_proxy(lambda request: httpx.Response(200, json=UPBIT_TICKER), clock)

        await proxy.get("upbit", "/v1/ticker")
        clock.now = 9.9
        await proxy.get("upbit", "/v1/ticker")
        assert len(upstream.requests) == 1

        clock.now = 10.1
        await proxy.get("upbit", "/v1/ticker")
        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_errors_are_not_cached(self):
        responses = [httpx.Response(502), httpx.Response(200, json=UPBIT_TICKER)]
        proxy, upstream = make_proxy(lambda request: responses.pop(0))

        with pytest.raises(UpstreamError):
            await proxy.get("upbit", "/v1/ticker")

        assert await proxy.get("upbit", "/v1/ticker") == UPBIT_TICKER
        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_clear_cache_and_status(self):
        proxy, upstream = make_proxy(lambda request: httpx.Response(200, json=UPBIT_TICKER))
        await proxy.get("upbit", "/v1/ticker")

        status = proxy.cache_status()
        assert status["success"] is True
        assert status["cache_size"] == 1
        assert status["cache_duration"] == 10
        assert status["entries"][0]["key"] == "upbit_/v1/ticker_{}"

        proxy.clear_cache()
        assert proxy.cache_status()["cache_size"] == 0

        await proxy.get("upbit", "/v1/ticker")
        assert len(upstream.requests) == 2


class TestProviderCaches:
    """Tests for per-provider cache lifetimes"""

    def make_split_proxy(self, handler, clock):
        upstream = Upstream(handler)
        client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        proxy = UpstreamProxy(
            TTLCache(ttl_seconds=10, clock=clock, name="proxy"),
            client=client,
            caches={
                "news": TTLCache(ttl_seconds=180, clock=clock, name="proxy_news"),
                "cmc": TTLCache(ttl_seconds=60, clock=clock, name="proxy_cmc"),
            }
        )
        return proxy, upstream

    @pytest.mark.asyncio
    async def test_cmc_response_outlives_ticker_ttl(self, monkeypatch):
        """A CoinMarketCap response is still served from cache 30s after the fetch"""
        monkeypatch.setattr(settings, "cmc_api_key", "test-key")
        clock = FakeClock()
        proxy, upstream = self.make_split_proxy(
            lambda request: httpx.Response(200, json={"data": [{"symbol": "BTC"}]}), clock
        )

        await proxy.get("cmc", "")
        await proxy.get("upbit", "/v1/ticker")
        clock.now = 30
        await proxy.get("cmc", "")
        await proxy.get("upbit", "/v1/ticker")

        hosts = [r.url.host for r in upstream.requests]
        assert hosts.count("pro-api.coinmarketcap.com") == 1
        assert hosts.count("api.upbit.com") == 2

        clock.now = 60.5
        await proxy.get("cmc", "")
        assert [r.url.host for r in upstream.requests].count("pro-api.coinmarketcap.com") == 2

    @pytest.mark.asyncio
    async def test_news_kept_for_three_minutes(self):
        clock = FakeClock()
        proxy, upstream = self.make_split_proxy(lambda request: httpx.Response(200, json=[{"title": "x"}]), clock)

        await proxy.get("news", "")
        clock.now = 179
        await proxy.get("news", "")

        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_clear_and_status_cover_every_cache(self, monkeypatch):
        monkeypatch.setattr(settings, "cmc_api_key", "test-key")
        proxy, _ = self.make_split_proxy(lambda request: httpx.Response(200, json={"data": []}), FakeClock())
        await proxy.get("cmc", "")
        await proxy.get("upbit", "/v1/ticker")

        status = proxy.cache_status()
        assert status["cache_size"] == 2
        assert status["provider_durations"] == {"upbit": 10, "bitget": 10, "news": 180, "cmc": 60}
        assert len(status["entries"]) == 2

        proxy.clear_cache()
        assert proxy.cache_status()["cache_size"] == 0

    def test_unknown_provider_cache_rejected(self):
        with pytest.raises(ValueError):
            UpstreamProxy(TTLCache(ttl_seconds=10), caches={"binance": TTLCache(ttl_seconds=5)})


# ============================================
# Tests for Error Mapping
# ============================================

class TestErrors:
    """Tests for UpstreamError mapping"""

    @pytest.mark.asyncio
    async def test_unknown_provider_rejected(self):
        proxy, upstream = make_proxy(lambda request: httpx.Response(200, json={}))

        with pytest.raises(ValueError):
            await proxy.get("binance", "/api/v3/ticker")
        assert upstream.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 404, 500, 503])
    async def test_upstream_status_forwarded(self, status):
        proxy, _ = make_proxy(lambda request: httpx.Response(status))

        with pytest.raises(UpstreamError) as exc_info:
            await proxy.get("bitget", "/api/v2/spot/market/tickers")

        assert exc_info.value.status == status
        assert exc_info.value.endpoint == "bitget"

    @pytest.mark.asyncio
    async def test_connection_error_is_503(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        proxy, _ = make_proxy(handler)

        with pytest.raises(UpstreamError) as exc_info:
            await proxy.get("upbit", "/v1/ticker")

        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_invalid_json_is_500(self):
        proxy, _ = make_proxy(lambda request: httpx.Response(200, content=b"<html>oops</html>"))

        with pytest.raises(UpstreamError) as exc_info:
            await proxy.get("upbit", "/v1/ticker")

        assert exc_info.value.status == 500

    def test_error_to_dict(self):
        error = UpstreamError("quota", status=429, endpoint="cmc", code="CMC_RATE_LIMIT", retry_after="60")

        assert error.to_dict() == {
            "success": False,
            "error": "quota",
            "status": 429,
            "endpoint": "cmc",
            "code": "CMC_RATE_LIMIT",
            "retryAfter": "60",
        }


# ============================================
# Tests for CoinMarketCap
# ============================================

class TestCoinMarketCap:
    """Tests for the cmc provider"""

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "cmc_api_key", "")
        proxy, upstream = make_proxy(lambda request: httpx.Response(200, json={}))

        with pytest.raises(UpstreamError) as exc_info:
            await proxy.get("cmc", "")

        assert exc_info.value.status == 503
        assert exc_info.value.code == "CMC_API_KEY_MISSING"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_listings_normalized_with_default_path(self, monkeypatch):
        monkeypatch.setattr(settings, "cmc_api_key", "test-key")
        body = {"status": {"error_code": 0}, "data": [{"symbol": "BTC"}]}
        proxy, upstream = make_proxy(lambda request: httpx.Response(200, json=body))

        result = await proxy.get("cmc", "/", {"limit": "1"})

        assert result["success"] is True
        assert result["data"] == [{"symbol": "BTC"}]
        assert result["source"] == "coinmarketcap"
        request = upstream.requests[0]
        assert request.url.path == "/v1/cryptocurrency/listings/latest"
        assert request.headers["X-CMC_PRO_API_KEY"] == "test-key"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_error(self, monkeypatch, status):
        monkeypatch.setattr(settings, "cmc_api_key", "bad-key")
        proxy, _ = make_proxy(lambda request: httpx.Response(status))

        with pytest.raises(UpstreamError) as exc_info:
            await proxy.get("cmc", "")

        assert exc_info.value.status == 401
        assert exc_info.value.code == "CMC_AUTH_ERROR"

    @pytest.mark.asyncio
    async def test_rate_limit(self, monkeypatch):
        monkeypatch.setattr(settings, "cmc_api_key", "test-key")
        proxy, _ = make_proxy(lambda request: httpx.Response(429, headers={"retry-after": "120"}))

        with pytest.raises(UpstreamError) as exc_info:
            await proxy.get("cmc", "")

        assert exc_info.value.code == "CMC_RATE_LIMIT"
        assert exc_info.value.retry_after == "120"


# ============================================
# Tests for News
# ============================================

class TestNews:
    """Tests for the best-effort news provider"""

    @pytest.mark.asyncio
    async def test_news_normalized_and_cached(self):
        body = {"data": [{"title": "BTC breaks 100k"}, {"title": "ETH upgrade"}]}
        proxy, upstream = make_proxy(lambda request: httpx.Response(200, json=body))

        result = await proxy.get("news", "", {"limit": "2"})
        await proxy.get("news", "", {"limit": "2"})

        assert result["success"] is True
        assert result["count"] == 2
        assert result["source"] == "coinness"
        assert upstream.requests[0].url.path == "/v1/news"
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_news_failure_returns_empty_fallback(self):
        responses = [httpx.Response(500), httpx.Response(200, json=[{"title": "later"}])]
        proxy, upstream = make_proxy(lambda request: responses.pop(0))

        result = await proxy.get("news", "")

        assert result["success"] is False
        assert result["data"] == []
        assert result["source"] == "fallback"

        # The fallback is not cached
        assert (await proxy.get("news", ""))["count"] == 1
        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 404])
    async def test_news_auth_and_not_found_raise(self, status):
        proxy, _ = make_proxy(lambda request: httpx.Response(status))

        with pytest.raises(UpstreamError) as exc_info:
            await proxy.get("news", "")

        assert exc_info.value.status == status
