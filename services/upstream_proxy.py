"""
Upstream API Proxy

Cached GET access to the third-party REST APIs the price tables read from:

    upbit  -> https://api.upbit.com        (KRW spot tickers)
    bitget -> https://api.bitget.com       (USDT spot tickers)
    news   -> https://api.coinness.com     (crypto news, optional bearer key)
    cmc    -> https://pro-api.coinmarketcap.com (listings, API key required)

Responses are memoized in a TTLCache keyed by provider, path and query so
that many clients polling the same ticker within the TTL window cost one
upstream call. Tickers share the default cache (10s); news (3 min) and
CoinMarketCap (1 min, quota-limited) can be given their own caches.

Error Handling:
    Failures raise UpstreamError carrying an HTTP-style status:
    - upstream answered with an error -> that status is forwarded
    - upstream unreachable / timed out -> 503
    - anything else (bad JSON, unexpected payload) -> 500
    News is best-effort: apart from 401/404 a failure returns an empty
    news payload instead of raising.

Usage:
    proxy = UpstreamProxy(
        TTLCache(ttl_seconds=10, name="proxy"),
        caches={"news": TTLCache(ttl_seconds=180, name="proxy_news")}
    )
    tickers = await proxy.get("upbit", "/v1/ticker", {"markets": "KRW-BTC"})
"""

import json
import time
from typing import Any, Dict, List, Optional

import httpx

from core.config import settings
from core.logging import get_logger, log_api_request, log_api_response
from core.utils.time import current_utc_datetime
from storage.ttl_cache import TTLCache


PROVIDERS = ("upbit", "bitget", "news", "cmc")

DEFAULT_PATHS = {
    "news": "/v1/news",
    "cmc": "/v1/cryptocurrency/listings/latest",
}

USER_AGENT = "CoinTracker-Proxy/1.0"


class UpstreamError(RuntimeError):
    """
    An upstream call failed.

    Attributes:
        status: HTTP-style status to report to the caller
        endpoint: Provider name (e.g. "upbit")
        code: Machine-readable code for well-known failures (optional)
        retry_after: Seconds to wait before retrying, for rate limits (optional)
    """

    def __init__(
        self,
        message: str,
        status: int = 500,
        endpoint: str = "",
        code: Optional[str] = None,
        retry_after: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.endpoint = endpoint
        self.code = code
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        """Error body in the shape clients of the proxy expect."""
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "status": self.status,
            "endpoint": self.endpoint,
        }
        if self.code:
            body["code"] = self.code
        if self.retry_after:
            body["retryAfter"] = self.retry_after
        return body


class UpstreamProxy:
    """
    Cached proxy for the upstream market-data APIs.

    Attributes:
        cache: Default TTLCache holding raw (or normalized) response bodies
        caches: Per-provider TTLCache overrides, e.g. longer-lived news and
                quota-limited CoinMarketCap responses
        timeout: Per-request timeout in seconds

    Notes:
        - Pass an httpx.AsyncClient to reuse connections (and to stub the
          network in tests); otherwise a client is opened per request
        - The injected client is never closed by the proxy
    """

    def __init__(
        self,
        cache: TTLCache,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        caches: Optional[Dict[str, TTLCache]] = None
    ):
        unknown = set(caches or {}) - set(PROVIDERS)
        if unknown:
            raise ValueError(f"Unknown provider cache(s): {', '.join(sorted(unknown))}")

        self.cache = cache
        self.caches = {provider: (caches or {}).get(provider, cache) for provider in PROVIDERS}
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._client = client
        self.logger = get_logger(__name__)
        self._base_urls = {
            "upbit": settings.upbit_base_url,
            "bitget": settings.bitget_base_url,
            "news": settings.coinness_base_url,
            "cmc": settings.cmc_base_url,
        }

    # ============================================
    # Public API
    # ============================================

    @staticmethod
    def cache_key(provider: str, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Build the cache key for a request.

        Example:
            >>> UpstreamProxy.cache_key("upbit", "/v1/ticker", {"markets": "KRW-BTC"})
            'upbit_/v1/ticker_{"markets": "KRW-BTC"}'
        """
        return f"{provider}_{path}_{json.dumps(params or {}, sort_keys=True)}"

    async def get(self, provider: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET path from provider, served from cache while fresh.

        Args:
            provider: One of "upbit", "bitget", "news", "cmc"
            path: Upstream path (e.g. "/v1/ticker"); "" or "/" selects the
                  provider's default endpoint where it has one
            params: Query parameters

        Returns:
            Parsed JSON body (news and cmc bodies are normalized)

        Raises:
            ValueError: Unknown provider
            UpstreamError: Upstream call failed
        """
        provider = provider.lower()
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown provider '{provider}'. Available: {', '.join(PROVIDERS)}")

        if path in ("", "/") and provider in DEFAULT_PATHS:
            path = DEFAULT_PATHS[provider]
        if not path.startswith("/"):
            path = f"/{path}"
        params = dict(params or {})

        cache = self.caches[provider]
        key = self.cache_key(provider, path, params)
        cached = cache.get(key)
        if cached is not None:
            return cached

        if provider == "news":
            return await self._get_news(key, path, params)

        data = await self._fetch(provider, path, params)
        if provider == "cmc":
            data = self._normalize_cmc(data)

        cache.put(key, data)
        return data

    def clear_cache(self) -> None:
        """Drop every cached response (operator-triggered refresh)."""
        for cache in self._distinct_caches():
            cache.clear()
        self.logger.info("Proxy cache cleared")

    def cache_status(self) -> Dict[str, Any]:
        """
        Size, TTL and per-entry age of the response caches.

        cache_duration is the default TTL; provider_durations lists the TTL
        each provider's responses are kept for.
        """
        caches = self._distinct_caches()
        return {
            "success": True,
            "cache_size": sum(len(cache) for cache in caches),
            "cache_duration": self.cache.ttl_seconds,
            "provider_durations": {p: c.ttl_seconds for p, c in self.caches.items()},
            "entries": [entry.model_dump() for cache in caches for entry in cache.entries()],
        }

    def _distinct_caches(self) -> List[TTLCache]:
        caches: List[TTLCache] = [self.cache]
        for cache in self.caches.values():
            if all(cache is not seen for seen in caches):
                caches.append(cache)
        return caches

    # ============================================
    # HTTP
    # ============================================

    def _headers(self, provider: str) -> Dict[str, str]:
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}

        if provider == "cmc":
            if not settings.cmc_api_key:
                raise UpstreamError(
                    "CoinMarketCap API key is not configured. Set CMC_API_KEY.",
                    status=503,
                    endpoint="cmc",
                    code="CMC_API_KEY_MISSING"
                )
            headers["X-CMC_PRO_API_KEY"] = settings.cmc_api_key
        elif provider == "news" and settings.coinness_api_key:
            headers["Authorization"] = f"Bearer {settings.coinness_api_key}"

        return headers

    async def _fetch(self, provider: str, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self._base_urls[provider]}{path}"
        headers = self._headers(provider)
        log_api_request(provider, path, params)

        started = time.perf_counter()
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, params=params, headers=headers, timeout=self.timeout)
            log_api_response(provider, path, response.status_code, time.perf_counter() - started)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            raise self._status_error(provider, e.response) from e
        except httpx.RequestError as e:
            self.logger.error(f"{provider} API connection error on {path}: {e}")
            raise UpstreamError(
                f"Network error: cannot reach the {provider} API",
                status=503,
                endpoint=provider
            ) from e
        except ValueError as e:
            self.logger.error(f"{provider} API returned invalid JSON on {path}: {e}")
            raise UpstreamError(f"Request error: {e}", status=500, endpoint=provider) from e

    def _status_error(self, provider: str, response: httpx.Response) -> UpstreamError:
        status = response.status_code
        self.logger.error(f"{provider} API error: {status} {response.reason_phrase}")

        if provider == "cmc" and status in (401, 403):
            return UpstreamError(
                "CoinMarketCap API authentication failed. Check the API key.",
                status=401, endpoint="cmc", code="CMC_AUTH_ERROR"
            )
        if provider == "cmc" and status == 429:
            return UpstreamError(
                "CoinMarketCap API quota exceeded.",
                status=429, endpoint="cmc", code="CMC_RATE_LIMIT",
                retry_after=response.headers.get("retry-after", "3600")
            )
        return UpstreamError(
            f"API error ({status}): {response.reason_phrase}",
            status=status,
            endpoint=provider
        )

    # ============================================
    # Provider-specific shaping
    # ============================================

    async def _get_news(self, key: str, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            raw = await self._fetch("news", path, params)
            data = self._normalize_news(raw)
        except UpstreamError as e:
            if e.status in (401, 404):
                raise
            self.logger.warning(f"News unavailable, returning empty list: {e.message}")
            return {
                "success": False,
                "data": [],
                "count": 0,
                "error": e.message,
                "timestamp": current_utc_datetime().isoformat(),
                "source": "fallback",
            }

        self.caches["news"].put(key, data)
        return data

    @staticmethod
    def _normalize_news(raw: Any) -> Dict[str, Any]:
        if not isinstance(raw, (dict, list)):
            raise UpstreamError("Invalid response format from CoinNess API", status=500, endpoint="news")

        if isinstance(raw, dict) and "data" in raw:
            raw = raw["data"]
        items: List[Any] = raw if isinstance(raw, list) else [raw]

        return {
            "success": True,
            "data": items,
            "count": len(items),
            "timestamp": current_utc_datetime().isoformat(),
            "source": "coinness",
        }

    @staticmethod
    def _normalize_cmc(raw: Any) -> Dict[str, Any]:
        if not isinstance(raw, dict):
            raise UpstreamError("Invalid response format from CoinMarketCap API", status=500, endpoint="cmc")

        return {
            "success": True,
            "data": raw.get("data", raw),
            "status": raw.get("status") or {"error_code": 0, "error_message": "OK"},
            "timestamp": current_utc_datetime().isoformat(),
            "source": "coinmarketcap",
        }
