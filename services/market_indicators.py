"""
Market Indicator Service

Fetches the indicators shown above the price tables and memoizes each one
for a few minutes:

    fear-greed        alternative.me Fear & Greed index
    crypto-global     CoinGecko global market (BTC dominance, total cap)
    exchange-rates    exchangerate-api USD -> KRW
    stock-indicators  Yahoo Finance chart meta for S&P 500, NASDAQ, DXY

Each fetcher reads its cache key first and only stores successful results.
A failing upstream is logged and yields a model with None values, so a
single broken provider never takes down the indicator bar.

Usage:
    service = MarketIndicatorService(TTLCache(ttl_seconds=300, name="indicators"))
    indicators = await service.get_all(price_data)
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from core.config import settings
from core.logging import get_logger, log_api_request
from core.schemas import (
    CacheStats,
    CryptoGlobalData,
    ExchangeRates,
    FearGreedIndex,
    MarketIndicators,
    StockIndicators,
    StockQuote,
)
from core.utils.time import current_utc_datetime, to_utc_datetime
from storage.ttl_cache import TTLCache


API_ENDPOINTS = {
    "fear_greed": "https://api.alternative.me/fng/",
    "coingecko_global": "https://api.coingecko.com/api/v3/global",
    "exchange_rate": "https://api.exchangerate-api.com/v4/latest/USD",
    "yahoo_finance": "https://query1.finance.yahoo.com/v8/finance/chart/",
}

# attribute name -> (Yahoo symbol, display name)
STOCK_SYMBOLS = {
    "sp500": ("^GSPC", "S&P 500"),
    "nasdaq": ("^IXIC", "NASDAQ"),
    "dxy": ("DX-Y.NYB", "US Dollar Index"),
}

BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


def _empty_stock_indicators() -> StockIndicators:
    return StockIndicators(**{
        attr: StockQuote(symbol=symbol, name=name)
        for attr, (symbol, name) in STOCK_SYMBOLS.items()
    })


class MarketIndicatorService:
    """
    Cached market indicator fetchers.

    Attributes:
        cache: TTLCache shared by all indicator keys (one TTL for the service)
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        cache: TTLCache,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None
    ):
        self.cache = cache
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._client = client
        self.logger = get_logger(__name__)

    # ============================================
    # Individual Indicators
    # ============================================

    async def get_fear_greed_index(self) -> FearGreedIndex:
        cache_key = "fear-greed"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            data = await self._get_json(API_ENDPOINTS["fear_greed"])
            entries = data.get("data") or []
            if not entries:
                raise ValueError("Unexpected fear & greed payload")

            latest = entries[0]
            result = FearGreedIndex(
                value=int(latest["value"]),
                classification=latest.get("value_classification", "unknown"),
                timestamp=to_utc_datetime(latest["timestamp"]) if latest.get("timestamp") else None
            )
        except Exception as e:
            self.logger.error(f"Fear & greed index fetch failed: {e}")
            return FearGreedIndex()

        self.cache.put(cache_key, result)
        self.logger.info(f"Fear & greed: {result.value} ({result.classification})")
        return result

    async def get_crypto_global_data(self) -> CryptoGlobalData:
        cache_key = "crypto-global"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            data = await self._get_json(API_ENDPOINTS["coingecko_global"])
            body = data.get("data")
            if not body:
                raise ValueError("Unexpected global market payload")

            result = CryptoGlobalData(
                btc_dominance=(body.get("market_cap_percentage") or {}).get("bitcoin", 0),
                total_market_cap=(body.get("total_market_cap") or {}).get("usd", 0),
                total_volume_24h=(body.get("total_volume") or {}).get("usd", 0),
                market_cap_change_24h=body.get("market_cap_change_percentage_24h_usd", 0)
            )
        except Exception as e:
            self.logger.error(f"Crypto global data fetch failed: {e}")
            return CryptoGlobalData()

        self.cache.put(cache_key, result)
        self.logger.info(
            f"BTC dominance: {result.btc_dominance:.2f}%, "
            f"total market cap: ${result.total_market_cap / 1e12:.2f}T"
        )
        return result

    async def get_exchange_rates(self) -> ExchangeRates:
        cache_key = "exchange-rates"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            data = await self._get_json(API_ENDPOINTS["exchange_rate"])
            krw = (data.get("rates") or {}).get("KRW")
            if not krw:
                raise ValueError("KRW rate missing from payload")

            # No previous sample is kept, so the 24h change stays unknown
            result = ExchangeRates(usd_krw=float(krw), last_update=data.get("date"))
        except Exception as e:
            self.logger.error(f"Exchange rate fetch failed: {e}")
            return ExchangeRates()

        self.cache.put(cache_key, result)
        self.logger.info(f"USD/KRW: {result.usd_krw:.0f}")
        return result

    async def get_stock_indicators(self) -> StockIndicators:
        """
        S&P 500, NASDAQ and DXY quotes from Yahoo Finance.

        Quotes are fetched concurrently; a symbol that fails keeps None
        values. The result is cached only if at least one quote has a price.
        """
        cache_key = "stock-indicators"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        attrs = list(STOCK_SYMBOLS.keys())
        quotes = await asyncio.gather(
            *(self.fetch_yahoo_quote(*STOCK_SYMBOLS[attr]) for attr in attrs),
            return_exceptions=True
        )

        result = _empty_stock_indicators()
        for attr, quote in zip(attrs, quotes):
            if isinstance(quote, Exception):
                symbol = STOCK_SYMBOLS[attr][0]
                self.logger.error(f"Yahoo Finance quote failed ({symbol}): {quote}")
                continue
            setattr(result, attr, quote)

        if any(getattr(result, attr).price is not None for attr in attrs):
            self.cache.put(cache_key, result)
        return result

    async def fetch_yahoo_quote(self, symbol: str, name: str) -> StockQuote:
        """
        One quote from the Yahoo Finance chart endpoint.

        Raises:
            httpx.HTTPError, KeyError, ValueError: upstream or payload problems
        """
        data = await self._get_json(
            f"{API_ENDPOINTS['yahoo_finance']}{symbol}",
            headers={"User-Agent": BROWSER_USER_AGENT}
        )
        chart = data["chart"]["result"][0]
        meta = chart["meta"]
        price = float(meta["regularMarketPrice"])
        previous = float(meta.get("previousClose") or meta.get("chartPreviousClose") or 0)

        quote = (chart.get("indicators", {}).get("quote") or [{}])[0]
        volumes = [v for v in quote.get("volume") or [] if v is not None]
        market_time = meta.get("regularMarketTime")

        return StockQuote(
            symbol=meta.get("symbol", symbol),
            name=name,
            price=price,
            change=price - previous if previous else None,
            change_percent=(price - previous) / previous * 100 if previous else None,
            volume=volumes[-1] if volumes else None,
            last_update=to_utc_datetime(market_time) if market_time else None
        )

    # ============================================
    # Derived Indicators
    # ============================================

    def calculate_kimchi_premium(
        self,
        prices: Dict[str, Any],
        upbit_prices: Dict[str, Any],
        exchange_rate: Optional[float]
    ) -> Optional[float]:
        """
        BTC kimchi premium in percent from Bitget and Upbit tickers.

        Args:
            prices: Bitget tickers keyed by symbol ("BTCUSDT" -> {"price": ...})
            upbit_prices: Upbit tickers keyed by market ("KRW-BTC" -> {"trade_price": ...})
            exchange_rate: USD/KRW

        Returns:
            Premium in percent, or None when any input is missing
        """
        btc_price = (prices.get("BTCUSDT") or {}).get("price")
        upbit_btc_price = (upbit_prices.get("KRW-BTC") or {}).get("trade_price")

        if not btc_price or not upbit_btc_price or not exchange_rate:
            return None

        btc_price_krw = btc_price * exchange_rate
        premium = (upbit_btc_price - btc_price_krw) / btc_price_krw * 100
        self.logger.debug(f"Kimchi premium: {premium:.2f}%")
        return premium

    async def get_all(self, price_data: Optional[Dict[str, Any]] = None) -> MarketIndicators:
        """
        Every indicator in one payload.

        Args:
            price_data: Optional {"prices", "upbit_prices", "exchange_rate"}
                        used for the BTC kimchi premium

        Returns:
            MarketIndicators; an indicator whose fetch failed has None values
        """
        self.logger.info("Fetching all market indicators")
        fear_greed, crypto_global, exchange_rates, stocks = await asyncio.gather(
            self.get_fear_greed_index(),
            self.get_crypto_global_data(),
            self.get_exchange_rates(),
            self.get_stock_indicators(),
            return_exceptions=True
        )

        if isinstance(fear_greed, Exception):
            self.logger.error(f"Fear & greed failed: {fear_greed}")
            fear_greed = FearGreedIndex(classification="error")
        if isinstance(crypto_global, Exception):
            self.logger.error(f"Crypto global data failed: {crypto_global}")
            crypto_global = CryptoGlobalData()
        if isinstance(exchange_rates, Exception):
            self.logger.error(f"Exchange rates failed: {exchange_rates}")
            exchange_rates = ExchangeRates()
        if isinstance(stocks, Exception):
            self.logger.error(f"Stock indicators failed: {stocks}")
            stocks = _empty_stock_indicators()

        kimchi_premium = None
        price_data = price_data or {}
        if price_data.get("prices") and price_data.get("upbit_prices") and price_data.get("exchange_rate"):
            kimchi_premium = self.calculate_kimchi_premium(
                price_data["prices"], price_data["upbit_prices"], price_data["exchange_rate"]
            )

        return MarketIndicators(
            fear_greed=fear_greed,
            btc_dominance=crypto_global.btc_dominance,
            total_market_cap=crypto_global.total_market_cap,
            sp500=stocks.sp500,
            nasdaq=stocks.nasdaq,
            dxy=stocks.dxy,
            kimchi_premium=kimchi_premium,
            usd_krw=exchange_rates.usd_krw,
            last_update=current_utc_datetime()
        )

    # ============================================
    # Cache Management
    # ============================================

    def clear_cache(self) -> None:
        self.cache.clear()
        self.logger.info("Market indicator cache cleared")

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    # ============================================
    # HTTP
    # ============================================

    async def _get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        log_api_request("indicators", url)
        if self._client is not None:
            response = await self._client.get(url, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.json()
