"""
Coco Command Line - Composition Root

Wires the caches, resolver and services together and exposes them as CLI
sub-commands that print JSON to stdout.

Commands:
    indicators                       Fear & greed, BTC dominance, stocks, USD/KRW
    rate                             USD/KRW with its source
    proxy <provider> <path> [k=v..]  Cached GET through the upstream proxy
    logos <symbol> [<symbol> ...]    Resolve a working logo URL per symbol
    kimchi <SYMBOL=price> [...]      Kimchi premium against live Upbit tickers

Usage:
    python -m app.main indicators
    python -m app.main proxy upbit /v1/ticker markets=KRW-BTC
    python -m app.main kimchi BTCUSDT=65000 ETHUSDT=3400 --sort-by symbol
    coco logos BTC ETH PEPE
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional, Sequence, Set

import httpx

from core.config import settings, validate_configuration
from core.logging import logger, set_log_level
from services.coin_logos import CoinLogoService, LogoProber
from services.exchange_rate import ExchangeRateService
from services.kimchi import bitget_to_upbit, calculate_multiple_kimchi_premiums, filter_kimchi_results
from services.market_indicators import MarketIndicatorService
from services.upstream_proxy import UpstreamError, UpstreamProxy
from storage.fallback_resolver import FallbackResolver
from storage.ttl_cache import TTLCache


# ============================================
# Application Context
# ============================================

class AppContext:
    """
    Owns every long-lived object of one process.

    Each cache is an explicit instance with its own TTL; services receive
    theirs through the constructor. Network clients are opened on enter and
    closed on exit.

    Example:
        >>> async with AppContext() as ctx:
        ...     quote = await ctx.exchange_rate.get_usd_krw()
    """

    def __init__(self, config=None):
        self.config = config or settings

        self.proxy_cache = TTLCache(self.config.proxy_cache_ttl, name="proxy")
        self.news_cache = TTLCache(self.config.news_cache_ttl, name="proxy_news")
        self.cmc_cache = TTLCache(self.config.cmc_cache_ttl, name="proxy_cmc")
        self.indicator_cache = TTLCache(self.config.indicator_cache_ttl, name="indicators")
        self.exchange_rate_cache = TTLCache(self.config.exchange_rate_cache_ttl, name="exchange_rate")

        self.client: Optional[httpx.AsyncClient] = None
        self.prober = LogoProber(timeout=self.config.logo_attempt_timeout)

        self.proxy: Optional[UpstreamProxy] = None
        self.exchange_rate: Optional[ExchangeRateService] = None
        self.indicators: Optional[MarketIndicatorService] = None
        self.logos: Optional[CoinLogoService] = None

    async def __aenter__(self):
        self.client = httpx.AsyncClient(timeout=self.config.request_timeout)
        await self.prober.__aenter__()

        self.proxy = UpstreamProxy(
            self.proxy_cache,
            client=self.client,
            caches={"news": self.news_cache, "cmc": self.cmc_cache}
        )
        self.exchange_rate = ExchangeRateService(self.exchange_rate_cache, client=self.client)
        self.indicators = MarketIndicatorService(self.indicator_cache, client=self.client)
        self.logos = CoinLogoService(
            FallbackResolver(
                self.prober.probe,
                attempt_timeout=self.config.logo_attempt_timeout,
                name="logos"
            )
        )
        logger.debug("Application context ready")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            await self.prober.__aexit__(exc_type, exc_val, exc_tb)
        finally:
            if self.client is not None:
                await self.client.aclose()
                self.client = None
        logger.debug("Application context closed")


# ============================================
# Commands
# ============================================

def parse_pairs(items: Sequence[str]) -> Dict[str, str]:
    """
    Parse key=value arguments.

    Raises:
        ValueError: An item has no '='
    """
    pairs = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got '{item}'")
        pairs[key] = value
    return pairs


async def cmd_indicators(ctx: AppContext, args: argparse.Namespace) -> Any:
    indicators = await ctx.indicators.get_all()
    return indicators.model_dump(mode="json")


async def cmd_rate(ctx: AppContext, args: argparse.Namespace) -> Any:
    quote = await ctx.exchange_rate.get_usd_krw()
    return quote.model_dump(mode="json")


async def cmd_proxy(ctx: AppContext, args: argparse.Namespace) -> Any:
    return await ctx.proxy.get(args.provider, args.path, parse_pairs(args.params))


async def cmd_logos(ctx: AppContext, args: argparse.Namespace) -> Any:
    # Configured symbols are warmed together with the requested ones
    await ctx.logos.preload(ctx.config.logo_preload_symbols_list + list(args.symbols))
    urls = {symbol: await ctx.logos.resolve(symbol) for symbol in args.symbols}
    return {"logos": urls, "stats": ctx.logos.stats().model_dump()}


async def listed_krw_markets(ctx: AppContext) -> Set[str]:
    """KRW market codes currently listed on Upbit (e.g. {"KRW-BTC", ...})."""
    markets = await ctx.proxy.get("upbit", "/v1/market/all")
    if not isinstance(markets, list):
        raise UpstreamError("Upbit market list is not an array", status=500, endpoint="upbit")
    return {
        m["market"] for m in markets
        if isinstance(m, dict) and str(m.get("market", "")).startswith("KRW-")
    }


async def cmd_kimchi(ctx: AppContext, args: argparse.Namespace) -> Any:
    coins = [
        {"symbol": symbol.upper(), "price": float(price)}
        for symbol, price in parse_pairs(args.prices).items()
    ]
    mapped = {m for m in (bitget_to_upbit(c["symbol"]) for c in coins) if m}

    upbit_prices: Dict[str, Any] = {}
    if mapped:
        # Upbit rejects the whole ticker batch if one market is delisted
        listed = await listed_krw_markets(ctx)
        markets = sorted(mapped & listed)
        if markets:
            tickers = await ctx.proxy.get("upbit", "/v1/ticker", {"markets": ",".join(markets)})
            upbit_prices = {ticker["market"]: ticker for ticker in tickers}

    quote = await ctx.exchange_rate.get_usd_krw()
    results = calculate_multiple_kimchi_premiums(coins, upbit_prices, quote.rate)
    summary = filter_kimchi_results(
        results,
        available_only=args.available_only,
        min_premium=args.min_premium,
        max_premium=args.max_premium,
        sort_by=args.sort_by
    )
    return {
        "exchange_rate": quote.model_dump(mode="json"),
        "summary": summary.model_dump(mode="json"),
    }


COMMANDS = {
    "indicators": cmd_indicators,
    "rate": cmd_rate,
    "proxy": cmd_proxy,
    "logos": cmd_logos,
    "kimchi": cmd_kimchi,
}


# ============================================
# Entry Point
# ============================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="coco", description="Coco market-data tools")
    parser.add_argument("--log-level", help="Override LOG_LEVEL (DEBUG, INFO, ...)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("indicators", help="All market indicators")
    sub.add_parser("rate", help="USD/KRW exchange rate")

    proxy = sub.add_parser("proxy", help="Cached upstream GET")
    proxy.add_argument("provider", help="upbit, bitget, news or cmc")
    proxy.add_argument("path", help="Upstream path, e.g. /v1/ticker")
    proxy.add_argument("params", nargs="*", help="Query parameters as key=value")

    logos = sub.add_parser("logos", help="Resolve coin logo URLs")
    logos.add_argument("symbols", nargs="+", help="Symbols or USDT pairs")

    kimchi = sub.add_parser("kimchi", help="Kimchi premium for Bitget prices")
    kimchi.add_argument("prices", nargs="+", help="Bitget prices as SYMBOL=price (e.g. BTCUSDT=65000)")
    kimchi.add_argument("--available-only", action="store_true")
    kimchi.add_argument("--min-premium", type=float)
    kimchi.add_argument("--max-premium", type=float)
    kimchi.add_argument("--sort-by", default="premium", choices=["premium", "symbol", "upbit_price"])

    return parser


async def run(args: argparse.Namespace) -> Any:
    async with AppContext() as ctx:
        return await COMMANDS[args.command](ctx, args)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.log_level:
        set_log_level(args.log_level)

    try:
        validate_configuration()
        result = asyncio.run(run(args))
    except UpstreamError as e:
        logger.error(f"Upstream error: {e.message}")
        print(json.dumps(e.to_dict(), ensure_ascii=False, indent=2))
        return 1
    except ValueError as e:
        logger.error(str(e))
        return 2

    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
