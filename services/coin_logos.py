"""
Coin Logo Resolution

Logo CDNs are unreliable: some block hot-linking, some lack newer coins,
some return HTML error pages with status 200. For each symbol we build an
ordered chain of candidate URLs and let a FallbackResolver find the first one
that actually serves an image:

    1. CoinMarketCap static CDN  (when the coin id is known)
    2. Iconify SVG set            (major coins)
    3. CoinGecko asset CDN        (when the coin id is known)
    4. CryptoCompare media        (by symbol)
    5. Placeholder image with the symbol's first two letters

The resolved URL is memoized per symbol; a symbol whose every URL failed is
not probed again until reset.

Usage:
    async with LogoProber(timeout=5) as prober:
        service = CoinLogoService(FallbackResolver(prober.probe, attempt_timeout=5, name="logos"))
        url = await service.resolve("BTCUSDT")
        await service.preload(["ETH", "SOL", "XRP"])
"""

from typing import Callable, Iterable, List, Optional

import aiohttp

from core.logging import get_logger
from core.schemas import ResolverStats
from storage.fallback_resolver import FallbackResolver, ResolutionState


# CoinMarketCap numeric ids
CMC_IDS = {
    "BTC": "1", "ETH": "1027", "USDT": "825", "BNB": "1839", "XRP": "52",
    "ADA": "2010", "DOGE": "74", "SOL": "5426", "DOT": "6636", "MATIC": "3890",
    "AVAX": "5805", "SHIB": "5994", "ATOM": "3794", "LTC": "2", "UNI": "7083",
    "LINK": "1975", "TRX": "1958", "APT": "21794", "ARB": "11841", "OP": "11840",
    "FIL": "2280", "ICP": "8916", "VET": "3077", "HBAR": "4642", "NEAR": "6535",
    "ALGO": "4030", "FLOW": "4558", "XTZ": "2011", "AAVE": "7278", "MKR": "1518",
    "COMP": "5692", "SNX": "2586", "CRV": "6538", "1INCH": "8104", "SUSHI": "6758",
    "YFI": "5864", "BAL": "5728", "LRC": "1934", "ZRX": "1896", "BAT": "1697",
    "MANA": "1966", "ENJ": "2130", "CHZ": "4066", "THETA": "2416", "FTM": "3513",
    "ZIL": "2469", "ICX": "2099", "QTUM": "1684", "ZEC": "1437", "XMR": "328",
    "EOS": "1765", "NEO": "1376", "XLM": "512", "BCH": "1831", "ETC": "1321",
    "IOTA": "1720", "SAND": "6210", "AXS": "6783", "GALA": "7080", "IMX": "10603",
    "APE": "18876", "DYDX": "11156", "RUNE": "4157", "KAVA": "4846", "STX": "4847",
    "GRT": "6719", "RNDR": "5690", "FET": "3773", "PENDLE": "9481", "JUP": "18547",
    "WLD": "13502", "ONDO": "13271", "SUI": "20947", "INJ": "7226", "SEI": "11035",
    "TIA": "22861", "PEPE": "24478", "WIF": "28752", "FLOKI": "10804", "BONK": "23095",
}

ICONIFY_SYMBOLS = {
    "BTC", "ETH", "USDT", "BNB", "XRP", "ADA", "DOGE", "SOL",
    "DOT", "MATIC", "AVAX", "ATOM", "LTC", "UNI", "LINK", "TRX",
}

COINGECKO_COIN_IDS = {
    "BTC": "bitcoin", "ETH": "ethereum", "USDT": "tether", "BNB": "binancecoin",
    "XRP": "ripple", "ADA": "cardano", "DOGE": "dogecoin", "SOL": "solana",
    "DOT": "polkadot", "MATIC": "matic-network", "AVAX": "avalanche-2",
    "SHIB": "shiba-inu", "ATOM": "cosmos", "LTC": "litecoin", "UNI": "uniswap",
    "LINK": "chainlink", "TRX": "tron", "APT": "aptos", "FIL": "filecoin",
    "NEAR": "near", "ALGO": "algorand", "AAVE": "aave", "SAND": "the-sandbox",
    "AXS": "axie-infinity", "MANA": "decentraland",
}

CRYPTOCOMPARE_SYMBOL_MAP = {"MIOTA": "IOTA"}


# ============================================
# URL Builders
# ============================================

def clean_symbol(symbol: Optional[str]) -> str:
    """'btcusdt' -> 'BTC'. The trailing USDT quote is dropped, the rest upper-cased."""
    if not symbol:
        return ""
    upper = symbol.strip().upper()
    if upper.endswith("USDT") and upper != "USDT":
        upper = upper[: -len("USDT")]
    return upper


def cmc_logo_url(symbol: str) -> Optional[str]:
    cmc_id = CMC_IDS.get(symbol)
    return f"https://s2.coinmarketcap.com/static/img/coins/64x64/{cmc_id}.png" if cmc_id else None


def iconify_logo_url(symbol: str) -> Optional[str]:
    if symbol not in ICONIFY_SYMBOLS:
        return None
    return f"https://api.iconify.design/cryptocurrency-color:{symbol.lower()}.svg"


def coingecko_logo_url(symbol: str) -> Optional[str]:
    coin_id = COINGECKO_COIN_IDS.get(symbol)
    return f"https://assets.coingecko.com/coins/images/1/large/{coin_id}.png" if coin_id else None


def cryptocompare_logo_url(symbol: str) -> str:
    mapped = CRYPTOCOMPARE_SYMBOL_MAP.get(symbol, symbol)
    return f"https://www.cryptocompare.com/media/37746251/{mapped.lower()}.png"


def placeholder_logo_url(symbol: str) -> str:
    return f"https://via.placeholder.com/64x64/3B82F6/FFFFFF?text={symbol[:2]}"


def get_logo_url_chain(symbol: str, include_placeholder: bool = True) -> List[str]:
    """
    Ordered, de-duplicated candidate logo URLs for a symbol.

    Example:
        >>> get_logo_url_chain("BTCUSDT")[0]
        'https://s2.coinmarketcap.com/static/img/coins/64x64/1.png'
        >>> get_logo_url_chain("")
        []
    """
    clean = clean_symbol(symbol)
    if not clean:
        return []

    urls = [
        cmc_logo_url(clean),
        iconify_logo_url(clean),
        coingecko_logo_url(clean),
        cryptocompare_logo_url(clean),
    ]
    if include_placeholder:
        urls.append(placeholder_logo_url(clean))

    return list(dict.fromkeys(url for url in urls if url))


# ============================================
# HTTP Probe
# ============================================

class LogoProber:
    """
    Checks whether a URL serves an image.

    Used as the resolver's attempt function. A URL passes only with HTTP 200
    and an image/* content type; anything else, including transport errors,
    is a failure (never an exception).

    Example:
        >>> async with LogoProber() as prober:
        ...     ok = await prober.probe("https://s2.coinmarketcap.com/static/img/coins/64x64/1.png")
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(__name__)

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        self.logger.debug("LogoProber session created")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.debug("LogoProber session closed")

    async def probe(self, url: str) -> bool:
        if not self.session:
            raise RuntimeError("Prober session not initialized. Use 'async with' statement.")

        try:
            async with self.session.get(url, allow_redirects=True) as resp:
                content_type = resp.headers.get("Content-Type", "")
                ok = resp.status == 200 and content_type.startswith("image/")
                if not ok:
                    self.logger.debug(f"Logo probe rejected {url}: HTTP {resp.status} ({content_type or 'no content type'})")
                return ok
        except aiohttp.ClientError as e:
            self.logger.debug(f"Logo probe failed for {url}: {e}")
            return False


# ============================================
# Service
# ============================================

class CoinLogoService:
    """
    Per-symbol logo resolution on top of a FallbackResolver.

    Symbols are normalized with clean_symbol, so "BTCUSDT", "btc" and "BTC"
    share one chain.

    Attributes:
        resolver: FallbackResolver whose attempt function checks a URL
        chain_fn: Builds candidate URLs for a cleaned symbol
    """

    def __init__(
        self,
        resolver: FallbackResolver,
        chain_fn: Callable[[str], List[str]] = get_logo_url_chain
    ):
        self.resolver = resolver
        self.chain_fn = chain_fn
        self.logger = get_logger(__name__)

    async def resolve(self, symbol: str, refresh: bool = False) -> Optional[str]:
        """
        Logo URL for symbol, or None when every candidate failed.

        Args:
            symbol: Coin symbol or USDT pair
            refresh: Forget any memoized success or failure first
        """
        key = clean_symbol(symbol)
        if refresh:
            self.resolver.reset(key)
        url = await self.resolver.resolve(key, self.chain_fn(key))
        if url is None:
            self.logger.debug(f"No logo available for {key or symbol!r}")
        return url

    async def preload(self, symbols: Iterable[str]) -> None:
        """Resolve many symbols concurrently (e.g. the visible table rows)."""
        keys = [k for k in (clean_symbol(s) for s in symbols) if k]
        await self.resolver.preload(keys, self.chain_fn)

    def status(self, symbol: str) -> ResolutionState:
        return self.resolver.state(clean_symbol(symbol))

    def reset(self, symbol: str) -> None:
        self.resolver.reset(clean_symbol(symbol))

    def clear(self) -> None:
        self.resolver.clear_all()

    def stats(self) -> ResolverStats:
        return self.resolver.stats()
