"""
Kimchi Premium Calculations

The kimchi premium is the spread between a coin's KRW price on Upbit and its
USD(T) price on Bitget converted to KRW:

    premium % = (upbit_krw - bitget_usd * usd_krw) / (bitget_usd * usd_krw) * 100

Prices come from the caller (tickers fetched through UpstreamProxy); this
module only maps symbols and does the arithmetic. Coins that cannot be
compared (no Upbit market, not listed, missing price) produce an
"unavailable" KimchiResult with a reason instead of raising.
"""

from typing import Any, Dict, Iterable, List, Optional

from core.logging import get_logger
from core.schemas import KimchiPremium, KimchiResult, KimchiStats, KimchiSummary
from core.utils.time import current_utc_datetime

logger = get_logger(__name__)

# Bitget USDT pair -> Upbit KRW market
SYMBOL_MAPPING: Dict[str, str] = {
    "BTCUSDT": "KRW-BTC",
    "ETHUSDT": "KRW-ETH",
    "XRPUSDT": "KRW-XRP",
    "ADAUSDT": "KRW-ADA",
    "DOTUSDT": "KRW-DOT",
    "LINKUSDT": "KRW-LINK",
    "LTCUSDT": "KRW-LTC",
    "BCHUSDT": "KRW-BCH",
    "EOSUSDT": "KRW-EOS",
    "TRXUSDT": "KRW-TRX",
    "XLMUSDT": "KRW-XLM",
    "ATOMUSDT": "KRW-ATOM",
    "VETUSDT": "KRW-VET",
    "IOTAUSDT": "KRW-IOTA",
    "NEOUSDT": "KRW-NEO",
    "MKRUSDT": "KRW-MKR",
    "BATUSDT": "KRW-BAT",
    "ZRXUSDT": "KRW-ZRX",
    "SNXUSDT": "KRW-SNX",
    "COMPUSDT": "KRW-COMP",
    "YFIUSDT": "KRW-YFI",
    "UNIUSDT": "KRW-UNI",
    "AAVEUSDT": "KRW-AAVE",
    "SUSHIUSDT": "KRW-SUSHI",
    "CRVUSDT": "KRW-CRV",
    "1INCHUSDT": "KRW-1INCH",
    "ALPHAUSDT": "KRW-ALPHA",
    "ANKRUSDT": "KRW-ANKR",
    "AXSUSDT": "KRW-AXS",
    "CHZUSDT": "KRW-CHZ",
    "ENJUSDT": "KRW-ENJ",
    "FLOWUSDT": "KRW-FLOW",
    "ICXUSDT": "KRW-ICX",
    "KLAYUSDT": "KRW-KLAY",
    "MANAUSDT": "KRW-MANA",
    "SANDUSDT": "KRW-SAND",
    "THETAUSDT": "KRW-THETA",
    "MATICUSDT": "KRW-MATIC",
    "SOLUSDT": "KRW-SOL",
    "AVAXUSDT": "KRW-AVAX",
    "NEARUSDT": "KRW-NEAR",
    "DOGEUSDT": "KRW-DOGE",
}

REVERSE_SYMBOL_MAPPING: Dict[str, str] = {upbit: bitget for bitget, upbit in SYMBOL_MAPPING.items()}

# Premiums beyond this are logged as suspicious (stale price or bad rate)
ABNORMAL_PREMIUM_PCT = 20.0

SORT_KEYS = ("premium", "symbol", "upbit_price")


# ============================================
# Symbol Mapping
# ============================================

def bitget_to_upbit(bitget_symbol: str) -> Optional[str]:
    """'BTCUSDT' -> 'KRW-BTC', or None when Upbit has no market for it."""
    return SYMBOL_MAPPING.get((bitget_symbol or "").upper())


def upbit_to_bitget(upbit_market: str) -> Optional[str]:
    """'KRW-BTC' -> 'BTCUSDT', or None."""
    return REVERSE_SYMBOL_MAPPING.get((upbit_market or "").upper())


# ============================================
# Premium Arithmetic
# ============================================

def format_percent(value: Optional[float], decimals: int = 2) -> str:
    """Signed percentage string: 2.3141 -> '+2.31%'."""
    if value is None:
        return f"{0:.{decimals}f}%"
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.{decimals}f}%"


def calculate_kimchi(krw_price: Optional[float], usd_price: Optional[float], exchange_rate: Optional[float]) -> KimchiPremium:
    """
    Premium of krw_price over usd_price * exchange_rate.

    Missing or non-positive inputs give a zero premium.

    Example:
        >>> calculate_kimchi(91_000_000, 65_000, 1380).formatted
        '+1.45%'
    """
    if not krw_price or not usd_price or not exchange_rate or min(krw_price, usd_price, exchange_rate) <= 0:
        return KimchiPremium(premium=0.0, is_positive=False, formatted=format_percent(0.0))

    usd_in_krw = usd_price * exchange_rate
    premium = (krw_price - usd_in_krw) / usd_in_krw * 100

    if abs(premium) > ABNORMAL_PREMIUM_PCT:
        logger.warning(
            f"Abnormal kimchi premium detected: {premium:.2f}% "
            f"(krw={krw_price}, usd={usd_price}, rate={exchange_rate})"
        )

    return KimchiPremium(premium=premium, is_positive=premium > 0, formatted=format_percent(premium))


def _upbit_price(upbit_data: Dict[str, Any]) -> Optional[float]:
    # Normalized tickers carry "price", raw Upbit tickers "trade_price"
    price = upbit_data.get("price")
    if price is None:
        price = upbit_data.get("trade_price")
    return price


def calculate_kimchi_premium(
    bitget_symbol: str,
    bitget_price: Optional[float],
    upbit_prices: Dict[str, Any],
    exchange_rate: Optional[float]
) -> KimchiResult:
    """
    Kimchi premium for one coin.

    Args:
        bitget_symbol: Bitget pair, e.g. "BTCUSDT"
        bitget_price: Bitget price in USDT
        upbit_prices: Upbit tickers keyed by market ("KRW-BTC" -> {"price": ...})
        exchange_rate: USD/KRW

    Returns:
        KimchiResult with available=True and the premium, or
        available=False and one of mapping_not_found / upbit_not_listed /
        price_data_missing
    """
    upbit_market = bitget_to_upbit(bitget_symbol)
    if not upbit_market:
        return KimchiResult(
            available=False,
            bitget_symbol=bitget_symbol,
            reason="mapping_not_found",
            message="No Upbit market mapped for this symbol"
        )

    upbit_data = upbit_prices.get(upbit_market)
    if not upbit_data:
        return KimchiResult(
            available=False,
            bitget_symbol=bitget_symbol,
            upbit_market=upbit_market,
            reason="upbit_not_listed",
            message="Not listed on Upbit"
        )

    upbit_price = _upbit_price(upbit_data)
    if not upbit_price or not bitget_price or not exchange_rate:
        return KimchiResult(
            available=False,
            bitget_symbol=bitget_symbol,
            upbit_market=upbit_market,
            reason="price_data_missing",
            message="Price data missing"
        )

    return KimchiResult(
        available=True,
        bitget_symbol=bitget_symbol,
        upbit_market=upbit_market,
        bitget_price=bitget_price,
        upbit_price=upbit_price,
        exchange_rate=exchange_rate,
        kimchi=calculate_kimchi(upbit_price, bitget_price, exchange_rate),
        upbit_data=dict(upbit_data),
        calculated_at=current_utc_datetime()
    )


def calculate_multiple_kimchi_premiums(
    bitget_coins: List[Dict[str, Any]],
    upbit_prices: Dict[str, Any],
    exchange_rate: Optional[float]
) -> List[KimchiResult]:
    """
    Kimchi premium for each {"symbol", "price"} coin.

    Raises:
        ValueError: bitget_coins is not a list
    """
    if not isinstance(bitget_coins, list):
        raise ValueError("bitget_coins must be a list")

    results = []
    for coin in bitget_coins:
        try:
            results.append(
                calculate_kimchi_premium(coin["symbol"], coin.get("price"), upbit_prices, exchange_rate)
            )
        except Exception as e:
            symbol = coin.get("symbol") if isinstance(coin, dict) else None
            logger.warning(f"Kimchi calculation failed for {symbol}: {e}")
            results.append(KimchiResult(
                available=False,
                bitget_symbol=symbol if isinstance(symbol, str) else None,
                reason="calculation_error",
                message=str(e)
            ))
    return results


# ============================================
# Filtering & Statistics
# ============================================

def calculate_kimchi_stats(available_results: Iterable[KimchiResult]) -> KimchiStats:
    """Count/average/min/max over results that have a premium."""
    premiums = [r.kimchi.premium for r in available_results if r.available and r.kimchi]
    if not premiums:
        return KimchiStats()

    positive = sum(1 for p in premiums if p > 0)
    negative = sum(1 for p in premiums if p < 0)
    return KimchiStats(
        count=len(premiums),
        average_premium=sum(premiums) / len(premiums),
        max_premium=max(premiums),
        min_premium=min(premiums),
        positive_count=positive,
        negative_count=negative,
        neutral_count=len(premiums) - positive - negative
    )


def filter_kimchi_results(
    results: List[KimchiResult],
    available_only: bool = False,
    min_premium: Optional[float] = None,
    max_premium: Optional[float] = None,
    sort_by: str = "premium"
) -> KimchiSummary:
    """
    Filter and sort kimchi results.

    A premium bound drops unavailable results as well. Sorting by premium
    or upbit_price is descending with unavailable results last; sorting by
    symbol is alphabetical.

    Raises:
        ValueError: Unknown sort_by
    """
    if sort_by not in SORT_KEYS:
        raise ValueError(f"sort_by must be one of {', '.join(SORT_KEYS)}, got '{sort_by}'")

    filtered = list(results)
    if available_only:
        filtered = [r for r in filtered if r.available]
    if min_premium is not None:
        filtered = [r for r in filtered if r.available and r.kimchi.premium >= min_premium]
    if max_premium is not None:
        filtered = [r for r in filtered if r.available and r.kimchi.premium <= max_premium]

    if sort_by == "symbol":
        filtered.sort(key=lambda r: r.bitget_symbol or "")
    else:
        def value(r: KimchiResult) -> float:
            return r.kimchi.premium if sort_by == "premium" else (r.upbit_price or 0.0)

        # Stable: unavailable results keep their relative order at the end
        filtered.sort(key=lambda r: (not r.available, -value(r) if r.available else 0.0))

    available = [r for r in filtered if r.available]
    unavailable = [r for r in filtered if not r.available]
    return KimchiSummary(
        all=filtered,
        available=available,
        unavailable=unavailable,
        count={"total": len(filtered), "available": len(available), "unavailable": len(unavailable)},
        stats=calculate_kimchi_stats(available)
    )
