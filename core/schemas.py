"""
Normalized Data Schemas

Pydantic models for everything the services hand back to callers:
cache/resolver diagnostics, market indicators, the USD/KRW quote and
kimchi premium results.

Models:
    - CacheStats / CacheEntryInfo: TTL cache diagnostics
    - ResolverStats: fallback resolver diagnostics
    - FearGreedIndex, CryptoGlobalData, ExchangeRates, StockQuote,
      StockIndicators, MarketIndicators: market indicator payloads
    - ExchangeRateQuote: USD/KRW rate with the source it came from
    - KimchiPremium, KimchiResult, KimchiStats, KimchiSummary: premium calculations

Indicator models use Optional fields throughout: an upstream that could not
be reached yields a model whose values are None rather than an exception.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict


# ============================================
# Cache / Resolver Diagnostics
# ============================================

class CacheStats(BaseModel):
    """
    Diagnostic snapshot of a TTL cache.

    approx_memory_bytes is the length of a JSON serialization of the stored
    entries. It is an estimate for dashboards, not an exact measurement.
    """

    name: str = Field(..., description="Cache instance name")
    ttl_seconds: float = Field(..., description="Fixed TTL of this cache instance")
    size: int = Field(..., ge=0, description="Number of stored entries (expired ones included until read)")
    keys: List[str] = Field(default_factory=list, description="Stored keys")
    approx_memory_bytes: int = Field(..., ge=0, description="Serialized-size estimate in bytes")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "proxy",
                "ttl_seconds": 10.0,
                "size": 2,
                "keys": ["upbit_/v1/ticker_{\"markets\": \"KRW-BTC\"}", "bitget_/api/v2/spot/market/tickers_{}"],
                "approx_memory_bytes": 5120
            }
        }
    )


class CacheEntryInfo(BaseModel):
    """Age information for one cache entry."""

    key: str
    age_seconds: float = Field(..., ge=0)
    expired: bool


class ResolverStats(BaseModel):
    """Counts of fallback chains per state."""

    name: str
    tracked: int = Field(..., ge=0, description="Keys with any recorded state")
    resolved: int = Field(..., ge=0)
    failed: int = Field(..., ge=0, description="Keys whose whole chain was exhausted")
    in_flight: int = Field(..., ge=0, description="Keys currently being attempted")


# ============================================
# Market Indicators
# ============================================

class FearGreedIndex(BaseModel):
    """Crypto Fear & Greed index (alternative.me)."""

    value: Optional[int] = Field(None, ge=0, le=100, description="Index value 0-100")
    classification: str = Field("unavailable", description="e.g. 'Extreme Fear', 'Greed'")
    timestamp: Optional[datetime] = Field(None, description="Index publication time in UTC")


class CryptoGlobalData(BaseModel):
    """Global crypto market figures (CoinGecko /global)."""

    btc_dominance: Optional[float] = Field(None, description="BTC share of total market cap (%)")
    total_market_cap: Optional[float] = Field(None, description="Total market cap in USD")
    total_volume_24h: Optional[float] = Field(None, description="24h volume in USD")
    market_cap_change_24h: Optional[float] = Field(None, description="24h market cap change (%)")


class ExchangeRates(BaseModel):
    """USD/KRW from the public exchange-rate feed."""

    usd_krw: Optional[float] = None
    last_update: Optional[str] = None
    change_24h: Optional[float] = None
    change_percent_24h: Optional[float] = None


class StockQuote(BaseModel):
    """A single index quote (Yahoo Finance chart meta)."""

    symbol: str
    name: str
    price: Optional[float] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None
    volume: Optional[float] = None
    last_update: Optional[datetime] = None


class StockIndicators(BaseModel):
    """Equity / dollar indices shown next to crypto indicators."""

    sp500: StockQuote
    nasdaq: StockQuote
    dxy: StockQuote


class MarketIndicators(BaseModel):
    """Combined indicator payload returned by MarketIndicatorService.get_all()."""

    fear_greed: FearGreedIndex
    btc_dominance: Optional[float] = None
    total_market_cap: Optional[float] = None
    sp500: StockQuote
    nasdaq: StockQuote
    dxy: StockQuote
    kimchi_premium: Optional[float] = Field(None, description="BTC kimchi premium (%)")
    usd_krw: Optional[float] = None
    last_update: datetime


# ============================================
# Exchange Rate
# ============================================

class ExchangeRateQuote(BaseModel):
    """
    USD/KRW rate together with where it came from.

    source is one of "bank_of_korea", "backup_<name>" or "fallback_default".
    """

    rate: float = Field(..., gt=0)
    source: str
    timestamp: datetime
    message: str = ""
    date: Optional[str] = Field(None, description="Reference date reported by the source (YYYYMMDD)")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "rate": 1382.5,
                "source": "bank_of_korea",
                "timestamp": "2024-01-01T09:00:00Z",
                "message": "Bank of Korea reference rate (20240101)",
                "date": "20240101"
            }
        }
    )


# ============================================
# Kimchi Premium
# ============================================

class KimchiPremium(BaseModel):
    """Premium of a KRW price over a USD price converted at a given rate."""

    premium: float = Field(..., description="Premium in percent")
    is_positive: bool
    formatted: str = Field(..., description="Signed percentage, e.g. '+2.31%'")


KimchiReason = Literal[
    "mapping_not_found",
    "upbit_not_listed",
    "price_data_missing",
    "calculation_error",
]


class KimchiResult(BaseModel):
    """
    Per-coin kimchi premium result.

    When available is False, reason/message explain why and the price
    fields may be missing.
    """

    available: bool
    bitget_symbol: Optional[str] = None
    upbit_market: Optional[str] = None
    reason: Optional[KimchiReason] = None
    message: Optional[str] = None
    bitget_price: Optional[float] = None
    upbit_price: Optional[float] = None
    exchange_rate: Optional[float] = None
    kimchi: Optional[KimchiPremium] = None
    upbit_data: Optional[Dict[str, Any]] = None
    calculated_at: Optional[datetime] = None


class KimchiStats(BaseModel):
    """Aggregate statistics over available kimchi results."""

    count: int = 0
    average_premium: float = 0.0
    max_premium: float = 0.0
    min_premium: float = 0.0
    positive_count: int = 0
    negative_count: int = 0
    neutral_count: int = 0


class KimchiSummary(BaseModel):
    """Filtered/sorted kimchi results with counts and stats."""

    all: List[KimchiResult]
    available: List[KimchiResult]
    unavailable: List[KimchiResult]
    count: Dict[str, int]
    stats: KimchiStats
