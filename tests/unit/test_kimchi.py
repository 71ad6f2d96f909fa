"""
Unit Tests for Kimchi Premium Calculations

These tests verify:
- Bitget <-> Upbit symbol mapping
- Premium arithmetic and percent formatting
- Per-coin results for unmapped, unlisted and price-less coins
- Batch calculation, statistics, filtering and sorting

Run with:
    pytest tests/unit/test_kimchi.py -v
"""

import pytest

from core.schemas import KimchiResult
from services.kimchi import (
    bitget_to_upbit,
    calculate_kimchi,
    calculate_kimchi_premium,
    calculate_kimchi_stats,
    calculate_multiple_kimchi_premiums,
    filter_kimchi_results,
    format_percent,
    upbit_to_bitget,
)


RATE = 1380.0

UPBIT_PRICES = {
    "KRW-BTC": {"market": "KRW-BTC", "trade_price": 91_000_000},
    "KRW-ETH": {"market": "KRW-ETH", "price": 4_600_000},
    "KRW-XRP": {"market": "KRW-XRP", "trade_price": 820},
}

BITGET_COINS = [
    {"symbol": "BTCUSDT", "price": 65_000},
    {"symbol": "ETHUSDT", "price": 3_400},
    {"symbol": "XRPUSDT", "price": 0.6},
    {"symbol": "SOLUSDT", "price": 140},
    {"symbol": "PEPEUSDT", "price": 0.00001},
]


# ============================================
# Tests for Symbol Mapping
# ============================================

class TestSymbolMapping:
    """Tests for bitget_to_upbit / upbit_to_bitget"""

    def test_known_symbols(self):
        assert bitget_to_upbit("BTCUSDT") == "KRW-BTC"
        assert bitget_to_upbit("dogeusdt") == "KRW-DOGE"
        assert upbit_to_bitget("KRW-ETH") == "ETHUSDT"

    def test_unknown_symbols(self):
        assert bitget_to_upbit("PEPEUSDT") is None
        assert upbit_to_bitget("KRW-PEPE") is None
        assert bitget_to_upbit("") is None


# ============================================
# Tests for Premium Arithmetic
# ============================================

class TestCalculateKimchi:
    """Tests for calculate_kimchi and format_percent"""

    def test_positive_premium(self):
        result = calculate_kimchi(91_000_000, 65_000, RATE)

        assert result.premium == pytest.approx(1.4493, abs=1e-4)
        assert result.is_positive is True
        assert result.formatted == "+1.45%"

    def test_negative_premium(self):
        result = calculate_kimchi(89_000_000, 65_000, RATE)

        assert result.premium < 0
        assert result.is_positive is False
        assert result.formatted.startswith("-")

    @pytest.mark.parametrize("krw, usd, rate", [
        (0, 65_000, RATE),
        (91_000_000, None, RATE),
        (91_000_000, 65_000, 0),
        (91_000_000, -1, RATE),
    ])
    def test_invalid_inputs_give_zero(self, krw, usd, rate):
        result = calculate_kimchi(krw, usd, rate)

        assert result.premium == 0.0
        assert result.is_positive is False
        assert result.formatted == "0.00%"

    def test_abnormal_premium_still_returned(self):
        result = calculate_kimchi(120_000_000, 65_000, RATE)

        assert result.premium > 20

    @pytest.mark.parametrize("value, expected", [
        (2.3141, "+2.31%"),
        (-0.5, "-0.50%"),
        (0, "0.00%"),
        (None, "0.00%"),
    ])
    def test_format_percent(self, value, expected):
        assert format_percent(value) == expected


# ============================================
# Tests for Per-Coin Results
# ============================================

class TestCalculateKimchiPremium:
    """Tests for calculate_kimchi_premium"""

    def test_available_with_trade_price(self):
        result = calculate_kimchi_premium("BTCUSDT", 65_000, UPBIT_PRICES, RATE)

        assert result.available is True
        assert result.upbit_market == "KRW-BTC"
        assert result.upbit_price == 91_000_000
        assert result.kimchi.formatted == "+1.45%"
        assert result.calculated_at is not None

    def test_available_with_normalized_price(self):
        result = calculate_kimchi_premium("ETHUSDT", 3_400, UPBIT_PRICES, RATE)

        assert result.available is True
        assert result.upbit_price == 4_600_000

    def test_mapping_not_found(self):
        result = calculate_kimchi_premium("PEPEUSDT", 0.00001, UPBIT_PRICES, RATE)

        assert result.available is False
        assert result.reason == "mapping_not_found"

    def test_upbit_not_listed(self):
        result = calculate_kimchi_premium("SOLUSDT", 140, UPBIT_PRICES, RATE)

        assert result.available is False
        assert result.reason == "upbit_not_listed"
        assert result.upbit_market == "KRW-SOL"

    def test_price_data_missing(self):
        result = calculate_kimchi_premium("BTCUSDT", None, UPBIT_PRICES, RATE)

        assert result.available is False
        assert result.reason == "price_data_missing"


# ============================================
# Tests for Batch, Stats and Filtering
# ============================================

class TestBatchAndFilter:
    """Tests for batch calculation, statistics and filter_kimchi_results"""

    def test_multiple_premiums(self):
        results = calculate_multiple_kimchi_premiums(BITGET_COINS, UPBIT_PRICES, RATE)

        assert len(results) == 5
        assert [r.available for r in results] == [True, True, True, False, False]

    def test_multiple_premiums_requires_list(self):
        with pytest.raises(ValueError):
            calculate_multiple_kimchi_premiums({"symbol": "BTCUSDT"}, UPBIT_PRICES, RATE)

    def test_malformed_coin_becomes_calculation_error(self):
        results = calculate_multiple_kimchi_premiums([{"price": 1.0}], UPBIT_PRICES, RATE)

        assert results[0].available is False
        assert results[0].reason == "calculation_error"

    def test_stats(self):
        results = calculate_multiple_kimchi_premiums(BITGET_COINS, UPBIT_PRICES, RATE)

        stats = calculate_kimchi_stats(results)

        assert stats.count == 3
        premiums = [r.kimchi.premium for r in results if r.available]
        assert stats.average_premium == pytest.approx(sum(premiums) / 3)
        assert stats.max_premium == max(premiums)
        assert stats.positive_count + stats.negative_count + stats.neutral_count == 3

    def test_stats_empty(self):
        stats = calculate_kimchi_stats([KimchiResult(available=False)])

        assert stats.count == 0
        assert stats.average_premium == 0.0

    def test_sort_by_premium_puts_unavailable_last(self):
        results = calculate_multiple_kimchi_premiums(BITGET_COINS, UPBIT_PRICES, RATE)

        summary = filter_kimchi_results(results)

        available = [r for r in summary.all if r.available]
        assert summary.all[:3] == available
        assert [r.kimchi.premium for r in available] == sorted(
            (r.kimchi.premium for r in available), reverse=True
        )
        assert summary.count == {"total": 5, "available": 3, "unavailable": 2}

    def test_sort_by_symbol(self):
        results = calculate_multiple_kimchi_premiums(BITGET_COINS, UPBIT_PRICES, RATE)

        summary = filter_kimchi_results(results, sort_by="symbol")

        assert [r.bitget_symbol for r in summary.all] == sorted(c["symbol"] for c in BITGET_COINS)

    def test_available_only_and_bounds(self):
        results = calculate_multiple_kimchi_premiums(BITGET_COINS, UPBIT_PRICES, RATE)

        summary = filter_kimchi_results(results, available_only=True, min_premium=0)

        assert all(r.available and r.kimchi.premium >= 0 for r in summary.all)
        assert summary.unavailable == []

    def test_unknown_sort_key(self):
        with pytest.raises(ValueError):
            filter_kimchi_results([], sort_by="volume")
