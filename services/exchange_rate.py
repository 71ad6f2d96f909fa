"""
USD/KRW Exchange Rate Service

The kimchi premium converts foreign USD prices into KRW, so every premium
depends on this rate. Sources are tried in order:

    1. Bank of Korea ECOS StatisticSearch (official reference rate, needs BOK_API_KEY)
    2. exchangerate-api.com  (rates.KRW)
    3. open.er-api.com       (conversion_rates.KRW / rates.KRW)
    4. settings.default_usd_krw

Only the official rate is cached (30 minutes by default). Backup and default
values are returned uncached so the official source is retried on the next
call.

Backup values outside 1200-1600 KRW are rejected as implausible.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from core.config import settings
from core.logging import get_logger, log_api_request
from core.schemas import ExchangeRateQuote
from core.utils.time import current_utc_datetime, date_string
from storage.ttl_cache import TTLCache


BOK_BASE_URL = "https://ecos.bok.or.kr/api"
BOK_SERVICE_NAME = "StatisticSearch"
BOK_STAT_CODE = "731Y001"     # KRW per USD
BOK_CYCLE_TYPE = "DD"         # daily
BOK_ITEM_CODE = "0000001"     # reference rate

CACHE_KEY = "bok_exchange_rate"

PLAUSIBLE_RANGE = (1200.0, 1600.0)


def _parse_exchangerate_api(data: Dict[str, Any]) -> Optional[float]:
    return (data.get("rates") or {}).get("KRW")


def _parse_er_api(data: Dict[str, Any]) -> Optional[float]:
    return (data.get("conversion_rates") or {}).get("KRW") or (data.get("rates") or {}).get("KRW")


BACKUP_APIS: List[Tuple[str, str, Callable[[Dict[str, Any]], Optional[float]]]] = [
    ("exchangerate-api", "https://api.exchangerate-api.com/v4/latest/USD", _parse_exchangerate_api),
    ("er-api", "https://open.er-api.com/v6/latest/USD", _parse_er_api),
]


class ExchangeRateService:
    """
    Resolves the USD/KRW rate through the official source, backups and a default.

    Example:
        >>> service = ExchangeRateService(TTLCache(1800, name="exchange_rate"))
        >>> quote = await service.get_usd_krw()
        >>> quote.source
        'bank_of_korea'
    """

    def __init__(
        self,
        cache: TTLCache,
        client: Optional[httpx.AsyncClient] = None,
        bok_api_key: Optional[str] = None,
        default_rate: Optional[float] = None,
        timeout: Optional[float] = None
    ):
        self.cache = cache
        self.bok_api_key = settings.bok_api_key if bok_api_key is None else bok_api_key
        self.default_rate = default_rate if default_rate is not None else settings.default_usd_krw
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._client = client
        self.logger = get_logger(__name__)

    async def get_usd_krw(self) -> ExchangeRateQuote:
        """
        Current USD/KRW rate. Never raises; the default rate is the last resort.
        """
        cached = self.cache.get(CACHE_KEY)
        if cached is not None:
            return cached

        try:
            quote = await self.fetch_bok_rate()
            self.cache.put(CACHE_KEY, quote)
            self.logger.info(f"Bank of Korea reference rate: {quote.rate} KRW ({quote.date})")
            return quote
        except Exception as e:
            self.logger.warning(f"Bank of Korea API failed: {e}")

        for name, url, parser in BACKUP_APIS:
            try:
                data = await self._get_json(url)
                rate = parser(data)
            except Exception as e:
                self.logger.warning(f"Backup exchange-rate API {name} failed: {e}")
                continue

            if isinstance(rate, (int, float)) and PLAUSIBLE_RANGE[0] < rate < PLAUSIBLE_RANGE[1]:
                self.logger.info(f"Using backup exchange-rate API ({name}): {rate} KRW")
                return ExchangeRateQuote(
                    rate=float(rate),
                    source=f"backup_{name}",
                    timestamp=current_utc_datetime(),
                    message=f"Bank of Korea API unavailable, using backup API: {name}"
                )
            self.logger.warning(f"Backup exchange-rate API {name} returned implausible rate: {rate!r}")

        self.logger.warning(f"All exchange-rate sources failed, using default: {self.default_rate} KRW")
        return ExchangeRateQuote(
            rate=self.default_rate,
            source="fallback_default",
            timestamp=current_utc_datetime(),
            message="All exchange-rate APIs failed, using default value"
        )

    async def fetch_bok_rate(self) -> ExchangeRateQuote:
        """
        Fetch the latest reference rate from Bank of Korea ECOS.

        Queries the last three days so weekends/holidays still return the
        most recent business day.

        Raises:
            RuntimeError: No API key configured, or no usable row in the response
        """
        if not self.bok_api_key:
            raise RuntimeError("Bank of Korea API key is not configured. Set BOK_API_KEY.")

        url = (
            f"{BOK_BASE_URL}/{BOK_SERVICE_NAME}/{self.bok_api_key}/json/kr/1/10/"
            f"{BOK_STAT_CODE}/{BOK_CYCLE_TYPE}/{date_string(3)}/{date_string()}/{BOK_ITEM_CODE}"
        )
        log_api_request("bank_of_korea", url.replace(self.bok_api_key, "API_KEY"))

        data = await self._get_json(url)
        rows = (data.get("StatisticSearch") or {}).get("row") or []
        if not rows:
            raise RuntimeError("Bank of Korea API returned no exchange-rate rows")

        latest = rows[-1]
        try:
            rate = float(latest.get("DATA_VALUE"))
        except (TypeError, ValueError):
            raise RuntimeError(f"Invalid exchange-rate value: {latest.get('DATA_VALUE')!r}")
        if rate <= 0:
            raise RuntimeError(f"Invalid exchange-rate value: {rate}")

        return ExchangeRateQuote(
            rate=rate,
            source="bank_of_korea",
            timestamp=current_utc_datetime(),
            date=latest.get("TIME"),
            message=f"Bank of Korea reference rate ({latest.get('TIME')})"
        )

    def clear_cache(self) -> None:
        self.cache.clear()

    async def _get_json(self, url: str) -> Dict[str, Any]:
        headers = {"User-Agent": "CoinTracker-BOK/1.0", "Accept": "application/json"}
        if self._client is not None:
            response = await self._client.get(url, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.json()
