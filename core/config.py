"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- One TTL per cache instance (proxy responses, indicators, exchange rate)
- Upstream base URLs and optional API keys
- Converts comma-separated strings to lists (logo preload symbols)

Usage:
    from core.config import settings

    print(settings.proxy_cache_ttl)
    print(settings.logo_preload_symbols_list)  # Returns a list of strings
"""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Application Settings

    Values are automatically loaded from environment variables or .env file.

    Attributes:
        log_level: Logging level name
        request_timeout: Timeout for outbound HTTP requests in seconds
        proxy_cache_ttl: TTL for raw upstream proxy responses (seconds)
        news_cache_ttl: TTL for news responses (seconds)
        cmc_cache_ttl: TTL for CoinMarketCap responses (seconds)
        indicator_cache_ttl: TTL for computed market indicators (seconds)
        exchange_rate_cache_ttl: TTL for the official USD/KRW rate (seconds)
        logo_attempt_timeout: Max seconds a single logo URL probe may take
        logo_preload_symbols: Comma-separated symbols resolved at startup
        default_usd_krw: Rate used when every exchange-rate source fails
    """

    # ============================================
    # Application Configuration
    # ============================================

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    request_timeout: int = Field(
        default=10,
        description="HTTP request timeout in seconds"
    )

    # ============================================
    # Caching Configuration
    # ============================================

    proxy_cache_ttl: float = Field(
        default=10.0,
        description="TTL in seconds for cached upstream proxy responses"
    )

    news_cache_ttl: float = Field(
        default=180.0,
        description="TTL in seconds for cached CoinNess news responses"
    )

    cmc_cache_ttl: float = Field(
        default=60.0,
        description="TTL in seconds for cached CoinMarketCap responses (quota-limited)"
    )

    indicator_cache_ttl: float = Field(
        default=300.0,
        description="TTL in seconds for computed market indicators"
    )

    exchange_rate_cache_ttl: float = Field(
        default=1800.0,
        description="TTL in seconds for the Bank of Korea USD/KRW rate"
    )

    # ============================================
    # Coin Logo Resolution
    # ============================================

    logo_attempt_timeout: float = Field(
        default=5.0,
        description="Seconds before a logo URL probe counts as failed"
    )

    logo_preload_symbols: str = Field(
        default="BTC,ETH,XRP,SOL,DOGE",
        description="Comma-separated symbols whose logos are resolved eagerly"
    )

    # ============================================
    # Upstream APIs
    # ============================================

    upbit_base_url: str = Field(
        default="https://api.upbit.com",
        description="Upbit REST API base URL"
    )

    bitget_base_url: str = Field(
        default="https://api.bitget.com",
        description="Bitget REST API base URL"
    )

    coinness_base_url: str = Field(
        default="https://api.coinness.com",
        description="CoinNess news API base URL"
    )

    cmc_base_url: str = Field(
        default="https://pro-api.coinmarketcap.com",
        description="CoinMarketCap API base URL"
    )

    bok_api_key: str = Field(
        default="",
        description="Bank of Korea ECOS API key (optional, enables the official rate)"
    )

    cmc_api_key: str = Field(
        default="",
        description="CoinMarketCap API key (required for the cmc provider)"
    )

    coinness_api_key: str = Field(
        default="",
        description="CoinNess API key (optional bearer token)"
    )

    default_usd_krw: float = Field(
        default=1366.56,
        description="USD/KRW rate used when every source fails"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    @property
    def logo_preload_symbols_list(self) -> List[str]:
        """
        Convert comma-separated preload symbols to a list.

        Example:
            >>> settings.logo_preload_symbols_list
            ['BTC', 'ETH', 'XRP', 'SOL', 'DOGE']
        """
        return [s.strip().upper() for s in self.logo_preload_symbols.split(",") if s.strip()]


# ============================================
# Global Settings Instance
# ============================================

settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings = None) -> None:
    """
    Validate critical configuration settings on application startup.

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    # Import logger here to avoid circular import
    # (logging.py imports config.py, so we can't import at module level)
    from core.logging import logger

    config = config or settings

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    for name in ("proxy_cache_ttl", "news_cache_ttl", "cmc_cache_ttl", "indicator_cache_ttl", "exchange_rate_cache_ttl", "logo_attempt_timeout"):
        value = getattr(config, name)
        if value <= 0:
            raise ValueError(f"{name.upper()} must be positive, got {value}")

    if config.request_timeout <= 0:
        raise ValueError(f"REQUEST_TIMEOUT must be positive, got {config.request_timeout}")

    logger.info("Configuration validated successfully")
    logger.info(f"Cache TTLs: proxy={config.proxy_cache_ttl}s, "
                f"news={config.news_cache_ttl}s, "
                f"cmc={config.cmc_cache_ttl}s, "
                f"indicators={config.indicator_cache_ttl}s, "
                f"exchange_rate={config.exchange_rate_cache_ttl}s")
    logger.info(f"Logo preload: {', '.join(config.logo_preload_symbols_list) or '(none)'}")
    logger.info(f"BOK API key: {'set' if config.bok_api_key else 'not set'}")
    logger.info(f"Log level: {config.log_level.upper()}")
