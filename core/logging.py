"""
Unified Logging Configuration

Sets up one logging system for the whole application. Modules import the
logger from here instead of printing.

Usage:
    from core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Fetching fear & greed index")

Log Levels (from most to least verbose):
    DEBUG    - Cache hits/misses, candidate attempts, raw request details
    INFO     - Upstream calls made, caches cleared, logos resolved
    WARNING  - A fallback source was used, a candidate chain was exhausted
    ERROR    - An upstream call failed and an empty value was returned

Configuration:
    Log level is controlled by the LOG_LEVEL setting in .env file.
"""

import logging
import sys
from typing import Optional

ROOT_LOGGER_NAME = "coco"


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the application logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Include timestamp in log messages
        include_module: Include logger name in log messages

    Returns:
        logging.Logger: Configured "coco" logger

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Proxy cache cleared")
        2024-01-01 12:00:00 [INFO] coco Proxy cache cleared
    """
    if log_format is None:
        format_parts = []
        if include_timestamp:
            format_parts.append("%(asctime)s")
        format_parts.append("[%(levelname)s]")
        if include_module:
            format_parts.append("%(name)s")
        format_parts.append("%(message)s")
        log_format = " ".join(format_parts)

    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    return root


# ============================================
# Initialize Logger with Settings
# ============================================

try:
    from core.config import settings
    log_level = settings.log_level if hasattr(settings, 'log_level') else "INFO"
except ImportError:
    log_level = "INFO"

logger = setup_logging(log_level=log_level)


# ============================================
# Convenience Functions
# ============================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger of the application logger.

    Args:
        name: Component name (typically __name__)

    Returns:
        logging.Logger: e.g. "coco.storage.ttl_cache"
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def set_log_level(level: str) -> None:
    """
    Change the log level at runtime.

    Example:
        >>> set_log_level("DEBUG")
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(numeric)
    logging.getLogger().setLevel(numeric)


# ============================================
# Log Helper Functions
# ============================================

def log_api_request(provider: str, url: str, params: dict = None) -> None:
    """
    Log an outbound upstream request.

    Example:
        >>> log_api_request("upbit", "/v1/ticker", {"markets": "KRW-BTC"})
        [DEBUG] API Request: upbit /v1/ticker | Params: {'markets': 'KRW-BTC'}
    """
    if params:
        logger.debug(f"API Request: {provider} {url} | Params: {params}")
    else:
        logger.debug(f"API Request: {provider} {url}")


def log_api_response(provider: str, url: str, status: int, response_time: float = None) -> None:
    """
    Log an upstream response with status and timing.

    Example:
        >>> log_api_response("upbit", "/v1/ticker", 200, 0.121)
        [DEBUG] API Response: upbit /v1/ticker | Status: 200 | Time: 0.121s
    """
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    logger.debug(f"API Response: {provider} {url} | Status: {status}{time_str}")


def log_cache_event(cache_name: str, event: str, key: str = None, details: str = None) -> None:
    """
    Log a cache or resolver event with consistent formatting.

    "clear" and "exhausted" events are logged at INFO/WARNING, everything
    else (hit, miss, put, expired) at DEBUG.

    Example:
        >>> log_cache_event("indicators", "hit", "fear-greed")
        [DEBUG] Cache: indicators hit | Key: fear-greed
    """
    key_str = f" | Key: {key}" if key else ""
    details_str = f" | {details}" if details else ""

    if event == "exhausted":
        level = logging.WARNING
    elif event == "clear":
        level = logging.INFO
    else:
        level = logging.DEBUG
    logger.log(level, f"Cache: {cache_name} {event}{key_str}{details_str}")


logger.debug("Logging system initialized")
