"""
Test Suite

Contains unit tests for the market-data core.

Structure:
- tests/unit/: Tests for the storage primitives (TTL cache, fallback resolver),
  the services and the CLI wiring. Upstream HTTP is stubbed with
  httpx.MockTransport, fake aiohttp sessions or monkeypatched fetchers.

Uses pytest with pytest-asyncio for testing async functionality.
"""
