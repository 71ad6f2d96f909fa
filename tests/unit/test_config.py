"""
Unit Tests for Configuration Module

These tests verify that the configuration system works correctly:
- Settings are loaded from .env file
- Default values are applied when needed
- Validation catches invalid configurations
- Property methods work as expected

Run with:
    pytest tests/unit/test_config.py -v
"""

import pytest
from core.config import Settings, settings, validate_configuration


class TestConfigurationLoading:
    """Test that configuration loads correctly from .env"""

    def test_upstream_base_urls_loaded(self):
        """Verify every upstream base URL is an absolute http(s) URL"""
        for url in (settings.upbit_base_url, settings.bitget_base_url,
                    settings.coinness_base_url, settings.cmc_base_url):
            assert url.startswith("http")
            assert not url.endswith("/")

    def test_log_level_is_set(self):
        """Verify log level is configured"""
        assert settings.log_level is not None
        assert isinstance(settings.log_level, str)
        assert len(settings.log_level) > 0


class TestCacheSettings:
    """Test cache TTL defaults"""

    def test_default_ttls(self):
        """Verify the per-cache defaults (proxy 10s, news 3min, cmc 1min, indicators 5min, rate 30min)"""
        defaults = Settings(_env_file=None)
        assert defaults.proxy_cache_ttl == 10
        assert defaults.news_cache_ttl == 180
        assert defaults.cmc_cache_ttl == 60
        assert defaults.indicator_cache_ttl == 300
        assert defaults.exchange_rate_cache_ttl == 1800

    def test_ttls_are_positive(self):
        assert settings.proxy_cache_ttl > 0
        assert settings.indicator_cache_ttl > 0
        assert settings.exchange_rate_cache_ttl > 0

    def test_env_override(self, monkeypatch):
        """Verify TTLs can be overridden from the environment"""
        monkeypatch.setenv("PROXY_CACHE_TTL", "2.5")
        assert Settings(_env_file=None).proxy_cache_ttl == 2.5


class TestPreloadSymbolsParsing:
    """Test that logo preload symbols are parsed from a comma-separated string"""

    def test_preload_symbols_are_uppercase_and_trimmed(self):
        config = Settings(_env_file=None, logo_preload_symbols=" btc, eth ,,sol ")
        assert config.logo_preload_symbols_list == ["BTC", "ETH", "SOL"]

    def test_empty_preload_list(self):
        config = Settings(_env_file=None, logo_preload_symbols="")
        assert config.logo_preload_symbols_list == []


class TestConfigurationValidation:
    """Test configuration validation function"""

    def test_validate_configuration_succeeds(self):
        """Verify validation passes with default configuration"""
        try:
            validate_configuration(Settings(_env_file=None))
        except ValueError as e:
            pytest.fail(f"Configuration validation failed: {e}")

    def test_validation_catches_invalid_log_level(self):
        with pytest.raises(ValueError, match="LOG_LEVEL"):
            validate_configuration(Settings(_env_file=None, log_level="LOUD"))

    @pytest.mark.parametrize("field", [
        "proxy_cache_ttl",
        "news_cache_ttl",
        "cmc_cache_ttl",
        "indicator_cache_ttl",
        "exchange_rate_cache_ttl",
        "logo_attempt_timeout",
    ])
    def test_validation_catches_non_positive_ttl(self, field):
        with pytest.raises(ValueError, match=field.upper()):
            validate_configuration(Settings(_env_file=None, **{field: 0}))

    def test_validation_catches_bad_timeout(self):
        with pytest.raises(ValueError, match="REQUEST_TIMEOUT"):
            validate_configuration(Settings(_env_file=None, request_timeout=0))


class TestEnvironmentVariables:
    """Test environment-specific settings"""

    def test_request_timeout_is_positive(self):
        """Verify request timeout is a positive number"""
        assert settings.request_timeout > 0
        assert isinstance(settings.request_timeout, int)

    def test_legacy_server_variables_are_ignored(self, monkeypatch):
        """Leftover DEBUG / ENVIRONMENT variables in .env must not break loading"""
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("ENVIRONMENT", "production")

        config = Settings(_env_file=None)

        assert not hasattr(config, "debug")
        assert not hasattr(config, "environment")

    def test_default_usd_krw_is_plausible(self):
        assert 1000 < Settings(_env_file=None).default_usd_krw < 2000


# ============================================
# Run Tests
# ============================================

if __name__ == "__main__":
    # Allow running this test file directly
    pytest.main([__file__, "-v"])
