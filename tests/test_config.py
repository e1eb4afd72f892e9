"""
Tests for EngineConfig.
"""

from datetime import date

import pytest

from rezviz.config import EngineConfig
from rezviz.exceptions import ConfigurationError


class TestEngineConfig:
    """Test configuration defaults, validation and environment loading."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.baseline_start == date(1990, 10, 1)
        assert config.baseline_end == date(2020, 9, 30)
        assert config.lookback_days == 7
        assert config.min_water_years == 20
        assert config.max_attempts == 3
        assert config.failure_rate_threshold == 0.2

    def test_stats_period_label(self):
        assert EngineConfig().stats_period == "10/1/1990 - 9/30/2020"

    def test_with_baseline(self):
        config = EngineConfig().with_baseline(date(2000, 10, 1), date(2005, 9, 30))
        assert config.stats_period == "10/1/2000 - 9/30/2005"
        assert config.lookback_days == 7

    def test_frozen(self):
        config = EngineConfig()
        with pytest.raises(AttributeError):
            config.lookback_days = 3

    def test_rejects_inverted_baseline(self):
        with pytest.raises(ConfigurationError):
            EngineConfig(baseline_start=date(2020, 1, 1), baseline_end=date(2019, 1, 1))

    def test_rejects_bad_threshold(self):
        with pytest.raises(ConfigurationError):
            EngineConfig(failure_rate_threshold=1.5)

    def test_from_env(self):
        env = {
            "REZVIZ_LOOKBACK_DAYS": "3",
            "REZVIZ_MIN_WATER_YEARS": "25",
            "REZVIZ_BASELINE_START": "1995-10-01",
            "REZVIZ_TIMEOUT": "30",
            "REZVIZ_RISE_BASE_URL": "https://rise.test",
            "UNRELATED": "x",
        }
        config = EngineConfig.from_env(env)
        assert config.lookback_days == 3
        assert config.min_water_years == 25
        assert config.baseline_start == date(1995, 10, 1)
        assert config.timeout == 30.0
        assert config.rise_base_url == "https://rise.test"

    def test_from_env_overrides_win(self):
        config = EngineConfig.from_env({"REZVIZ_LOOKBACK_DAYS": "3"}, lookback_days=10)
        assert config.lookback_days == 10

    def test_from_env_invalid_value(self):
        with pytest.raises(ConfigurationError, match="REZVIZ_LOOKBACK_DAYS"):
            EngineConfig.from_env({"REZVIZ_LOOKBACK_DAYS": "seven"})
