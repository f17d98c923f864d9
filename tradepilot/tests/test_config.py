"""
Tests for environment-driven configuration.
"""

import os
from unittest.mock import patch

from tradepilot.config import Config


class TestConfig:
    """Tests for environment-driven configuration."""

    def test_from_env(self):
        env = {
            "MARKET_DATA_PROVIDER": "Polygon",
            "POLYGON_API_KEY": "pk",
            "POLYGON_TIER": "starter",
            "AI_PROVIDER": "groq",
            "GROQ_API_KEY": "gk",
            "AI_DAILY_BUDGET": "-1",
            "WATCHLIST": "aapl, msft,,nvda",
            "INCLUDE_OPTIONS_LANGUAGE": "TRUE",
            "DAILY_BUDGET": "2500",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.market_data_provider == "polygon"
        assert config.market_data_api_key == "pk"
        assert config.market_data_tier == "starter"
        assert config.ai_api_key == "gk"
        assert config.ai_daily_budget == -1
        assert config.watchlist == ["AAPL", "MSFT", "NVDA"]
        assert config.include_options_language
        assert config.risk_settings.max_position_dollars == 250.0

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = Config.from_env()
        assert config.market_data_provider == "twelvedata"
        assert config.confidence_threshold == 60
        assert config.ai_api_key is None
        assert "SPY" in config.watchlist
