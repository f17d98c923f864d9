"""
Tests for Technical Indicators
==============================

Unit tests for the indicator calculations. These tests verify:
- Insufficient input yields None rather than a guess
- RSI edge cases (no losses, no gains)
- Moving averages, MACD, Bollinger Bands and ATR on known series
- Trend, momentum and volatility labels
- Relative strength against SPY
"""

import pytest

from tradepilot.analytics.indicators import (
    average_volume,
    calculate_atr,
    calculate_bollinger_bands,
    calculate_indicators,
    calculate_macd,
    calculate_relative_strength,
    calculate_rsi,
    calculate_sma,
    determine_momentum,
    determine_trend,
    determine_volatility,
)
from tradepilot.models import Momentum, Trend

from conftest import create_mock_candles, create_trending_candles


# =============================================================================
# Moving Average Tests
# =============================================================================

class TestMovingAverages:

    def test_sma_of_last_period(self):
        candles = create_mock_candles(list(range(1, 21)))
        assert calculate_sma(candles, 20) == 10.5
        assert calculate_sma(candles, 5) == 18.0

    def test_sma_insufficient(self):
        assert calculate_sma(create_mock_candles([1, 2, 3]), 5) is None


# =============================================================================
# RSI Tests
# =============================================================================

class TestRSI:
    """Tests for the Relative Strength Index."""

    def test_no_losses_is_100(self):
        """A window without a single losing period reads exactly 100."""
        candles = create_mock_candles([100 + i for i in range(15)])
        assert calculate_rsi(candles) == 100.0

    def test_no_gains_is_0(self):
        candles = create_mock_candles([100 - i for i in range(15)])
        assert calculate_rsi(candles) == 0.0

    def test_needs_period_plus_one(self):
        assert calculate_rsi(create_mock_candles([100 + i for i in range(14)])) is None

    def test_balanced_moves_read_50(self):
        closes = [100, 101] * 8
        assert calculate_rsi(create_mock_candles(closes[:15])) == 50.0

    def test_uptrend_with_pullbacks(self):
        rsi = calculate_rsi(create_trending_candles(60))
        assert 50 < rsi < 100


# =============================================================================
# MACD / Bollinger / ATR Tests
# =============================================================================

class TestMACD:

    def test_insufficient(self):
        assert calculate_macd(create_mock_candles([100 + i for i in range(25)])) is None

    def test_short_history_signal_equals_line(self):
        """Fewer than 34 candles leave no room for the 9-period signal EMA."""
        macd = calculate_macd(create_mock_candles([100 + i for i in range(30)]))
        assert macd.signal == macd.value
        assert macd.histogram == 0

    def test_rising_series_is_positive(self):
        macd = calculate_macd(create_trending_candles(80))
        assert macd.value > 0
        assert macd.histogram == pytest.approx(macd.value - macd.signal, abs=1e-3)


class TestBollingerBands:

    def test_flat_series(self):
        bands = calculate_bollinger_bands(create_mock_candles([50.0] * 25))
        assert bands.upper == bands.middle == bands.lower == 50.0
        assert bands.percent_b == 0.5

    def test_close_above_middle(self):
        bands = calculate_bollinger_bands(create_trending_candles(40))
        assert bands.lower < bands.middle < bands.upper
        assert bands.percent_b > 0.5

    def test_insufficient(self):
        assert calculate_bollinger_bands(create_mock_candles([1.0] * 10)) is None


class TestATR:

    def test_constant_range(self):
        candles = create_mock_candles([100.0] * 20, spread=0.5)
        assert calculate_atr(candles) == 1.0

    def test_insufficient(self):
        assert calculate_atr(create_mock_candles([100.0] * 14)) is None


# =============================================================================
# Label Tests
# =============================================================================

class TestLabels:

    @pytest.mark.parametrize("ma20,ma50,expected", [
        (110, 100, Trend.BULLISH),
        (90, 100, Trend.BEARISH),
        (100, 100, Trend.NEUTRAL),
        (None, 100, Trend.NEUTRAL),
    ])
    def test_trend(self, ma20, ma50, expected):
        assert determine_trend(ma20, ma50) is expected

    @pytest.mark.parametrize("rsi,expected", [
        (75, Momentum.STRONG),
        (25, Momentum.STRONG),
        (65, Momentum.MODERATE),
        (35, Momentum.MODERATE),
        (50, Momentum.WEAK),
        (None, Momentum.MODERATE),
    ])
    def test_momentum(self, rsi, expected):
        assert determine_momentum(rsi) is expected

    @pytest.mark.parametrize("atr,price,expected", [
        (0.5, 100, "low"),
        (2.0, 100, "normal"),
        (3.5, 100, "high"),
        (None, 100, "normal"),
    ])
    def test_volatility(self, atr, price, expected):
        assert determine_volatility(atr, price) == expected

    def test_average_volume_ignores_zero_bars(self):
        candles = create_mock_candles([1, 2, 3], volume=0) + create_mock_candles([4, 5], volume=100)
        assert average_volume(candles) == 100.0


class TestCalculateIndicators:

    def test_partial_history(self):
        """With 60 candles MA200 is absent but everything else is computed."""
        indicators = calculate_indicators(create_trending_candles(60))

        assert indicators.ma200 is None
        assert indicators.ma20 is not None
        assert indicators.ma50 is not None
        assert indicators.trend is Trend.BULLISH
        assert indicators.macd is not None
        assert indicators.to_dict()["trend"] == "bullish"

    def test_single_candle(self):
        indicators = calculate_indicators(create_mock_candles([100.0]))
        assert indicators.rsi14 is None
        assert indicators.macd is None
        assert indicators.trend is Trend.NEUTRAL


# =============================================================================
# Relative Strength Tests
# =============================================================================

class TestRelativeStrength:

    def test_outperforming(self):
        strength = calculate_relative_strength(65.0, 50.0)
        assert strength.differential == 15.0
        assert strength.interpretation == "outperforming"

    def test_underperforming(self):
        assert calculate_relative_strength(30.0, 45.5).interpretation == "underperforming"

    def test_band_edges_are_neutral(self):
        assert calculate_relative_strength(60.0, 50.0).interpretation == "neutral"
        assert calculate_relative_strength(40.0, 50.0).interpretation == "neutral"
