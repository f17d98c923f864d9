"""
Analytics
=========

Pure signal computations over candle series: technical indicators,
candlestick patterns and the market regime classifier.
"""

from tradepilot.analytics.indicators import calculate_indicators
from tradepilot.analytics.patterns import detect_patterns, significant_patterns
from tradepilot.analytics.regime import (
    MarketRegimeClassifier,
    RegimeThresholds,
    format_regime_for_prompt,
    get_regime_label,
)

__all__ = [
    "calculate_indicators",
    "detect_patterns",
    "significant_patterns",
    "MarketRegimeClassifier",
    "RegimeThresholds",
    "format_regime_for_prompt",
    "get_regime_label",
]
