"""
Technical Indicators
====================

Pure functions computing the indicator readout that feeds the
recommendation prompt. Every function takes an ascending candle series
and returns None when there is not enough history, never raising on
short input.

Supported Indicators:
--------------------
- RSI(14): simple average gain / average loss over the trailing window
- SMA / EMA: EMA is seeded with the SMA of its first `period` values
- MACD(12, 26, 9): signal is a 9-period EMA of the MACD line once 34
  candles are available; with 26-33 candles the signal equals the MACD
  value and the histogram is 0
- Bollinger Bands(20, 2) with %B
- ATR(14)
- Relative strength: symbol RSI minus SPY RSI, +/-10 band

Derived labels:
- Trend: MA20 vs MA50
- Momentum: RSI beyond 70/30 is strong, beyond 60/40 moderate
- Volatility: ATR as a percentage of price

Usage:
------
    from tradepilot.analytics.indicators import calculate_indicators

    indicators = calculate_indicators(candles)
    print(indicators.rsi14, indicators.trend)
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from tradepilot.models import (
    BollingerBands,
    Candle,
    MACDResult,
    Momentum,
    TechnicalIndicators,
    Trend,
)

RSI_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
BOLLINGER_PERIOD = 20
BOLLINGER_STDDEV = 2.0
ATR_PERIOD = 14


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Convert a candle series to an OHLCV DataFrame indexed by time."""
    frame = pd.DataFrame(
        [(c.time, c.open, c.high, c.low, c.close, c.volume) for c in candles],
        columns=["time", "open", "high", "low", "close", "volume"],
    )
    return frame.set_index("time")


def _closes(candles: Sequence[Candle]) -> pd.Series:
    return pd.Series([c.close for c in candles], dtype="float64")


# =========================================================================
# Moving Averages
# =========================================================================

def ema_series(values: pd.Series, period: int) -> Optional[pd.Series]:
    """
    EMA series seeded with the SMA of the first `period` values.

    The returned series starts at position `period - 1` (the seed).
    """
    if period <= 0 or len(values) < period:
        return None
    seed = values.iloc[:period].mean()
    seeded = pd.concat([pd.Series([seed]), values.iloc[period:]], ignore_index=True)
    # adjust=False gives y[t] = (1 - k) * y[t-1] + k * x[t] with k = 2 / (period + 1)
    return seeded.ewm(span=period, adjust=False).mean()


def calculate_ema(values: Sequence[float], period: int) -> Optional[float]:
    series = ema_series(pd.Series(list(values), dtype="float64"), period)
    if series is None:
        return None
    return float(series.iloc[-1])


def calculate_sma(candles: Sequence[Candle], period: int) -> Optional[float]:
    if period <= 0 or len(candles) < period:
        return None
    return round(float(_closes(candles).iloc[-period:].mean()), 2)


# =========================================================================
# Momentum
# =========================================================================

def calculate_rsi(candles: Sequence[Candle], period: int = RSI_PERIOD) -> Optional[float]:
    """
    Relative Strength Index over the last `period` price changes.

    Returns None with fewer than period + 1 candles, and exactly 100
    when there were no losing periods in the window.
    """
    if len(candles) < period + 1:
        return None

    delta = _closes(candles).diff().iloc[-period:]
    avg_gain = delta.clip(lower=0).sum() / period
    avg_loss = (-delta.clip(upper=0)).sum() / period

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return round(float(100 - (100 / (1 + rs))), 2)


def calculate_macd(candles: Sequence[Candle]) -> Optional[MACDResult]:
    """
    MACD line, signal line and histogram.

    Returns None with fewer than 26 candles.
    """
    if len(candles) < MACD_SLOW:
        return None

    closes = _closes(candles)
    fast = ema_series(closes, MACD_FAST)
    slow = ema_series(closes, MACD_SLOW)

    # Align both EMA series on the candle index they end at
    fast = fast.iloc[MACD_SLOW - MACD_FAST:].reset_index(drop=True)
    macd_line = fast - slow

    value = float(macd_line.iloc[-1])
    signal_series = ema_series(macd_line, MACD_SIGNAL)
    signal = float(signal_series.iloc[-1]) if signal_series is not None else value

    return MACDResult(
        value=round(value, 4),
        signal=round(signal, 4),
        histogram=round(value - signal, 4),
    )


# =========================================================================
# Volatility
# =========================================================================

def calculate_bollinger_bands(
    candles: Sequence[Candle],
    period: int = BOLLINGER_PERIOD,
    num_std: float = BOLLINGER_STDDEV,
) -> Optional[BollingerBands]:
    if len(candles) < period:
        return None

    window = _closes(candles).iloc[-period:]
    middle = float(window.mean())
    std = float(window.std(ddof=0))
    upper = middle + num_std * std
    lower = middle - num_std * std
    close = float(window.iloc[-1])
    width = upper - lower
    percent_b = (close - lower) / width if width > 0 else 0.5

    return BollingerBands(
        upper=round(upper, 2),
        middle=round(middle, 2),
        lower=round(lower, 2),
        percent_b=round(percent_b, 4),
    )


def calculate_atr(candles: Sequence[Candle], period: int = ATR_PERIOD) -> Optional[float]:
    """Average True Range as a simple mean of the last `period` true ranges."""
    if len(candles) < period + 1:
        return None

    df = candles_to_frame(candles)
    prev_close = df["close"].shift(1)
    tr = pd.concat(
        [df["high"] - df["low"], (df["high"] - prev_close).abs(), (df["low"] - prev_close).abs()],
        axis=1,
    ).max(axis=1)
    return round(float(tr.iloc[-period:].mean()), 4)


# =========================================================================
# Labels
# =========================================================================

def determine_trend(ma20: Optional[float], ma50: Optional[float]) -> Trend:
    if ma20 is None or ma50 is None:
        return Trend.NEUTRAL
    if ma20 > ma50:
        return Trend.BULLISH
    if ma20 < ma50:
        return Trend.BEARISH
    return Trend.NEUTRAL


def determine_momentum(rsi: Optional[float]) -> Momentum:
    if rsi is None:
        return Momentum.MODERATE
    if rsi > 70 or rsi < 30:
        return Momentum.STRONG
    if rsi > 60 or rsi < 40:
        return Momentum.MODERATE
    return Momentum.WEAK


def determine_volatility(atr: Optional[float], price: float) -> str:
    if atr is None or not price:
        return "normal"
    atr_percent = atr / price * 100
    if atr_percent < 1.0:
        return "low"
    if atr_percent > 3.0:
        return "high"
    return "normal"


def calculate_indicators(candles: List[Candle]) -> TechnicalIndicators:
    """Compute the full indicator readout for a candle series."""
    rsi = calculate_rsi(candles)
    ma20 = calculate_sma(candles, 20)
    ma50 = calculate_sma(candles, 50)
    atr = calculate_atr(candles)
    price = candles[-1].close if candles else 0.0

    return TechnicalIndicators(
        rsi14=rsi,
        macd=calculate_macd(candles),
        ma20=ma20,
        ma50=ma50,
        ma200=calculate_sma(candles, 200),
        trend=determine_trend(ma20, ma50),
        momentum=determine_momentum(rsi),
        bollinger=calculate_bollinger_bands(candles),
        atr14=atr,
        volatility=determine_volatility(atr, price),
    )


def average_volume(candles: Sequence[Candle], lookback: int = 20) -> float:
    """Mean volume over the trailing window, ignoring zero-volume bars."""
    volumes = np.array([c.volume for c in candles[-lookback:] if c.volume], dtype="float64")
    return float(volumes.mean()) if volumes.size else 0.0


# =========================================================================
# Relative Strength
# =========================================================================

RELATIVE_STRENGTH_BAND = 10.0


@dataclass(frozen=True)
class RelativeStrength:
    """Symbol RSI compared with SPY RSI over the same window."""
    symbol_rsi: float
    spy_rsi: float
    differential: float
    interpretation: str


def calculate_relative_strength(symbol_rsi: float, spy_rsi: float) -> RelativeStrength:
    diff = round(symbol_rsi - spy_rsi, 2)
    if diff > RELATIVE_STRENGTH_BAND:
        interpretation = "outperforming"
    elif diff < -RELATIVE_STRENGTH_BAND:
        interpretation = "underperforming"
    else:
        interpretation = "neutral"
    return RelativeStrength(symbol_rsi, spy_rsi, diff, interpretation)
