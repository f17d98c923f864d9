"""
Candlestick Pattern Detection
=============================

Detects classic Japanese candlestick formations in an ascending candle
series and scores each occurrence for reliability.

Catalog:
- Single candle: Doji, Hammer, Hanging Man, Shooting Star, Inverted Hammer
- Two candle: Bullish/Bearish Engulfing, Piercing Line, Dark Cloud Cover,
  Bullish/Bearish Harami, Outside Up/Down
- Three candle: Morning Star, Evening Star
- Five candle: Breakaway Bullish/Bearish

Reliability score (0-100):
    base (historical accuracy of the pattern)
    + volume bonus (spike against the 20-candle average)
    + trend context (reversal patterns after the opposite move score higher)
    + formation quality (textbook proportions)
    + location (near round-number price levels)
    + regime alignment (+10 with the market, -10 against it)

Doji and Inside Bar carry no direction of their own. A Doji is reported
as bearish after an uptrend and bullish after a downtrend and dropped
otherwise; Inside Bar is never reported.
"""

from typing import Dict, List, Optional, Sequence, Tuple
import logging

from tradepilot.models import (
    Candle,
    DetectedPattern,
    MarketRegime,
    PatternType,
    RegimeType,
    Reliability,
)

logger = logging.getLogger(__name__)

SIGNIFICANT_SCORE = 50
HIGH_SCORE = 70
TREND_LOOKBACK = 5
TREND_THRESHOLD = 0.02
VOLUME_LOOKBACK = 20
DEFAULT_LOOKBACK = 100
REGIME_BONUS = 10

PATTERN_BASE_SCORES: Dict[str, int] = {
    "Doji": 35,
    "Hammer": 55,
    "Hanging Man": 50,
    "Shooting Star": 55,
    "Inverted Hammer": 45,
    "Bullish Engulfing": 70,
    "Bearish Engulfing": 70,
    "Piercing Line": 60,
    "Dark Cloud Cover": 60,
    "Bullish Harami": 40,
    "Bearish Harami": 40,
    "Outside Up": 55,
    "Outside Down": 55,
    "Morning Star": 75,
    "Evening Star": 75,
    "Breakaway Bullish": 80,
    "Breakaway Bearish": 80,
}

PATTERN_DESCRIPTIONS: Dict[str, str] = {
    "Doji": "Indecision candle - open and close nearly equal",
    "Hammer": "Bullish reversal after decline",
    "Hanging Man": "Bearish reversal after rally",
    "Shooting Star": "Bearish reversal at top of uptrend",
    "Inverted Hammer": "Bullish reversal signal after decline",
    "Bullish Engulfing": "Bullish reversal - green engulfs prior red",
    "Bearish Engulfing": "Bearish reversal - red engulfs prior green",
    "Piercing Line": "Bullish reversal - closes above midpoint",
    "Dark Cloud Cover": "Bearish reversal - closes below midpoint",
    "Bullish Harami": "Possible bullish reversal - small green in large red",
    "Bearish Harami": "Possible bearish reversal - small red in large green",
    "Outside Up": "Bullish momentum - exceeds prior range",
    "Outside Down": "Bearish momentum - exceeds prior range",
    "Morning Star": "Bullish reversal - three candle pattern",
    "Evening Star": "Bearish reversal - three candle pattern",
    "Breakaway Bullish": "Strong bullish breakout from consolidation",
    "Breakaway Bearish": "Strong bearish breakdown from consolidation",
}


# ============== CANDLE GEOMETRY ==============

def _body(c: Candle) -> float:
    return abs(c.close - c.open)


def _range(c: Candle) -> float:
    return c.high - c.low


def _upper_wick(c: Candle) -> float:
    return c.high - max(c.open, c.close)


def _lower_wick(c: Candle) -> float:
    return min(c.open, c.close) - c.low


def _is_bullish(c: Candle) -> bool:
    return c.close > c.open


def _is_bearish(c: Candle) -> bool:
    return c.close < c.open


def prior_trend(candles: Sequence[Candle]) -> str:
    """'up', 'down' or 'flat' from the close-to-close change of the window."""
    if len(candles) < TREND_LOOKBACK:
        return "flat"
    window = candles[-TREND_LOOKBACK:]
    first = window[0].close
    change = (window[-1].close - first) / first
    if change > TREND_THRESHOLD:
        return "up"
    if change < -TREND_THRESHOLD:
        return "down"
    return "flat"


# ============== SINGLE-CANDLE ==============

def is_doji(c: Candle) -> bool:
    rng = _range(c)
    return rng > 0 and _body(c) / rng < 0.1


def _long_lower_wick(c: Candle) -> bool:
    body, rng = _body(c), _range(c)
    if rng == 0 or body == 0:
        return False
    return _lower_wick(c) >= body * 2 and _upper_wick(c) <= body * 0.3 and body / rng >= 0.1


def _long_upper_wick(c: Candle) -> bool:
    body, rng = _body(c), _range(c)
    if rng == 0 or body == 0:
        return False
    return _upper_wick(c) >= body * 2 and _lower_wick(c) <= body * 0.3 and body / rng >= 0.1


# ============== TWO-CANDLE ==============

def is_bullish_engulfing(prev: Candle, curr: Candle) -> bool:
    engulfs = curr.open <= prev.close and curr.close >= prev.open
    return _is_bearish(prev) and _is_bullish(curr) and engulfs and _body(curr) > _body(prev) * 1.1


def is_bearish_engulfing(prev: Candle, curr: Candle) -> bool:
    engulfs = curr.open >= prev.close and curr.close <= prev.open
    return _is_bullish(prev) and _is_bearish(curr) and engulfs and _body(curr) > _body(prev) * 1.1


def is_piercing_line(prev: Candle, curr: Candle) -> bool:
    midpoint = (prev.open + prev.close) / 2
    return (
        _is_bearish(prev) and _is_bullish(curr)
        and curr.open < prev.close
        and midpoint < curr.close < prev.open
    )


def is_dark_cloud_cover(prev: Candle, curr: Candle) -> bool:
    midpoint = (prev.open + prev.close) / 2
    return (
        _is_bullish(prev) and _is_bearish(curr)
        and curr.open > prev.close
        and prev.open < curr.close < midpoint
    )


def is_bullish_harami(prev: Candle, curr: Candle) -> bool:
    contained = curr.open > prev.close and curr.close < prev.open
    return _is_bearish(prev) and _is_bullish(curr) and contained and _body(curr) < _body(prev) * 0.6


def is_bearish_harami(prev: Candle, curr: Candle) -> bool:
    contained = curr.open < prev.close and curr.close > prev.open
    return _is_bullish(prev) and _is_bearish(curr) and contained and _body(curr) < _body(prev) * 0.6


def is_outside_up(prev: Candle, curr: Candle) -> bool:
    return curr.high > prev.high and curr.low < prev.low and curr.close > prev.close and _is_bullish(curr)


def is_outside_down(prev: Candle, curr: Candle) -> bool:
    return curr.high > prev.high and curr.low < prev.low and curr.close < prev.close and _is_bearish(curr)


# ============== MULTI-CANDLE ==============

def is_morning_star(c1: Candle, c2: Candle, c3: Candle) -> bool:
    long_first = _is_bearish(c1) and _body(c1) > _range(c1) * 0.5
    small_middle = _body(c2) < _body(c1) * 0.3
    return long_first and small_middle and _is_bullish(c3) and c3.close > (c1.open + c1.close) / 2


def is_evening_star(c1: Candle, c2: Candle, c3: Candle) -> bool:
    long_first = _is_bullish(c1) and _body(c1) > _range(c1) * 0.5
    small_middle = _body(c2) < _body(c1) * 0.3
    return long_first and small_middle and _is_bearish(c3) and c3.close < (c1.open + c1.close) / 2


def _small_middle(five: Sequence[Candle]) -> bool:
    first = _body(five[0])
    return all(_body(c) < first * 0.5 for c in five[1:4])


def is_breakaway_bullish(five: Sequence[Candle]) -> bool:
    c1, c2, c5 = five[0], five[1], five[4]
    return (
        _is_bearish(c1) and _body(c1) > _range(c1) * 0.5
        and _small_middle(five)
        and _is_bullish(c5) and _body(c5) > _body(c1) * 0.8
        and c5.close > c2.high
    )


def is_breakaway_bearish(five: Sequence[Candle]) -> bool:
    c1, c2, c5 = five[0], five[1], five[4]
    return (
        _is_bullish(c1) and _body(c1) > _range(c1) * 0.5
        and _small_middle(five)
        and _is_bearish(c5) and _body(c5) > _body(c1) * 0.8
        and c5.close < c2.low
    )


# ============== SCORING ==============

def volume_bonus(volume: float, average: float) -> int:
    if not volume or average <= 0:
        return 0
    ratio = volume / average
    if ratio >= 2.5:
        return 25
    if ratio >= 2.0:
        return 20
    if ratio >= 1.5:
        return 15
    if ratio >= 1.2:
        return 10
    return 0


def trend_bonus(pattern_type: PatternType, trend: str) -> int:
    if pattern_type is PatternType.BULLISH:
        return {"down": 15, "up": 10}.get(trend, 0)
    return {"up": 15, "down": 10}.get(trend, 0)


def formation_quality(candle: Candle, name: str) -> int:
    body, rng = _body(candle), _range(candle)
    if rng == 0:
        return 0
    upper, lower = _upper_wick(candle), _lower_wick(candle)

    if name in ("Hammer", "Hanging Man"):
        if lower >= body * 3 and upper <= body * 0.1:
            return 10
        return 7 if lower >= body * 2.5 else 5
    if name in ("Shooting Star", "Inverted Hammer"):
        if upper >= body * 3 and lower <= body * 0.1:
            return 10
        return 7 if upper >= body * 2.5 else 5
    if name == "Doji":
        ratio = body / rng
        if ratio < 0.03:
            return 10
        return 7 if ratio < 0.05 else 5
    if name in ("Bullish Engulfing", "Bearish Engulfing"):
        ratio = body / rng
        if ratio > 0.7:
            return 10
        return 7 if ratio > 0.5 else 5
    return 5


def location_bonus(price: float) -> int:
    """Closes near round-number levels act as support/resistance."""
    if price % 10 < 0.5 or price % 10 > 9.5:
        return 15
    if price % 5 < 0.25 or price % 5 > 4.75:
        return 10
    if price % 1 < 0.1 or price % 1 > 0.9:
        return 5
    return 0


def regime_bonus(pattern_type: PatternType, regime: Optional[RegimeType]) -> int:
    if regime is None or not (regime.is_bullish or regime.is_bearish):
        return 0
    aligned = regime.is_bullish if pattern_type is PatternType.BULLISH else regime.is_bearish
    return REGIME_BONUS if aligned else -REGIME_BONUS


def score_to_reliability(score: int) -> Reliability:
    if score >= HIGH_SCORE:
        return Reliability.HIGH
    if score >= SIGNIFICANT_SCORE:
        return Reliability.MEDIUM
    return Reliability.LOW


def _average_volume(candles: Sequence[Candle]) -> float:
    window = candles[-VOLUME_LOOKBACK:]
    if not window:
        return 0.0
    return sum(c.volume or 0 for c in window) / len(window)


def _build(
    name: str,
    pattern_type: PatternType,
    candles: Sequence[Candle],
    index: int,
    trend: str,
    candle_count: int,
    regime: Optional[RegimeType],
) -> DetectedPattern:
    candle = candles[index]
    factors = {
        "base": PATTERN_BASE_SCORES.get(name, 50),
        "volume": volume_bonus(candle.volume, _average_volume(candles[: index + 1])),
        "trend": trend_bonus(pattern_type, trend),
        "formation": formation_quality(candle, name),
        "location": location_bonus(candle.close),
        "regime": regime_bonus(pattern_type, regime),
    }
    score = max(0, min(100, sum(factors.values())))

    return DetectedPattern(
        name=name,
        type=pattern_type,
        reliability=score_to_reliability(score),
        reliability_score=score,
        time=candle.time,
        index=index,
        description=PATTERN_DESCRIPTIONS.get(name, "Unknown pattern"),
        candle_count=candle_count,
        factors=factors,
    )


def _matches_at(candles: Sequence[Candle], i: int, trend: str) -> List[Tuple[str, PatternType, int]]:
    curr, prev = candles[i], candles[i - 1]
    found: List[Tuple[str, PatternType, int]] = []

    if is_doji(curr):
        if trend == "up":
            found.append(("Doji", PatternType.BEARISH, 1))
        elif trend == "down":
            found.append(("Doji", PatternType.BULLISH, 1))

    if _long_lower_wick(curr):
        if trend == "down":
            found.append(("Hammer", PatternType.BULLISH, 1))
        elif trend == "up":
            found.append(("Hanging Man", PatternType.BEARISH, 1))

    if _long_upper_wick(curr):
        if trend == "up":
            found.append(("Shooting Star", PatternType.BEARISH, 1))
        elif trend == "down":
            found.append(("Inverted Hammer", PatternType.BULLISH, 1))

    if is_bullish_engulfing(prev, curr):
        found.append(("Bullish Engulfing", PatternType.BULLISH, 2))
    if is_bearish_engulfing(prev, curr):
        found.append(("Bearish Engulfing", PatternType.BEARISH, 2))
    if trend == "down" and is_piercing_line(prev, curr):
        found.append(("Piercing Line", PatternType.BULLISH, 2))
    if trend == "up" and is_dark_cloud_cover(prev, curr):
        found.append(("Dark Cloud Cover", PatternType.BEARISH, 2))
    if is_bullish_harami(prev, curr):
        found.append(("Bullish Harami", PatternType.BULLISH, 2))
    if is_bearish_harami(prev, curr):
        found.append(("Bearish Harami", PatternType.BEARISH, 2))
    if is_outside_up(prev, curr):
        found.append(("Outside Up", PatternType.BULLISH, 2))
    if is_outside_down(prev, curr):
        found.append(("Outside Down", PatternType.BEARISH, 2))

    if i >= 2:
        c1 = candles[i - 2]
        if trend == "down" and is_morning_star(c1, prev, curr):
            found.append(("Morning Star", PatternType.BULLISH, 3))
        if trend == "up" and is_evening_star(c1, prev, curr):
            found.append(("Evening Star", PatternType.BEARISH, 3))

    if i >= 4:
        five = candles[i - 4: i + 1]
        if is_breakaway_bullish(five):
            found.append(("Breakaway Bullish", PatternType.BULLISH, 5))
        if is_breakaway_bearish(five):
            found.append(("Breakaway Bearish", PatternType.BEARISH, 5))

    return found


def detect_patterns(
    candles: Sequence[Candle],
    regime: Optional[MarketRegime] = None,
    lookback: int = DEFAULT_LOOKBACK,
) -> List[DetectedPattern]:
    """
    Scan the trailing `lookback` candles for catalog patterns.

    Prior trend and average volume are measured as of each candle, using
    only earlier bars. Results are ordered by time ascending.

    Args:
        candles: Ascending candle series
        regime: Current market regime, used for the alignment bonus
        lookback: Number of trailing candles to scan

    Returns:
        Scored patterns, oldest first
    """
    if len(candles) < 2:
        return []

    regime_type = regime.regime if regime is not None else None
    start = max(1, len(candles) - lookback)
    patterns: List[DetectedPattern] = []

    for i in range(start, len(candles)):
        trend = prior_trend(candles[max(0, i - TREND_LOOKBACK): i])
        for name, pattern_type, count in _matches_at(candles, i, trend):
            patterns.append(_build(name, pattern_type, candles, i, trend, count, regime_type))

    logger.debug(f"Detected {len(patterns)} patterns in {len(candles) - start} candles")
    return patterns


def significant_patterns(patterns: Sequence[DetectedPattern], limit: int = 5) -> List[DetectedPattern]:
    """Most recent patterns with a reliability score of at least 50."""
    return [p for p in patterns if p.reliability_score >= SIGNIFICANT_SCORE][-limit:]
