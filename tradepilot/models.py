"""
TradePilot Data Models
======================

Normalized data structures shared by every component of the
recommendation pipeline. Provider adapters translate their native
payloads into Quote and Candle; the analytics layer produces
TechnicalIndicators, DetectedPattern and MarketRegime; the engine
emits Recommendation wrapped in an AnalysisOutcome.

All timestamps are epoch seconds.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any
import math
import time
import uuid


# ============== MARKET DATA ==============

@dataclass(frozen=True)
class Quote:
    """
    Point-in-time price snapshot for a symbol.

    Replaced wholesale on every fetch. `source` tells the caller whether
    the value came straight from the API, from a fresh cache entry or
    from a stale one kept around because the budget was exhausted.
    """
    symbol: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    volume: int = 0
    high: Optional[float] = None
    low: Optional[float] = None
    open: Optional[float] = None
    previous_close: Optional[float] = None
    timestamp: float = field(default_factory=time.time)
    source: str = "api"
    cache_age: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "change_percent": self.change_percent,
            "volume": self.volume,
            "high": self.high,
            "low": self.low,
            "open": self.open,
            "previous_close": self.previous_close,
            "timestamp": self.timestamp,
            "source": self.source,
            "cache_age": self.cache_age,
        }


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. `time` is the bar open in epoch seconds."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candle":
        return cls(
            time=int(data["time"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data.get("volume") or 0),
        )


def _is_valid_price(value: float) -> bool:
    return value is not None and not math.isnan(value) and value > 0


def validate_series(candles: List[Candle]) -> List[Candle]:
    """
    Return a series with strictly increasing `time`.

    Providers disagree on ordering (TwelveData returns newest first) and
    occasionally repeat a bar, so the series is sorted, duplicate times
    are collapsed keeping the last occurrence, and bars with missing or
    non-positive prices are dropped.
    """
    by_time: Dict[int, Candle] = {}
    for candle in candles:
        if not all(_is_valid_price(v) for v in (candle.open, candle.high, candle.low, candle.close)):
            continue
        by_time[candle.time] = candle
    return [by_time[t] for t in sorted(by_time)]


# ============== INDICATORS ==============

class Trend(Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class Momentum(Enum):
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"


@dataclass(frozen=True)
class MACDResult:
    value: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float
    percent_b: float


@dataclass(frozen=True)
class TechnicalIndicators:
    """Indicator readout for one candle series. Absent values are None."""
    rsi14: Optional[float]
    macd: Optional[MACDResult]
    ma20: Optional[float]
    ma50: Optional[float]
    ma200: Optional[float]
    trend: Trend
    momentum: Momentum
    bollinger: Optional[BollingerBands] = None
    atr14: Optional[float] = None
    volatility: str = "normal"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rsi14": self.rsi14,
            "macd": vars(self.macd) if self.macd else None,
            "ma20": self.ma20,
            "ma50": self.ma50,
            "ma200": self.ma200,
            "trend": self.trend.value,
            "momentum": self.momentum.value,
            "bollinger": vars(self.bollinger) if self.bollinger else None,
            "atr14": self.atr14,
            "volatility": self.volatility,
        }


# ============== PATTERNS ==============

class PatternType(Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"


class Reliability(Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


@dataclass(frozen=True)
class DetectedPattern:
    """
    A named candlestick formation found in a series.

    `reliability_score` combines the pattern's historical accuracy with
    volume confirmation, prior-trend context, formation quality and
    alignment with the market regime.
    """
    name: str
    type: PatternType
    reliability: Reliability
    reliability_score: int
    time: int
    index: int
    description: str = ""
    candle_count: int = 1
    factors: Dict[str, int] = field(default_factory=dict)

    @property
    def volume_confirmed(self) -> bool:
        return self.factors.get("volume", 0) >= 15

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "reliability": self.reliability.value,
            "reliability_score": self.reliability_score,
            "time": self.time,
            "index": self.index,
            "description": self.description,
            "candle_count": self.candle_count,
            "volume_confirmed": self.volume_confirmed,
            "factors": dict(self.factors),
        }


# ============== REGIME ==============

class RegimeType(Enum):
    LOW_VOL_BULLISH = "LOW_VOL_BULLISH"
    LOW_VOL_BEARISH = "LOW_VOL_BEARISH"
    HIGH_VOL_BULLISH = "HIGH_VOL_BULLISH"
    HIGH_VOL_BEARISH = "HIGH_VOL_BEARISH"
    ELEVATED_VOL_BULLISH = "ELEVATED_VOL_BULLISH"
    ELEVATED_VOL_BEARISH = "ELEVATED_VOL_BEARISH"
    CHOPPY = "CHOPPY"
    NEUTRAL = "NEUTRAL"

    @property
    def is_bullish(self) -> bool:
        return self.value.endswith("_BULLISH")

    @property
    def is_bearish(self) -> bool:
        return self.value.endswith("_BEARISH")

    @property
    def is_high_vol(self) -> bool:
        return self.value.startswith("HIGH_VOL")


class RiskLevel(Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    EXTREME = "extreme"


@dataclass(frozen=True)
class MarketRegime:
    """Macro market state derived from VIX and SPY vs its 50-day MA."""
    regime: RegimeType
    vix: float
    spy_price: float
    spy_ma50: Optional[float]
    risk_level: RiskLevel
    description: str
    guidance: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regime": self.regime.value,
            "vix": self.vix,
            "spy_price": self.spy_price,
            "spy_ma50": self.spy_ma50,
            "risk_level": self.risk_level.value,
            "description": self.description,
            "guidance": self.guidance,
            "timestamp": self.timestamp,
        }


# ============== RECOMMENDATION ==============

class Action(Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


@dataclass(frozen=True)
class RiskSettings:
    """User risk parameters used for position sizing."""
    daily_budget: float = 1000.0
    max_position_percent: float = 10.0
    loss_limit_percent: float = 5.0

    @property
    def max_position_dollars(self) -> float:
        return round(self.daily_budget * self.max_position_percent / 100, 2)

    @property
    def loss_limit_dollars(self) -> float:
        return round(self.daily_budget * self.loss_limit_percent / 100, 2)


@dataclass(frozen=True)
class Recommendation:
    """Final, gated trading recommendation. Immutable once returned."""
    ticker: str
    action: Action
    confidence: int
    rationale: str
    price_target: Optional[float]
    stop_loss: Optional[float]
    sources: List[str] = field(default_factory=list)
    suggested_shares: Optional[int] = None
    suggested_dollar_amount: Optional[float] = None
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ticker": self.ticker,
            "action": self.action.value,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "price_target": self.price_target,
            "stop_loss": self.stop_loss,
            "suggested_shares": self.suggested_shares,
            "suggested_dollar_amount": self.suggested_dollar_amount,
            "sources": list(self.sources),
            "timestamp": self.timestamp,
        }


class OutcomeKind(Enum):
    SUCCESS = "success"
    SKIPPED_NO_CREDENTIALS = "skipped_no_credentials"
    SKIPPED_BUDGET_EXHAUSTED = "skipped_budget_exhausted"
    SKIPPED_LOW_CONFIDENCE = "skipped_low_confidence"
    FAILED = "failed"


@dataclass(frozen=True)
class AnalysisOutcome:
    """
    Result of one analysis request.

    Callers decide how to surface each kind; only SUCCESS carries a
    recommendation.
    """
    kind: OutcomeKind
    symbol: str
    recommendation: Optional[Recommendation] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @classmethod
    def success(cls, recommendation: Recommendation) -> "AnalysisOutcome":
        return cls(OutcomeKind.SUCCESS, recommendation.ticker, recommendation=recommendation)

    @classmethod
    def skipped_no_credentials(cls, symbol: str) -> "AnalysisOutcome":
        return cls(OutcomeKind.SKIPPED_NO_CREDENTIALS, symbol, reason="No reasoning backend credential configured")

    @classmethod
    def skipped_budget_exhausted(cls, symbol: str) -> "AnalysisOutcome":
        return cls(OutcomeKind.SKIPPED_BUDGET_EXHAUSTED, symbol, reason="Daily AI budget exhausted")

    @classmethod
    def skipped_low_confidence(cls, symbol: str, confidence: int, threshold: int) -> "AnalysisOutcome":
        return cls(
            OutcomeKind.SKIPPED_LOW_CONFIDENCE,
            symbol,
            reason=f"Confidence {confidence}% below threshold {threshold}%",
        )

    @classmethod
    def failed(cls, symbol: str, reason: str) -> "AnalysisOutcome":
        return cls(OutcomeKind.FAILED, symbol, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "symbol": self.symbol,
            "recommendation": self.recommendation.to_dict() if self.recommendation else None,
            "reason": self.reason,
        }
