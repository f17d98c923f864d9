"""
Memory Store
============

Records past recommendations with the market conditions they were made
under, and retrieves similar completed scenarios to give the reasoning
backend historical context ("last 4 times RSI was oversold with a
Hammer in a low-vol bull market, BUY won 3 times").

Similarity (0-1), 0.2 per dimension:
- RSI bucket match
- MACD sign match
- Trend match
- Regime match
- Jaccard overlap of pattern names (scaled to 0.2)

Only completed outcomes (win/loss/neutral) are searched, and only
matches scoring above 0.3 are returned.

Scenarios are held in memory and optionally persisted to a JSON file.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import json
import logging
import os
import threading
import time
import uuid

from tradepilot.models import Action, TechnicalIndicators

logger = logging.getLogger(__name__)

SIMILARITY_WEIGHT = 0.2
MIN_SIMILARITY = 0.3
DIFFERENT_REGIME_WEIGHT = 0.5
UNKNOWN_REGIME = "UNKNOWN"
MAX_CONTEXT_CHARS = 1000


class Outcome(Enum):
    PENDING = "pending"
    WIN = "win"
    LOSS = "loss"
    NEUTRAL = "neutral"


def rsi_bucket(rsi: Optional[float]) -> str:
    value = 50 if rsi is None else rsi
    if value <= 30:
        return "oversold"
    if value >= 70:
        return "overbought"
    return "neutral"


@dataclass(frozen=True)
class MemorySignature:
    """Discretized market conditions used for similarity search."""
    rsi_bucket: str = "neutral"
    macd_signal: str = "neutral"
    trend: str = "sideways"
    patterns: tuple = ()
    regime: str = UNKNOWN_REGIME

    @classmethod
    def from_context(
        cls,
        rsi: Optional[float] = None,
        macd_histogram: Optional[float] = None,
        trend: Optional[str] = None,
        patterns: Optional[List[str]] = None,
        regime: Optional[str] = None,
    ) -> "MemorySignature":
        if macd_histogram is None or macd_histogram == 0:
            macd = "neutral"
        else:
            macd = "bullish" if macd_histogram > 0 else "bearish"

        trend_text = (trend or "").lower()
        if "up" in trend_text or "bull" in trend_text:
            direction = "up"
        elif "down" in trend_text or "bear" in trend_text:
            direction = "down"
        else:
            direction = "sideways"

        return cls(
            rsi_bucket=rsi_bucket(rsi),
            macd_signal=macd,
            trend=direction,
            patterns=tuple(patterns or ()),
            regime=regime or UNKNOWN_REGIME,
        )

    @classmethod
    def from_indicators(
        cls,
        indicators: TechnicalIndicators,
        patterns: Optional[List[str]] = None,
        regime: Optional[str] = None,
    ) -> "MemorySignature":
        return cls.from_context(
            rsi=indicators.rsi14,
            macd_histogram=indicators.macd.histogram if indicators.macd else None,
            trend=indicators.trend.value,
            patterns=patterns,
            regime=regime,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rsi_bucket": self.rsi_bucket,
            "macd_signal": self.macd_signal,
            "trend": self.trend,
            "patterns": list(self.patterns),
            "regime": self.regime,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemorySignature":
        return cls(
            rsi_bucket=data.get("rsi_bucket", "neutral"),
            macd_signal=data.get("macd_signal", "neutral"),
            trend=data.get("trend", "sideways"),
            patterns=tuple(data.get("patterns") or ()),
            regime=data.get("regime") or UNKNOWN_REGIME,
        )


@dataclass
class MemoryScenario:
    """One recommendation and, once known, what happened next."""
    symbol: str
    signature: MemorySignature
    action: Action
    confidence: int
    price: float
    outcome: Outcome = Outcome.PENDING
    price_change_percent: float = 0.0
    days_held: int = 0
    created_at: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def completed(self) -> bool:
        return self.outcome is not Outcome.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "signature": self.signature.to_dict(),
            "action": self.action.value,
            "confidence": self.confidence,
            "price": self.price,
            "outcome": self.outcome.value,
            "price_change_percent": self.price_change_percent,
            "days_held": self.days_held,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryScenario":
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            signature=MemorySignature.from_dict(data.get("signature") or {}),
            action=Action(data["action"]),
            confidence=int(data.get("confidence", 0)),
            price=float(data.get("price", 0)),
            outcome=Outcome(data.get("outcome", "pending")),
            price_change_percent=float(data.get("price_change_percent", 0)),
            days_held=int(data.get("days_held", 0)),
            created_at=float(data.get("created_at", 0)),
        )


@dataclass(frozen=True)
class ScenarioMatch:
    scenario: MemoryScenario
    similarity: float


def calculate_similarity(a: MemorySignature, b: MemorySignature) -> float:
    score = 0.0
    if a.rsi_bucket == b.rsi_bucket:
        score += SIMILARITY_WEIGHT
    if a.macd_signal == b.macd_signal:
        score += SIMILARITY_WEIGHT
    if a.trend == b.trend:
        score += SIMILARITY_WEIGHT

    pa, pb = set(a.patterns), set(b.patterns)
    union = pa | pb
    if union:
        score += len(pa & pb) / len(union) * SIMILARITY_WEIGHT

    if a.regime == b.regime:
        score += SIMILARITY_WEIGHT
    return round(score, 4)


class MemoryStore:
    """
    Scenario memory with similarity search.

    Example Usage:
        store = MemoryStore(path=".tradepilot/memory.json")
        store.save(scenario)
        store.update_outcome(scenario.id, Outcome.WIN, 4.2)
        matches = store.find_similar(signature)
        context = store.build_memory_context(matches, "LOW_VOL_BULLISH")
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._scenarios: Dict[str, MemoryScenario] = {}
        self._lock = threading.Lock()
        self._load()

    # ============== PERSISTENCE ==============

    def _load(self):
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            for item in data.get("scenarios", []):
                scenario = MemoryScenario.from_dict(item)
                self._scenarios[scenario.id] = scenario
            logger.info(f"Loaded {len(self._scenarios)} scenarios from {self.path}")
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Could not load memory from {self.path}: {e}")

    def _persist(self):
        if not self.path:
            return
        with self._lock:
            payload = {"version": 1, "scenarios": [s.to_dict() for s in self._scenarios.values()]}
        directory = os.path.dirname(self.path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp = f"{self.path}.tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.error(f"Failed to persist memory to {self.path}: {e}")

    # ============== WRITE ==============

    def save(self, scenario: MemoryScenario) -> str:
        with self._lock:
            self._scenarios[scenario.id] = scenario
        logger.info(f"Saved memory {scenario.id[:8]} for {scenario.symbol}")
        self._persist()
        return scenario.id

    def update_outcome(
        self,
        scenario_id: str,
        outcome: Outcome,
        price_change_percent: float = 0.0,
        days_held: int = 0,
    ) -> bool:
        """Record what happened after a recommendation. False if the id is unknown."""
        with self._lock:
            scenario = self._scenarios.get(scenario_id)
            if scenario is None:
                return False
            scenario.outcome = Outcome(outcome)
            scenario.price_change_percent = price_change_percent
            scenario.days_held = days_held
        logger.info(f"Updated outcome for memory {scenario_id[:8]}: {scenario.outcome.value}")
        self._persist()
        return True

    def clear(self):
        with self._lock:
            self._scenarios.clear()
        logger.info("Cleared all memories")
        self._persist()

    # ============== READ ==============

    def get(self, scenario_id: str) -> Optional[MemoryScenario]:
        with self._lock:
            return self._scenarios.get(scenario_id)

    def find_similar(self, signature: MemorySignature, k: int = 5) -> List[ScenarioMatch]:
        """Top-k completed scenarios by similarity, then recency."""
        with self._lock:
            completed = [s for s in self._scenarios.values() if s.completed]

        matches = [ScenarioMatch(s, calculate_similarity(signature, s.signature)) for s in completed]
        matches = [m for m in matches if m.similarity > MIN_SIMILARITY]
        matches.sort(key=lambda m: (m.similarity, m.scenario.created_at), reverse=True)
        return matches[:k]

    def pattern_win_rate(self, pattern: str) -> Dict[str, float]:
        with self._lock:
            relevant = [
                s for s in self._scenarios.values()
                if s.completed and pattern in s.signature.patterns
            ]
        wins = sum(1 for s in relevant if s.outcome is Outcome.WIN)
        losses = sum(1 for s in relevant if s.outcome is Outcome.LOSS)
        total = wins + losses
        return {
            "wins": wins,
            "losses": losses,
            "total": total,
            "win_rate": wins / total * 100 if total else 0.0,
        }

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            scenarios = list(self._scenarios.values())
        completed = [s for s in scenarios if s.completed]
        wins = [s for s in completed if s.outcome is Outcome.WIN]
        return {
            "total_memories": len(scenarios),
            "completed_trades": len(completed),
            "pending_trades": len(scenarios) - len(completed),
            "overall_win_rate": len(wins) / len(completed) * 100 if completed else 0.0,
            "avg_price_change_percent": (
                sum(s.price_change_percent for s in completed) / len(completed) if completed else 0.0
            ),
        }

    # ============== PROMPT CONTEXT ==============

    def build_memory_context(
        self,
        matches: List[ScenarioMatch],
        current_regime: Optional[str] = None,
        max_chars: int = MAX_CONTEXT_CHARS,
    ) -> str:
        """
        Describe similar past scenarios for the prompt.

        Scenarios recorded under a different regime count half as much
        toward the weighted win rate. The win rate leads the block and
        covers every match; scenario lines are dropped whole from the end
        to keep the block within `max_chars`.
        """
        if not matches:
            return ""

        lines = []
        weighted_wins = 0.0
        total_weight = 0.0
        for i, match in enumerate(matches, 1):
            s = match.scenario
            same_regime = current_regime is None or s.signature.regime == current_regime
            weight = 1.0 if same_regime else DIFFERENT_REGIME_WEIGHT
            total_weight += weight
            if s.outcome is Outcome.WIN:
                weighted_wins += weight

            date = time.strftime("%Y-%m-%d", time.gmtime(s.created_at))
            patterns = ", ".join(s.signature.patterns) or "none"
            sign = "+" if s.price_change_percent >= 0 else ""
            label = "same regime" if same_regime else f"different regime: {s.signature.regime}"
            lines.append(
                f"{i}. {date} {s.symbol} ({label}, {match.similarity:.0%} similar): "
                f"RSI {s.signature.rsi_bucket}, MACD {s.signature.macd_signal}, trend {s.signature.trend}; "
                f"patterns {patterns}; {s.action.value} at {s.confidence}% -> "
                f"{s.outcome.value.upper()} ({sign}{s.price_change_percent:.1f}% in {s.days_held} days)"
            )

        win_rate = round(weighted_wins / total_weight * 100) if total_weight else 0
        header = (
            "**HISTORICAL CONTEXT (from past recommendations):**\n"
            f"Regime-weighted win rate in similar conditions: {win_rate}%\n"
            f"Found {len(matches)} similar past scenarios:"
        )
        footer = "Consider this historical performance when making your recommendation."

        shown = []
        size = len(header) + len(footer) + 2
        for line in lines:
            if size + len(line) + 1 > max_chars:
                break
            shown.append(line)
            size += len(line) + 1
        if len(shown) < len(lines):
            logger.debug(f"Memory context trimmed to {len(shown)} of {len(lines)} scenarios")

        return "\n".join([header, *shown, "", footer])
