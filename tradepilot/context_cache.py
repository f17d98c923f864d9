"""
Context Cache
=============

Short-lived memoization of the analysis context shared across
recommendation requests:

- Market regime: 5 minutes (changes slowly, costs two quotes and a series)
- Technical indicators: 1 minute per symbol (driven by price)
- Candlestick patterns: 15 minutes per symbol
- SPY RSI for relative strength: 5 minutes

Per-symbol caches are bounded LRU maps (50 symbols). When a fresh regime
cannot be computed the previous one is served, however old.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
import asyncio
import logging
import time

from tradepilot.analytics.indicators import calculate_indicators
from tradepilot.analytics.patterns import detect_patterns
from tradepilot.cache import CacheEntry, LRUCache
from tradepilot.models import Candle, DetectedPattern, MarketRegime, TechnicalIndicators

logger = logging.getLogger(__name__)

REGIME_TTL_SECONDS = 5 * 60
INDICATOR_TTL_SECONDS = 60
PATTERN_TTL_SECONDS = 15 * 60
MAX_CACHED_SYMBOLS = 50


class CacheKind(Enum):
    REGIME = "regime"
    INDICATORS = "indicators"
    PATTERNS = "patterns"
    ALL = "all"


class ContextCache:
    """
    Memoizes regime, indicators and patterns for the recommendation engine.

    Example Usage:
        cache = ContextCache(MarketRegimeClassifier(gateway))
        regime = await cache.get_regime()
        indicators = cache.get_indicators("AAPL", candles)
        patterns = cache.get_patterns("AAPL", candles, regime)
    """

    def __init__(
        self,
        classifier=None,
        regime_ttl: float = REGIME_TTL_SECONDS,
        indicator_ttl: float = INDICATOR_TTL_SECONDS,
        pattern_ttl: float = PATTERN_TTL_SECONDS,
        capacity: int = MAX_CACHED_SYMBOLS,
        clock=time.time,
    ):
        self.classifier = classifier
        self.regime_ttl = regime_ttl
        self.indicator_ttl = indicator_ttl
        self.pattern_ttl = pattern_ttl
        self.clock = clock

        self._regime: Optional[CacheEntry[MarketRegime]] = None
        self._regime_lock = asyncio.Lock()
        self._spy_rsi: Optional[CacheEntry[float]] = None
        self._indicators: LRUCache[TechnicalIndicators] = LRUCache(capacity=capacity, clock=clock)
        self._patterns: LRUCache[List[DetectedPattern]] = LRUCache(capacity=capacity, clock=clock)

        self.hits = 0
        self.misses = 0

    # ============== REGIME ==============

    async def get_regime(self) -> Optional[MarketRegime]:
        """Cached regime, recomputed after the TTL. Stale regime on failure."""
        async with self._regime_lock:
            now = self.clock()
            if self._regime is not None and self._regime.is_fresh(self.regime_ttl, now):
                self.hits += 1
                logger.debug("Using cached market regime")
                return self._regime.payload

            self.misses += 1
            regime = None
            if self.classifier is not None:
                try:
                    regime = await self.classifier.detect()
                except Exception as e:
                    logger.error(f"Regime detection failed: {e}")

            if regime is not None:
                self._regime = CacheEntry(key="regime", payload=regime, timestamp=self.clock())
                return regime

            if self._regime is not None:
                logger.warning(f"Serving stale regime ({self._regime.age(now):.0f}s old)")
                return self._regime.payload
            return None

    def set_regime(self, regime: MarketRegime):
        self._regime = CacheEntry(key="regime", payload=regime, timestamp=self.clock())

    # ============== SPY RSI ==============

    def get_spy_rsi(self) -> Optional[float]:
        if self._spy_rsi is not None and self._spy_rsi.is_fresh(self.regime_ttl, self.clock()):
            return self._spy_rsi.payload
        return None

    def set_spy_rsi(self, rsi: float):
        self._spy_rsi = CacheEntry(key="spy_rsi", payload=rsi, timestamp=self.clock())

    # ============== PER-SYMBOL ==============

    def get_indicators(self, symbol: str, candles: Sequence[Candle]) -> TechnicalIndicators:
        symbol = symbol.upper()
        entry = self._indicators.get(symbol)
        if entry is not None and entry.is_fresh(self.indicator_ttl, self.clock()):
            self.hits += 1
            logger.debug(f"Using cached indicators for {symbol}")
            return entry.payload

        self.misses += 1
        indicators = calculate_indicators(list(candles))
        self._indicators.put(symbol, indicators)
        return indicators

    def get_patterns(
        self,
        symbol: str,
        candles: Sequence[Candle],
        regime: Optional[MarketRegime] = None,
    ) -> List[DetectedPattern]:
        symbol = symbol.upper()
        entry = self._patterns.get(symbol)
        if entry is not None and entry.is_fresh(self.pattern_ttl, self.clock()):
            self.hits += 1
            logger.debug(f"Using cached patterns for {symbol}")
            return entry.payload

        self.misses += 1
        patterns = detect_patterns(candles, regime=regime)
        self._patterns.put(symbol, patterns)
        return patterns

    # ============== MAINTENANCE ==============

    def invalidate(self, kind: CacheKind = CacheKind.ALL):
        """Drop cached context of the given kind."""
        kind = CacheKind(kind)
        if kind in (CacheKind.REGIME, CacheKind.ALL):
            self._regime = None
            self._spy_rsi = None
        if kind in (CacheKind.INDICATORS, CacheKind.ALL):
            self._indicators.clear()
        if kind in (CacheKind.PATTERNS, CacheKind.ALL):
            self._patterns.clear()
        logger.info(f"Invalidated {kind.value} context cache")

    def stats(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            "regime_cached": self._regime is not None,
            "regime_age_seconds": round(self._regime.age(now), 1) if self._regime else None,
            "indicator_symbols": list(self._indicators.keys()),
            "pattern_symbols": list(self._patterns.keys()),
            "evictions": self._indicators.evictions + self._patterns.evictions,
            "hits": self.hits,
            "misses": self.misses,
        }
