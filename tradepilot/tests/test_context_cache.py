"""
Tests for the context cache.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tradepilot.analytics.indicators import calculate_indicators
from tradepilot.analytics.regime import build_regime
from tradepilot.context_cache import CacheKind, ContextCache
from tradepilot.models import RegimeType

from conftest import FakeClock, create_trending_candles


def create_mock_classifier(regime=None, side_effect=None):
    classifier = MagicMock()
    classifier.detect = AsyncMock(return_value=regime, side_effect=side_effect)
    return classifier


@pytest.fixture
def regime():
    return build_regime(RegimeType.LOW_VOL_BULLISH, 12.0, 510.0, 500.0)


class TestRegimeCaching:
    """Tests for the five-minute regime cache."""

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, regime):
        clock = FakeClock()
        classifier = create_mock_classifier(regime)
        cache = ContextCache(classifier, clock=clock)

        assert await cache.get_regime() is regime
        clock.advance(299)
        assert await cache.get_regime() is regime
        assert classifier.detect.await_count == 1

    @pytest.mark.asyncio
    async def test_recomputed_after_ttl(self, regime):
        clock = FakeClock()
        classifier = create_mock_classifier(regime)
        cache = ContextCache(classifier, clock=clock)

        await cache.get_regime()
        clock.advance(300)
        await cache.get_regime()
        assert classifier.detect.await_count == 2

    @pytest.mark.asyncio
    async def test_stale_regime_on_failure(self, regime):
        """A failed refresh serves the previous regime, however old."""
        clock = FakeClock()
        classifier = create_mock_classifier(regime)
        cache = ContextCache(classifier, clock=clock)
        await cache.get_regime()

        clock.advance(3600)
        classifier.detect.side_effect = RuntimeError("upstream down")
        assert await cache.get_regime() is regime

        classifier.detect.side_effect = None
        classifier.detect.return_value = None
        assert await cache.get_regime() is regime

    @pytest.mark.asyncio
    async def test_nothing_cached_and_detection_fails(self):
        cache = ContextCache(create_mock_classifier(None))
        assert await cache.get_regime() is None

    @pytest.mark.asyncio
    async def test_set_regime(self, regime):
        classifier = create_mock_classifier(None)
        cache = ContextCache(classifier)
        cache.set_regime(regime)
        assert await cache.get_regime() is regime
        classifier.detect.assert_not_awaited()

    def test_spy_rsi_expires(self):
        clock = FakeClock()
        cache = ContextCache(clock=clock)
        cache.set_spy_rsi(55.0)
        assert cache.get_spy_rsi() == 55.0
        clock.advance(300)
        assert cache.get_spy_rsi() is None


class TestPerSymbolCaching:
    """Tests for indicator and pattern memoization."""

    def test_indicators_cached_for_a_minute(self):
        clock = FakeClock()
        cache = ContextCache(clock=clock)
        candles = create_trending_candles(60)

        with patch("tradepilot.context_cache.calculate_indicators", wraps=calculate_indicators) as calc:
            first = cache.get_indicators("aapl", candles)
            assert cache.get_indicators("AAPL", candles) is first
            clock.advance(60)
            cache.get_indicators("AAPL", candles)
            assert calc.call_count == 2

    def test_patterns_cached(self, regime):
        clock = FakeClock()
        cache = ContextCache(clock=clock)
        candles = create_trending_candles(60)

        first = cache.get_patterns("AAPL", candles, regime)
        clock.advance(14 * 60)
        assert cache.get_patterns("AAPL", candles, regime) is first
        clock.advance(60)
        assert cache.get_patterns("AAPL", candles, regime) is not first

    def test_capacity_evicts_oldest_symbol(self):
        cache = ContextCache(capacity=2)
        candles = create_trending_candles(30)
        for symbol in ("AAPL", "MSFT", "NVDA"):
            cache.get_indicators(symbol, candles)

        stats = cache.stats()
        assert stats["indicator_symbols"] == ["MSFT", "NVDA"]
        assert stats["evictions"] == 1


class TestInvalidation:

    @pytest.mark.asyncio
    async def test_invalidate_regime_only(self, regime):
        cache = ContextCache(create_mock_classifier(None))
        cache.set_regime(regime)
        cache.get_indicators("AAPL", create_trending_candles(30))

        cache.invalidate(CacheKind.REGIME)

        assert await cache.get_regime() is None
        assert cache.stats()["indicator_symbols"] == ["AAPL"]

    def test_invalidate_all_by_value(self, regime):
        cache = ContextCache()
        cache.set_regime(regime)
        cache.set_spy_rsi(50.0)
        cache.get_indicators("AAPL", create_trending_candles(30))
        cache.get_patterns("AAPL", create_trending_candles(30))

        cache.invalidate("all")

        stats = cache.stats()
        assert not stats["regime_cached"]
        assert stats["indicator_symbols"] == []
        assert stats["pattern_symbols"] == []
        assert cache.get_spy_rsi() is None
