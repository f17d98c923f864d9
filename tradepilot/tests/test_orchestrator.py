"""
Tests for the Recommendation Engine
===================================

Unit tests for RecommendationEngine.analyze(). These tests verify:
- Credential and AI budget preconditions short-circuit before any fetch
- Required data (quote, candles) failures end in FAILED
- The confidence gate (strictly below the threshold is skipped)
- Every reasoning call is counted against the AI budget, and concurrent
  analyses never spend past the daily limit
- Successful recommendations are remembered under the same id
- Phase callbacks fire in order and may fail without effect
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tradepilot.analytics.regime import build_regime
from tradepilot.budget import AIBudgetTracker, BudgetStore
from tradepilot.context_cache import ContextCache
from tradepilot.engine.orchestrator import RecommendationEngine
from tradepilot.errors import ReasoningError
from tradepilot.memory import MemoryStore, Outcome
from tradepilot.models import Action, Candle, OutcomeKind, RegimeType
from tradepilot.news import Headline, StaticNewsFeed
from tradepilot.providers import Interval

from conftest import (
    DAY,
    create_mock_backend,
    create_mock_candles,
    create_mock_quote,
    create_trending_candles,
    recommendation_json,
)


def create_mock_gateway(quote=None, candles=None):
    gateway = MagicMock()
    gateway.quote = AsyncMock(return_value=quote if quote is not None else create_mock_quote("AAPL", 150.0))
    gateway.candles = AsyncMock(return_value=candles if candles is not None else create_trending_candles(120))
    gateway.cache_status = MagicMock(return_value={"provider": "mock"})
    gateway.close = AsyncMock()
    return gateway


def create_mock_classifier(regime=None):
    classifier = MagicMock()
    classifier.detect = AsyncMock(return_value=regime)
    return classifier


@pytest.fixture
def regime():
    return build_regime(RegimeType.LOW_VOL_BULLISH, 12.0, 510.0, 500.0)


@pytest.fixture
def create_engine(ai_budget, clock, regime):
    """Factory building an engine around mocked collaborators."""

    def _create(backend=None, gateway=None, memory=None, news=None, **kwargs):
        return RecommendationEngine(
            gateway=gateway or create_mock_gateway(),
            backend=backend or create_mock_backend(recommendation_json("BUY", 75)),
            ai_budget=ai_budget,
            context_cache=ContextCache(create_mock_classifier(regime), clock=clock),
            memory=memory,
            news=news,
            **kwargs,
        )

    return _create


# =============================================================================
# Precondition Tests
# =============================================================================

class TestPreconditions:
    """Tests for checks that run before any market data is fetched."""

    @pytest.mark.asyncio
    async def test_no_credentials(self, create_engine):
        gateway = create_mock_gateway()
        engine = create_engine(backend=create_mock_backend(has_credentials=False), gateway=gateway)

        outcome = await engine.analyze("AAPL")

        assert outcome.kind is OutcomeKind.SKIPPED_NO_CREDENTIALS
        assert outcome.recommendation is None
        gateway.quote.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_budget_exhausted(self, create_engine, ai_budget):
        for _ in range(ai_budget.daily_limit):
            ai_budget.record_call()
        backend = create_mock_backend(recommendation_json("BUY", 90))
        gateway = create_mock_gateway()
        engine = create_engine(backend=backend, gateway=gateway)

        outcome = await engine.analyze("AAPL")

        assert outcome.kind is OutcomeKind.SKIPPED_BUDGET_EXHAUSTED
        gateway.quote.assert_not_awaited()
        backend.complete.assert_not_awaited()


# =============================================================================
# Pipeline Tests
# =============================================================================

class TestAnalyze:
    """Tests for the full analysis pipeline."""

    @pytest.mark.asyncio
    async def test_success(self, create_engine, ai_budget):
        memory = MemoryStore()
        engine = create_engine(memory=memory)

        outcome = await engine.analyze("aapl")

        assert outcome.ok
        recommendation = outcome.recommendation
        assert recommendation.ticker == "AAPL"
        assert recommendation.action is Action.BUY
        assert recommendation.confidence == 75
        assert recommendation.price_target == 157.5
        assert recommendation.stop_loss == 145.5
        assert recommendation.sources == ["Technical Analysis", "mock test-model"]
        assert ai_budget.status().used == 1

        scenario = memory.get(recommendation.id)
        assert scenario.outcome is Outcome.PENDING
        assert scenario.signature.regime == "LOW_VOL_BULLISH"
        assert scenario.price == 150.0

    @pytest.mark.asyncio
    async def test_prompt_carries_context(self, create_engine):
        backend = create_mock_backend(recommendation_json("HOLD", 65))
        news = StaticNewsFeed([Headline(headline="AAPL unveils new chip")])
        engine = create_engine(backend=backend, news=news)

        await engine.analyze("AAPL")

        prompt = backend.complete.await_args.args[0]
        assert "Current Regime: LOW VOL BULLISH" in prompt
        assert "1. AAPL unveils new chip" in prompt
        assert "RELATIVE STRENGTH vs SPY" in prompt

    @pytest.mark.asyncio
    async def test_hammer_in_low_vol_bull_market(self, create_engine):
        """A volume-confirmed Hammer after a decline reaches the prompt next to the regime."""
        candles = create_mock_candles([220.0 - i for i in range(119)])
        candles.append(Candle(
            time=candles[-1].time + DAY, open=100.0, high=101.2, low=97.0, close=101.0, volume=2_500_000,
        ))
        backend = create_mock_backend(recommendation_json(
            "BUY", 78, "Hammer after a decline with volume in a low-vol bull regime",
        ))
        gateway = create_mock_gateway(quote=create_mock_quote("AAPL", 101.0), candles=candles)

        outcome = await create_engine(backend=backend, gateway=gateway).analyze("AAPL")

        assert len(candles) == 120
        assert outcome.ok
        assert outcome.recommendation.action is Action.BUY
        assert outcome.recommendation.confidence >= 70
        assert "Hammer" in outcome.recommendation.rationale

        prompt = backend.complete.await_args.args[0]
        assert "Current Regime: LOW VOL BULLISH" in prompt
        assert "- Hammer (bullish, High reliability, score: 100)" in prompt

    @pytest.mark.asyncio
    async def test_no_quote(self, create_engine, ai_budget):
        gateway = create_mock_gateway()
        gateway.quote.return_value = None
        backend = create_mock_backend(recommendation_json())
        engine = create_engine(backend=backend, gateway=gateway)

        outcome = await engine.analyze("AAPL")

        assert outcome.kind is OutcomeKind.FAILED
        assert outcome.reason == "No quote data"
        backend.complete.assert_not_awaited()
        assert ai_budget.status().used == 0

    @pytest.mark.asyncio
    async def test_no_candles(self, create_engine):
        outcome = await create_engine(gateway=create_mock_gateway(candles=[])).analyze("AAPL")
        assert outcome.kind is OutcomeKind.FAILED
        assert outcome.reason == "No historical data"

    @pytest.mark.asyncio
    async def test_spy_uses_intraday_candles(self, create_engine):
        gateway = create_mock_gateway(quote=create_mock_quote("SPY", 510.0))
        await create_engine(gateway=gateway).analyze("SPY")
        gateway.candles.assert_awaited_once_with("SPY", Interval.FIVE_MIN)

    @pytest.mark.asyncio
    async def test_spy_rsi_cached_between_requests(self, create_engine):
        gateway = create_mock_gateway()
        engine = create_engine(gateway=gateway)

        await engine.analyze("AAPL")
        await engine.analyze("MSFT")

        spy_calls = [c for c in gateway.candles.await_args_list if c.args[0] == "SPY"]
        assert len(spy_calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_failed(self, create_engine):
        gateway = create_mock_gateway()
        gateway.quote.side_effect = RuntimeError("boom")
        outcome = await create_engine(gateway=gateway).analyze("AAPL")

        assert outcome.kind is OutcomeKind.FAILED
        assert "boom" in outcome.reason


class TestReasoningFailures:

    @pytest.mark.asyncio
    async def test_backend_error_still_counts(self, create_engine, ai_budget):
        backend = create_mock_backend()
        backend.complete.side_effect = ReasoningError("timeout")

        outcome = await create_engine(backend=backend).analyze("AAPL")

        assert outcome.kind is OutcomeKind.FAILED
        assert outcome.reason == "No response from reasoning backend"
        assert ai_budget.status().used == 1

    @pytest.mark.asyncio
    async def test_unparseable_response(self, create_engine, ai_budget):
        outcome = await create_engine(backend=create_mock_backend("I think you should buy.")).analyze("AAPL")

        assert outcome.kind is OutcomeKind.FAILED
        assert outcome.reason.startswith("Parse failed")
        assert ai_budget.status().used == 1


class TestConfidenceGate:
    """Tests for the minimum-confidence gate."""

    @pytest.mark.asyncio
    async def test_below_threshold_skipped(self, create_engine):
        memory = MemoryStore()
        engine = create_engine(backend=create_mock_backend(recommendation_json("BUY", 55)), memory=memory)

        outcome = await engine.analyze("AAPL")

        assert outcome.kind is OutcomeKind.SKIPPED_LOW_CONFIDENCE
        assert outcome.reason == "Confidence 55% below threshold 60%"
        assert memory.stats()["total_memories"] == 0

    @pytest.mark.asyncio
    async def test_equal_to_threshold_passes(self, create_engine):
        outcome = await create_engine(backend=create_mock_backend(recommendation_json("SELL", 60))).analyze("AAPL")
        assert outcome.ok
        assert outcome.recommendation.action is Action.SELL

    @pytest.mark.asyncio
    async def test_per_request_threshold(self, create_engine):
        engine = create_engine(backend=create_mock_backend(recommendation_json("BUY", 70)))
        outcome = await engine.analyze("AAPL", confidence_threshold=80)
        assert outcome.kind is OutcomeKind.SKIPPED_LOW_CONFIDENCE

    @pytest.mark.asyncio
    async def test_memory_recording_disabled(self, create_engine):
        memory = MemoryStore()
        outcome = await create_engine(memory=memory, record_memories=False).analyze("AAPL")
        assert outcome.ok
        assert memory.get(outcome.recommendation.id) is None




class TestConcurrentBudget:
    """Tests for concurrent analyses sharing one AI budget."""

    @pytest.fixture
    def nearly_spent_budget(self, clock):
        tracker = AIBudgetTracker(BudgetStore(None), daily_limit=5, clock=clock, register_atexit=False)
        for _ in range(4):
            tracker.record_call()
        yield tracker
        tracker.close()

    @pytest.mark.asyncio
    async def test_gathered_analyses_never_overrun_limit(self, nearly_spent_budget, clock, regime):
        async def slow_complete(prompt, persona=None):
            await asyncio.sleep(0.05)
            return recommendation_json("BUY", 80)

        backend = create_mock_backend()
        backend.complete = AsyncMock(side_effect=slow_complete)
        engine = RecommendationEngine(
            gateway=create_mock_gateway(),
            backend=backend,
            ai_budget=nearly_spent_budget,
            context_cache=ContextCache(create_mock_classifier(regime), clock=clock),
        )

        outcomes = await asyncio.gather(*(engine.analyze(s) for s in ("AAPL", "MSFT", "NVDA")))

        status = nearly_spent_budget.status()
        assert status.used == status.limit == 5
        kinds = [o.kind for o in outcomes]
        assert kinds.count(OutcomeKind.SUCCESS) == 1
        assert kinds.count(OutcomeKind.SKIPPED_BUDGET_EXHAUSTED) == 2
        assert backend.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_charge_happens_at_backend_call(self, nearly_spent_budget, clock, regime):
        async def quote_after_other_caller_spends(symbol):
            nearly_spent_budget.record_call()
            return create_mock_quote(symbol, 150.0)

        events = []
        gateway = create_mock_gateway()
        gateway.quote = AsyncMock(side_effect=quote_after_other_caller_spends)
        backend = create_mock_backend(recommendation_json("BUY", 80))
        engine = RecommendationEngine(
            gateway=gateway,
            backend=backend,
            ai_budget=nearly_spent_budget,
            context_cache=ContextCache(create_mock_classifier(regime), clock=clock),
        )

        outcome = await engine.analyze("AAPL", on_phase_update=lambda *args: events.append(args))

        assert outcome.kind is OutcomeKind.SKIPPED_BUDGET_EXHAUSTED
        assert events[-1] == ("ai", "error", "Budget exhausted")
        assert nearly_spent_budget.status().used == 5
        backend.complete.assert_not_awaited()


# =============================================================================
# Progress and Stats Tests
# =============================================================================

class TestPhaseUpdates:

    @pytest.mark.asyncio
    async def test_phases_in_order(self, create_engine):
        events = []
        await create_engine().analyze("AAPL", on_phase_update=lambda *args: events.append(args))

        completed = [phase for phase, status, _ in events if status == "complete"]
        assert completed == ["regime", "price", "technicals", "patterns", "news", "ai"]
        assert events[0] == ("regime", "active", None)
        assert events[-1] == ("ai", "complete", "BUY 75%")

    @pytest.mark.asyncio
    async def test_error_phase(self, create_engine):
        events = []
        gateway = create_mock_gateway()
        gateway.quote.return_value = None
        await create_engine(gateway=gateway).analyze("AAPL", on_phase_update=lambda *args: events.append(args))
        assert events[-1] == ("price", "error", "No data")

    @pytest.mark.asyncio
    async def test_failing_callback_is_ignored(self, create_engine):
        callback = MagicMock(side_effect=RuntimeError("ui gone"))
        outcome = await create_engine().analyze("AAPL", on_phase_update=callback)
        assert outcome.ok
        assert callback.call_count >= 6


class TestStats:

    @pytest.mark.asyncio
    async def test_get_stats(self, create_engine):
        engine = create_engine()
        await engine.analyze("AAPL")
        await engine.analyze("MSFT", confidence_threshold=90)

        stats = engine.get_stats()
        assert stats["total_requests"] == 2
        assert stats["outcomes"] == {"success": 1, "skipped_low_confidence": 1}
        assert stats["backend"] == "mock test-model"
        assert stats["ai_budget"]["used"] == 2
        assert stats["memory"]["total_memories"] == 1

    @pytest.mark.asyncio
    async def test_current_regime(self, create_engine, regime):
        assert await create_engine().current_regime() is regime
