"""
Tests for the Memory Store
==========================

Unit tests for scenario memory. These tests verify:
- Signature discretization (RSI buckets, MACD sign, trend text)
- Similarity scoring across the five dimensions
- find_similar only returns completed scenarios above the threshold
- Regime-weighted win rate leads the prompt context and survives its length cap
- JSON persistence survives a reload
"""

import json

import pytest

from tradepilot.memory import (
    MemoryScenario,
    MemorySignature,
    MemoryStore,
    Outcome,
    ScenarioMatch,
    calculate_similarity,
    rsi_bucket,
)
from tradepilot.engine.sanitize import MAX_LENGTHS, sanitize_for_prompt
from tradepilot.models import Action


def create_scenario(signature, outcome=Outcome.WIN, action=Action.BUY, created_at=1_700_000_000.0, **kwargs):
    scenario = MemoryScenario(
        symbol=kwargs.pop("symbol", "AAPL"),
        signature=signature,
        action=action,
        confidence=kwargs.pop("confidence", 70),
        price=kwargs.pop("price", 180.0),
        created_at=created_at,
        **kwargs,
    )
    scenario.outcome = outcome
    return scenario


OVERSOLD_BULL = MemorySignature(
    rsi_bucket="oversold", macd_signal="bullish", trend="up",
    patterns=("Hammer",), regime="LOW_VOL_BULLISH",
)


# =============================================================================
# Signature Tests
# =============================================================================

class TestSignature:

    @pytest.mark.parametrize("rsi,bucket", [
        (30, "oversold"), (25.5, "oversold"), (70, "overbought"), (69.9, "neutral"), (None, "neutral"),
    ])
    def test_rsi_bucket(self, rsi, bucket):
        assert rsi_bucket(rsi) == bucket

    def test_from_context(self):
        signature = MemorySignature.from_context(
            rsi=28, macd_histogram=-0.4, trend="Bearish", patterns=["Doji"], regime="CHOPPY",
        )
        assert signature.rsi_bucket == "oversold"
        assert signature.macd_signal == "bearish"
        assert signature.trend == "down"
        assert signature.patterns == ("Doji",)

    def test_defaults(self):
        signature = MemorySignature.from_context()
        assert signature.macd_signal == "neutral"
        assert signature.trend == "sideways"
        assert signature.regime == "UNKNOWN"


class TestSimilarity:
    """Tests for the 0-1 similarity score."""

    def test_identical(self):
        assert calculate_similarity(OVERSOLD_BULL, OVERSOLD_BULL) == 1.0

    def test_partial_pattern_overlap(self):
        """Jaccard of {Hammer} vs {Hammer, Doji} is 0.5, worth 0.1."""
        other = MemorySignature(
            rsi_bucket="oversold", macd_signal="bullish", trend="up",
            patterns=("Hammer", "Doji"), regime="LOW_VOL_BULLISH",
        )
        assert calculate_similarity(OVERSOLD_BULL, other) == pytest.approx(0.9)

    def test_no_patterns_on_either_side(self):
        a = MemorySignature(rsi_bucket="neutral")
        b = MemorySignature(rsi_bucket="neutral")
        assert calculate_similarity(a, b) == pytest.approx(0.8)

    def test_nothing_in_common(self):
        other = MemorySignature(
            rsi_bucket="overbought", macd_signal="bearish", trend="down",
            patterns=("Shooting Star",), regime="HIGH_VOL_BEARISH",
        )
        assert calculate_similarity(OVERSOLD_BULL, other) == 0.0


# =============================================================================
# Store Tests
# =============================================================================

class TestFindSimilar:
    """Tests for scenario retrieval."""

    def test_pending_scenarios_are_ignored(self):
        store = MemoryStore()
        store.save(create_scenario(OVERSOLD_BULL, outcome=Outcome.PENDING))
        assert store.find_similar(OVERSOLD_BULL) == []

    def test_threshold_is_exclusive(self):
        """Exactly 0.3 similarity does not qualify."""
        store = MemoryStore()
        weak = MemorySignature(
            rsi_bucket="oversold", macd_signal="bearish", trend="down",
            patterns=("Hammer", "Doji"), regime="HIGH_VOL_BEARISH",
        )
        assert calculate_similarity(OVERSOLD_BULL, weak) == pytest.approx(0.3)
        store.save(create_scenario(weak))
        assert store.find_similar(OVERSOLD_BULL) == []

    def test_ordered_by_similarity_then_recency(self):
        store = MemoryStore()
        older = create_scenario(OVERSOLD_BULL, created_at=1.0)
        newer = create_scenario(OVERSOLD_BULL, created_at=2.0)
        weaker = create_scenario(MemorySignature(
            rsi_bucket="oversold", macd_signal="bullish", trend="up", regime="CHOPPY",
        ), created_at=3.0)
        for scenario in (older, weaker, newer):
            store.save(scenario)

        matches = store.find_similar(OVERSOLD_BULL)
        assert [m.scenario.id for m in matches] == [newer.id, older.id, weaker.id]

    def test_k_limits_results(self):
        store = MemoryStore()
        for i in range(8):
            store.save(create_scenario(OVERSOLD_BULL, created_at=float(i)))
        assert len(store.find_similar(OVERSOLD_BULL, k=3)) == 3


class TestOutcomes:

    def test_update_outcome(self):
        store = MemoryStore()
        scenario_id = store.save(create_scenario(OVERSOLD_BULL, outcome=Outcome.PENDING))

        assert store.update_outcome(scenario_id, Outcome.LOSS, -2.5, 3)
        scenario = store.get(scenario_id)
        assert scenario.outcome is Outcome.LOSS
        assert scenario.price_change_percent == -2.5
        assert scenario.days_held == 3

    def test_update_unknown_id(self):
        assert MemoryStore().update_outcome("missing", Outcome.WIN) is False

    def test_update_accepts_string_outcome(self):
        store = MemoryStore()
        scenario_id = store.save(create_scenario(OVERSOLD_BULL, outcome=Outcome.PENDING))
        store.update_outcome(scenario_id, "win", 4.0)
        assert store.get(scenario_id).outcome is Outcome.WIN

    def test_stats(self):
        store = MemoryStore()
        store.save(create_scenario(OVERSOLD_BULL, outcome=Outcome.WIN, price_change_percent=4.0))
        store.save(create_scenario(OVERSOLD_BULL, outcome=Outcome.LOSS, price_change_percent=-2.0))
        store.save(create_scenario(OVERSOLD_BULL, outcome=Outcome.PENDING))

        stats = store.stats()
        assert stats["total_memories"] == 3
        assert stats["completed_trades"] == 2
        assert stats["pending_trades"] == 1
        assert stats["overall_win_rate"] == 50.0
        assert stats["avg_price_change_percent"] == 1.0

    def test_pattern_win_rate(self):
        store = MemoryStore()
        store.save(create_scenario(OVERSOLD_BULL, outcome=Outcome.WIN))
        store.save(create_scenario(OVERSOLD_BULL, outcome=Outcome.WIN))
        store.save(create_scenario(OVERSOLD_BULL, outcome=Outcome.LOSS))
        store.save(create_scenario(OVERSOLD_BULL, outcome=Outcome.NEUTRAL))

        rate = store.pattern_win_rate("Hammer")
        assert rate["total"] == 3
        assert rate["win_rate"] == pytest.approx(200 / 3)
        assert store.pattern_win_rate("Doji")["total"] == 0


class TestPersistence:

    def test_round_trip(self, tmp_path):
        path = str(tmp_path / "memory" / "scenarios.json")
        store = MemoryStore(path=path)
        scenario_id = store.save(create_scenario(OVERSOLD_BULL, outcome=Outcome.PENDING))
        store.update_outcome(scenario_id, Outcome.WIN, 3.2, 5)

        reloaded = MemoryStore(path=path).get(scenario_id)
        assert reloaded.outcome is Outcome.WIN
        assert reloaded.signature == OVERSOLD_BULL
        assert reloaded.action is Action.BUY

        with open(path, encoding="utf-8") as f:
            assert json.load(f)["version"] == 1

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "memory.json"
        path.write_text("{not json")
        assert MemoryStore(path=str(path)).stats()["total_memories"] == 0

    def test_clear(self, tmp_path):
        path = str(tmp_path / "memory.json")
        store = MemoryStore(path=path)
        store.save(create_scenario(OVERSOLD_BULL))
        store.clear()
        assert MemoryStore(path=path).stats()["total_memories"] == 0


# =============================================================================
# Prompt Context Tests
# =============================================================================

class TestMemoryContext:
    """Tests for build_memory_context."""

    def test_empty(self):
        assert MemoryStore().build_memory_context([]) == ""

    def test_regime_weighted_win_rate(self):
        """A loss from another regime counts half: 1 / (1 + 0.5) = 67%."""
        win = create_scenario(OVERSOLD_BULL, outcome=Outcome.WIN, price_change_percent=4.0, days_held=5)
        loss = create_scenario(
            MemorySignature(rsi_bucket="oversold", macd_signal="bullish", trend="up", regime="CHOPPY"),
            outcome=Outcome.LOSS, price_change_percent=-2.0,
        )
        matches = [ScenarioMatch(win, 1.0), ScenarioMatch(loss, 0.6)]

        context = MemoryStore().build_memory_context(matches, "LOW_VOL_BULLISH")

        assert context.startswith("**HISTORICAL CONTEXT (from past recommendations):**")
        assert "Found 2 similar past scenarios" in context
        assert "Regime-weighted win rate in similar conditions: 67%" in context
        assert "different regime: CHOPPY" in context
        assert "BUY at 70% -> WIN (+4.0% in 5 days)" in context
        assert context.splitlines()[1] == "Regime-weighted win rate in similar conditions: 67%"

    def test_without_current_regime_weights_equally(self):
        win = create_scenario(OVERSOLD_BULL, outcome=Outcome.WIN)
        loss = create_scenario(OVERSOLD_BULL, outcome=Outcome.LOSS)
        context = MemoryStore().build_memory_context([ScenarioMatch(win, 1.0), ScenarioMatch(loss, 1.0)])
        assert "win rate in similar conditions: 50%" in context

    def test_win_rate_survives_prompt_sanitizing(self):
        """Five long entries under another regime still fit the memory cap with the summary intact."""
        signature = MemorySignature(
            rsi_bucket="oversold", macd_signal="bullish", trend="up",
            patterns=("Bullish Engulfing", "Morning Star", "Hammer"), regime="HIGH_VOL_BEARISH",
        )
        matches = [
            ScenarioMatch(create_scenario(signature, symbol=f"SYM{i}", price_change_percent=3.5, days_held=4), 0.8)
            for i in range(5)
        ]

        context = MemoryStore().build_memory_context(matches, "LOW_VOL_BULLISH")
        safe = sanitize_for_prompt(context, "memory")

        assert len(context) <= MAX_LENGTHS["memory"]
        assert safe == context
        assert "Regime-weighted win rate in similar conditions: 100%" in safe
        assert safe.endswith("Consider this historical performance when making your recommendation.")

    def test_trims_whole_entries_to_fit(self):
        matches = [ScenarioMatch(create_scenario(OVERSOLD_BULL, symbol=f"SYM{i}"), 1.0) for i in range(5)]

        context = MemoryStore().build_memory_context(matches, "LOW_VOL_BULLISH", max_chars=400)

        assert len(context) <= 400
        assert "Found 5 similar past scenarios" in context
        assert "1. " in context
        assert "5. " not in context
        assert context.endswith("when making your recommendation.")
