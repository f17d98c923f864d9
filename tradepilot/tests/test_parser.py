"""
Tests for Response Parsing
==========================

Unit tests for parse_recommendation_response. These tests verify:
- JSON is found inside surrounding prose
- Missing or invalid fields raise ResponseParseError
- Confidence is rounded half-up and clamped
- BUY / SELL targets default from the current price
- HOLD never carries position sizing
"""

import pytest

from tradepilot.engine.parser import parse_recommendation_response
from tradepilot.errors import ResponseParseError
from tradepilot.models import Action

from conftest import recommendation_json

PRICE = 100.0


class TestExtraction:

    def test_json_inside_prose(self):
        text = "Here is my analysis:\n" + recommendation_json("BUY", 72) + "\nGood luck!"
        parsed = parse_recommendation_response(text, PRICE)
        assert parsed.action is Action.BUY
        assert parsed.confidence == 72

    def test_braces_after_json(self):
        text = 'noise {"action":"BUY","confidence":85,"rationale":"x"} (see {appendix})'
        parsed = parse_recommendation_response(text, PRICE)
        assert parsed.action is Action.BUY
        assert parsed.confidence == 85

    def test_braces_before_json(self):
        text = "Context {not json} then " + recommendation_json("SELL", 64)
        parsed = parse_recommendation_response(text, PRICE)
        assert parsed.action is Action.SELL

    def test_first_object_wins(self):
        text = recommendation_json("HOLD", 50) + "\n" + recommendation_json("BUY", 90)
        assert parse_recommendation_response(text, PRICE).action is Action.HOLD

    def test_no_json(self):
        with pytest.raises(ResponseParseError, match="No JSON"):
            parse_recommendation_response("I would hold for now.", PRICE)

    def test_invalid_json(self):
        with pytest.raises(ResponseParseError, match="Invalid JSON"):
            parse_recommendation_response('{"action": "BUY", confidence: }', PRICE)

    def test_empty_response(self):
        with pytest.raises(ResponseParseError):
            parse_recommendation_response("", PRICE)


class TestValidation:
    """Tests for required field checks."""

    def test_missing_rationale(self):
        with pytest.raises(ResponseParseError, match="Missing required fields"):
            parse_recommendation_response('{"action": "BUY", "confidence": 70}', PRICE)

    def test_boolean_confidence_rejected(self):
        with pytest.raises(ResponseParseError):
            parse_recommendation_response(recommendation_json("BUY", True), PRICE)

    def test_string_confidence_rejected(self):
        with pytest.raises(ResponseParseError):
            parse_recommendation_response(recommendation_json("BUY", "70"), PRICE)

    @pytest.mark.parametrize("action", ["STRONG_BUY", "buy", "WAIT"])
    def test_invalid_action(self, action):
        with pytest.raises(ResponseParseError, match="Invalid action"):
            parse_recommendation_response(recommendation_json(action, 70), PRICE)


class TestNormalization:
    """Tests for confidence, target and sizing normalization."""

    @pytest.mark.parametrize("raw,expected", [(72.5, 73), (72.4, 72), (0.5, 1), (150, 100), (-5, 0)])
    def test_confidence_rounding_and_clamping(self, raw, expected):
        parsed = parse_recommendation_response(recommendation_json("HOLD", raw), PRICE)
        assert parsed.confidence == expected

    def test_buy_default_targets(self):
        parsed = parse_recommendation_response(recommendation_json("BUY", 70), PRICE)
        assert parsed.price_target == 105.0
        assert parsed.stop_loss == 97.0

    def test_sell_default_targets(self):
        parsed = parse_recommendation_response(recommendation_json("SELL", 70), PRICE)
        assert parsed.price_target == 95.0
        assert parsed.stop_loss == 103.0

    def test_explicit_targets_kept(self):
        text = recommendation_json("BUY", 70, priceTarget=112.5, stopLoss=96.0)
        parsed = parse_recommendation_response(text, PRICE)
        assert parsed.price_target == 112.5
        assert parsed.stop_loss == 96.0

    def test_hold_has_no_defaults(self):
        parsed = parse_recommendation_response(recommendation_json("HOLD", 50), PRICE)
        assert parsed.price_target is None
        assert parsed.stop_loss is None

    def test_sizing(self):
        text = recommendation_json("BUY", 70, suggestedShares=12.9, suggestedDollarAmount=1290.5)
        parsed = parse_recommendation_response(text, PRICE)
        assert parsed.suggested_shares == 12
        assert parsed.suggested_dollar_amount == 1291.0

    def test_hold_drops_sizing(self):
        text = recommendation_json("HOLD", 55, suggestedShares=10, suggestedDollarAmount=1000)
        parsed = parse_recommendation_response(text, PRICE)
        assert parsed.suggested_shares is None
        assert parsed.suggested_dollar_amount is None

    def test_rationale_is_stripped(self):
        parsed = parse_recommendation_response(recommendation_json("HOLD", 50, "  Mixed signals.  "), PRICE)
        assert parsed.rationale == "Mixed signals."
