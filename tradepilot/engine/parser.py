"""
Response Parsing
================

Extracts the recommendation JSON from free-form backend text and
normalizes it:

- The first well-formed JSON object in the text is decoded; prose
  and stray braces around it are ignored
- action must be BUY, SELL or HOLD; confidence must be a number
  (booleans rejected); rationale must be non-empty
- confidence is rounded and clamped to 0-100
- Missing targets default to +5% / -3% for BUY and -5% / +3% for SELL
- suggestedShares is floored, suggestedDollarAmount rounded; HOLD
  never carries sizing
"""

from dataclasses import dataclass
from typing import Any, Optional
import json
import logging
import math

from tradepilot.errors import ResponseParseError
from tradepilot.models import Action

logger = logging.getLogger(__name__)

BUY_TARGET_FACTOR = 1.05
BUY_STOP_FACTOR = 0.97
SELL_TARGET_FACTOR = 0.95
SELL_STOP_FACTOR = 1.03

_DECODER = json.JSONDecoder()


@dataclass(frozen=True)
class ParsedResponse:
    action: Action
    confidence: int
    rationale: str
    price_target: Optional[float] = None
    stop_loss: Optional[float] = None
    suggested_shares: Optional[int] = None
    suggested_dollar_amount: Optional[float] = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _positive_number(value: Any) -> Optional[float]:
    return float(value) if _is_number(value) and value > 0 else None


def _first_json_object(text: str) -> dict:
    """Decode the first well-formed JSON object, ignoring surrounding prose."""
    error = None
    idx = text.find("{")
    while idx != -1:
        try:
            data, _ = _DECODER.raw_decode(text, idx)
        except json.JSONDecodeError as e:
            error = error or e
        else:
            if isinstance(data, dict):
                return data
        idx = text.find("{", idx + 1)

    if error is None:
        raise ResponseParseError("No JSON object found in response")
    raise ResponseParseError(f"Invalid JSON in response: {error}") from error


def parse_recommendation_response(text: str, current_price: float) -> ParsedResponse:
    """
    Parse backend output into a ParsedResponse.

    Raises:
        ResponseParseError: No JSON object, invalid JSON or invalid fields
    """
    data = _first_json_object(text or "")

    action_raw = data.get("action")
    confidence_raw = data.get("confidence")
    rationale = data.get("rationale")
    if not action_raw or not _is_number(confidence_raw) or not rationale or not isinstance(rationale, str):
        raise ResponseParseError("Missing required fields (action, confidence, rationale)")

    try:
        action = Action(action_raw)
    except ValueError:
        raise ResponseParseError(f"Invalid action: {action_raw!r}") from None

    # Half-up rounding, not round()'s half-to-even
    confidence = max(0, min(100, int(math.floor(confidence_raw + 0.5))))

    price_target = _positive_number(data.get("priceTarget"))
    stop_loss = _positive_number(data.get("stopLoss"))
    if action is Action.BUY:
        price_target = price_target or round(current_price * BUY_TARGET_FACTOR, 2)
        stop_loss = stop_loss or round(current_price * BUY_STOP_FACTOR, 2)
    elif action is Action.SELL:
        price_target = price_target or round(current_price * SELL_TARGET_FACTOR, 2)
        stop_loss = stop_loss or round(current_price * SELL_STOP_FACTOR, 2)

    shares = None
    dollars = None
    if action is not Action.HOLD:
        if _is_number(data.get("suggestedShares")):
            shares = int(math.floor(data["suggestedShares"]))
        if _is_number(data.get("suggestedDollarAmount")):
            dollars = float(math.floor(data["suggestedDollarAmount"] + 0.5))

    return ParsedResponse(
        action=action,
        confidence=confidence,
        rationale=rationale.strip(),
        price_target=price_target,
        stop_loss=stop_loss,
        suggested_shares=shares,
        suggested_dollar_amount=dollars,
    )
