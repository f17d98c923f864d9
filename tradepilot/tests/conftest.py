"""
Shared fixtures and factories for the TradePilot test suite.
"""

from typing import List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from tradepilot.budget import AIBudgetTracker, ApiBudgetTracker, BudgetStore
from tradepilot.models import Candle, Quote

DAY = 86400
START_TIME = 1_700_006_400  # 2023-11-15 00:00 UTC


class FakeClock:
    """Manually advanced clock for TTL and window tests."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def create_mock_candles(
    closes: Sequence[float],
    start: int = START_TIME,
    spacing: int = DAY,
    volume: float = 1_000_000,
    spread: float = 0.5,
) -> List[Candle]:
    """Candles whose open is the previous close and whose wicks extend `spread` past the body."""
    candles = []
    prev = closes[0]
    for i, close in enumerate(closes):
        open_ = prev
        candles.append(Candle(
            time=start + i * spacing,
            open=open_,
            high=max(open_, close) + spread,
            low=min(open_, close) - spread,
            close=close,
            volume=volume,
        ))
        prev = close
    return candles


def create_trending_candles(count: int = 120, start_price: float = 100.0, step: float = 0.5) -> List[Candle]:
    """Steady trend with a small pullback every fifth bar so RSI stays below 100."""
    closes = []
    price = start_price
    for i in range(count):
        price += -step * 0.5 if i % 5 == 4 else step
        closes.append(round(price, 2))
    return create_mock_candles(closes)


def create_mock_quote(symbol: str = "AAPL", price: float = 150.0, **kwargs) -> Quote:
    return Quote(symbol=symbol, price=price, **kwargs)


def create_mock_backend(response: Optional[str] = None, has_credentials: bool = True, label: str = "mock test-model"):
    """Reasoning backend double returning `response` from complete()."""
    backend = MagicMock()
    backend.has_credentials = has_credentials
    backend.label = label
    backend.complete = AsyncMock(return_value=response)
    backend.close = AsyncMock()
    return backend


def recommendation_json(action: str = "BUY", confidence: float = 75, rationale: str = "Strong momentum", **extra) -> str:
    fields = {"action": action, "confidence": confidence, "rationale": rationale}
    fields.update(extra)
    body = ", ".join(f'"{k}": {v!r}' if not isinstance(v, str) else f'"{k}": "{v}"' for k, v in fields.items())
    return "{" + body + "}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api_budget(clock):
    tracker = ApiBudgetTracker(BudgetStore(None), clock=clock, register_atexit=False)
    yield tracker
    tracker.close()


@pytest.fixture
def ai_budget(clock):
    tracker = AIBudgetTracker(BudgetStore(None), daily_limit=15, clock=clock, register_atexit=False)
    yield tracker
    tracker.close()
