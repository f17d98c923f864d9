"""
Mock Market Data Provider
=========================

Deterministic synthetic quotes and candles for local development and
demos. Selected only when MARKET_DATA_PROVIDER=mock; the gateway never
falls back to it on its own.
"""

from typing import List
import logging
import time
import zlib

import numpy as np

from tradepilot.models import Candle, Quote
from tradepilot.providers.base import Interval, MarketDataProvider, ProviderKind

logger = logging.getLogger(__name__)

BASE_PRICES = {"SPY": 520.0, "VIX": 16.0, "^VIX": 16.0, "AAPL": 190.0, "MSFT": 420.0, "NVDA": 880.0}


class MockProvider(MarketDataProvider):
    """Seeded random-walk data. The same symbol always yields the same series."""

    kind = ProviderKind.MOCK
    rate_limit_per_minute = 10_000

    def __init__(self, *args, **kwargs):
        super().__init__(*args, api_key=kwargs.pop("api_key", None) or "mock", **kwargs)

    @staticmethod
    def _rng(symbol: str) -> np.random.Generator:
        return np.random.default_rng(zlib.crc32(symbol.encode()))

    def _series(self, symbol: str, interval: Interval, outputsize: int) -> List[Candle]:
        rng = self._rng(symbol)
        base = BASE_PRICES.get(symbol, 100.0)
        returns = rng.normal(0.0005, 0.015, outputsize)
        closes = base * np.cumprod(1 + returns)
        opens = np.concatenate([[base], closes[:-1]])
        spread = np.abs(rng.normal(0, 0.006, outputsize)) * closes
        volumes = rng.integers(1_000_000, 5_000_000, outputsize)

        end = int(time.time()) // interval.seconds * interval.seconds
        start = end - (outputsize - 1) * interval.seconds
        return [
            Candle(
                time=start + i * interval.seconds,
                open=round(float(opens[i]), 2),
                high=round(float(max(opens[i], closes[i]) + spread[i]), 2),
                low=round(float(min(opens[i], closes[i]) - spread[i]), 2),
                close=round(float(closes[i]), 2),
                volume=float(volumes[i]),
            )
            for i in range(outputsize)
        ]

    async def fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        quotes = []
        for symbol in symbols:
            prev, last = self._series(symbol, Interval.DAILY, 200)[-2:]
            quotes.append(Quote(
                symbol=symbol,
                price=last.close,
                change=round(last.close - prev.close, 2),
                change_percent=round((last.close - prev.close) / prev.close * 100, 2),
                volume=int(last.volume),
                high=last.high,
                low=last.low,
                open=last.open,
                previous_close=prev.close,
            ))
        self.quotes_fetched += len(quotes)
        return quotes

    async def fetch_candles(
        self,
        symbol: str,
        interval: Interval = Interval.DAILY,
        outputsize: int = 200,
    ) -> List[Candle]:
        candles = self._series(symbol, interval, outputsize)
        self.candles_fetched += len(candles)
        return candles
