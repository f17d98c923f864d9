"""
Market Data Gateway
===================

Single entry point for quotes and candles. Wraps one provider adapter
with caching and budget enforcement.

Fetch policy, in order:
1. Cache entry for the exact key younger than its TTL -> return it
   without touching the budget tracker
2. Budget unavailable -> return the most recent cache entry regardless
   of age (marked stale), or an empty result if nothing is cached
3. Otherwise call upstream, normalize, cache, record budget usage

Upstream failures degrade the same way as (2). Provider exceptions are
logged here and never reach the caller, and nothing is fabricated: an
empty list means "no data this cycle".

Cache TTLs:
- Quotes: 1 hour
- Daily/weekly candles: 24 hours
- Intraday candles: 5 minutes
"""

from dataclasses import replace
from typing import Dict, List, Optional, Tuple
import asyncio
import logging
import time

from tradepilot.budget import ApiBudgetTracker
from tradepilot.cache import LRUCache
from tradepilot.errors import ConfigurationError, TradePilotError
from tradepilot.models import Candle, Quote, validate_series
from tradepilot.providers.base import Interval, MarketDataProvider

logger = logging.getLogger(__name__)

QUOTE_TTL_SECONDS = 60 * 60
CANDLE_TTL_SECONDS = 24 * 60 * 60
INTRADAY_CANDLE_TTL_SECONDS = 5 * 60
MAX_CACHED_CANDLE_SERIES = 50


class MarketDataGateway:
    """
    Cached, budget-aware access to one market data provider.

    Example Usage:
        gateway = MarketDataGateway(TwelveDataProvider(api_key="..."), budget)
        quote = await gateway.quote("AAPL")
        candles = await gateway.candles("AAPL", Interval.DAILY)
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        budget: ApiBudgetTracker,
        quote_ttl: float = QUOTE_TTL_SECONDS,
        candle_ttl: float = CANDLE_TTL_SECONDS,
        intraday_ttl: float = INTRADAY_CANDLE_TTL_SECONDS,
        candle_capacity: int = MAX_CACHED_CANDLE_SERIES,
        clock=time.time,
    ):
        self.provider = provider
        self.budget = budget
        self.quote_ttl = quote_ttl
        self.candle_ttl = candle_ttl
        self.intraday_ttl = intraday_ttl
        self.clock = clock

        self._quotes: LRUCache[Quote] = LRUCache(capacity=None, clock=clock)
        self._candles: LRUCache[List[Candle]] = LRUCache(capacity=candle_capacity, clock=clock)
        self._inflight: Dict[Tuple[str, ...], asyncio.Future] = {}

        # Metrics
        self.cache_hits = 0
        self.stale_served = 0
        self.budget_denials = 0
        self.upstream_failures = 0

    @property
    def provider_name(self) -> str:
        return self.provider.name

    # ============== QUOTES ==============

    async def quote(self, symbol: str) -> Optional[Quote]:
        """Fetch one quote. Returns None when no data is available."""
        quotes = await self.quotes([symbol])
        return quotes[0] if quotes else None

    async def quotes(self, symbols: List[str]) -> List[Quote]:
        """
        Fetch quotes for several symbols.

        Symbols with fresh cache entries are served from cache; the rest
        are fetched in one upstream call. Identical concurrent requests
        share a single upstream call.
        """
        symbols = list(dict.fromkeys(s.upper() for s in symbols if s))
        if not symbols:
            return []

        now = self.clock()
        result: Dict[str, Quote] = {}
        missing: List[str] = []
        for symbol in symbols:
            entry = self._quotes.get(symbol)
            if entry is not None and entry.is_fresh(self.quote_ttl, now):
                self.cache_hits += 1
                result[symbol] = replace(entry.payload, source="cache", cache_age=entry.age(now))
            else:
                missing.append(symbol)

        if missing:
            for quote in await self._fetch_quotes_deduplicated(tuple(missing)):
                result[quote.symbol] = quote

        return [result[s] for s in symbols if s in result]

    async def _fetch_quotes_deduplicated(self, symbols: Tuple[str, ...]) -> List[Quote]:
        key = tuple(sorted(symbols))
        pending = self._inflight.get(key)
        if pending is not None:
            logger.debug(f"Deduplicating quote request for {len(symbols)} symbols")
            return await asyncio.shield(pending)

        future = asyncio.ensure_future(self._fetch_quotes(list(symbols)))
        self._inflight[key] = future
        try:
            return await asyncio.shield(future)
        finally:
            if future.done():
                self._inflight.pop(key, None)
            else:
                future.add_done_callback(lambda _: self._inflight.pop(key, None))

    def _stale_quotes(self, symbols: List[str]) -> List[Quote]:
        now = self.clock()
        stale = []
        for symbol in symbols:
            entry = self._quotes.get(symbol)
            if entry is not None:
                self.stale_served += 1
                stale.append(replace(entry.payload, source="stale", cache_age=entry.age(now)))
        return stale

    async def _fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        cost = self.provider.quote_cost(symbols)
        if not self.budget.try_acquire(self.provider_name, cost):
            self.budget_denials += 1
            logger.warning(f"{self.provider_name} budget exhausted, serving cached quotes for {symbols}")
            return self._stale_quotes(symbols)

        try:
            fetched = await self.provider.fetch_quotes(symbols)
        except ConfigurationError as e:
            logger.warning(f"Cannot fetch quotes: {e}")
            return self._stale_quotes(symbols)
        except TradePilotError as e:
            self.upstream_failures += 1
            logger.error(f"{self.provider_name} quote fetch failed: {e}")
            return self._stale_quotes(symbols)

        now = self.clock()
        quotes = []
        for quote in fetched:
            self._quotes.put(quote.symbol, quote, timestamp=now)
            quotes.append(replace(quote, source="api", cache_age=0.0))

        returned = {q.symbol for q in quotes}
        quotes.extend(self._stale_quotes([s for s in symbols if s not in returned]))
        return quotes

    # ============== CANDLES ==============

    def _candle_ttl(self, interval: Interval) -> float:
        return self.intraday_ttl if interval.is_intraday else self.candle_ttl

    async def candles(self, symbol: str, interval=Interval.DAILY, outputsize: int = 200) -> List[Candle]:
        """
        Fetch an ascending candle series. Empty list when no data is available.
        """
        interval = Interval.parse(interval)
        symbol = symbol.upper()
        key = f"{symbol}:{interval.value}:{outputsize}"
        now = self.clock()

        entry = self._candles.get(key)
        if entry is not None and entry.is_fresh(self._candle_ttl(interval), now):
            self.cache_hits += 1
            return entry.payload

        if not self.budget.try_acquire(self.provider_name):
            self.budget_denials += 1
            logger.warning(f"{self.provider_name} budget exhausted, serving cached candles for {key}")
            return self._stale_candles(entry)

        try:
            fetched = await self.provider.fetch_candles(symbol, interval, outputsize)
        except ConfigurationError as e:
            logger.warning(f"Cannot fetch candles: {e}")
            return self._stale_candles(entry)
        except TradePilotError as e:
            self.upstream_failures += 1
            logger.error(f"{self.provider_name} candle fetch failed for {key}: {e}")
            return self._stale_candles(entry)

        candles = validate_series(fetched)
        if not candles:
            logger.warning(f"{self.provider_name} returned no candles for {key}")
            return self._stale_candles(entry)

        self._candles.put(key, candles, timestamp=self.clock())
        return candles

    def _stale_candles(self, entry) -> List[Candle]:
        if entry is None:
            return []
        self.stale_served += 1
        return entry.payload

    # ============== LIFECYCLE ==============

    def clear_cache(self):
        self._quotes.clear()
        self._candles.clear()

    def cache_status(self) -> Dict[str, object]:
        return {
            "provider": self.provider_name,
            "cached_quotes": len(self._quotes),
            "cached_candle_series": len(self._candles),
            "cache_hits": self.cache_hits,
            "stale_served": self.stale_served,
            "budget_denials": self.budget_denials,
            "upstream_failures": self.upstream_failures,
            "budget": self.budget.status(self.provider_name).to_dict(),
        }

    async def close(self):
        await self.provider.close()
