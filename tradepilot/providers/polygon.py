"""
Polygon.io Market Data Adapter
==============================

Fetches quotes and aggregate bars from the Polygon.io REST API.

API Documentation: https://polygon.io/docs/stocks

Features:
- Multi-ticker snapshot quotes (paid plans)
- Previous-close quotes (all plans, used as fallback)
- Aggregate bars for any minute/hour/day/week span
- Index data (VIX as I:VIX)

Rate Limits:
- Free tier: 5 requests/minute
- Starter: 100 requests/minute
- Developer: 1000 requests/minute
- Advanced: Unlimited

Required API Key: Get at https://polygon.io/dashboard/api-keys
"""

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional
import logging

from tradepilot.errors import MalformedResponseError, MarketDataError, RateLimitedError
from tradepilot.models import Candle, Quote
from tradepilot.providers.base import Interval, MarketDataProvider, ProviderKind, to_float

logger = logging.getLogger(__name__)

# interval -> (multiplier, timespan)
_AGG_SPANS = {
    Interval.ONE_MIN: (1, "minute"),
    Interval.FIVE_MIN: (5, "minute"),
    Interval.FIFTEEN_MIN: (15, "minute"),
    Interval.ONE_HOUR: (1, "hour"),
    Interval.DAILY: (1, "day"),
    Interval.WEEKLY: (1, "week"),
}


class PolygonProvider(MarketDataProvider):
    """
    Market data adapter for Polygon.io.

    Example Usage:
        provider = PolygonProvider(api_key="your_key")

        quotes = await provider.fetch_quotes(["AAPL", "MSFT"])

        candles = await provider.fetch_candles("AAPL", Interval.DAILY, outputsize=120)
    """

    kind = ProviderKind.POLYGON
    base_url = "https://api.polygon.io"
    rate_limit_per_minute = 5  # Free tier limit

    INDEX_SYMBOLS = {"^VIX": "I:VIX", "VIX": "I:VIX"}

    def _upstream(self, symbol: str) -> str:
        return self.INDEX_SYMBOLS.get(symbol, symbol)

    def quote_cost(self, symbols: List[str]) -> int:
        # One snapshot call for all stocks, one prev-close call per index
        return 1 + sum(1 for s in symbols if s in self.INDEX_SYMBOLS)

    def _check_error(self, data: Any):
        if not isinstance(data, dict):
            raise MalformedResponseError("Polygon.io returned a non-object payload", self.name)
        if data.get("status") == "ERROR":
            message = data.get("error") or data.get("message") or "Unknown error"
            if "exceeded" in str(message).lower():
                raise RateLimitedError(f"Polygon.io rate limit: {message}", self.name)
            raise MarketDataError(f"Polygon.io API error: {message}", self.name)

    async def fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        """
        Fetch quotes via the multi-ticker snapshot.

        Free plans are not entitled to snapshots (HTTP 403); in that case,
        and for index symbols, each symbol falls back to its previous close.
        """
        if not symbols:
            return []
        await self._ensure_api_key()

        stocks = [s for s in symbols if s not in self.INDEX_SYMBOLS]
        indices = [s for s in symbols if s in self.INDEX_SYMBOLS]
        quotes: List[Quote] = []

        if stocks:
            try:
                quotes.extend(await self._fetch_snapshot(stocks))
            except MarketDataError as e:
                if e.status != 403:
                    raise
                logger.info("Polygon.io snapshot not available on this plan, using previous close")
                indices = stocks + indices

        for symbol in indices:
            quote = await self.get_previous_close(symbol)
            if quote:
                quotes.append(quote)

        self.quotes_fetched += len(quotes)
        return quotes

    async def _fetch_snapshot(self, symbols: List[str]) -> List[Quote]:
        url = f"{self.base_url}/v2/snapshot/locale/us/markets/stocks/tickers"
        params = {"tickers": ",".join(symbols), "apiKey": self.api_key}

        logger.info(f"Fetching Polygon.io snapshot for {symbols}")
        data = await self._get_json(url, params=params)
        self._check_error(data)

        quotes = []
        for ticker in data.get("tickers", []) or []:
            try:
                day = ticker.get("day") or {}
                prev = ticker.get("prevDay") or {}
                last_trade = ticker.get("lastTrade") or {}
                price = to_float(last_trade.get("p")) or to_float(day.get("c")) or to_float(prev.get("c"))
                if price <= 0:
                    continue
                updated_ns = ticker.get("updated")
                quotes.append(Quote(
                    symbol=ticker["ticker"],
                    price=price,
                    change=to_float(ticker.get("todaysChange")),
                    change_percent=to_float(ticker.get("todaysChangePerc")),
                    volume=int(to_float(day.get("v"))),
                    high=to_float(day.get("h"), price),
                    low=to_float(day.get("l"), price),
                    open=to_float(day.get("o"), price),
                    previous_close=to_float(prev.get("c"), price),
                    timestamp=(updated_ns / 1e9) if updated_ns else datetime.now(timezone.utc).timestamp(),
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to parse Polygon.io snapshot entry: {e}")
        return quotes

    async def get_previous_close(self, symbol: str) -> Optional[Quote]:
        """
        Get the previous day's bar as a quote.

        Args:
            symbol: Stock ticker or index symbol

        Returns:
            Quote built from the previous close, or None if unavailable
        """
        url = f"{self.base_url}/v2/aggs/ticker/{self._upstream(symbol)}/prev"
        params = {"apiKey": self.api_key, "adjusted": "true"}

        data = await self._get_json(url, params=params)
        self._check_error(data)

        results = data.get("results") or []
        if not results:
            return None

        bar = results[0]
        close = to_float(bar.get("c"))
        open_ = to_float(bar.get("o"), close)
        return Quote(
            symbol=symbol,
            price=close,
            change=round(close - open_, 4),
            change_percent=round((close - open_) / open_ * 100, 4) if open_ else 0.0,
            volume=int(to_float(bar.get("v"))),
            high=to_float(bar.get("h"), close),
            low=to_float(bar.get("l"), close),
            open=open_,
            previous_close=None,
            timestamp=to_float(bar.get("t")) / 1000,
        )

    async def fetch_candles(
        self,
        symbol: str,
        interval: Interval = Interval.DAILY,
        outputsize: int = 200,
    ) -> List[Candle]:
        """
        Fetch aggregate bars covering the last `outputsize` intervals.

        Calendar days are padded for weekends and holidays, then the
        result is trimmed to the most recent `outputsize` bars.
        """
        await self._ensure_api_key()
        multiplier, timespan = _AGG_SPANS[interval]

        to_date = datetime.now(timezone.utc)
        if interval.is_intraday:
            lookback = timedelta(seconds=interval.seconds * outputsize * 4) + timedelta(days=4)
        else:
            lookback = timedelta(seconds=interval.seconds * outputsize * 1.6) + timedelta(days=7)
        from_date = to_date - lookback

        url = (
            f"{self.base_url}/v2/aggs/ticker/{self._upstream(symbol)}/range/{multiplier}/{timespan}/"
            f"{from_date.strftime('%Y-%m-%d')}/{to_date.strftime('%Y-%m-%d')}"
        )
        params = {
            "apiKey": self.api_key,
            "adjusted": "true",
            "sort": "asc",
            "limit": 50000,
        }

        logger.info(f"Fetching Polygon.io {interval.value} bars for {symbol} from {from_date:%Y-%m-%d}")
        data = await self._get_json(url, params=params)
        self._check_error(data)

        try:
            candles = [
                Candle(
                    time=int(bar["t"] // 1000),
                    open=float(bar["o"]),
                    high=float(bar["h"]),
                    low=float(bar["l"]),
                    close=float(bar["c"]),
                    volume=float(bar.get("v", 0)),
                )
                for bar in data.get("results", []) or []
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Polygon.io bar parse error: {e}", self.name) from e

        candles = candles[-outputsize:]
        self.candles_fetched += len(candles)
        logger.info(f"Fetched {len(candles)} price bars from Polygon.io")
        return candles

