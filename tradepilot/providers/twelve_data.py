"""
TwelveData Market Data Adapter
==============================

Fetches quotes and time series from the TwelveData REST API.

API Documentation: https://twelvedata.com/docs

Features:
- Batch quotes (comma-separated symbols in one request)
- Intraday and daily time series
- VIX and index quotes

Rate Limits:
- Free tier: 8 requests/minute, 800/day
- Basic: 30 requests/minute, 5000/day
- Pro: 80 requests/minute

Errors are reported in-band as {"status": "error", "code": ..., "message": ...}
with HTTP 200, so every payload is checked before parsing.

Required API Key: Get at https://twelvedata.com/account/api-keys
"""

from datetime import datetime, timezone
from typing import List, Dict, Any
import logging

from tradepilot.errors import MalformedResponseError, MarketDataError, RateLimitedError
from tradepilot.models import Candle, Quote
from tradepilot.providers.base import Interval, MarketDataProvider, ProviderKind, to_float

logger = logging.getLogger(__name__)


def _parse_datetime(value: str) -> int:
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            dt = datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
            return int(dt.timestamp())
        except ValueError:
            continue
    raise ValueError(f"Unrecognized TwelveData datetime: {value!r}")


class TwelveDataProvider(MarketDataProvider):
    """
    Market data adapter for the TwelveData API.

    Example Usage:
        provider = TwelveDataProvider(api_key="your_key")
        quotes = await provider.fetch_quotes(["AAPL", "MSFT"])
        candles = await provider.fetch_candles("AAPL", Interval.DAILY, outputsize=120)
    """

    kind = ProviderKind.TWELVEDATA
    base_url = "https://api.twelvedata.com"
    rate_limit_per_minute = 8  # Free tier limit

    # TwelveData spells a few symbols differently
    SYMBOL_MAP = {"^VIX": "VIX", "VIX": "VIX"}

    def _check_error(self, data: Any):
        if isinstance(data, dict) and data.get("status") == "error":
            code = data.get("code")
            message = data.get("message", "Unknown error")
            if code == 429 or "credits" in str(message).lower():
                raise RateLimitedError(f"TwelveData rate limit: {message}", self.name, code)
            raise MarketDataError(f"TwelveData API error {code}: {message}", self.name, code)

    def _parse_quote(self, symbol: str, item: Dict[str, Any]) -> Quote:
        price = to_float(item.get("close"))
        if price <= 0:
            raise ValueError(f"missing price for {symbol}")
        return Quote(
            symbol=symbol,
            price=price,
            change=to_float(item.get("change")),
            change_percent=to_float(item.get("percent_change")),
            volume=int(to_float(item.get("volume"))),
            high=to_float(item.get("high"), price),
            low=to_float(item.get("low"), price),
            open=to_float(item.get("open"), price),
            previous_close=to_float(item.get("previous_close"), price),
            timestamp=to_float(item.get("timestamp")) or datetime.now(timezone.utc).timestamp(),
        )

    async def fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        """
        Fetch quotes with the batch /quote endpoint.

        A single symbol returns the quote object itself; multiple symbols
        return a dict keyed by symbol where each entry may carry its own
        error status.
        """
        if not symbols:
            return []
        api_key = await self._ensure_api_key()

        upstream = {s: self.SYMBOL_MAP.get(s, s) for s in symbols}
        params = {"symbol": ",".join(upstream.values()), "apikey": api_key}

        logger.info(f"Fetching TwelveData quotes for {symbols}")
        data = await self._get_json(f"{self.base_url}/quote", params=params)
        self._check_error(data)

        if len(symbols) == 1:
            entries = {symbols[0]: data}
        else:
            entries = {s: data.get(upstream[s]) for s in symbols}

        quotes = []
        for symbol, item in entries.items():
            if not isinstance(item, dict) or item.get("status") == "error":
                logger.warning(f"No TwelveData quote for {symbol}")
                continue
            try:
                quotes.append(self._parse_quote(symbol, item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to parse TwelveData quote for {symbol}: {e}")

        self.quotes_fetched += len(quotes)
        return quotes

    async def fetch_candles(
        self,
        symbol: str,
        interval: Interval = Interval.DAILY,
        outputsize: int = 200,
    ) -> List[Candle]:
        """Fetch a time series; TwelveData returns newest first, so the result is reversed."""
        api_key = await self._ensure_api_key()
        params = {
            "symbol": self.SYMBOL_MAP.get(symbol, symbol),
            "interval": interval.value,
            "outputsize": min(outputsize, 5000),
            "apikey": api_key,
        }

        logger.info(f"Fetching TwelveData {interval.value} candles for {symbol}")
        data = await self._get_json(f"{self.base_url}/time_series", params=params)
        self._check_error(data)

        values = data.get("values") if isinstance(data, dict) else None
        if values is None:
            raise MalformedResponseError("TwelveData time_series missing 'values'", self.name)

        try:
            candles = [
                Candle(
                    time=_parse_datetime(v["datetime"]),
                    open=to_float(v["open"]),
                    high=to_float(v["high"]),
                    low=to_float(v["low"]),
                    close=to_float(v["close"]),
                    volume=to_float(v.get("volume")),
                )
                for v in values
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"TwelveData candle parse error: {e}", self.name) from e

        candles.sort(key=lambda c: c.time)
        self.candles_fetched += len(candles)
        logger.info(f"Fetched {len(candles)} candles from TwelveData")
        return candles
