"""
Alpha Vantage Market Data Adapter
=================================

Fetches quotes and time series from the Alpha Vantage API.

API Documentation: https://www.alphavantage.co/documentation/

Features:
- GLOBAL_QUOTE per symbol
- TIME_SERIES_DAILY / WEEKLY / INTRADAY

Rate Limits:
- Free tier: 25 requests/day (and 5/minute)
- Premium: 75+ requests/minute

Alpha Vantage signals throttling with HTTP 200 and a "Note" or
"Information" field instead of data. Those payloads are rate-limit
errors, not empty data.

Required API Key: Get at https://www.alphavantage.co/support/#api-key
"""

from datetime import datetime, timezone
from typing import List, Dict, Any
import logging
import time

from tradepilot.errors import MalformedResponseError, MarketDataError, RateLimitedError
from tradepilot.models import Candle, Quote
from tradepilot.providers.base import Interval, MarketDataProvider, ProviderKind, to_float

logger = logging.getLogger(__name__)


class AlphaVantageProvider(MarketDataProvider):
    """
    Market data adapter for Alpha Vantage.

    Example Usage:
        provider = AlphaVantageProvider(api_key="your_key")
        quotes = await provider.fetch_quotes(["IBM"])
    """

    kind = ProviderKind.ALPHA_VANTAGE
    base_url = "https://www.alphavantage.co/query"
    rate_limit_per_minute = 5  # Free tier limit

    def _check_error(self, data: Any):
        if not isinstance(data, dict):
            raise MalformedResponseError("Alpha Vantage returned a non-object payload", self.name)
        if "Error Message" in data:
            raise MarketDataError(f"Alpha Vantage API error: {data['Error Message']}", self.name)
        for key in ("Note", "Information"):
            if key in data:
                logger.warning(f"Alpha Vantage rate limit: {data[key]}")
                raise RateLimitedError(f"Alpha Vantage rate limit: {data[key]}", self.name)

    async def fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        if not symbols:
            return []
        api_key = await self._ensure_api_key()

        quotes = []
        for symbol in symbols:
            params = {"function": "GLOBAL_QUOTE", "symbol": symbol, "apikey": api_key}
            data = await self._get_json(self.base_url, params=params)
            self._check_error(data)

            item = data.get("Global Quote") or {}
            price = to_float(item.get("05. price"))
            if price <= 0:
                logger.warning(f"No Alpha Vantage quote for {symbol}")
                continue

            quotes.append(Quote(
                symbol=symbol,
                price=price,
                change=to_float(item.get("09. change")),
                change_percent=to_float(item.get("10. change percent")),
                volume=int(to_float(item.get("06. volume"))),
                high=to_float(item.get("03. high"), price),
                low=to_float(item.get("04. low"), price),
                open=to_float(item.get("02. open"), price),
                previous_close=to_float(item.get("08. previous close"), price),
                timestamp=time.time(),
            ))

        self.quotes_fetched += len(quotes)
        return quotes

    def _series_params(self, symbol: str, interval: Interval, outputsize: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {"symbol": symbol, "outputsize": "compact" if outputsize <= 100 else "full"}
        if interval is Interval.DAILY:
            params["function"] = "TIME_SERIES_DAILY"
        elif interval is Interval.WEEKLY:
            params["function"] = "TIME_SERIES_WEEKLY"
            params.pop("outputsize")
        else:
            params["function"] = "TIME_SERIES_INTRADAY"
            params["interval"] = "60min" if interval is Interval.ONE_HOUR else interval.value
        return params

    async def fetch_candles(
        self,
        symbol: str,
        interval: Interval = Interval.DAILY,
        outputsize: int = 200,
    ) -> List[Candle]:
        api_key = await self._ensure_api_key()
        params = self._series_params(symbol, interval, outputsize)
        params["apikey"] = api_key

        logger.info(f"Fetching Alpha Vantage {params['function']} for {symbol}")
        data = await self._get_json(self.base_url, params=params)
        self._check_error(data)

        series_key = next((k for k in data if k.startswith("Time Series") or k.startswith("Weekly")), None)
        if series_key is None:
            raise MalformedResponseError("Alpha Vantage payload has no time series", self.name)

        candles = []
        try:
            for stamp, bar in data[series_key].items():
                fmt = "%Y-%m-%d %H:%M:%S" if " " in stamp else "%Y-%m-%d"
                ts = datetime.strptime(stamp, fmt).replace(tzinfo=timezone.utc).timestamp()
                candles.append(Candle(
                    time=int(ts),
                    open=to_float(bar["1. open"]),
                    high=to_float(bar["2. high"]),
                    low=to_float(bar["3. low"]),
                    close=to_float(bar["4. close"]),
                    volume=to_float(bar.get("5. volume")),
                ))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Alpha Vantage candle parse error: {e}", self.name) from e

        candles.sort(key=lambda c: c.time)
        candles = candles[-outputsize:]
        self.candles_fetched += len(candles)
        return candles
