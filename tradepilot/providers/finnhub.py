"""
Finnhub Market Data Adapter
===========================

Fetches quotes, candles and news from the Finnhub API.

API Documentation: https://finnhub.io/docs/api

Features:
- Real-time quotes (one request per symbol)
- Stock candles at minute to monthly resolution
- Company news and general market news (used by the news feed)

Rate Limits:
- Free tier: 60 requests/minute
- Premium: 300 requests/minute

Required API Key: Get at https://finnhub.io/register
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Dict, Any
import logging
import time

from tradepilot.errors import MalformedResponseError, MarketDataError, RateLimitedError
from tradepilot.models import Candle, Quote
from tradepilot.providers.base import Interval, MarketDataProvider, ProviderKind, to_float

logger = logging.getLogger(__name__)

_RESOLUTIONS = {
    Interval.ONE_MIN: "1",
    Interval.FIVE_MIN: "5",
    Interval.FIFTEEN_MIN: "15",
    Interval.ONE_HOUR: "60",
    Interval.DAILY: "D",
    Interval.WEEKLY: "W",
}


class FinnhubProvider(MarketDataProvider):
    """
    Market data adapter for the Finnhub API.

    Example Usage:
        provider = FinnhubProvider(api_key="your_key")
        quotes = await provider.fetch_quotes(["AAPL"])
        news = await provider.fetch_company_news("AAPL", days=3)
    """

    kind = ProviderKind.FINNHUB
    base_url = "https://finnhub.io/api/v1"
    rate_limit_per_minute = 60  # Free tier limit

    INDEX_SYMBOLS = {"^VIX": "^VIX", "VIX": "^VIX"}

    def _check_error(self, data: Any):
        if isinstance(data, dict) and data.get("error"):
            message = str(data["error"])
            if "limit" in message.lower():
                raise RateLimitedError(f"Finnhub rate limit: {message}", self.name)
            raise MarketDataError(f"Finnhub API error: {message}", self.name)

    async def fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        """Fetch quotes one symbol at a time (Finnhub has no batch quote endpoint)."""
        if not symbols:
            return []
        api_key = await self._ensure_api_key()

        quotes = []
        for symbol in symbols:
            params = {"symbol": self.INDEX_SYMBOLS.get(symbol, symbol), "token": api_key}
            data = await self._get_json(f"{self.base_url}/quote", params=params)
            self._check_error(data)
            if not isinstance(data, dict):
                raise MalformedResponseError("Finnhub quote is not an object", self.name)

            price = to_float(data.get("c"))
            # Unknown symbols come back as all zeros
            if price <= 0:
                logger.warning(f"No Finnhub quote for {symbol}")
                continue

            quotes.append(Quote(
                symbol=symbol,
                price=price,
                change=to_float(data.get("d")),
                change_percent=to_float(data.get("dp")),
                volume=0,
                high=to_float(data.get("h"), price),
                low=to_float(data.get("l"), price),
                open=to_float(data.get("o"), price),
                previous_close=to_float(data.get("pc"), price),
                timestamp=to_float(data.get("t")) or time.time(),
            ))

        self.quotes_fetched += len(quotes)
        return quotes

    async def fetch_candles(
        self,
        symbol: str,
        interval: Interval = Interval.DAILY,
        outputsize: int = 200,
    ) -> List[Candle]:
        """Fetch stock candles. A `no_data` status yields an empty list."""
        api_key = await self._ensure_api_key()

        now = int(time.time())
        if interval.is_intraday:
            span = interval.seconds * outputsize * 4 + 4 * 86400
        else:
            span = int(interval.seconds * outputsize * 1.6) + 7 * 86400

        params = {
            "symbol": self.INDEX_SYMBOLS.get(symbol, symbol),
            "resolution": _RESOLUTIONS[interval],
            "from": now - span,
            "to": now,
            "token": api_key,
        }

        logger.info(f"Fetching Finnhub {interval.value} candles for {symbol}")
        data = await self._get_json(f"{self.base_url}/stock/candle", params=params)
        self._check_error(data)
        if not isinstance(data, dict):
            raise MalformedResponseError("Finnhub candle payload is not an object", self.name)

        if data.get("s") == "no_data":
            return []
        if data.get("s") != "ok":
            raise MalformedResponseError(f"Finnhub candle status {data.get('s')!r}", self.name)

        try:
            columns = [data["t"], data["o"], data["h"], data["l"], data["c"], data.get("v") or [0] * len(data["t"])]
            candles = [
                Candle(time=int(t), open=float(o), high=float(h), low=float(l), close=float(c), volume=float(v))
                for t, o, h, l, c, v in zip(*columns)
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Finnhub candle parse error: {e}", self.name) from e

        candles = candles[-outputsize:]
        self.candles_fetched += len(candles)
        return candles

    # ============== NEWS ==============

    async def fetch_company_news(self, symbol: str, days: int = 3) -> List[Dict[str, Any]]:
        """
        Fetch raw company news items for one symbol.

        Returns:
            Finnhub news dicts (headline, summary, datetime, related, source, url)
        """
        api_key = await self._ensure_api_key()
        to_date = datetime.now(timezone.utc)
        from_date = to_date - timedelta(days=days)
        params = {
            "symbol": symbol,
            "from": from_date.strftime("%Y-%m-%d"),
            "to": to_date.strftime("%Y-%m-%d"),
            "token": api_key,
        }
        data = await self._get_json(f"{self.base_url}/company-news", params=params)
        self._check_error(data)

        # Finnhub returns a list of articles directly
        if not isinstance(data, list):
            logger.warning(f"Unexpected response format from Finnhub: {type(data)}")
            return []
        return data

    async def fetch_market_news(self, category: str = "general", min_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Fetch raw general market news items."""
        api_key = await self._ensure_api_key()
        params: Dict[str, Any] = {"category": category, "token": api_key}
        if min_id:
            params["minId"] = min_id
        data = await self._get_json(f"{self.base_url}/news", params=params)
        self._check_error(data)
        return data if isinstance(data, list) else []
