"""
News Feed
=========

Supplies recent headlines to the recommendation engine. The engine only
needs headline text; relevance filtering happens here.

Selection rule:
- Up to 5 headlines mentioning the symbol (headline, summary or tickers)
- Otherwise the 3 most recent general market headlines
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple
import logging
import time

from tradepilot.errors import TradePilotError

logger = logging.getLogger(__name__)

MAX_SYMBOL_HEADLINES = 5
MAX_GENERAL_HEADLINES = 3


@dataclass(frozen=True)
class Headline:
    headline: str
    summary: str = ""
    tickers: Tuple[str, ...] = ()
    source: str = ""
    url: str = ""
    published_at: float = field(default_factory=time.time)

    def mentions(self, symbol: str) -> bool:
        symbol = symbol.upper()
        return (
            symbol in self.headline.upper()
            or symbol in (self.summary or "").upper()
            or symbol in self.tickers
        )

    @classmethod
    def from_finnhub(cls, item: Dict[str, Any]) -> "Headline":
        related = item.get("related") or ""
        return cls(
            headline=item.get("headline") or "",
            summary=item.get("summary") or "",
            tickers=tuple(t.strip().upper() for t in related.split(",") if t.strip()),
            source=item.get("source") or "finnhub",
            url=item.get("url") or "",
            published_at=float(item.get("datetime") or 0),
        )


def select_headlines(headlines: List[Headline], symbol: str) -> List[str]:
    """Pick the headlines to show the reasoning backend for `symbol`."""
    ordered = sorted(headlines, key=lambda h: h.published_at, reverse=True)
    relevant = [h.headline for h in ordered if h.headline and h.mentions(symbol)]
    if relevant:
        return relevant[:MAX_SYMBOL_HEADLINES]
    logger.debug(f"No {symbol}-specific news, using general headlines")
    return [h.headline for h in ordered if h.headline][:MAX_GENERAL_HEADLINES]


class NewsFeed(ABC):
    """Source of recent headlines."""

    @abstractmethod
    async def recent_headlines(self, symbol: Optional[str] = None) -> List[Headline]:
        """Recent headlines, optionally enriched for one symbol."""
        pass

    async def close(self):
        pass


class StaticNewsFeed(NewsFeed):
    """Fixed headline list, for tests and offline runs."""

    def __init__(self, headlines: Optional[List[Headline]] = None):
        self.headlines = list(headlines or [])

    async def recent_headlines(self, symbol: Optional[str] = None) -> List[Headline]:
        return list(self.headlines)


class FinnhubNewsFeed(NewsFeed):
    """
    General market news plus company news from Finnhub.

    Example Usage:
        feed = FinnhubNewsFeed(FinnhubProvider(api_key="..."))
        headlines = await feed.recent_headlines("AAPL")
    """

    def __init__(self, provider, company_days: int = 1):
        self.provider = provider
        self.company_days = company_days

    async def recent_headlines(self, symbol: Optional[str] = None) -> List[Headline]:
        headlines: List[Headline] = []
        try:
            headlines.extend(Headline.from_finnhub(item) for item in await self.provider.fetch_market_news())
            if symbol:
                company = await self.provider.fetch_company_news(symbol, days=self.company_days)
                for item in company:
                    headline = Headline.from_finnhub(item)
                    # Company news is about the symbol even when "related" is empty
                    if symbol.upper() not in headline.tickers:
                        headline = replace(headline, tickers=headline.tickers + (symbol.upper(),))
                    headlines.append(headline)
        except TradePilotError as e:
            logger.warning(f"News fetch failed: {e}")

        seen = set()
        unique = []
        for headline in headlines:
            if headline.headline and headline.headline not in seen:
                seen.add(headline.headline)
                unique.append(headline)
        return unique

    async def close(self):
        await self.provider.close()
