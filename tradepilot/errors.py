"""
TradePilot Errors
=================

Exception hierarchy shared by the market data adapters, the reasoning
backends and the recommendation engine.

Adapters raise these; the gateway and the engine catch them and degrade
to cached data or an explicit AnalysisOutcome. Nothing here should ever
reach the host process uncaught.
"""

from typing import Optional


class TradePilotError(Exception):
    """Base class for all TradePilot errors."""


class ConfigurationError(TradePilotError):
    """A required credential or setting is missing."""


class MarketDataError(TradePilotError):
    """An upstream market data provider failed."""

    def __init__(self, message: str, provider: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status = status


class MalformedResponseError(MarketDataError):
    """Upstream returned something that is not usable data (HTML page, empty body...)."""


class RateLimitedError(MarketDataError):
    """Upstream answered with a rate-limit notice, possibly disguised as 200 OK."""


class ReasoningError(TradePilotError):
    """The reasoning backend could not produce a completion."""


class ResponseParseError(TradePilotError):
    """The reasoning backend's text did not contain a valid recommendation."""
