"""
Market data provider adapters.

One adapter per upstream API, all implementing MarketDataProvider.
`create_provider()` maps the configured ProviderKind to its adapter.
"""

from typing import Optional

from tradepilot.credentials import CredentialStore
from tradepilot.providers.base import (
    Interval,
    MarketDataProvider,
    ProviderKind,
    check_payload,
)
from tradepilot.providers.alpha_vantage import AlphaVantageProvider
from tradepilot.providers.finnhub import FinnhubProvider
from tradepilot.providers.mock import MockProvider
from tradepilot.providers.polygon import PolygonProvider
from tradepilot.providers.twelve_data import TwelveDataProvider

PROVIDER_CLASSES = {
    ProviderKind.TWELVEDATA: TwelveDataProvider,
    ProviderKind.POLYGON: PolygonProvider,
    ProviderKind.FINNHUB: FinnhubProvider,
    ProviderKind.ALPHA_VANTAGE: AlphaVantageProvider,
    ProviderKind.MOCK: MockProvider,
}


def create_provider(
    kind,
    api_key: Optional[str] = None,
    credentials: Optional[CredentialStore] = None,
    rate_limit: Optional[int] = None,
) -> MarketDataProvider:
    """Instantiate the adapter for a ProviderKind (or its string value)."""
    kind = ProviderKind(kind) if not isinstance(kind, ProviderKind) else kind
    return PROVIDER_CLASSES[kind](api_key=api_key, credentials=credentials, rate_limit=rate_limit)


__all__ = [
    "Interval",
    "MarketDataProvider",
    "ProviderKind",
    "check_payload",
    "create_provider",
    "AlphaVantageProvider",
    "FinnhubProvider",
    "MockProvider",
    "PolygonProvider",
    "TwelveDataProvider",
]
