"""
Base Market Data Provider
=========================

This module defines the base class for all market data provider
adapters. Every adapter fetches quotes and OHLCV candles from one
upstream API and normalizes them to the Quote and Candle models.

Design Principles:
- Async-first: All I/O operations are asynchronous
- Retry logic: Exponential backoff for transient failures only
- Self-throttling: Sliding one-minute window per adapter instance
- Validation: Malformed payloads (HTML error pages, empty bodies,
  rate-limit notices served as 200 OK) raise instead of parsing
- Vault integration: API keys come from the CredentialStore with env fallback
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Dict, Any
import asyncio
import json
import logging
import time

import aiohttp
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception
from yarl import URL

from tradepilot.credentials import CredentialStore
from tradepilot.errors import (
    ConfigurationError,
    MalformedResponseError,
    MarketDataError,
    RateLimitedError,
)
from tradepilot.models import Candle, Quote

logger = logging.getLogger(__name__)


class ProviderKind(Enum):
    """Closed set of market data providers selectable by configuration."""
    TWELVEDATA = "twelvedata"
    POLYGON = "polygon"
    FINNHUB = "finnhub"
    ALPHA_VANTAGE = "alpha_vantage"
    MOCK = "mock"


class Interval(Enum):
    """Candle intervals understood by every adapter."""
    ONE_MIN = "1min"
    FIVE_MIN = "5min"
    FIFTEEN_MIN = "15min"
    ONE_HOUR = "1h"
    DAILY = "1day"
    WEEKLY = "1week"

    @property
    def is_intraday(self) -> bool:
        return self not in (Interval.DAILY, Interval.WEEKLY)

    @property
    def seconds(self) -> int:
        return {
            Interval.ONE_MIN: 60,
            Interval.FIVE_MIN: 300,
            Interval.FIFTEEN_MIN: 900,
            Interval.ONE_HOUR: 3600,
            Interval.DAILY: 86400,
            Interval.WEEKLY: 604800,
        }[self]

    @classmethod
    def parse(cls, value) -> "Interval":
        if isinstance(value, Interval):
            return value
        aliases = {"daily": "1day", "day": "1day", "1d": "1day", "weekly": "1week", "1w": "1week", "60min": "1h"}
        return cls(aliases.get(str(value).lower(), str(value).lower()))


def _is_retryable_exception(exc: BaseException) -> bool:
    """Return True if a request exception should be retried.

    Authentication failures (401/403) and rate-limit notices are not
    transient; retrying them only burns budget and adds latency.
    """
    if isinstance(exc, RateLimitedError):
        return False
    if isinstance(exc, aiohttp.ClientResponseError):
        return exc.status not in (401, 403, 429)
    return isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError, MalformedResponseError))


def check_payload(provider: str, status: int, content_type: str, body: str) -> Any:
    """
    Decode an upstream response body, rejecting anything that is not data.

    Raises:
        RateLimitedError: HTTP 429
        MalformedResponseError: empty body, HTML page, non-JSON content type
            or undecodable JSON
    """
    if status == 429:
        raise RateLimitedError(f"{provider} rate limit exceeded (HTTP 429)", provider, status)

    text = (body or "").strip()
    if not text:
        raise MalformedResponseError(f"{provider} returned an empty body", provider, status)

    head = text[:100].lower()
    if head.startswith("<!doctype") or head.startswith("<html") or "<html" in head:
        raise MalformedResponseError(f"{provider} returned an HTML page instead of JSON", provider, status)

    if content_type and "json" not in content_type.lower() and "javascript" not in content_type.lower():
        raise MalformedResponseError(
            f"{provider} returned unexpected content type '{content_type}'", provider, status
        )

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"{provider} returned invalid JSON: {e}", provider, status) from e


class MarketDataProvider(ABC):
    """
    Abstract base class for market data provider adapters.

    Each adapter implementation must:
    1. Override fetch_quotes() and fetch_candles()
    2. Transform source-specific payloads into Quote / Candle objects
    3. Raise MarketDataError subclasses for anything unusable

    Built-in Features:
    - Async HTTP client with connection pooling
    - Exponential backoff retry logic
    - Sliding-window self-throttling
    - Credential redaction in logs
    - Request metrics

    Budget accounting is not done here; the gateway decides whether a
    call is allowed before invoking the adapter.
    """

    # Subclasses should override these
    kind: ProviderKind = ProviderKind.MOCK
    base_url: str = ""
    rate_limit_per_minute: int = 60

    def __init__(
        self,
        api_key: Optional[str] = None,
        credentials: Optional[CredentialStore] = None,
        rate_limit: Optional[int] = None,
        timeout: int = 30,
    ):
        """
        Initialize the provider adapter.

        Args:
            api_key: API key; looked up lazily from `credentials` when omitted
            credentials: Credential store used for lazy key lookup
            rate_limit: Override default self-throttle (requests per minute)
            timeout: HTTP request timeout in seconds
        """
        self.api_key = api_key
        self.credentials = credentials
        self.timeout = timeout
        self.rate_limit = rate_limit or self.rate_limit_per_minute
        self._api_key_loaded = api_key is not None

        # Rate limiting state
        self._request_times: List[float] = []
        self._throttle_lock = asyncio.Lock()
        self._session: Optional[aiohttp.ClientSession] = None

        # Metrics
        self.total_requests = 0
        self.failed_requests = 0
        self.quotes_fetched = 0
        self.candles_fetched = 0

    @property
    def name(self) -> str:
        return self.kind.value

    async def _ensure_api_key(self) -> str:
        """Load API key from the credential store if not already loaded."""
        if not self._api_key_loaded:
            if self.credentials is not None:
                self.api_key = await self.credentials.get(self.name)
            self._api_key_loaded = True
            if not self.api_key:
                logger.warning(f"No {self.name} API key found in Vault or environment")
        if not self.api_key:
            raise ConfigurationError(f"{self.name} API key is required")
        return self.api_key

    async def _get_session(self) -> aiohttp.ClientSession:
        """
        Get or create an aiohttp session with connection pooling.
        Reuses connections for better performance.
        """
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self):
        """Close the HTTP session and release resources."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _wait_for_rate_limit(self):
        """
        Enforce rate limiting by waiting if necessary.
        Uses a sliding window to track requests per minute.
        """
        async with self._throttle_lock:
            now = time.monotonic()
            self._request_times = [t for t in self._request_times if now - t < 60]

            # If at rate limit, wait until oldest request expires
            if len(self._request_times) >= self.rate_limit:
                wait_seconds = 60 - (now - self._request_times[0])
                if wait_seconds > 0:
                    logger.debug(f"{self.name} self-throttle, waiting {wait_seconds:.1f}s")
                    await asyncio.sleep(wait_seconds)

            self._request_times.append(time.monotonic())

    @staticmethod
    def _sanitize_url_for_logs(url: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Return a URL safe for logs (redacts common credential query params)."""
        try:
            u = URL(url)
            if params:
                u = u.update_query(params)
            q = dict(u.query)
            for key in ("token", "apikey", "apiKey", "api_key", "key", "access_token", "bearer"):
                if key in q:
                    q[key] = "REDACTED"
            return str(u.with_query(q))
        except (ValueError, TypeError):
            return url

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(_is_retryable_exception),
        reraise=True,
    )
    async def _make_request(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Make an HTTP GET with retry logic, throttling and payload validation.

        Returns:
            Decoded JSON payload

        Raises:
            aiohttp.ClientError: On network errors after retries
            MarketDataError: On malformed or rate-limited responses
        """
        await self._wait_for_rate_limit()

        session = await self._get_session()
        self.total_requests += 1

        safe_url = self._sanitize_url_for_logs(url, params)

        try:
            async with session.get(url, params=params, headers=headers) as response:
                body = await response.text()
                if response.status >= 400 and response.status != 429:
                    logger.warning(
                        "HTTP %s from %s (provider=%s). Response body (truncated): %r",
                        response.status,
                        safe_url,
                        self.name,
                        body[:2000],
                    )
                    response.raise_for_status()
                return check_payload(
                    self.name,
                    response.status,
                    response.headers.get("Content-Type", ""),
                    body,
                )

        except Exception as e:
            self.failed_requests += 1
            logger.error(
                "Request failed for %s: %s (url=%s)",
                self.__class__.__name__,
                e,
                safe_url,
            )
            raise

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """`_make_request` with transport errors folded into MarketDataError."""
        try:
            return await self._make_request(url, params=params)
        except MarketDataError:
            raise
        except aiohttp.ClientResponseError as e:
            raise MarketDataError(f"{self.name} HTTP {e.status}: {e.message}", self.name, e.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MarketDataError(f"{self.name} request failed: {e}", self.name) from e

    def quote_cost(self, symbols: List[str]) -> int:
        """Budget units consumed by one fetch_quotes call."""
        return len(symbols)

    @abstractmethod
    async def fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        """
        Fetch current quotes for the given symbols.

        Symbols with no upstream data are omitted from the result.

        Raises:
            ConfigurationError: If no API key is available
            MarketDataError: If the upstream call fails or returns unusable data
        """
        pass

    @abstractmethod
    async def fetch_candles(
        self,
        symbol: str,
        interval: Interval = Interval.DAILY,
        outputsize: int = 200,
    ) -> List[Candle]:
        """
        Fetch OHLCV candles ordered ascending by time.

        Raises:
            ConfigurationError: If no API key is available
            MarketDataError: If the upstream call fails or returns unusable data
        """
        pass

    def get_stats(self) -> Dict[str, Any]:
        """
        Get adapter statistics for monitoring.

        Returns:
            Dictionary with request counts and success rates
        """
        return {
            "provider": self.name,
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "success_rate": (
                (self.total_requests - self.failed_requests) / self.total_requests * 100
                if self.total_requests > 0 else 0
            ),
            "quotes_fetched": self.quotes_fetched,
            "candles_fetched": self.candles_fetched,
        }


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse provider numbers that may arrive as strings, None or '12.5%'."""
    if value is None or value == "":
        return default
    if isinstance(value, str):
        value = value.replace("%", "").replace(",", "").strip()
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
