"""
Abstract base class for quote providers in the Quote Aggregator.
Defines the interface that all data providers must implement.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ..core.logging_config import create_logger
from ..models.market_data import HistoricalBar, Quote, RateLimitInfo, normalize_symbol

logger = create_logger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


class ProviderError(Exception):
    """A provider call could not complete."""

    def __init__(self, message: str, provider: str, symbol: Optional[str] = None):
        self.message = message
        self.provider = provider
        self.symbol = symbol
        super().__init__(self.message)


class PermanentProviderError(ProviderError):
    """A failure another attempt cannot fix (bad credentials, invalid request)."""
    pass


class RateLimitError(ProviderError):
    """Exception raised when provider rate limit is exceeded."""
    pass


class AuthenticationError(PermanentProviderError):
    """Exception raised when provider authentication fails."""
    pass


class MalformedResponseError(ProviderError):
    """Exception raised when a response does not have the expected shape."""
    pass


class RequestBudget:
    """
    Per-window request counter for a single provider.

    The window opens on the first request and closes `window_seconds` later,
    at which point the full budget is restored. An upstream rate-limit signal
    empties the budget until the window closes.
    """

    def __init__(self, limit: int, window_seconds: float = 60.0, clock: Optional[Clock] = None):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock or time.time
        self._used = 0
        self._reset_at: Optional[float] = None

    def _refresh(self) -> None:
        if self._reset_at is not None and self._clock() >= self._reset_at:
            self._used = 0
            self._reset_at = None

    @property
    def remaining(self) -> int:
        self._refresh()
        return max(0, self.limit - self._used)

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    @property
    def reset_time(self) -> Optional[datetime]:
        self._refresh()
        if self._reset_at is None:
            return None
        return datetime.fromtimestamp(self._reset_at, tz=timezone.utc)

    def consume(self) -> None:
        self._refresh()
        if self._reset_at is None:
            self._reset_at = self._clock() + self.window_seconds
        self._used += 1

    def exhaust(self) -> None:
        self._used = self.limit
        self._reset_at = self._clock() + self.window_seconds

    def info(self) -> RateLimitInfo:
        return RateLimitInfo(remaining=self.remaining, reset_time=self.reset_time)


class BaseDataProvider(ABC):
    """Abstract base class for quote providers."""

    # False only for providers that fabricate prices
    provides_real_data: bool = True

    def __init__(
        self,
        name: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.name = name
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.client: Optional[httpx.AsyncClient] = None
        self._transport = transport

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"

    async def connect(self) -> None:
        """Initialize HTTP client connection."""
        if self.client is None:
            timeout = httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0))
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)

            self.client = httpx.AsyncClient(
                timeout=timeout,
                limits=limits,
                headers=self._get_default_headers(),
                follow_redirects=True,
                transport=self._transport,
            )

            logger.debug("Connected to provider", extra={"provider": self.name})

    async def disconnect(self) -> None:
        """Close HTTP client connection."""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.debug("Disconnected from provider", extra={"provider": self.name})

    def _get_default_headers(self) -> Dict[str, str]:
        """Get default HTTP headers for requests."""
        return {
            "User-Agent": "Quote-Aggregator/1.0.0",
            "Accept": "application/json",
        }

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        symbol: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Make a single HTTP request and decode its JSON body.

        Retrying is the caller's concern; every transport or protocol problem
        surfaces as a ProviderError subclass.
        """
        if not self.client:
            await self.connect()

        logger.debug("Making request to provider", extra={
            "provider": self.name,
            "method": method,
            "url": url,
            "symbol": symbol,
        })

        try:
            response = await self.client.request(method=method, url=url, params=params)
        except httpx.TimeoutException:
            raise ProviderError(f"Request timeout for {self.name}", self.name, symbol)
        except httpx.HTTPError as e:
            raise ProviderError(f"HTTP error for {self.name}: {str(e)}", self.name, symbol)

        if response.status_code == 429:
            self._on_rate_limited()
            raise RateLimitError(f"Rate limited by {self.name}", self.name, symbol)

        if response.status_code in (401, 403):
            raise AuthenticationError(f"Authentication failed for {self.name}", self.name, symbol)

        if response.status_code >= 400:
            raise ProviderError(
                f"HTTP {response.status_code} from {self.name}",
                self.name,
                symbol,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Invalid JSON response from {self.name}: {str(e)}",
                self.name,
                symbol,
            )

        if not isinstance(data, dict):
            raise MalformedResponseError(f"Unexpected payload type from {self.name}", self.name, symbol)

        logger.debug("Received response from provider", extra={
            "provider": self.name,
            "status_code": response.status_code,
            "response_size": len(response.content),
        })
        return data

    def _on_rate_limited(self) -> None:
        """Hook for providers that track their own rate-limit state."""

    @abstractmethod
    def is_available(self) -> bool:
        """
        Cheap pre-check: credentials present and not currently rate limited.
        Must never touch the network.
        """

    @abstractmethod
    async def get_quote(self, symbol: str) -> Optional[Quote]:
        """
        Get a quote for one symbol.

        Returns:
            The quote, or None when the upstream has no data for the symbol

        Raises:
            ProviderError: If the call itself could not complete
        """

    @abstractmethod
    def get_rate_limit(self) -> RateLimitInfo:
        """Report the remaining request budget."""

    async def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        """
        Best-effort quotes for several symbols.

        Symbols without data, or whose individual call failed, are omitted.
        The default implementation fetches sequentially.
        """
        quotes: Dict[str, Quote] = {}

        for symbol in symbols:
            if not self.is_available():
                logger.info("Provider became unavailable during batch", extra={
                    "provider": self.name,
                    "pending": len(symbols) - len(quotes),
                })
                break
            try:
                quote = await self.get_quote(symbol)
            except ProviderError as e:
                logger.warning("Failed to fetch quote for symbol", extra={
                    "provider": self.name,
                    "symbol": symbol,
                    "error": str(e),
                })
                continue
            if quote is not None:
                quotes[symbol] = quote

        return quotes

    def supports_historical_data(self) -> bool:
        """Whether get_historical_data is implemented."""
        return False

    async def get_historical_data(self, symbol: str, period: str) -> List[HistoricalBar]:
        raise NotImplementedError(f"{self.name} does not provide historical data")

    def _normalize_symbol(self, symbol: str) -> str:
        """Normalize symbol for this provider."""
        return normalize_symbol(symbol)

    def _create_quote(
        self,
        symbol: str,
        price: float,
        last_update: Optional[date] = None,
        **kwargs
    ) -> Quote:
        """
        Create a standardized Quote object.

        Args:
            symbol: Asset symbol
            price: Current price
            last_update: Trading day of the quote, today when omitted
            **kwargs: Additional quote data
        """
        if last_update is None:
            last_update = datetime.now(timezone.utc).date()

        return Quote(
            symbol=symbol,
            price=price,
            change=kwargs.get("change") or 0.0,
            change_percent=kwargs.get("change_percent") or 0.0,
            volume=kwargs.get("volume") or 0,
            high=kwargs.get("high"),
            low=kwargs.get("low"),
            open=kwargs.get("open"),
            previous_close=kwargs.get("previous_close"),
            last_update=last_update,
            source=self.name,
            is_real_data=self.provides_real_data,
            currency=kwargs.get("currency"),
            market_cap=kwargs.get("market_cap"),
        )
