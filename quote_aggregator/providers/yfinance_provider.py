"""
Yahoo Finance data provider implementation.
Provides stock quotes and price history using the yfinance library.
"""

import asyncio
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import timezone
from typing import Any, Callable, Dict, List, Optional

import yfinance as yf

from .base import (
    BaseDataProvider,
    Clock,
    MalformedResponseError,
    PermanentProviderError,
    ProviderError,
    RequestBudget,
)
from ..models.market_data import DataProvider, HistoricalBar, Quote, RateLimitInfo
from ..core.logging_config import create_logger

logger = create_logger(__name__)

VALID_PERIODS = {"1d", "5d", "1mo", "3mo", "6mo", "1y", "2y", "5y", "10y", "ytd", "max"}


def _round_cents(value: Optional[float]) -> Optional[float]:
    return round(float(value), 2) if value is not None else None


def _is_number(value: Any) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _to_volume(value: Any) -> int:
    """Yahoo reports missing volume as None or NaN."""
    return int(float(value)) if _is_number(value) else 0


class YFinanceProvider(BaseDataProvider):
    """Yahoo Finance data provider."""

    def __init__(
        self,
        requests_per_minute: int = 100,
        timeout: float = 10.0,
        max_workers: int = 4,
        ticker_factory: Optional[Callable[[str], Any]] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(name=DataProvider.YAHOO_FINANCE.value, timeout=timeout)
        self.max_workers = max_workers
        self._ticker_factory = ticker_factory or yf.Ticker
        self._budget = RequestBudget(limit=requests_per_minute, clock=clock)
        self._executor: Optional[ThreadPoolExecutor] = None

    def is_available(self) -> bool:
        """Yahoo Finance needs no credential; only the request window can block it."""
        return not self._budget.exhausted

    def get_rate_limit(self) -> RateLimitInfo:
        return self._budget.info()

    def supports_historical_data(self) -> bool:
        return True

    async def connect(self) -> None:
        """yfinance is synchronous, so calls run on a private thread pool."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="yfinance")
            logger.debug("Connected to provider", extra={"provider": self.name})

    async def disconnect(self) -> None:
        """Close connections and clean up resources."""
        if self._executor:
            self._executor.shutdown(wait=True)
            self._executor = None
        await super().disconnect()

    async def _run_sync(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking yfinance call with this provider's timeout."""
        if self._executor is None:
            await self.connect()

        self._budget.consume()
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, func, *args),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderError(f"Request timeout for {self.name}", self.name)

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        """Get a real-time quote from Yahoo Finance."""
        symbol = self._normalize_symbol(symbol)
        data = await self._run_sync(self._fetch_quote_sync, symbol)

        if data is None:
            logger.debug("No data received for symbol", extra={
                "provider": self.name,
                "symbol": symbol,
            })
            return None

        try:
            return self._create_quote(symbol=symbol, **data)
        except (ValueError, TypeError) as e:
            raise MalformedResponseError(f"Invalid quote: {e}", self.name, symbol)

    async def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        """
        Fetch several symbols concurrently.

        Fan-out is bounded by the thread pool size; symbols that fail or have
        no data are left out of the result.
        """
        if not symbols:
            return {}

        results = await asyncio.gather(
            *(self.get_quote(symbol) for symbol in symbols),
            return_exceptions=True,
        )

        quotes = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, ProviderError):
                logger.warning("Failed to fetch quote for symbol", extra={
                    "provider": self.name,
                    "symbol": symbol,
                    "error": str(result),
                })
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                quotes[symbol] = result

        logger.info("Retrieved quotes from Yahoo Finance", extra={
            "provider": self.name,
            "requested": len(symbols),
            "successful": len(quotes),
        })
        return quotes

    def _fetch_quote_sync(self, symbol: str) -> Optional[Dict[str, Any]]:
        """Synchronous function to fetch one quote using yfinance."""
        try:
            info = self._ticker_factory(symbol).info
        except Exception as e:
            raise ProviderError(f"Failed to fetch quote: {str(e)}", self.name, symbol)

        if info is None or not isinstance(info, dict):
            raise MalformedResponseError("Invalid response format", self.name, symbol)

        current_price = info.get("currentPrice") or info.get("regularMarketPrice")
        if not current_price:
            return None

        try:
            previous_close = info.get("previousClose") or info.get("regularMarketPreviousClose")
            change = None
            change_percent = None
            if previous_close:
                change = current_price - previous_close
                change_percent = (change / previous_close) * 100

            return {
                "price": _round_cents(current_price),
                "change": _round_cents(change),
                "change_percent": _round_cents(change_percent),
                "volume": _to_volume(info.get("volume") or info.get("regularMarketVolume")),
                "high": info.get("dayHigh") or info.get("regularMarketDayHigh") or current_price,
                "low": info.get("dayLow") or info.get("regularMarketDayLow") or current_price,
                "open": info.get("open") or info.get("regularMarketOpen") or current_price,
                "previous_close": _round_cents(previous_close),
                "currency": info.get("currency"),
                "market_cap": info.get("marketCap"),
            }
        except (ValueError, TypeError, ZeroDivisionError) as e:
            raise MalformedResponseError(f"Invalid quote fields: {e}", self.name, symbol)

    async def get_historical_data(self, symbol: str, period: str = "1mo") -> List[HistoricalBar]:
        """Get OHLC history from Yahoo Finance, oldest first."""
        if period not in VALID_PERIODS:
            raise PermanentProviderError(f"Unsupported period {period!r}", self.name, symbol)

        symbol = self._normalize_symbol(symbol)
        rows = await self._run_sync(self._fetch_history_sync, symbol, period)

        bars = []
        for stamp, row in rows:
            try:
                prices = [row["Open"], row["High"], row["Low"], row["Close"]]
                if not all(_is_number(p) for p in prices):
                    # Non-trading rows come back with NaN prices
                    continue
                bars.append(HistoricalBar(
                    timestamp=stamp,
                    open=prices[0],
                    high=prices[1],
                    low=prices[2],
                    close=prices[3],
                    volume=_to_volume(row.get("Volume")),
                ))
            except (KeyError, ValueError, TypeError) as e:
                raise MalformedResponseError(f"Invalid history row {stamp}: {e}", self.name, symbol)
        return bars

    def _fetch_history_sync(self, symbol: str, period: str) -> List[tuple]:
        """Synchronous function to fetch price history using yfinance."""
        interval = "60m" if period == "1d" else "1d"
        try:
            frame = self._ticker_factory(symbol).history(period=period, interval=interval)
        except Exception as e:
            raise ProviderError(f"Failed to fetch history: {str(e)}", self.name, symbol)

        if frame is None or frame.empty:
            return []

        rows = []
        for index, row in frame.iterrows():
            stamp = index.to_pydatetime() if hasattr(index, "to_pydatetime") else index
            if stamp.tzinfo is None:
                stamp = stamp.replace(tzinfo=timezone.utc)
            rows.append((stamp, row.to_dict()))
        return rows
