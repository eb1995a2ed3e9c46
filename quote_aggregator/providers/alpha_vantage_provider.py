"""
Alpha Vantage data provider implementation.
Provides stock quotes and daily/intraday history from the Alpha Vantage JSON API.
"""

import asyncio
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .base import (
    BaseDataProvider,
    Clock,
    MalformedResponseError,
    PermanentProviderError,
    ProviderError,
    RateLimitError,
    RequestBudget,
    Sleep,
)
from ..models.market_data import DataProvider, HistoricalBar, Quote, RateLimitInfo
from ..core.logging_config import create_logger

logger = create_logger(__name__)

BASE_URL = "https://www.alphavantage.co/query"

# Trading days covered by each supported period
PERIOD_POINTS = {
    "5d": 5,
    "1mo": 22,
    "3mo": 66,
    "6mo": 126,
    "1y": 252,
    "2y": 504,
    "5y": 1260,
}
DEFAULT_POINTS = 30
COMPACT_OUTPUT_POINTS = 100


def _to_float(value: Any) -> Optional[float]:
    if value in (None, "", "None"):
        return None
    try:
        number = float(str(value).replace("%", "").strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


class AlphaVantageProvider(BaseDataProvider):
    """Alpha Vantage data provider for stock data."""

    def __init__(
        self,
        api_key: Optional[str],
        requests_per_minute: int = 5,
        min_interval: float = 12.0,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
    ):
        super().__init__(
            name=DataProvider.ALPHA_VANTAGE.value,
            api_key=api_key,
            base_url=BASE_URL,
            timeout=timeout,
            transport=transport,
        )
        self.min_interval = min_interval
        self._budget = RequestBudget(limit=requests_per_minute, clock=clock)
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._last_request_time: Optional[float] = None
        self._pacing_lock = asyncio.Lock()

    def is_available(self) -> bool:
        if not self.api_key or self.api_key == "DEMO":
            return False
        return not self._budget.exhausted

    def get_rate_limit(self) -> RateLimitInfo:
        return self._budget.info()

    def supports_historical_data(self) -> bool:
        return True

    def _on_rate_limited(self) -> None:
        self._budget.exhaust()

    async def _wait_for_slot(self) -> None:
        """Keep at least `min_interval` seconds between outbound calls."""
        async with self._pacing_lock:
            if self._last_request_time is not None and self.min_interval > 0:
                elapsed = self._clock() - self._last_request_time
                if elapsed < self.min_interval:
                    wait_time = self.min_interval - elapsed
                    logger.debug("Pacing request", extra={
                        "provider": self.name,
                        "wait_time": wait_time,
                    })
                    await self._sleep(wait_time)
            self._last_request_time = self._clock()

    async def _query(self, params: Dict[str, Any], symbol: str) -> Dict[str, Any]:
        await self._wait_for_slot()
        data = await self._make_request(
            method="GET",
            url=self.base_url,
            params={**params, "apikey": self.api_key},
            symbol=symbol,
        )
        self._raise_for_payload_errors(data, symbol)
        return data

    def _raise_for_payload_errors(self, data: Dict[str, Any], symbol: str) -> None:
        """Alpha Vantage reports errors inside HTTP 200 responses."""
        if "Error Message" in data:
            raise PermanentProviderError(f"Alpha Vantage API Error: {data['Error Message']}", self.name, symbol)

        if "Note" in data:
            self._budget.exhaust()
            logger.warning("Rate limited by provider", extra={
                "provider": self.name,
                "symbol": symbol,
                "reset_time": self._budget.reset_time,
            })
            raise RateLimitError("Rate limit exceeded", self.name, symbol)

        if "Information" in data:
            raise ProviderError(f"Alpha Vantage Info: {data['Information']}", self.name, symbol)

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        """Get a GLOBAL_QUOTE for one stock symbol."""
        if not self.is_available():
            return None

        symbol = self._normalize_symbol(symbol)
        data = await self._query({"function": "GLOBAL_QUOTE", "symbol": symbol}, symbol)

        if "Global Quote" not in data:
            raise MalformedResponseError("Invalid response format", self.name, symbol)

        global_quote = data["Global Quote"]
        if not global_quote:
            # Unknown symbols come back as an empty object
            return None
        if not isinstance(global_quote, dict):
            raise MalformedResponseError("Global Quote is not an object", self.name, symbol)

        price = _to_float(global_quote.get("05. price"))
        if not price or price <= 0:
            raise MalformedResponseError("Quote without a usable price", self.name, symbol)

        self._budget.consume()

        try:
            volume = _to_float(global_quote.get("06. volume"))
            trading_day = global_quote.get("07. latest trading day")

            return self._create_quote(
                symbol=global_quote.get("01. symbol") or symbol,
                price=price,
                last_update=datetime.strptime(trading_day, "%Y-%m-%d").date() if trading_day else None,
                change=_to_float(global_quote.get("09. change")),
                change_percent=_to_float(global_quote.get("10. change percent")),
                volume=int(volume) if volume else 0,
                high=_to_float(global_quote.get("03. high")),
                low=_to_float(global_quote.get("04. low")),
                open=_to_float(global_quote.get("02. open")),
                previous_close=_to_float(global_quote.get("08. previous close")),
                currency="USD",
            )
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise MalformedResponseError(f"Invalid quote fields: {e}", self.name, symbol)

    async def get_historical_data(self, symbol: str, period: str = "1mo") -> List[HistoricalBar]:
        """
        Get OHLC history for a symbol.

        `1d` uses 60-minute intraday bars; every other period uses daily bars
        truncated to the period's number of trading days. Bars are returned
        oldest first.
        """
        if not self.is_available():
            return []

        symbol = self._normalize_symbol(symbol)

        if period == "1d":
            series_key = "Time Series (60min)"
            params = {"function": "TIME_SERIES_INTRADAY", "symbol": symbol, "interval": "60min"}
            points = DEFAULT_POINTS
            time_format = "%Y-%m-%d %H:%M:%S"
        else:
            series_key = "Time Series (Daily)"
            points = PERIOD_POINTS.get(period, DEFAULT_POINTS)
            params = {
                "function": "TIME_SERIES_DAILY",
                "symbol": symbol,
                "outputsize": "full" if points > COMPACT_OUTPUT_POINTS else "compact",
            }
            time_format = "%Y-%m-%d"

        data = await self._query(params, symbol)
        time_series = data.get(series_key)
        if not time_series:
            return []
        if not isinstance(time_series, dict):
            raise MalformedResponseError(f"{series_key} is not an object", self.name, symbol)

        self._budget.consume()

        latest = sorted(time_series.keys(), reverse=True)[:points]
        bars = []
        for stamp in reversed(latest):
            point = time_series[stamp]
            try:
                bars.append(HistoricalBar(
                    timestamp=datetime.strptime(stamp, time_format).replace(tzinfo=timezone.utc),
                    open=float(point["1. open"]),
                    high=float(point["2. high"]),
                    low=float(point["3. low"]),
                    close=float(point["4. close"]),
                    volume=int(float(point.get("5. volume", 0))),
                ))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                raise MalformedResponseError(f"Invalid time series point {stamp}: {e}", self.name, symbol)

        logger.debug("Retrieved historical data from Alpha Vantage", extra={
            "provider": self.name,
            "symbol": symbol,
            "period": period,
            "count": len(bars),
        })
        return bars
