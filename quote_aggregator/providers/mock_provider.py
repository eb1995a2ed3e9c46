"""
Synthetic data provider.
Generates plausible, reproducible quotes without any network access; used as
the last link of the fallback chain.
"""

import random
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .base import BaseDataProvider
from ..models.market_data import DataProvider, Quote, RateLimitInfo

BASE_PRICES = {
    "AAPL": 189.50,
    "MSFT": 411.25,
    "GOOGL": 141.80,
    "AMZN": 151.94,
    "TSLA": 248.50,
    "NVDA": 875.30,
    "META": 484.00,
    "NFLX": 490.00,
    "SPY": 467.50,
    "QQQ": 401.25,
    "V": 285.00,
    "JPM": 181.25,
    "JNJ": 156.75,
    "WMT": 162.50,
    "PG": 145.30,
    "UNH": 524.75,
}


def base_price_for(symbol: str) -> float:
    """Known tickers use a realistic anchor; anything else is derived from its first letter."""
    symbol = symbol.upper()
    return BASE_PRICES.get(symbol, 75 + (ord(symbol[0]) % 150))


def volatility_for_hour(hour: int) -> float:
    if 9 <= hour <= 10:
        return 1.5  # Market open
    if 15 <= hour <= 16:
        return 1.3  # Market close
    if 11 <= hour <= 14:
        return 0.8  # Mid-day
    return 1.0


class MockProvider(BaseDataProvider):
    """Always-available provider producing synthetic quotes."""

    provides_real_data = False

    def __init__(self, now: Optional[Callable[[], datetime]] = None):
        super().__init__(name=DataProvider.MOCK.value)
        self._now = now or datetime.now

    def is_available(self) -> bool:
        return True

    def get_rate_limit(self) -> RateLimitInfo:
        return RateLimitInfo(remaining=None, reset_time=None)

    async def connect(self) -> None:
        """Nothing to open."""

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        symbol = self._normalize_symbol(symbol)
        if not symbol:
            return None

        now = self._now()
        # Same symbol within the same hour always yields the same quote
        rng = random.Random(f"{symbol}:{now:%Y-%m-%d}:{now.hour}")

        base_price = base_price_for(symbol)
        change = (rng.random() - 0.5) * volatility_for_hour(now.hour) * base_price * 0.03
        price = max(base_price + change, 1)
        change_percent = (change / base_price) * 100

        open_price = base_price * (0.99 + rng.random() * 0.02)
        high = max(price, open_price) * (1 + rng.random() * 0.015)
        low = min(price, open_price) * (1 - rng.random() * 0.015)

        return self._create_quote(
            symbol=symbol,
            price=round(price, 2),
            last_update=now.date(),
            change=round(change, 2),
            change_percent=round(change_percent, 2),
            volume=rng.randint(500_000, 2_500_000),
            high=round(high, 2),
            low=round(low, 2),
            open=round(open_price, 2),
            previous_close=round(base_price, 2),
            currency="USD",
        )

    async def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        quotes = {}
        for symbol in symbols:
            quote = await self.get_quote(symbol)
            if quote is not None:
                quotes[symbol] = quote
        return quotes
