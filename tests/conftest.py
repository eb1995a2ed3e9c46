"""
Shared fakes for the quote aggregator tests.
"""
from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List, Optional

import pytest

from quote_aggregator.core.config import ServiceConfig
from quote_aggregator.models.market_data import HistoricalBar, Quote, RateLimitInfo
from quote_aggregator.providers.base import BaseDataProvider, ProviderError
from quote_aggregator.services.cache import QuoteCache
from quote_aggregator.services.market_data_service import MarketDataService


def make_quote(symbol: str, price: float = 100.0, source: str = "Test", real: bool = True) -> Quote:
    return Quote(
        symbol=symbol,
        price=price,
        change=1.0,
        change_percent=1.0,
        volume=1000,
        last_update=date(2026, 1, 2),
        source=source,
        is_real_data=real,
    )


class FakeProvider(BaseDataProvider):
    """Scriptable provider that records every call."""

    def __init__(
        self,
        name: str,
        prices: Optional[Dict[str, float]] = None,
        fail: bool = False,
        available: bool = True,
        real: bool = True,
        missing: Iterable[str] = (),
        history: Optional[List[HistoricalBar]] = None,
        history_fail: bool = False,
        error: Optional[Exception] = None,
    ):
        super().__init__(name=name)
        self.prices = prices
        self.fail = fail
        self.available = available
        self.provides_real_data = real
        self.missing = set(missing)
        self.history = history
        self.history_fail = history_fail
        self.error = error
        self.quote_calls: List[str] = []
        self.batch_calls: List[List[str]] = []
        self.history_calls: List[tuple] = []

    async def connect(self) -> None:
        pass

    def is_available(self) -> bool:
        return self.available

    def get_rate_limit(self) -> RateLimitInfo:
        return RateLimitInfo(remaining=42, reset_time=None)

    def _lookup(self, symbol: str) -> Optional[Quote]:
        if symbol in self.missing:
            return None
        if self.prices is not None and symbol not in self.prices:
            return None
        price = (self.prices or {}).get(symbol, 100.0)
        return make_quote(symbol, price, source=self.name, real=self.provides_real_data)

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        self.quote_calls.append(symbol)
        if self.error is not None:
            raise self.error
        if self.fail:
            raise ProviderError(f"{self.name} is down", self.name, symbol)
        return self._lookup(symbol)

    async def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        self.batch_calls.append(list(symbols))
        if self.error is not None:
            raise self.error
        if self.fail:
            raise ProviderError(f"{self.name} is down", self.name)
        quotes = {}
        for symbol in symbols:
            quote = self._lookup(symbol)
            if quote is not None:
                quotes[symbol] = quote
        return quotes

    def supports_historical_data(self) -> bool:
        return self.history is not None

    async def get_historical_data(self, symbol: str, period: str) -> List[HistoricalBar]:
        self.history_calls.append((symbol, period))
        if self.error is not None:
            raise self.error
        if self.history_fail:
            raise ProviderError(f"{self.name} history is down", self.name, symbol)
        return list(self.history or [])


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def config() -> ServiceConfig:
    return ServiceConfig(
        cache_ttl=1.0,
        max_retries=2,
        retry_delay=0.5,
        batch_size=2,
        rate_limit_delay=1.0,
    )


@pytest.fixture
def make_service(config, clock, sleep):
    def _make(providers, **overrides) -> MarketDataService:
        cfg = config.model_copy(update=overrides) if overrides else config
        return MarketDataService(
            config=cfg,
            providers=providers,
            cache=QuoteCache(ttl=cfg.cache_ttl, clock=clock),
            sleep=sleep,
        )
    return _make
