"""
Market data service for the Quote Aggregator.
Composes the quote cache with a priority-ordered provider chain and keeps
service metrics as a side effect of every call.
"""

import asyncio
import time
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from ..api.schemas import CacheInfo, HealthReport, MetricsSnapshot, ProviderStatus, QuoteResult
from ..core.config import ServiceConfig, Settings
from ..core.logging_config import create_logger
from ..models.market_data import HistoricalBar, Quote, normalize_symbol
from ..providers import BaseDataProvider, build_providers
from .cache import QuoteCache, create_cache
from .metrics import MetricsCollector
from .retry import RETRYABLE_ERRORS, retry_with_backoff

logger = create_logger(__name__)


def _unique_symbols(symbols: Iterable[str]) -> List[str]:
    """Normalize symbols, dropping blanks and duplicates while preserving order."""
    seen = set()
    unique = []
    for symbol in symbols:
        if not symbol or not symbol.strip():
            continue
        normalized = normalize_symbol(symbol)
        if normalized not in seen:
            seen.add(normalized)
            unique.append(normalized)
    return unique


class MarketDataService:
    """Fetches quotes through the cache and an ordered fallback chain of providers."""

    def __init__(
        self,
        config: ServiceConfig,
        providers: Sequence[BaseDataProvider],
        cache: Optional[Any] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        timer: Optional[Callable[[], float]] = None,
    ):
        self.config = config
        self._providers = tuple(providers)
        self._cache = cache if cache is not None else QuoteCache(ttl=config.cache_ttl)
        self._metrics = MetricsCollector(enabled=config.enable_metrics)
        self._sleep = sleep or asyncio.sleep
        self._timer = timer or time.perf_counter

        logger.info("Market data service initialized", extra={
            "providers": [p.name for p in self._providers],
            "cache_backend": getattr(self._cache, "backend", type(self._cache).__name__),
            "cache_ttl": config.cache_ttl,
        })

    @classmethod
    def from_settings(cls, settings: Settings) -> "MarketDataService":
        """Build a service, its providers and its cache from application settings."""
        config = settings.service_config()
        return cls(
            config=config,
            providers=build_providers(settings, config),
            cache=create_cache(config, settings),
        )

    @property
    def providers(self) -> List[BaseDataProvider]:
        return list(self._providers)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    async def connect(self) -> None:
        """Open the cache backend and provider clients."""
        await self._cache.connect()

        for provider in self._providers:
            try:
                await provider.connect()
            except Exception as e:
                # A provider that cannot start still reports itself unavailable
                logger.error("Failed to initialize provider", extra={
                    "provider": provider.name,
                    "error": str(e),
                })

    async def shutdown(self) -> None:
        """Close provider clients and the cache backend."""
        for provider in self._providers:
            try:
                await provider.disconnect()
            except Exception as e:
                logger.warning("Error disconnecting provider", extra={
                    "provider": provider.name,
                    "error": str(e),
                })

        await self._cache.disconnect()
        logger.info("Market data service shutdown complete")

    async def _call_with_retry(self, provider: BaseDataProvider, func: Callable[[], Awaitable[Any]]) -> Any:
        return await retry_with_backoff(
            func,
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_delay,
            sleep=self._sleep,
            provider=provider.name,
        )

    async def get_quote(self, symbol: str) -> QuoteResult:
        """
        Get a quote for one symbol.

        A fresh cache entry is returned without touching any provider.
        Otherwise providers are tried in priority order, each with retry and
        backoff, and the first quote wins. When every provider is unavailable,
        fails or has no data the result is `QuoteResult.unavailable()`.
        """
        if not symbol or not symbol.strip():
            raise ValueError("Symbol cannot be empty")

        start_time = self._timer()
        symbol = normalize_symbol(symbol)
        self._metrics.increment("total_requests")

        cached = await self._cache.get(symbol)
        if cached is not None:
            self._metrics.increment("cache_hits")
            logger.debug("Cache hit", extra={"symbol": symbol, "source": cached.source})
            return QuoteResult.cached(cached.quote, cached.source)

        self._metrics.increment("cache_misses")

        for provider in self._providers:
            if not provider.is_available():
                logger.debug("Skipping unavailable provider", extra={
                    "provider": provider.name,
                    "symbol": symbol,
                })
                continue

            try:
                quote = await self._call_with_retry(provider, partial(provider.get_quote, symbol))
            except RETRYABLE_ERRORS as e:
                logger.warning("Provider failed, falling back", extra={
                    "provider": provider.name,
                    "symbol": symbol,
                    "error": str(e),
                })
                continue
            except Exception as e:
                logger.error("Unexpected provider error, falling back", extra={
                    "provider": provider.name,
                    "symbol": symbol,
                    "error": str(e),
                }, exc_info=True)
                continue

            if quote is None:
                logger.debug("Provider has no data for symbol", extra={
                    "provider": provider.name,
                    "symbol": symbol,
                })
                continue

            await self._cache.put(symbol, quote, provider.name)
            self._metrics.record_provider_success(provider.name)
            self._metrics.record_response_time((self._timer() - start_time) * 1000)
            return QuoteResult.fetched(quote, provider.name)

        self._metrics.increment("failed_requests")
        logger.error("All providers failed", extra={"symbol": symbol})
        return QuoteResult.unavailable()

    async def get_batch_quotes(self, symbols: Iterable[str]) -> Dict[str, Quote]:
        """
        Get quotes for many symbols.

        Cached symbols are served directly. The rest are fetched in chunks of
        `batch_size`; within a chunk each available provider receives only the
        symbols still unresolved. Chunks are separated by `rate_limit_delay`.
        Symbols nobody could resolve are absent from the result.
        """
        results: Dict[str, Quote] = {}
        uncached: List[str] = []

        for symbol in _unique_symbols(symbols):
            self._metrics.increment("total_requests")
            cached = await self._cache.get(symbol)
            if cached is not None:
                results[symbol] = cached.quote
                self._metrics.increment("cache_hits")
            else:
                uncached.append(symbol)
                self._metrics.increment("cache_misses")

        if not uncached:
            return results

        batch_size = self.config.batch_size
        chunks = [uncached[i:i + batch_size] for i in range(0, len(uncached), batch_size)]

        for index, chunk in enumerate(chunks):
            unresolved = await self._fetch_chunk(chunk, results)

            if unresolved:
                self._metrics.increment("failed_requests", len(unresolved))
                logger.warning("Symbols unresolved by every provider", extra={"symbols": unresolved})

            if index < len(chunks) - 1:
                await self._sleep(self.config.rate_limit_delay)

        logger.info("Batch fetch completed", extra={
            "fetched": len(uncached),
            "resolved": len(results),
            "chunks": len(chunks),
        })
        return results

    async def _fetch_chunk(self, chunk: List[str], results: Dict[str, Quote]) -> List[str]:
        """Resolve one chunk against the provider chain; returns what is still unresolved."""
        remaining = list(chunk)

        for provider in self._providers:
            if not remaining:
                break
            if not provider.is_available():
                continue

            try:
                fetched = await self._call_with_retry(
                    provider, partial(provider.get_batch_quotes, list(remaining))
                )
            except RETRYABLE_ERRORS as e:
                logger.warning("Batch provider failed", extra={
                    "provider": provider.name,
                    "symbols": remaining,
                    "error": str(e),
                })
                continue
            except Exception as e:
                logger.error("Unexpected batch provider error", extra={
                    "provider": provider.name,
                    "symbols": remaining,
                    "error": str(e),
                }, exc_info=True)
                continue

            pending = set(remaining)
            resolved = {}
            for symbol, quote in (fetched or {}).items():
                key = normalize_symbol(symbol)
                if quote is not None and key in pending:
                    resolved[key] = quote

            for symbol, quote in resolved.items():
                await self._cache.put(symbol, quote, provider.name)
                results[symbol] = quote

            if resolved:
                self._metrics.record_provider_success(provider.name, len(resolved))

            remaining = [s for s in remaining if s not in resolved]

        return remaining

    async def get_historical_data(self, symbol: str, period: str = "1mo") -> List[HistoricalBar]:
        """
        Get an OHLC series from the first provider able to supply one.

        History is enrichment: when no provider succeeds the result is empty.
        """
        symbol = normalize_symbol(symbol)

        for provider in self._providers:
            if not provider.supports_historical_data() or not provider.is_available():
                continue

            try:
                data = await self._call_with_retry(
                    provider, partial(provider.get_historical_data, symbol, period)
                )
            except RETRYABLE_ERRORS as e:
                logger.warning("Historical data failed", extra={
                    "provider": provider.name,
                    "symbol": symbol,
                    "period": period,
                    "error": str(e),
                })
                continue
            except Exception as e:
                logger.error("Unexpected historical data error", extra={
                    "provider": provider.name,
                    "symbol": symbol,
                    "period": period,
                    "error": str(e),
                }, exc_info=True)
                continue

            if data:
                return list(data)

        logger.info("No historical data available", extra={"symbol": symbol, "period": period})
        return []

    def get_provider_statuses(self) -> List[ProviderStatus]:
        """Availability and rate-limit budget of each provider, in priority order."""
        return [
            ProviderStatus(
                name=provider.name,
                available=provider.is_available(),
                real_data=provider.provides_real_data,
                supports_historical=provider.supports_historical_data(),
                rate_limit=provider.get_rate_limit(),
            )
            for provider in self._providers
        ]

    async def check_service_health(self) -> HealthReport:
        """
        Probe the chain with one quote and classify the service.

        healthy: a genuine quote was obtained and a genuine-data provider is available.
        degraded: only a synthetic quote, or no genuine-data provider available.
        error: no quote at all.
        """
        probe_symbol = self.config.health_probe_symbol
        start_time = self._timer()

        try:
            result = await self.get_quote(probe_symbol)
            response_time_ms = (self._timer() - start_time) * 1000
            statuses = self.get_provider_statuses()
            cache_size = await self._cache.size()
            cache_healthy = await self._cache.health_check()
        except Exception as e:
            logger.error("Health check failed", extra={"error": str(e)})
            return HealthReport(status="error", details={"error": str(e)}, providers=[])

        available = [s for s in statuses if s.available]
        real_available = [s for s in available if s.real_data]
        has_real_data = result.quote is not None and result.quote.is_real_data

        if has_real_data and real_available:
            status = "healthy"
        elif result.quote is not None:
            status = "degraded"
        else:
            status = "error"

        return HealthReport(
            status=status,
            details={
                "probe_symbol": probe_symbol,
                "response_time_ms": response_time_ms,
                "data_source": result.source,
                "is_real_data": has_real_data,
                "cache_backend": getattr(self._cache, "backend", type(self._cache).__name__),
                "cache_healthy": cache_healthy,
                "cache_size": cache_size,
                "test_quote": result.quote.price if result.quote else "N/A",
                "available_providers": len(available),
                "total_providers": len(statuses),
                "metrics": self.get_metrics().model_dump(mode="json"),
            },
            providers=statuses,
        )

    def get_metrics(self) -> MetricsSnapshot:
        """Read-only snapshot of the service counters."""
        return self._metrics.snapshot()

    async def clear_cache(self) -> None:
        """Drop every cached quote."""
        await self._cache.clear()

    async def get_cache_info(self) -> CacheInfo:
        symbols = await self._cache.symbols()
        return CacheInfo(
            backend=getattr(self._cache, "backend", type(self._cache).__name__),
            size=len(symbols),
            ttl_seconds=self._cache.ttl,
            symbols=symbols,
        )
