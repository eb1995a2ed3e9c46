"""
Tests for MarketDataService: cache short-circuit, fallback order, retry
budget, batch chunking and pacing, history delegation and health status.
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from quote_aggregator.api.schemas import ALL_PROVIDERS_FAILED, QuoteStatus
from quote_aggregator.models.market_data import HistoricalBar
from quote_aggregator.providers.base import AuthenticationError
from quote_aggregator.providers.mock_provider import MockProvider

from conftest import FakeProvider


# ---------------------------------------------------------------------------
# Single quote
# ---------------------------------------------------------------------------

async def test_second_call_within_ttl_is_served_from_cache(make_service, clock):
    provider = FakeProvider("Live A")
    service = make_service([provider])

    first = await service.get_quote("aapl ")
    clock.advance(0.5)
    second = await service.get_quote("AAPL")

    assert first.status == QuoteStatus.FETCHED
    assert first.source == "Live A"
    assert second.status == QuoteStatus.CACHED
    assert second.source == "Live A (cached)"
    assert second.quote == first.quote
    assert provider.quote_calls == ["AAPL"]


async def test_expired_entry_refetches(make_service, clock):
    provider = FakeProvider("Live A")
    service = make_service([provider])

    await service.get_quote("AAPL")
    clock.advance(0.5)
    hit = await service.get_quote("AAPL")
    clock.advance(1.0)
    miss = await service.get_quote("AAPL")

    assert hit.status == QuoteStatus.CACHED
    assert miss.status == QuoteStatus.FETCHED
    assert provider.quote_calls == ["AAPL", "AAPL"]
    metrics = service.get_metrics()
    assert metrics.cache_hits == 1
    assert metrics.cache_misses == 2


async def test_unavailable_primary_falls_back_to_next_provider(make_service):
    primary = FakeProvider("Live A", available=False)
    secondary = FakeProvider("Live B")
    service = make_service([primary, secondary])

    result = await service.get_quote("MSFT")

    assert result.source == "Live B"
    assert result.quote.source == "Live B"
    assert primary.quote_calls == []


async def test_fallback_order_follows_priority(make_service):
    a = FakeProvider("Live A", missing={"MSFT"})
    b = FakeProvider("Live B")
    service = make_service([b, a])

    result = await service.get_quote("MSFT")

    assert result.source == "Live B"
    assert a.quote_calls == []


async def test_failing_provider_is_retried_exactly_max_retries_plus_one(make_service, sleep, config):
    failing = FakeProvider("Live A", fail=True)
    backup = FakeProvider("Live B")
    service = make_service([failing, backup])

    result = await service.get_quote("AAPL")

    assert len(failing.quote_calls) == config.max_retries + 1
    assert sleep.delays == [0.5, 1.0]
    assert result.source == "Live B"


async def test_absent_data_is_not_retried(make_service, sleep):
    empty = FakeProvider("Live A", missing={"ZZZZ"})
    backup = FakeProvider("Live B")
    service = make_service([empty, backup])

    result = await service.get_quote("ZZZZ")

    assert empty.quote_calls == ["ZZZZ"]
    assert sleep.delays == []
    assert result.source == "Live B"


async def test_all_providers_failed_is_explicit_result(make_service):
    service = make_service([
        FakeProvider("Live A", fail=True),
        FakeProvider("Live B", available=False),
        FakeProvider("Live C", missing={"AAPL"}),
    ])

    result = await service.get_quote("AAPL")

    assert not result.ok
    assert result.status == QuoteStatus.UNAVAILABLE
    assert result.error == ALL_PROVIDERS_FAILED
    assert result.source == "none"
    assert service.get_metrics().failed_requests == 1


async def test_synthetic_last_never_exhausts(make_service):
    service = make_service([FakeProvider("Live A", fail=True), MockProvider()])

    for symbol in ["AAPL", "ZZZZ", "QWERTY"]:
        result = await service.get_quote(symbol)
        assert result.ok
        assert result.source == "Mock Data"
        assert result.quote.is_real_data is False


async def test_clear_cache_forces_miss(make_service):
    provider = FakeProvider("Live A")
    service = make_service([provider])

    await service.get_quote("AAPL")
    await service.clear_cache()
    result = await service.get_quote("AAPL")

    assert result.status == QuoteStatus.FETCHED
    assert service.get_metrics().cache_misses == 2
    assert len(provider.quote_calls) == 2


async def test_empty_symbol_is_rejected(make_service):
    service = make_service([FakeProvider("Live A")])

    with pytest.raises(ValueError):
        await service.get_quote("   ")


async def test_metrics_track_usage_and_response_time(make_service):
    service = make_service([FakeProvider("Live A", missing={"ZZZZ"}), FakeProvider("Live B")])

    await service.get_quote("AAPL")
    await service.get_quote("ZZZZ")
    await service.get_quote("AAPL")

    metrics = service.get_metrics()
    assert metrics.total_requests == 3
    assert metrics.successful_requests == 2
    assert metrics.cache_hits == 1
    assert metrics.provider_usage == {"Live A": 1, "Live B": 1}
    assert metrics.avg_response_time_ms >= 0


async def test_metrics_disabled_stay_zero(make_service):
    service = make_service([FakeProvider("Live A")], enable_metrics=False)

    await service.get_quote("AAPL")

    metrics = service.get_metrics()
    assert metrics.total_requests == 0
    assert metrics.provider_usage == {}


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

async def test_batch_resolves_leftovers_with_next_provider(make_service):
    live = FakeProvider("Live A", missing={"ZZZZ"})
    service = make_service([live, MockProvider()], batch_size=10)

    quotes = await service.get_batch_quotes(["AAPL", "ZZZZ"])

    assert set(quotes) == {"AAPL", "ZZZZ"}
    assert quotes["AAPL"].source == "Live A"
    assert quotes["ZZZZ"].source == "Mock Data"
    assert live.batch_calls == [["AAPL", "ZZZZ"]]


async def test_next_provider_only_receives_unresolved_symbols(make_service):
    first = FakeProvider("Live A", prices={"AAPL": 190.0})
    second = FakeProvider("Live B")
    service = make_service([first, second], batch_size=10)

    await service.get_batch_quotes(["AAPL", "MSFT", "GOOGL"])

    assert second.batch_calls == [["MSFT", "GOOGL"]]
    assert service.get_metrics().provider_usage == {"Live A": 1, "Live B": 2}


@pytest.mark.parametrize("count,batch_size,expected_chunks", [
    (1, 2, 1),
    (4, 2, 2),
    (5, 2, 3),
    (7, 3, 3),
])
async def test_batch_chunks_and_pacing(make_service, sleep, count, batch_size, expected_chunks):
    provider = FakeProvider("Live A")
    service = make_service([provider], batch_size=batch_size, rate_limit_delay=2.5)
    symbols = [f"S{i}" for i in range(count)]

    quotes = await service.get_batch_quotes(symbols)

    assert len(quotes) == count
    assert len(provider.batch_calls) == expected_chunks
    assert all(len(chunk) <= batch_size for chunk in provider.batch_calls)
    assert sleep.delays == [2.5] * (expected_chunks - 1)


async def test_batch_serves_cached_symbols_without_providers(make_service):
    provider = FakeProvider("Live A")
    service = make_service([provider])

    await service.get_quote("AAPL")
    quotes = await service.get_batch_quotes(["AAPL", "MSFT"])

    assert set(quotes) == {"AAPL", "MSFT"}
    assert provider.batch_calls == [["MSFT"]]
    assert service.get_metrics().cache_hits == 1


async def test_batch_provider_failure_moves_to_next(make_service):
    broken = FakeProvider("Live A", fail=True)
    backup = FakeProvider("Live B")
    service = make_service([broken, backup], batch_size=10)

    quotes = await service.get_batch_quotes(["AAPL", "MSFT"])

    assert {q.source for q in quotes.values()} == {"Live B"}
    assert len(broken.batch_calls) == 3


async def test_batch_omits_unresolved_symbols(make_service):
    service = make_service([FakeProvider("Live A", prices={"AAPL": 1.0})], batch_size=10)

    quotes = await service.get_batch_quotes(["AAPL", "NOPE", "aapl", ""])

    assert list(quotes) == ["AAPL"]
    assert service.get_metrics().failed_requests == 1


async def test_batch_results_are_cached(make_service):
    provider = FakeProvider("Live A")
    service = make_service([provider])

    await service.get_batch_quotes(["AAPL"])
    result = await service.get_quote("AAPL")

    assert result.source == "Live A (cached)"


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

def _bars(n: int):
    return [
        HistoricalBar(
            timestamp=datetime(2026, 1, day + 1, tzinfo=timezone.utc),
            open=1.0, high=2.0, low=0.5, close=1.5, volume=10,
        )
        for day in range(n)
    ]


async def test_history_skips_providers_without_capability(make_service):
    no_history = FakeProvider("Live A")
    with_history = FakeProvider("Live B", history=_bars(3))
    service = make_service([no_history, with_history])

    bars = await service.get_historical_data("aapl", "1mo")

    assert len(bars) == 3
    assert with_history.history_calls == [("AAPL", "1mo")]


async def test_history_moves_past_failures_and_empty_results(make_service):
    failing = FakeProvider("Live A", history=[], history_fail=True)
    empty = FakeProvider("Live B", history=[])
    good = FakeProvider("Live C", history=_bars(2))
    service = make_service([failing, empty, good])

    bars = await service.get_historical_data("AAPL")

    assert len(bars) == 2
    assert len(failing.history_calls) == 3


async def test_history_empty_when_nobody_has_it(make_service):
    service = make_service([FakeProvider("Live A"), MockProvider()])

    assert await service.get_historical_data("AAPL", "1y") == []


# ---------------------------------------------------------------------------
# Health and diagnostics
# ---------------------------------------------------------------------------

async def test_health_is_healthy_with_genuine_data(make_service):
    service = make_service([FakeProvider("Live A"), MockProvider()])

    report = await service.check_service_health()

    assert report.status == "healthy"
    assert report.details["data_source"] == "Live A"
    assert report.details["is_real_data"] is True
    assert report.details["available_providers"] == 2
    assert [p.name for p in report.providers] == ["Live A", "Mock Data"]
    assert report.providers[1].rate_limit.remaining is None


async def test_health_is_degraded_when_only_synthetic_succeeds(make_service):
    service = make_service([FakeProvider("Live A", fail=True), MockProvider()])

    report = await service.check_service_health()

    assert report.status == "degraded"
    assert report.details["data_source"] == "Mock Data"
    assert report.details["is_real_data"] is False


async def test_health_is_degraded_when_no_genuine_provider_available(make_service):
    live = FakeProvider("Live A")
    service = make_service([live, MockProvider()])
    await service.get_quote("AAPL")
    live.available = False

    report = await service.check_service_health()

    assert report.details["data_source"] == "Live A (cached)"
    assert report.status == "degraded"


async def test_health_is_error_without_any_quote(make_service):
    service = make_service([FakeProvider("Live A", available=False)])

    report = await service.check_service_health()

    assert report.status == "error"
    assert report.details["test_quote"] == "N/A"
    assert report.providers[0].available is False


async def test_cache_info_lists_fresh_symbols(make_service, clock):
    service = make_service([FakeProvider("Live A")])
    await service.get_batch_quotes(["MSFT", "AAPL"])

    info = await service.get_cache_info()
    assert info.backend == "memory"
    assert info.symbols == ["AAPL", "MSFT"]
    assert info.size == 2

    clock.advance(5)
    assert (await service.get_cache_info()).size == 0


async def test_lifecycle_connects_and_closes_everything(make_service):
    class Tracked(FakeProvider):
        def __init__(self, name, broken=False):
            super().__init__(name)
            self.events = []
            self.broken = broken

        async def connect(self):
            self.events.append("connect")
            if self.broken:
                raise RuntimeError("cannot start")

        async def disconnect(self):
            self.events.append("disconnect")

    good = Tracked("Live A")
    broken = Tracked("Live B", broken=True)

    async with make_service([broken, good]) as service:
        result = await service.get_quote("AAPL")

    assert result.ok
    assert good.events == ["connect", "disconnect"]
    assert broken.events == ["connect", "disconnect"]


# ---------------------------------------------------------------------------
# Fault isolation
# ---------------------------------------------------------------------------

async def test_unexpected_provider_error_falls_back_for_quote(make_service, sleep):
    broken = FakeProvider("Live A", error=AttributeError("'str' object has no attribute 'get'"))
    service = make_service([broken, MockProvider()])

    result = await service.get_quote("AAPL")

    assert result.source == "Mock Data"
    assert broken.quote_calls == ["AAPL"]
    assert sleep.delays == []


async def test_unexpected_provider_error_falls_back_for_batch(make_service):
    broken = FakeProvider("Live A", error=ValueError("cannot convert float NaN to integer"))
    service = make_service([broken, FakeProvider("Live B")], batch_size=10)

    quotes = await service.get_batch_quotes(["AAPL", "MSFT"])

    assert {q.source for q in quotes.values()} == {"Live B"}


async def test_unexpected_provider_error_falls_back_for_history(make_service):
    broken = FakeProvider("Live A", history=[], error=ValueError("cannot convert float NaN to integer"))
    good = FakeProvider("Live B", history=_bars(2))
    service = make_service([broken, good])

    assert len(await service.get_historical_data("AAPL")) == 2


async def test_permanent_error_skips_retries(make_service, sleep):
    rejected = FakeProvider("Live A", error=AuthenticationError("bad key", "Live A"))
    service = make_service([rejected, FakeProvider("Live B")])

    result = await service.get_quote("AAPL")

    assert result.source == "Live B"
    assert rejected.quote_calls == ["AAPL"]
    assert sleep.delays == []


async def test_health_reports_cache_backend(make_service):
    service = make_service([FakeProvider("Live A")])

    report = await service.check_service_health()

    assert report.details["cache_backend"] == "memory"
    assert report.details["cache_healthy"] is True
