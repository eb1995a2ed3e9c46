"""
Service counters owned by MarketDataService.
"""

import threading
from collections import defaultdict
from typing import DefaultDict

from ..api.schemas import MetricsSnapshot, utc_now


class MetricsCollector:
    """
    Thread-safe counters and a running average of provider response time.

    When disabled every update is a no-op and the snapshot stays at zero.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._lock = threading.Lock()
        self._counters: DefaultDict[str, int] = defaultdict(int)
        self._provider_usage: DefaultDict[str, int] = defaultdict(int)
        self._avg_response_time_ms = 0.0
        self._timed_requests = 0
        self._last_update = utc_now()

    def increment(self, counter: str, amount: int = 1) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._counters[counter] += amount
            self._last_update = utc_now()

    def record_provider_success(self, provider: str, count: int = 1) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._counters["successful_requests"] += count
            self._provider_usage[provider] += count
            self._last_update = utc_now()

    def record_response_time(self, elapsed_ms: float) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._timed_requests += 1
            n = self._timed_requests
            self._avg_response_time_ms += (elapsed_ms - self._avg_response_time_ms) / n
            self._last_update = utc_now()

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                total_requests=self._counters["total_requests"],
                successful_requests=self._counters["successful_requests"],
                failed_requests=self._counters["failed_requests"],
                cache_hits=self._counters["cache_hits"],
                cache_misses=self._counters["cache_misses"],
                avg_response_time_ms=self._avg_response_time_ms,
                provider_usage=dict(self._provider_usage),
                last_update=self._last_update,
            )
