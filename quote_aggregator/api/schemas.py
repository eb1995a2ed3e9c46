"""
Result schemas returned by MarketDataService to its callers.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..models.market_data import Quote, RateLimitInfo

ALL_PROVIDERS_FAILED = "All providers failed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuoteStatus(str, Enum):
    """Outcome of a single-symbol fetch."""
    FETCHED = "fetched"
    CACHED = "cached"
    UNAVAILABLE = "unavailable"


class QuoteResult(BaseModel):
    """Either a usable quote or an explicit all-providers-failed outcome."""
    status: QuoteStatus
    source: str = Field(..., description="Provider name, '<provider> (cached)' or 'none'")
    quote: Optional[Quote] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.quote is not None

    @classmethod
    def fetched(cls, quote: Quote, provider_name: str) -> "QuoteResult":
        return cls(status=QuoteStatus.FETCHED, quote=quote, source=provider_name)

    @classmethod
    def cached(cls, quote: Quote, provider_name: str) -> "QuoteResult":
        return cls(status=QuoteStatus.CACHED, quote=quote, source=f"{provider_name} (cached)")

    @classmethod
    def unavailable(cls) -> "QuoteResult":
        return cls(status=QuoteStatus.UNAVAILABLE, error=ALL_PROVIDERS_FAILED, source="none")


class ProviderStatus(BaseModel):
    """Operational view of one provider in the chain."""
    name: str
    available: bool
    real_data: bool
    supports_historical: bool
    rate_limit: RateLimitInfo


class MetricsSnapshot(BaseModel):
    """Read-only copy of the service counters."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    avg_response_time_ms: float = 0.0
    provider_usage: Dict[str, int] = Field(default_factory=dict)
    last_update: datetime = Field(default_factory=utc_now)


class HealthReport(BaseModel):
    """Result of the synthetic health probe."""
    status: Literal["healthy", "degraded", "error"]
    details: Dict[str, Any] = Field(default_factory=dict)
    providers: List[ProviderStatus] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


class CacheInfo(BaseModel):
    """Cache introspection for administrative views."""
    backend: str
    size: int
    ttl_seconds: float
    symbols: List[str] = Field(default_factory=list)
