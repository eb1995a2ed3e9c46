from .cache import CacheEntry, QuoteCache, RedisQuoteCache, create_cache
from .market_data_service import MarketDataService
from .metrics import MetricsCollector
from .retry import retry_with_backoff

__all__ = [
    "CacheEntry",
    "MarketDataService",
    "MetricsCollector",
    "QuoteCache",
    "RedisQuoteCache",
    "create_cache",
    "retry_with_backoff",
]
