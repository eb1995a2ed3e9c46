"""
Quote cache backends for the Quote Aggregator.

Both backends store one entry per normalized symbol and treat an entry as
absent once `now - timestamp >= ttl`. Expiry is lazy: an expired entry is
dropped the next time it is looked up.
"""

import asyncio
import json
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as redis

from ..core.config import ServiceConfig, Settings
from ..core.logging_config import create_logger
from ..models.market_data import Quote, normalize_symbol

logger = create_logger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry:
    """A cached quote with the epoch time it was stored and the provider that produced it."""
    quote: Quote
    timestamp: float
    source: str

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.timestamp < ttl


class QuoteCache:
    """In-process symbol -> quote store with time-based expiry."""

    backend = "memory"

    def __init__(self, ttl: float, clock: Optional[Clock] = None):
        self.ttl = ttl
        self._clock = clock or time.time
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    async def connect(self) -> None:
        """Nothing to open for the in-process store."""

    async def disconnect(self) -> None:
        """Nothing to close for the in-process store."""

    async def get(self, symbol: str) -> Optional[CacheEntry]:
        key = normalize_symbol(symbol)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_fresh(self._clock(), self.ttl):
                return entry
            del self._entries[key]

        logger.debug("Evicted expired cache entry", extra={"symbol": key})
        return None

    async def put(self, symbol: str, quote: Quote, source: str) -> None:
        entry = CacheEntry(quote=quote, timestamp=self._clock(), source=source)
        with self._lock:
            self._entries[normalize_symbol(symbol)] = entry

    async def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Cleared quote cache", extra={"backend": self.backend, "entries": count})

    async def symbols(self) -> List[str]:
        """Symbols with a fresh entry."""
        now = self._clock()
        with self._lock:
            return sorted(s for s, e in self._entries.items() if e.is_fresh(now, self.ttl))

    async def size(self) -> int:
        return len(await self.symbols())

    async def health_check(self) -> bool:
        return True


class RedisQuoteCache:
    """Redis-backed quote store shared between processes."""

    backend = "redis"
    key_prefix = "quotes:"

    def __init__(
        self,
        ttl: float,
        redis_url: Optional[str] = None,
        client: Optional[Any] = None,
        clock: Optional[Clock] = None,
    ):
        self.ttl = ttl
        self._redis_url = redis_url
        self._redis = client
        self._owns_client = client is None
        self._clock = clock or time.time
        self._connection_lock = asyncio.Lock()

    def _key(self, symbol: str) -> str:
        return f"{self.key_prefix}{normalize_symbol(symbol)}"

    async def connect(self) -> None:
        """Initialize Redis connection."""
        async with self._connection_lock:
            if self._redis is None:
                self._redis = redis.Redis.from_url(
                    self._redis_url,
                    retry_on_timeout=True,
                    socket_keepalive=True,
                    health_check_interval=30,
                )
                await self._redis.ping()
                logger.info("Successfully connected to Redis", extra={"backend": self.backend})

    async def disconnect(self) -> None:
        """Close Redis connection."""
        async with self._connection_lock:
            if self._redis is not None and self._owns_client:
                await self._redis.aclose()
                self._redis = None
                logger.info("Disconnected from Redis")

    async def _client(self):
        if self._redis is None:
            await self.connect()
        return self._redis

    async def get(self, symbol: str) -> Optional[CacheEntry]:
        """A Redis outage reads as a miss."""
        key = self._key(symbol)
        try:
            client = await self._client()
            raw = await client.get(key)
            if not raw:
                return None

            try:
                payload = json.loads(raw)
                entry = CacheEntry(
                    quote=Quote.model_validate(payload["quote"]),
                    timestamp=float(payload["timestamp"]),
                    source=payload["source"],
                )
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Failed to deserialize quote from cache", extra={
                    "symbol": symbol,
                    "error": str(e),
                })
                await client.delete(key)
                return None

            # Redis expiry has whole-second granularity
            if not entry.is_fresh(self._clock(), self.ttl):
                await client.delete(key)
                return None
            return entry

        except redis.RedisError as e:
            logger.error("Failed to get quote from cache", extra={
                "symbol": symbol,
                "error": str(e),
            })
            return None

    async def put(self, symbol: str, quote: Quote, source: str) -> None:
        """A Redis outage skips the write."""
        payload = json.dumps({
            "quote": quote.model_dump(mode="json"),
            "timestamp": self._clock(),
            "source": source,
        })
        try:
            client = await self._client()
            await client.setex(self._key(symbol), max(1, math.ceil(self.ttl)), payload)
        except redis.RedisError as e:
            logger.error("Failed to store quote in cache", extra={
                "symbol": symbol,
                "error": str(e),
            })

    async def _keys(self) -> List[str]:
        try:
            client = await self._client()
            keys = []
            async for key in client.scan_iter(match=f"{self.key_prefix}*"):
                keys.append(key.decode() if isinstance(key, bytes) else key)
            return keys
        except redis.RedisError as e:
            logger.error("Failed to list cached quotes", extra={"error": str(e)})
            return []

    async def clear(self) -> None:
        keys = await self._keys()
        try:
            if keys:
                client = await self._client()
                await client.delete(*keys)
        except redis.RedisError as e:
            logger.error("Failed to clear quote cache", extra={"error": str(e)})
            return
        logger.info("Cleared quote cache", extra={"backend": self.backend, "entries": len(keys)})

    async def symbols(self) -> List[str]:
        return sorted(key[len(self.key_prefix):] for key in await self._keys())

    async def size(self) -> int:
        return len(await self._keys())

    async def health_check(self) -> bool:
        """Check Redis connection health."""
        try:
            client = await self._client()
            await client.ping()
            return True
        except redis.RedisError as e:
            logger.warning("Redis health check failed", extra={"error": str(e)})
            return False


def create_cache(config: ServiceConfig, settings: Optional[Settings] = None):
    """Build the cache backend named by the configuration."""
    if config.cache_backend == "redis":
        if settings is None:
            raise ValueError("Redis cache backend requires settings with connection details")
        return RedisQuoteCache(ttl=config.cache_ttl, redis_url=settings.get_redis_url())
    return QuoteCache(ttl=config.cache_ttl)
