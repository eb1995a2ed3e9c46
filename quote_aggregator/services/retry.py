"""
Retry with exponential backoff for provider invocations.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

from ..core.logging_config import create_logger
from ..providers.base import PermanentProviderError, ProviderError

logger = create_logger(__name__)

T = TypeVar("T")

# Failures worth another attempt, except PermanentProviderError which is raised at once
RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    ProviderError,
    httpx.HTTPError,
    asyncio.TimeoutError,
)


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_retries: int,
    base_delay: float,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    provider: Optional[str] = None,
) -> T:
    """
    Call `func` up to `max_retries + 1` times.

    After failed attempt n (1-based) the wait is `base_delay * 2 ** (n - 1)`;
    there is no wait after the final attempt. A returned value, including
    None, ends the loop. The last error is re-raised once attempts run out;
    a PermanentProviderError is re-raised immediately.
    """
    sleep = sleep or asyncio.sleep
    attempts = max_retries + 1
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except PermanentProviderError as e:
            logger.warning("Provider attempt failed permanently", extra={
                "provider": provider,
                "attempt": attempt,
                "error": str(e),
            })
            raise
        except RETRYABLE_ERRORS as e:
            last_error = e
            logger.warning("Provider attempt failed", extra={
                "provider": provider,
                "attempt": attempt,
                "max_attempts": attempts,
                "error": str(e),
            })

            if attempt < attempts:
                await sleep(base_delay * 2 ** (attempt - 1))

    raise last_error
