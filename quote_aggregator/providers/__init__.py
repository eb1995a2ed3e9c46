"""
Quote providers and the priority-ordered chain factory.
"""

from typing import List, Optional

from .alpha_vantage_provider import AlphaVantageProvider
from .base import (
    AuthenticationError,
    BaseDataProvider,
    MalformedResponseError,
    PermanentProviderError,
    ProviderError,
    RateLimitError,
)
from .mock_provider import MockProvider
from .yfinance_provider import YFinanceProvider
from ..core.config import ServiceConfig, Settings
from ..core.logging_config import create_logger

logger = create_logger(__name__)

__all__ = [
    "AlphaVantageProvider",
    "AuthenticationError",
    "BaseDataProvider",
    "MalformedResponseError",
    "MockProvider",
    "PermanentProviderError",
    "ProviderError",
    "RateLimitError",
    "YFinanceProvider",
    "build_providers",
]


def build_providers(settings: Settings, config: Optional[ServiceConfig] = None) -> List[BaseDataProvider]:
    """
    Build the fallback chain in priority order.

    Ordering comes from `config` (derived from `settings` when omitted):
    Yahoo Finance leads when `use_yahoo_primary` is set, otherwise Alpha
    Vantage does (only when a real key is configured). The synthetic
    provider, when enabled, is always last. Credentials and per-provider
    tuning come from `settings`.
    """
    config = config or settings.service_config()

    yahoo = YFinanceProvider(
        requests_per_minute=settings.yahoo_requests_per_minute,
        timeout=settings.yahoo_timeout_seconds,
        max_workers=settings.yahoo_max_workers,
    )

    providers: List[BaseDataProvider] = []

    if config.use_yahoo_primary:
        providers.append(yahoo)

    if settings.has_alpha_vantage_key:
        providers.append(AlphaVantageProvider(
            api_key=settings.alpha_vantage_api_key,
            requests_per_minute=settings.alpha_vantage_requests_per_minute,
            min_interval=settings.alpha_vantage_min_interval_seconds,
            timeout=settings.alpha_vantage_timeout_seconds,
        ))

    if not config.use_yahoo_primary:
        providers.append(yahoo)

    if config.enable_mock_fallback:
        providers.append(MockProvider())

    logger.info("Initialized market data providers", extra={
        "count": len(providers),
        "providers": [p.name for p in providers],
    })
    return providers
