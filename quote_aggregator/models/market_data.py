"""
Market data models shared by providers, the cache and the service.
Defines standardized, immutable data structures for quotes and price history.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DataProvider(str, Enum):
    """Supported data providers, by display name."""
    ALPHA_VANTAGE = "Alpha Vantage"
    YAHOO_FINANCE = "Yahoo Finance"
    MOCK = "Mock Data"


def normalize_symbol(symbol: str) -> str:
    """Upper-case and trim a ticker symbol."""
    return symbol.strip().upper()


class Quote(BaseModel):
    """Point-in-time price snapshot for a single symbol."""

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Asset symbol/ticker")
    price: float = Field(..., description="Current price")
    change: float = Field(0.0, description="Absolute price change")
    change_percent: float = Field(0.0, description="Percentage price change")
    volume: int = Field(0, description="Trading volume")
    high: Optional[float] = Field(None, description="Session high")
    low: Optional[float] = Field(None, description="Session low")
    open: Optional[float] = Field(None, description="Opening price")
    previous_close: Optional[float] = Field(None, description="Previous close price")
    last_update: date = Field(..., description="Trading day the quote refers to")
    source: str = Field(..., description="Name of the provider that produced the quote")
    is_real_data: bool = Field(..., description="False when the quote was synthetically generated")
    currency: Optional[str] = Field(None, description="Quote currency")
    market_cap: Optional[float] = Field(None, description="Market capitalization")

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Validate and normalize symbol."""
        if not v or not v.strip():
            raise ValueError("Symbol cannot be empty")
        return normalize_symbol(v)

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: float) -> float:
        """Validate price is positive."""
        if v <= 0:
            raise ValueError("Price must be positive")
        return v


class HistoricalBar(BaseModel):
    """One OHLC point of a price series."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int = 0


class RateLimitInfo(BaseModel):
    """Remaining request budget reported by a provider."""

    model_config = ConfigDict(frozen=True)

    remaining: Optional[int] = Field(None, description="Requests left in the window; None means unbounded")
    reset_time: Optional[datetime] = Field(None, description="When the budget refills")

    @property
    def unbounded(self) -> bool:
        return self.remaining is None
