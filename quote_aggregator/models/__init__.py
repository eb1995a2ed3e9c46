from .market_data import DataProvider, HistoricalBar, Quote, RateLimitInfo, normalize_symbol

__all__ = ["DataProvider", "HistoricalBar", "Quote", "RateLimitInfo", "normalize_symbol"]
