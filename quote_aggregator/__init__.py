"""
Quote Aggregator
Real-time price quotes from several upstream providers behind one contract,
with fallback, caching, retry and health reporting.
"""

__version__ = "1.0.0"
__description__ = "Market data aggregation service with provider fallback and quote caching"
