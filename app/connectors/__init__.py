"""
app/connectors package marker.
"""

from app.connectors.base import FileHandle, FileStore, TabularStore
from app.connectors.rate_limiter import QuotaRateLimiter
from app.connectors.retry import RetryPolicy, call_with_retry

__all__ = [
    "FileHandle",
    "FileStore",
    "QuotaRateLimiter",
    "RetryPolicy",
    "TabularStore",
    "call_with_retry",
]
