"""Analytics module: read-only reporting over the store."""

from .engine import QUERIES, AnalyticsEngine, AnalyticsSnapshot
from .window import dense_rank, lag, ntile, ordered, percent_rank

__all__ = [
    "QUERIES",
    "AnalyticsEngine",
    "AnalyticsSnapshot",
    "dense_rank",
    "lag",
    "ntile",
    "ordered",
    "percent_rank",
]
