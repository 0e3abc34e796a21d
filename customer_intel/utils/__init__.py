"""Utility functions."""

from .helpers import (
    setup_logging,
    setup_logging_from_config,
    get_timestamp,
    format_metrics,
    safe_divide,
    calculate_percentage_change,
)

__all__ = [
    "setup_logging",
    "setup_logging_from_config",
    "get_timestamp",
    "format_metrics",
    "safe_divide",
    "calculate_percentage_change",
]
