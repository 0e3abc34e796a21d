"""
Utility Helper Functions
========================

Common utility functions used across the project.
"""

import math
import sys
from datetime import date, datetime
from typing import Dict, Optional

from loguru import logger

from customer_intel.config import LOGS_DIR


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    rotation: str = "10 MB",
    retention: str = "7 days"
):
    """
    Setup logging configuration.

    Args:
        level: Logging level
        log_file: Optional log file name, written under logs/
        rotation: Log rotation setting
        retention: Log retention setting
    """
    # Remove default handler
    logger.remove()

    # Add console handler
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )

    # Add file handler if specified
    if log_file:
        log_path = LOGS_DIR / log_file
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation=rotation,
            retention=retention,
            compression="zip"
        )

    logger.info(f"Logging configured at {level} level")


def setup_logging_from_config(config: dict):
    """Configure logging from the `logging` section of the config."""
    log_config = config.get("logging", {})
    setup_logging(
        level=log_config.get("level", "INFO"),
        log_file=log_config.get("file"),
        rotation=log_config.get("rotation", "10 MB"),
        retention=log_config.get("retention", "7 days"),
    )


def get_timestamp(format_str: str = "%Y%m%d_%H%M%S") -> str:
    """
    Get current timestamp string.

    Args:
        format_str: Datetime format string

    Returns:
        Formatted timestamp
    """
    return datetime.now().strftime(format_str)


def resolve_as_of(as_of: Optional[date] = None) -> date:
    """Evaluation date for recency metrics; today unless pinned."""
    if as_of is None:
        return date.today()
    if isinstance(as_of, datetime):
        return as_of.date()
    return as_of


def format_metrics(metrics: Dict[str, Optional[float]], precision: int = 4) -> Dict[str, str]:
    """
    Format metric values for display.

    Args:
        metrics: Dictionary of metric values
        precision: Decimal precision

    Returns:
        Dictionary with formatted values
    """
    return {k: "n/a" if v is None else f"{v:.{precision}f}" for k, v in metrics.items()}


def is_missing(value) -> bool:
    """True for None and NaN."""
    return value is None or (isinstance(value, float) and math.isnan(value))


def safe_divide(numerator, denominator) -> Optional[float]:
    """
    Division that yields None instead of raising on a zero denominator.

    Args:
        numerator: Numerator value
        denominator: Denominator value

    Returns:
        Division result, or None when the denominator is zero or missing
    """
    if is_missing(numerator) or is_missing(denominator) or denominator == 0:
        return None
    return float(numerator) / float(denominator)


def calculate_percentage_change(old_value, new_value) -> Optional[float]:
    """
    Calculate percentage change between two values.

    Args:
        old_value: Original value
        new_value: New value

    Returns:
        Percentage change, or None when there is no base to compare against
    """
    change = safe_divide(
        None if is_missing(new_value) or is_missing(old_value) else new_value - old_value,
        old_value,
    )
    return None if change is None else change * 100
