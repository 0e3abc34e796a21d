"""
Window Functions
================

Ranking primitives used by the analytics queries. Frames are ordered with a
stable sort on the value column and ties are broken by customer_id ascending,
so every ranking is reproducible across runs and databases.
"""

from typing import Sequence, Union

import numpy as np
import pandas as pd

from customer_intel.exceptions import InvalidParameterError


def ordered(
    df: pd.DataFrame,
    by: Union[str, Sequence[str]],
    ascending: Union[bool, Sequence[bool]] = False,
    tiebreak: str = "customer_id"
) -> pd.DataFrame:
    """
    Stable sort on the value column(s), then the tiebreak column ascending.

    Args:
        df: Frame to order
        by: Value column or columns
        ascending: Direction per value column
        tiebreak: Column that settles remaining ties

    Returns:
        Reordered copy with a fresh RangeIndex
    """
    by = [by] if isinstance(by, str) else list(by)
    if isinstance(ascending, bool):
        ascending = [ascending] * len(by)
    else:
        ascending = list(ascending)

    if tiebreak and tiebreak in df.columns and tiebreak not in by:
        by.append(tiebreak)
        ascending.append(True)

    return df.sort_values(by, ascending=ascending, kind="mergesort").reset_index(drop=True)


def dense_rank(values: pd.Series, ascending: bool = False) -> pd.Series:
    """Rank without gaps: [100, 100, 90] descending is [1, 1, 2]."""
    if values.empty:
        return pd.Series(dtype="int64", index=values.index)
    return values.rank(method="dense", ascending=ascending).astype("int64")


def percent_rank(values: pd.Series, ascending: bool = False) -> pd.Series:
    """
    (rank - 1) / (rows - 1), where rank is the lowest rank among ties.

    Tied values share a percentile. A single row has percent rank 0.
    """
    n = len(values)
    if n == 0:
        return pd.Series(dtype="float64", index=values.index)
    if n == 1:
        return pd.Series([0.0], index=values.index)
    rank = values.rank(method="min", ascending=ascending)
    return (rank - 1) / (n - 1)


def ntile(df: pd.DataFrame, buckets: int) -> pd.Series:
    """
    Split an ordered frame into numbered buckets of near-equal size.

    With N rows and k buckets every bucket holds N // k rows and the first
    N mod k buckets hold one extra.

    Args:
        df: Frame already in ranking order
        buckets: Number of buckets

    Returns:
        Bucket number (1-based) aligned to df.index
    """
    if buckets < 1:
        raise InvalidParameterError("buckets", buckets, "must be a positive integer")

    n = len(df)
    base, extra = divmod(n, buckets)
    position = np.arange(n)
    boundary = extra * (base + 1)

    big = position // (base + 1) + 1
    if base:
        small = extra + (position - boundary) // base + 1
    else:
        small = big
    return pd.Series(np.where(position < boundary, big, small), index=df.index, dtype="int64")


def lag(values: pd.Series, periods: int = 1) -> pd.Series:
    """Value from `periods` rows earlier; missing for the first rows."""
    return values.shift(periods)
