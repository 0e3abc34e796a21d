"""
Feature Builder Module
======================

Derives one feature snapshot row per customer from the transaction store and
publishes the full set as a single replacement.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

import pandas as pd
from loguru import logger
from sqlalchemy import delete, insert
from sqlalchemy.orm import Session

from customer_intel.config import get_config
from customer_intel.data.data_loader import DataLoader, TransactionTables
from customer_intel.data.store import CustomerFeature, FeatureGeneration
from customer_intel.utils.helpers import resolve_as_of

FEATURE_COLUMNS = [
    "customer_id",
    "age",
    "gender",
    "city",
    "total_orders",
    "total_spent",
    "avg_order_value",
    "last_order_date",
    "days_since_last_order",
    "churn_label",
]


@dataclass
class FeatureBuild:
    """A published snapshot and the generation it was stamped with."""

    generation: int
    as_of: date
    snapshot: pd.DataFrame


def aggregate_orders(orders: pd.DataFrame) -> pd.DataFrame:
    """
    Per-customer order count, spend, mean order value and latest order date.

    Args:
        orders: Orders table

    Returns:
        DataFrame keyed by customer_id (customers without orders are absent)
    """
    if orders.empty:
        return pd.DataFrame({
            "customer_id": pd.Series(dtype="int64"),
            "total_orders": pd.Series(dtype="int64"),
            "total_spent": pd.Series(dtype="float64"),
            "avg_order_value": pd.Series(dtype="float64"),
            "last_order_date": pd.Series(dtype="datetime64[ns]"),
        })

    agg = (
        orders.assign(order_value=orders["order_value"].astype(float))
        .groupby("customer_id")
        .agg(
            total_orders=("order_id", "count"),
            total_spent=("order_value", "sum"),
            avg_order_value=("order_value", "mean"),
            last_order_date=("order_date", "max"),
        )
        .reset_index()
    )
    agg["customer_id"] = agg["customer_id"].astype("int64")
    return agg


class FeatureBuilder:
    """Build and publish the per-customer feature snapshot."""

    def __init__(self, config: Optional[dict] = None, loader: Optional[DataLoader] = None):
        """
        Initialize FeatureBuilder.

        Args:
            config: Configuration dictionary
            loader: DataLoader used to read the store
        """
        self.config = config or get_config()
        self.loader = loader or DataLoader(self.config)
        self.churn_threshold_days = int(
            self.config.get("features", {}).get("churn_threshold_days", 90)
        )

    def build(self, tables: TransactionTables, as_of: Optional[date] = None) -> pd.DataFrame:
        """
        Derive the feature snapshot.

        Args:
            tables: Transactional tables
            as_of: Evaluation date for recency; today when omitted

        Returns:
            One row per customer, sorted by customer_id

        Raises:
            ReferentialIntegrityError: an order references a missing customer
        """
        as_of_ts = pd.Timestamp(resolve_as_of(as_of))
        self.loader.check_order_integrity(tables)

        customers = tables.customers[["customer_id", "age", "gender", "city", "signup_date"]].copy()
        customers["customer_id"] = customers["customer_id"].astype("int64")

        df = customers.merge(aggregate_orders(tables.orders), on="customer_id", how="left")

        df["total_orders"] = df["total_orders"].fillna(0).astype("int64")
        df["total_spent"] = df["total_spent"].fillna(0.0).astype(float).round(2)
        df["avg_order_value"] = df["avg_order_value"].fillna(0.0).astype(float).round(2)
        df["last_order_date"] = pd.to_datetime(df["last_order_date"]).fillna(df["signup_date"])

        days_inactive = (as_of_ts - df["last_order_date"]).dt.days
        df["days_since_last_order"] = days_inactive.clip(lower=0).astype("int64")
        df["churn_label"] = (days_inactive > self.churn_threshold_days).astype(bool)

        snapshot = (
            df[FEATURE_COLUMNS]
            .sort_values("customer_id", kind="mergesort")
            .reset_index(drop=True)
        )

        logger.info(
            f"Built features for {len(snapshot)} customers as of {as_of_ts.date()} "
            f"({int((snapshot['total_orders'] == 0).sum())} without orders, "
            f"{int(snapshot['churn_label'].sum())} labelled churned)"
        )
        return snapshot

    def publish(self, session: Session, snapshot: pd.DataFrame, as_of: Optional[date] = None) -> int:
        """
        Replace the stored snapshot with a new generation in one transaction.

        Args:
            session: Database session
            snapshot: Output of build()
            as_of: Evaluation date the snapshot was built for

        Returns:
            The new generation number
        """
        try:
            generation = FeatureGeneration(as_of=resolve_as_of(as_of), customer_count=len(snapshot))
            session.add(generation)
            session.flush()
            number = generation.generation

            session.execute(delete(CustomerFeature))
            records = self._to_records(snapshot, number)
            if records:
                session.execute(insert(CustomerFeature), records)

            session.commit()
        except Exception:
            session.rollback()
            logger.error("Feature publish failed; previous snapshot retained")
            raise

        logger.info(f"Published feature generation {number} ({len(snapshot)} rows)")
        return number

    def rebuild(self, session: Session, as_of: Optional[date] = None) -> FeatureBuild:
        """
        Load the store, build the snapshot and publish it.

        Args:
            session: Database session
            as_of: Evaluation date; today when omitted

        Returns:
            FeatureBuild with the published generation and snapshot
        """
        as_of = resolve_as_of(as_of)
        try:
            tables = self.loader.load_tables(session.connection())
            snapshot = self.build(tables, as_of)
        except Exception:
            session.rollback()
            raise

        generation = self.publish(session, snapshot, as_of)
        return FeatureBuild(
            generation=generation,
            as_of=as_of,
            snapshot=snapshot.assign(generation=generation),
        )

    def load_snapshot(self, session: Session) -> pd.DataFrame:
        """Read the published snapshot."""
        return self.loader.load_features(session.connection())

    @staticmethod
    def _to_records(snapshot: pd.DataFrame, generation: int) -> List[Dict]:
        return [
            {
                "customer_id": int(row.customer_id),
                "age": None if pd.isna(row.age) else int(row.age),
                "gender": row.gender,
                "city": row.city,
                "total_orders": int(row.total_orders),
                "total_spent": float(row.total_spent),
                "avg_order_value": float(row.avg_order_value),
                "last_order_date": row.last_order_date.date(),
                "days_since_last_order": int(row.days_since_last_order),
                "churn_label": bool(row.churn_label),
                "generation": generation,
            }
            for row in snapshot.itertuples(index=False)
        ]
