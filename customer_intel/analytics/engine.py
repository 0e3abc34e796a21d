"""
Analytics Engine
================

Read-only revenue, segmentation and churn-risk reporting over a consistent
snapshot of the store.

Every query reads an AnalyticsSnapshot loaded in a single read transaction,
so transaction tables, features and predictions are always seen together.
Queries over predictions refuse to mix scores from an older feature build.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

import pandas as pd
from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from customer_intel.config import get_config
from customer_intel.data.data_loader import DataLoader, TransactionTables
from customer_intel.data.store import FeatureGeneration, get_engine
from customer_intel.exceptions import InvalidParameterError, StaleSnapshotError
from customer_intel.features.feature_builder import aggregate_orders
from customer_intel.utils.helpers import (
    calculate_percentage_change,
    is_missing,
    resolve_as_of,
    safe_divide,
)
from .window import dense_rank, lag, ntile, ordered, percent_rank

QUERIES = (
    "top_customers",
    "revenue_by_city",
    "inactive_customers",
    "order_count_segments",
    "monthly_revenue_trend",
    "top_products",
    "revenue_by_category",
    "customer_lifetime_value",
    "revenue_ranking",
    "revenue_by_payment_method",
    "cohort_retention",
    "revenue_by_demographic",
    "prediction_summary",
    "high_risk_customers",
    "churn_risk_by_city",
    "model_validation",
    "revenue_at_risk",
    "retention_priority_list",
)


def _round(value, digits: int = 2) -> Optional[float]:
    return None if is_missing(value) else round(float(value), digits)


def _percent(numerator, denominator, digits: Optional[int] = 2) -> Optional[float]:
    ratio = safe_divide(numerator, denominator)
    if ratio is None:
        return None
    return ratio * 100 if digits is None else round(ratio * 100, digits)


def _nullable(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    """Report missing values in the given columns as None rather than NaN."""
    df = df.copy()
    for col in columns:
        df[col] = df[col].astype(object).where(df[col].notna(), None)
    return df


def _check_limit(name: str, value, allow_none: bool = False):
    if value is None and allow_none:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidParameterError(name, value, "must be a positive integer")


@dataclass
class AnalyticsSnapshot:
    """Everything the queries read, loaded in one transaction."""

    tables: TransactionTables
    features: pd.DataFrame
    predictions: pd.DataFrame
    feature_generation: Optional[int]
    as_of: date

    @property
    def prediction_generations(self) -> List[int]:
        if self.predictions.empty:
            return []
        return sorted(int(g) for g in self.predictions["feature_generation"].unique())

    @property
    def feature_row_generations(self) -> List[int]:
        if self.features.empty:
            return []
        return sorted(int(g) for g in self.features["generation"].unique())

    @property
    def is_stale(self) -> bool:
        expected = [self.feature_generation]
        return any(
            generations and generations != expected
            for generations in (self.feature_row_generations, self.prediction_generations)
        )

    def check_predictions(self):
        """
        Raises:
            StaleSnapshotError: feature rows or predictions belong to another
                feature build than the published one
        """
        if self.is_stale:
            raise StaleSnapshotError(
                self.feature_generation,
                self.prediction_generations,
                feature_row_generations=self.feature_row_generations,
            )


class AnalyticsEngine:
    """Reporting queries over the transaction store, features and predictions."""

    def __init__(
        self,
        engine: Optional[Engine] = None,
        config: Optional[dict] = None,
        loader: Optional[DataLoader] = None
    ):
        """
        Initialize AnalyticsEngine.

        Args:
            engine: SQLAlchemy engine; the configured database when omitted
            config: Configuration dictionary
            loader: DataLoader used to read tables
        """
        self.engine = engine or get_engine()
        self.config = config or get_config()
        self.loader = loader or DataLoader(self.config)
        self.analytics_config = self.config.get("analytics", {})
        self.isolation_level = self.config.get("database", {}).get("read_isolation_level")

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def load_snapshot(self, as_of: Optional[date] = None) -> AnalyticsSnapshot:
        """
        Read all tables in a single transaction.

        Args:
            as_of: Date that recency is measured against; today when omitted

        Returns:
            AnalyticsSnapshot
        """
        with self.engine.connect() as conn:
            if self.isolation_level:
                conn = conn.execution_options(isolation_level=self.isolation_level)
            with conn.begin():
                tables = self.loader.load_tables(conn)
                features = self.loader.load_features(conn)
                predictions = self.loader.load_predictions(conn)
                generation = conn.execute(select(func.max(FeatureGeneration.generation))).scalar()

        if not features.empty:
            features["churn_label"] = features["churn_label"].astype(bool)
        if not predictions.empty:
            predictions["churn_prediction"] = predictions["churn_prediction"].astype(bool)
            predictions["churn_probability"] = predictions["churn_probability"].astype(float)

        snapshot = AnalyticsSnapshot(
            tables=tables,
            features=features,
            predictions=predictions,
            feature_generation=generation,
            as_of=resolve_as_of(as_of),
        )
        logger.debug(
            f"Analytics snapshot: feature generation {generation}, "
            f"{len(features)} features, {len(predictions)} predictions"
        )
        return snapshot

    def _snapshot(self, snapshot: Optional[AnalyticsSnapshot]) -> AnalyticsSnapshot:
        return snapshot if snapshot is not None else self.load_snapshot()

    def run(self, query: str, snapshot: Optional[AnalyticsSnapshot] = None, **params):
        """Run a query by name."""
        if query not in QUERIES:
            raise InvalidParameterError("query", query, f"available: {list(QUERIES)}")
        return getattr(self, query)(snapshot=snapshot, **params)

    # ------------------------------------------------------------------
    # Shared frames
    # ------------------------------------------------------------------

    @staticmethod
    def _customers(snap: AnalyticsSnapshot) -> pd.DataFrame:
        customers = snap.tables.customers.copy()
        customers["customer_id"] = customers["customer_id"].astype("int64")
        return customers

    @staticmethod
    def _orders(snap: AnalyticsSnapshot) -> pd.DataFrame:
        orders = snap.tables.orders.copy()
        orders["order_id"] = orders["order_id"].astype("int64")
        orders["customer_id"] = orders["customer_id"].astype("int64")
        orders["order_value"] = orders["order_value"].astype(float)
        return orders

    def _item_revenue(self, snap: AnalyticsSnapshot) -> pd.DataFrame:
        """Order items with product attributes and quantity x price revenue."""
        items = snap.tables.order_items.copy()
        products = snap.tables.products.copy()
        items["quantity"] = items["quantity"].astype("int64")
        items["product_id"] = items["product_id"].astype("int64")
        items["order_id"] = items["order_id"].astype("int64")
        products["product_id"] = products["product_id"].astype("int64")
        products["price"] = products["price"].astype(float)

        df = items.merge(products, on="product_id", how="inner")
        df = df.merge(self._orders(snap)[["order_id", "customer_id"]], on="order_id", how="inner")
        df["revenue"] = df["quantity"] * df["price"]
        return df

    def _customer_totals(self, snap: AnalyticsSnapshot) -> pd.DataFrame:
        """Customers that ordered, with their order aggregates."""
        return self._customers(snap).merge(aggregate_orders(self._orders(snap)), on="customer_id", how="inner")

    def _scored_customers(self, snap: AnalyticsSnapshot) -> pd.DataFrame:
        """Customers joined to their feature snapshot and live prediction."""
        snap.check_predictions()
        features = snap.features[[
            "customer_id", "total_orders", "total_spent", "avg_order_value",
            "days_since_last_order", "churn_label",
        ]].copy()
        features["customer_id"] = features["customer_id"].astype("int64")
        features["total_spent"] = features["total_spent"].astype(float)
        features["churn_label"] = features["churn_label"].astype(bool)
        predictions = snap.predictions[[
            "customer_id", "churn_prediction", "churn_probability", "prediction_date",
        ]].copy()
        predictions["customer_id"] = predictions["customer_id"].astype("int64")
        predictions["churn_prediction"] = predictions["churn_prediction"].astype(bool)
        predictions["churn_probability"] = predictions["churn_probability"].astype(float)

        customers = self._customers(snap)[["customer_id", "name", "city", "gender", "age"]]
        return customers.merge(features, on="customer_id").merge(predictions, on="customer_id")

    # ------------------------------------------------------------------
    # Revenue and segmentation
    # ------------------------------------------------------------------

    def top_customers(
        self,
        fraction: Optional[float] = None,
        snapshot: Optional[AnalyticsSnapshot] = None
    ) -> pd.DataFrame:
        """
        Highest-spending customers by percent rank.

        Args:
            fraction: Keep customers whose percent rank is at most this value
            snapshot: Pinned snapshot; loaded when omitted

        Returns:
            DataFrame ordered by total_spent descending
        """
        if fraction is None:
            fraction = self.analytics_config.get("top_fraction", 0.10)
        if isinstance(fraction, bool) or not isinstance(fraction, (int, float)) or not 0 <= fraction <= 1:
            raise InvalidParameterError("fraction", fraction, "must be within [0, 1]")

        snap = self._snapshot(snapshot)
        df = self._customer_totals(snap)
        df["pct_rank"] = percent_rank(df["total_spent"])
        df = ordered(df[df["pct_rank"] <= fraction], "total_spent")

        df["avg_order_value"] = (df["total_spent"] / df["total_orders"]).round(2)
        df["total_spent"] = df["total_spent"].round(2)
        return df[["customer_id", "name", "total_spent", "total_orders", "avg_order_value", "pct_rank"]]

    def revenue_by_city(self, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """
        Revenue rollup per city.

        Customers without orders count towards total_customers.
        """
        snap = self._snapshot(snapshot)
        merged = self._customers(snap)[["customer_id", "city"]].merge(
            self._orders(snap)[["order_id", "customer_id", "order_value"]],
            on="customer_id",
            how="left",
        )

        df = merged.groupby("city").agg(
            total_customers=("customer_id", "nunique"),
            total_orders=("order_id", "count"),
            total_revenue=("order_value", "sum"),
            avg_order_value=("order_value", "mean"),
        ).reset_index()

        df["revenue_per_customer"] = [
            _round(safe_divide(r, c)) for r, c in zip(df["total_revenue"], df["total_customers"])
        ]
        df["orders_per_customer"] = [
            _round(safe_divide(o, c)) for o, c in zip(df["total_orders"], df["total_customers"])
        ]
        df["total_revenue"] = df["total_revenue"].astype(float).round(2)
        df["avg_order_value"] = df["avg_order_value"].astype(float).round(2)

        df = ordered(df, "total_revenue", tiebreak="city")
        return _nullable(df, ["avg_order_value", "revenue_per_customer", "orders_per_customer"])

    def inactive_customers(
        self,
        threshold_days: Optional[int] = None,
        snapshot: Optional[AnalyticsSnapshot] = None
    ) -> pd.DataFrame:
        """
        Customers with no order for more than threshold_days.

        Customers who never ordered are measured from their signup date.

        Args:
            threshold_days: Inactivity threshold in days
            snapshot: Pinned snapshot; loaded when omitted

        Returns:
            DataFrame ordered by days_inactive descending, then customer_id
        """
        if threshold_days is None:
            threshold_days = self.analytics_config.get("inactivity_days", 90)
        if isinstance(threshold_days, bool) or not isinstance(threshold_days, int) or threshold_days < 0:
            raise InvalidParameterError("threshold_days", threshold_days, "must be a non-negative integer")

        snap = self._snapshot(snapshot)
        df = self._customers(snap).merge(aggregate_orders(self._orders(snap)), on="customer_id", how="left")

        df["last_order_date"] = pd.to_datetime(df["last_order_date"]).fillna(df["signup_date"])
        df["days_inactive"] = (pd.Timestamp(snap.as_of) - df["last_order_date"]).dt.days.astype("int64")
        df["total_orders"] = df["total_orders"].fillna(0).astype("int64")
        df["lifetime_value"] = df["total_spent"].fillna(0.0).astype(float).round(2)

        df = ordered(df[df["days_inactive"] > threshold_days], "days_inactive")
        logger.debug(f"{len(df)} customers inactive for more than {threshold_days} days")
        return df[[
            "customer_id", "name", "city", "gender", "age", "last_order_date",
            "days_inactive", "total_orders", "lifetime_value",
        ]]

    def order_count_segments(self, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """
        Customers with orders bucketed by order count.

        Every configured segment is reported, empty or not. Percentages are
        left unrounded so they sum to 100.
        """
        snap = self._snapshot(snapshot)
        counts = self._orders(snap).groupby("customer_id")["order_id"].count()
        total = len(counts)

        rows = []
        for segment in self.analytics_config.get("order_segments", []):
            mask = counts >= segment["min"]
            if segment.get("max") is not None:
                mask &= counts <= segment["max"]
            members = counts[mask]
            rows.append({
                "customer_segment": segment["label"],
                "customers": int(len(members)),
                "percentage": _percent(len(members), total, digits=None),
                "avg_orders": _round(members.mean()) if len(members) else None,
            })

        df = pd.DataFrame(rows, columns=["customer_segment", "customers", "percentage", "avg_orders"])
        return _nullable(df, ["percentage", "avg_orders"])

    def monthly_revenue_trend(self, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """Revenue per calendar month with growth over the preceding month row."""
        snap = self._snapshot(snapshot)
        orders = self._orders(snap)
        if orders.empty:
            return pd.DataFrame(columns=[
                "month", "month_label", "monthly_revenue", "total_orders", "avg_order_value", "mom_growth_pct",
            ])

        orders["month"] = orders["order_date"].dt.to_period("M")
        df = orders.groupby("month").agg(
            monthly_revenue=("order_value", "sum"),
            total_orders=("order_id", "count"),
        ).reset_index().sort_values("month", kind="mergesort")

        df["monthly_revenue"] = df["monthly_revenue"].round(2)
        df["avg_order_value"] = (df["monthly_revenue"] / df["total_orders"]).round(2)
        previous = lag(df["monthly_revenue"])
        df["mom_growth_pct"] = [
            _round(calculate_percentage_change(prev, cur))
            for prev, cur in zip(previous, df["monthly_revenue"])
        ]
        df["month_label"] = df["month"].dt.strftime("%b %Y")
        df["month"] = df["month"].astype(str)

        df = df.reset_index(drop=True)
        return _nullable(df[[
            "month", "month_label", "monthly_revenue", "total_orders", "avg_order_value", "mom_growth_pct",
        ]], ["mom_growth_pct"])

    def top_products(self, limit: int = 15, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """Products by revenue (quantity x catalog price)."""
        _check_limit("limit", limit)
        snap = self._snapshot(snapshot)
        items = self._item_revenue(snap)

        df = items.groupby(["product_id", "product_name", "category", "price"]).agg(
            total_units_sold=("quantity", "sum"),
            product_revenue=("revenue", "sum"),
            number_of_orders=("order_id", "nunique"),
            avg_quantity_per_order=("quantity", "mean"),
        ).reset_index().rename(columns={"price": "unit_price"})

        df["product_revenue"] = df["product_revenue"].round(2)
        df["avg_quantity_per_order"] = df["avg_quantity_per_order"].round(2)
        return ordered(df, "product_revenue", tiebreak="product_id").head(limit)

    def revenue_by_category(self, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """Category rollup of units, revenue, orders and buying customers."""
        snap = self._snapshot(snapshot)
        items = self._item_revenue(snap)

        df = items.groupby("category").agg(
            products_in_category=("product_id", "nunique"),
            total_units_sold=("quantity", "sum"),
            category_revenue=("revenue", "sum"),
            avg_product_price=("price", "mean"),
            number_of_orders=("order_id", "nunique"),
            total_customers=("customer_id", "nunique"),
        ).reset_index()

        df["avg_revenue_per_unit"] = [
            _round(safe_divide(r, u)) for r, u in zip(df["category_revenue"], df["total_units_sold"])
        ]
        df["revenue_per_customer"] = [
            _round(safe_divide(r, c)) for r, c in zip(df["category_revenue"], df["total_customers"])
        ]
        df["category_revenue"] = df["category_revenue"].round(2)
        df["avg_product_price"] = df["avg_product_price"].round(2)

        df = ordered(df, "category_revenue", tiebreak="category")
        return _nullable(df, ["avg_revenue_per_unit", "revenue_per_customer"])

    def customer_lifetime_value(
        self,
        limit: int = 20,
        snapshot: Optional[AnalyticsSnapshot] = None
    ) -> pd.DataFrame:
        """
        Top customers by lifetime spend with recency and monthly run-rate.

        estimated_monthly_value is spend per active day x 30, and None when the
        first and last order fall on the same day.
        """
        _check_limit("limit", limit)
        snap = self._snapshot(snapshot)
        df = self._customer_totals(snap)
        first_orders = self._orders(snap).groupby("customer_id")["order_date"].min().rename("first_order_date")
        df = df.merge(first_orders, left_on="customer_id", right_index=True, how="left")

        df["days_since_last_order"] = (pd.Timestamp(snap.as_of) - df["last_order_date"]).dt.days
        active_days = (df["last_order_date"] - df["first_order_date"]).dt.days
        df["estimated_monthly_value"] = [
            None if ratio is None else round(ratio * 30, 2)
            for ratio in (safe_divide(s, d) for s, d in zip(df["total_spent"], active_days))
        ]
        df["lifetime_value"] = df["total_spent"].round(2)
        df["avg_order_value"] = df["avg_order_value"].round(2)

        df = ordered(df, "total_spent").head(limit)
        return _nullable(df[[
            "customer_id", "name", "city", "gender", "age", "total_orders", "lifetime_value",
            "avg_order_value", "last_order_date", "days_since_last_order", "estimated_monthly_value",
        ]], ["estimated_monthly_value"])

    def revenue_ranking(
        self,
        limit: Optional[int] = None,
        snapshot: Optional[AnalyticsSnapshot] = None
    ) -> pd.DataFrame:
        """
        Dense revenue rank and decile group for every customer with orders.

        Rows are ordered by spend descending then customer_id; deciles are
        assigned in that order before any limit is applied.
        """
        _check_limit("limit", limit, allow_none=True)
        snap = self._snapshot(snapshot)
        df = ordered(self._customer_totals(snap), "total_spent")

        df["revenue_rank"] = dense_rank(df["total_spent"])
        df["decile_group"] = ntile(df, self.analytics_config.get("decile_buckets", 10))
        df["total_spent"] = df["total_spent"].round(2)

        df = df[["customer_id", "name", "city", "total_spent", "total_orders", "revenue_rank", "decile_group"]]
        return df if limit is None else df.head(limit)

    def revenue_by_payment_method(self, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """Order and revenue share per payment method."""
        snap = self._snapshot(snapshot)
        orders = self._orders(snap)
        total_orders = len(orders)
        total_revenue = orders["order_value"].sum()

        df = orders.groupby("payment_method").agg(
            total_orders=("order_id", "count"),
            total_revenue=("order_value", "sum"),
            unique_customers=("customer_id", "nunique"),
            avg_order_value=("order_value", "mean"),
        ).reset_index()

        df["revenue_per_customer"] = [
            _round(safe_divide(r, c)) for r, c in zip(df["total_revenue"], df["unique_customers"])
        ]
        df["pct_of_orders"] = [_percent(n, total_orders) for n in df["total_orders"]]
        df["pct_of_revenue"] = [_percent(r, total_revenue) for r in df["total_revenue"]]
        df["total_revenue"] = df["total_revenue"].round(2)
        df["avg_order_value"] = df["avg_order_value"].round(2)

        return ordered(df, "total_revenue", tiebreak="payment_method")

    def cohort_retention(self, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """
        Signup-month cohorts and the share of each that ever ordered.

        Newest cohort first.
        """
        snap = self._snapshot(snapshot)
        customers = self._customers(snap)
        if customers.empty:
            return pd.DataFrame(columns=[
                "cohort_month", "cohort", "cohort_size", "active_customers", "activation_rate_pct",
            ])

        customers["cohort_period"] = customers["signup_date"].dt.to_period("M")
        customers["active"] = customers["customer_id"].isin(self._orders(snap)["customer_id"])

        df = customers.groupby("cohort_period").agg(
            cohort_size=("customer_id", "nunique"),
            active_customers=("active", "sum"),
        ).reset_index().sort_values("cohort_period", ascending=False, kind="mergesort")

        df["active_customers"] = df["active_customers"].astype("int64")
        df["activation_rate_pct"] = [
            _percent(a, s) for a, s in zip(df["active_customers"], df["cohort_size"])
        ]
        df["cohort"] = df["cohort_period"].dt.strftime("%b %Y")
        df["cohort_month"] = df["cohort_period"].astype(str)

        return df[[
            "cohort_month", "cohort", "cohort_size", "active_customers", "activation_rate_pct",
        ]].reset_index(drop=True)

    def _age_group(self, age) -> Optional[str]:
        groups = self.analytics_config.get("age_groups", [])
        if not groups:
            return None
        if not is_missing(age):
            for group in groups:
                if age >= group["min"] and (group.get("max") is None or age <= group["max"]):
                    return group["label"]
        # Unmatched ages fall into the open-ended last group
        return groups[-1]["label"]

    def revenue_by_demographic(self, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """Revenue per gender x age group, counting customers without orders."""
        snap = self._snapshot(snapshot)
        customers = self._customers(snap)[["customer_id", "gender", "age"]].copy()
        customers["age_group"] = [self._age_group(age) for age in customers["age"]]

        merged = customers.merge(
            self._orders(snap)[["order_id", "customer_id", "order_value"]],
            on="customer_id",
            how="left",
        )
        df = merged.groupby(["gender", "age_group"], dropna=False).agg(
            customer_count=("customer_id", "nunique"),
            total_orders=("order_id", "count"),
            avg_order_value=("order_value", "mean"),
            total_revenue=("order_value", "sum"),
        ).reset_index()

        df["avg_orders_per_customer"] = [
            _round(safe_divide(o, c)) for o, c in zip(df["total_orders"], df["customer_count"])
        ]
        df["avg_order_value"] = df["avg_order_value"].astype(float).round(2)
        df["total_revenue"] = df["total_revenue"].astype(float).round(2)

        labels = [g["label"] for g in self.analytics_config.get("age_groups", [])]
        df["_group_order"] = df["age_group"].map({label: i for i, label in enumerate(labels)})
        df = df.sort_values(["gender", "_group_order"], kind="mergesort").drop(columns="_group_order")
        return _nullable(df.reset_index(drop=True), ["avg_order_value", "avg_orders_per_customer"])

    # ------------------------------------------------------------------
    # Churn predictions
    # ------------------------------------------------------------------

    def prediction_summary(self, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """Customer count and share per predicted class."""
        snap = self._snapshot(snapshot)
        snap.check_predictions()
        predictions = snap.predictions
        total = len(predictions)

        rows = []
        for predicted, label in ((False, "Active/Retained"), (True, "Likely to Churn")):
            group = predictions[predictions["churn_prediction"] == predicted] if total else predictions
            rows.append({
                "churn_prediction": predicted,
                "prediction_label": label,
                "customer_count": int(len(group)),
                "percentage": _percent(len(group), total),
                "avg_probability": _round(group["churn_probability"].mean(), 4) if len(group) else None,
            })
        return _nullable(pd.DataFrame(rows), ["percentage", "avg_probability"])

    def _risk_level(self, probability: float) -> str:
        for level in self.analytics_config.get("risk_levels", []):
            if probability >= level["min_probability"]:
                return level["label"]
        return self.analytics_config.get("default_risk_level", "Medium Risk")

    def high_risk_customers(self, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """Predicted churners with their profile and a risk level."""
        snap = self._snapshot(snapshot)
        df = self._scored_customers(snap)
        df = df[df["churn_prediction"]].copy()

        df["risk_level"] = [self._risk_level(p) for p in df["churn_probability"]]
        df = ordered(df, ["churn_probability", "total_spent"])
        df["total_spent"] = df["total_spent"].round(2)
        df["avg_order_value"] = df["avg_order_value"].round(2)
        return df[[
            "customer_id", "name", "city", "gender", "age", "total_orders", "total_spent",
            "avg_order_value", "days_since_last_order", "churn_probability", "prediction_date", "risk_level",
        ]]

    def churn_risk_by_city(self, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """Predicted churn rate and average spend at risk per city."""
        snap = self._snapshot(snapshot)
        df = self._scored_customers(snap)
        df["spent_at_risk"] = df["total_spent"].where(df["churn_prediction"])

        df = df.groupby("city").agg(
            total_customers=("customer_id", "count"),
            churned_customers=("churn_prediction", "sum"),
            avg_value_at_risk=("spent_at_risk", "mean"),
        ).reset_index()

        df["churned_customers"] = df["churned_customers"].astype("int64")
        df["churn_rate_pct"] = [
            _percent(n, t) for n, t in zip(df["churned_customers"], df["total_customers"])
        ]
        df["avg_value_at_risk"] = df["avg_value_at_risk"].astype(float).round(2)

        df = ordered(df, "churn_rate_pct", tiebreak="city")
        return _nullable(df[[
            "city", "total_customers", "churned_customers", "churn_rate_pct", "avg_value_at_risk",
        ]], ["avg_value_at_risk"])

    def model_validation(self, snapshot: Optional[AnalyticsSnapshot] = None) -> pd.DataFrame:
        """
        Confusion matrix of churn_label against churn_prediction.

        All four cells are always present; percentages are of the scored total.
        """
        snap = self._snapshot(snapshot)
        df = self._scored_customers(snap)
        total = len(df)

        rows = []
        for actual in (False, True):
            for predicted in (False, True):
                count = int(((df["churn_label"] == actual) & (df["churn_prediction"] == predicted)).sum())
                rows.append({
                    "actual_churn": actual,
                    "predicted_churn": predicted,
                    "customer_count": count,
                    "percentage": _percent(count, total),
                })
        return _nullable(pd.DataFrame(rows), ["percentage"])

    def revenue_at_risk(self, snapshot: Optional[AnalyticsSnapshot] = None) -> Dict[str, Optional[float]]:
        """
        Spend of predicted churners against total spend.

        Total revenue covers every feature snapshot, scored or not.

        Returns:
            Dictionary with total_revenue, revenue_at_risk, customers_at_risk
            and percentage_at_risk (None when total revenue is zero)
        """
        snap = self._snapshot(snapshot)
        scored = self._scored_customers(snap)
        churners = scored[scored["churn_prediction"]]

        total_revenue = float(snap.features["total_spent"].astype(float).sum()) if not snap.features.empty else 0.0
        at_risk = float(churners["total_spent"].sum())

        return {
            "total_revenue": round(total_revenue, 2),
            "revenue_at_risk": round(at_risk, 2),
            "customers_at_risk": int(len(churners)),
            "percentage_at_risk": _percent(at_risk, total_revenue),
        }

    def _priority(self, total_spent: float, probability: float) -> str:
        for tier in self.analytics_config.get("priority_tiers", []):
            if total_spent > tier["min_spent"] and probability > tier["min_probability"]:
                return tier["label"]
        return self.analytics_config.get("default_priority", "Priority 4 - Monitor")

    def retention_priority_list(
        self,
        limit: int = 50,
        snapshot: Optional[AnalyticsSnapshot] = None
    ) -> pd.DataFrame:
        """
        Predicted churners tiered for retention campaigns.

        The first tier whose spend and probability floors are both exceeded
        wins. Ordered by spend, then probability, both descending.
        """
        _check_limit("limit", limit)
        snap = self._snapshot(snapshot)
        df = self._scored_customers(snap)
        df = df[df["churn_prediction"]].copy()

        df["campaign_priority"] = [
            self._priority(s, p) for s, p in zip(df["total_spent"], df["churn_probability"])
        ]
        df = ordered(df, ["total_spent", "churn_probability"]).head(limit)
        df["lifetime_value"] = df["total_spent"].round(2)
        df["churn_risk_pct"] = (df["churn_probability"] * 100).round(2)
        return df[[
            "customer_id", "name", "city", "gender", "lifetime_value", "total_orders",
            "days_since_last_order", "churn_risk_pct", "campaign_priority",
        ]]
