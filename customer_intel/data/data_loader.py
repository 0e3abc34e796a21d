"""
Data Loader Module
==================

Reads the transaction store into DataFrames and validates referential integrity.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd
from loguru import logger
from sqlalchemy import select
from sqlalchemy.engine import Connection

from customer_intel.config import get_config
from customer_intel.exceptions import ReferentialIntegrityError
from .store import (
    ChurnPrediction,
    Customer,
    CustomerActivity,
    CustomerFeature,
    Order,
    OrderItem,
    Product,
)

DATE_COLUMNS = {
    "customers": ["signup_date"],
    "orders": ["order_date"],
    "activity": ["last_login"],
    "features": ["last_order_date"],
    "predictions": ["prediction_date"],
}


@dataclass
class TransactionTables:
    """The transactional tables of the store, one DataFrame each."""

    customers: pd.DataFrame
    products: pd.DataFrame
    orders: pd.DataFrame
    order_items: pd.DataFrame
    activity: pd.DataFrame = field(default_factory=pd.DataFrame)


def _read_table(conn: Connection, model, name: str) -> pd.DataFrame:
    table = model.__table__
    df = pd.read_sql(select(table), conn)
    # Empty results lose column names on some drivers
    if df.empty:
        df = pd.DataFrame(columns=[c.name for c in table.columns])
    for col in DATE_COLUMNS.get(name, []):
        df[col] = pd.to_datetime(df[col])
    return df


class DataLoader:
    """Load and validate the transactional data behind the feature pipeline."""

    def __init__(self, config: Optional[dict] = None):
        """
        Initialize DataLoader.

        Args:
            config: Configuration dictionary. If None, loads from config.yaml
        """
        self.config = config or get_config()

    def load_tables(self, conn: Connection) -> TransactionTables:
        """
        Read every transactional table through one connection.

        Args:
            conn: Open connection; callers pin a transaction around it

        Returns:
            TransactionTables with one DataFrame per table
        """
        tables = TransactionTables(
            customers=_read_table(conn, Customer, "customers"),
            products=_read_table(conn, Product, "products"),
            orders=_read_table(conn, Order, "orders"),
            order_items=_read_table(conn, OrderItem, "order_items"),
            activity=_read_table(conn, CustomerActivity, "activity"),
        )
        logger.info(
            f"Loaded {len(tables.customers)} customers, {len(tables.orders)} orders, "
            f"{len(tables.order_items)} order items, {len(tables.products)} products"
        )
        return tables

    def load_features(self, conn: Connection) -> pd.DataFrame:
        """Read the published feature snapshot, ordered by customer_id."""
        df = _read_table(conn, CustomerFeature, "features")
        return df.sort_values("customer_id", kind="mergesort").reset_index(drop=True)

    def load_predictions(self, conn: Connection) -> pd.DataFrame:
        """Read the live churn predictions."""
        df = _read_table(conn, ChurnPrediction, "predictions")
        return df.sort_values("customer_id", kind="mergesort").reset_index(drop=True)

    def find_integrity_violations(self, tables: TransactionTables) -> Dict[str, List]:
        """
        Find rows that reference a missing parent.

        Args:
            tables: Loaded transactional tables

        Returns:
            Mapping of check name to offending row ids (empty lists when clean)
        """
        customer_ids = set(tables.customers["customer_id"])
        order_ids = set(tables.orders["order_id"])
        product_ids = set(tables.products["product_id"])

        orders = tables.orders
        items = tables.order_items
        activity = tables.activity

        return {
            "orders_without_customer": sorted(
                orders.loc[~orders["customer_id"].isin(customer_ids), "order_id"].tolist()
            ),
            "items_without_order": sorted(
                items.loc[~items["order_id"].isin(order_ids), "order_item_id"].tolist()
            ),
            "items_without_product": sorted(
                items.loc[~items["product_id"].isin(product_ids), "order_item_id"].tolist()
            ),
            "activity_without_customer": sorted(
                activity.loc[~activity["customer_id"].isin(customer_ids), "activity_id"].tolist()
            ) if not activity.empty else [],
        }

    def check_order_integrity(self, tables: TransactionTables):
        """
        Reject orders that reference a customer missing from the store.

        Raises:
            ReferentialIntegrityError: naming every offending order
        """
        violations = self.find_integrity_violations(tables)["orders_without_customer"]
        if violations:
            logger.error(f"{len(violations)} orders reference missing customers")
            raise ReferentialIntegrityError("order", violations, reference="customer")

    def validate_data(self, tables: TransactionTables) -> dict:
        """
        Validate data quality.

        Args:
            tables: Loaded transactional tables

        Returns:
            Dictionary with validation results
        """
        has_orders = tables.customers["customer_id"].isin(tables.orders["customer_id"])
        orders_with_items = tables.orders["order_id"].isin(tables.order_items["order_id"])
        violations = self.find_integrity_violations(tables)

        validation_results = {
            "record_counts": {
                "customers": len(tables.customers),
                "products": len(tables.products),
                "orders": len(tables.orders),
                "order_items": len(tables.order_items),
                "customer_activity": len(tables.activity),
            },
            "customers_without_orders": int((~has_orders).sum()),
            "orders_without_items": int((~orders_with_items).sum()),
            "integrity_violations": {k: len(v) for k, v in violations.items()},
            "is_valid": not any(violations.values()),
        }

        return validation_results
