"""
Shared fixtures: a temporary SQLite store, a fixed evaluation date and a small
deterministic dataset.

Reference dataset (evaluated as of 2024-06-30):

    id  name   gender age city    signup       orders (date, method, value)
    1   Asha   Female 28  Mumbai  2023-01-15   05-10 UPI 60000, 06-15 Card 40000
    2   Ravi   Male   35  Delhi   2023-01-20   01-05 NetBanking 1000
    3   Meera  Female 42  Mumbai  2023-02-10   02-01 Card 30000, 04-20 UPI 25000
    4   Kabir  Male   23  Pune    2023-03-05   2023-12-01 COD 800, 01-15 UPI 700, 02-20 COD 500
    5   Zoya   Female 58  Delhi   2024-06-20   (none)
    6   Dev    Male   31  Pune    2023-12-13   03-02 Card 5000

Customer 6 signed up 200 days before the evaluation date and last ordered
120 days before it; customer 5 signed up 10 days before it and never ordered.
"""
from datetime import date

import numpy as np
import pandas as pd
import pytest

from customer_intel.config import load_config
from customer_intel.data.store import (
    Customer,
    Order,
    OrderItem,
    Product,
    create_db_engine,
    create_session_factory,
    create_tables,
)
from customer_intel.features import FeatureBuilder
from customer_intel.models.prediction_store import PredictionStore

AS_OF = date(2024, 6, 30)

PRODUCTS = [
    (1, "Laptop", "Electronics", 50000.0),
    (2, "Phone", "Electronics", 20000.0),
    (3, "T-Shirt", "Fashion", 500.0),
    (4, "Rice", "Grocery", 100.0),
]

CUSTOMERS = [
    (1, "Asha", "Female", 28, "Mumbai", date(2023, 1, 15)),
    (2, "Ravi", "Male", 35, "Delhi", date(2023, 1, 20)),
    (3, "Meera", "Female", 42, "Mumbai", date(2023, 2, 10)),
    (4, "Kabir", "Male", 23, "Pune", date(2023, 3, 5)),
    (5, "Zoya", "Female", 58, "Delhi", date(2024, 6, 20)),
    (6, "Dev", "Male", 31, "Pune", date(2023, 12, 13)),
]

ORDERS = [
    (1, 1, date(2024, 5, 10), "UPI", 60000.0),
    (2, 1, date(2024, 6, 15), "Card", 40000.0),
    (3, 2, date(2024, 1, 5), "NetBanking", 1000.0),
    (4, 3, date(2024, 2, 1), "Card", 30000.0),
    (5, 3, date(2024, 4, 20), "UPI", 25000.0),
    (6, 4, date(2023, 12, 1), "COD", 800.0),
    (7, 4, date(2024, 1, 15), "UPI", 700.0),
    (8, 4, date(2024, 2, 20), "COD", 500.0),
    (9, 6, date(2024, 3, 2), "Card", 5000.0),
]

ORDER_ITEMS = [
    (1, 1, 1, 1),
    (2, 2, 2, 2),
    (3, 3, 3, 2),
    (4, 4, 2, 1),
    (5, 4, 3, 4),
    (6, 5, 2, 1),
    (7, 6, 4, 3),
    (8, 7, 3, 1),
    (9, 8, 4, 5),
    (10, 9, 3, 10),
]

# customer_id -> (churn_prediction, churn_probability)
PREDICTIONS = {
    1: (False, 0.10),
    2: (True, 0.85),
    3: (True, 0.75),
    4: (True, 0.65),
    5: (False, 0.20),
    6: (True, 0.55),
}


def seed_store(
    db,
    customers=CUSTOMERS,
    orders=ORDERS,
    products=PRODUCTS,
    order_items=ORDER_ITEMS
):
    """Insert rows given as tuples in the column order of the tables above."""
    db.add_all(
        Product(product_id=p, product_name=n, category=c, price=price)
        for p, n, c, price in products
    )
    db.add_all(
        Customer(customer_id=c, name=n, gender=g, age=a, city=city, signup_date=s)
        for c, n, g, a, city, s in customers
    )
    db.flush()
    db.add_all(
        Order(order_id=o, customer_id=c, order_date=d, payment_method=m, order_value=v)
        for o, c, d, m, v in orders
    )
    db.flush()
    db.add_all(
        OrderItem(order_item_id=i, order_id=o, product_id=p, quantity=q)
        for i, o, p, q in order_items
    )
    db.commit()


def predictions_frame(predictions=PREDICTIONS) -> pd.DataFrame:
    return pd.DataFrame({
        "customer_id": list(predictions.keys()),
        "churn_prediction": [label for label, _ in predictions.values()],
        "churn_probability": [prob for _, prob in predictions.values()],
    })


def make_snapshot(n: int = 60, seed: int = 7) -> pd.DataFrame:
    """Synthetic feature snapshot with a learnable recency signal."""
    rng = np.random.RandomState(seed)
    days = rng.randint(0, 200, n)
    orders = rng.randint(1, 12, n)
    spent = np.round(orders * rng.uniform(200, 5000, n), 2)
    return pd.DataFrame({
        "customer_id": np.arange(1, n + 1),
        "age": rng.randint(18, 66, n),
        "gender": rng.choice(["Male", "Female", "Other"], n),
        "city": rng.choice(["Mumbai", "Delhi", "Pune"], n),
        "total_orders": orders,
        "total_spent": spent,
        "avg_order_value": np.round(spent / orders, 2),
        "last_order_date": pd.Timestamp(AS_OF) - pd.to_timedelta(days, unit="D"),
        "days_since_last_order": days,
        "churn_label": days > 90,
    })


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'customer_intel_test.db'}"


@pytest.fixture
def engine(db_url):
    engine = create_db_engine(db_url)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = create_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded_db(db):
    seed_store(db)
    return db


@pytest.fixture
def published(seeded_db, config):
    """Reference store with its feature snapshot published."""
    return FeatureBuilder(config).rebuild(seeded_db, AS_OF)


@pytest.fixture
def scored_db(seeded_db, published):
    """Reference store with features and the reference predictions stored."""
    PredictionStore().upsert_predictions(
        seeded_db, predictions_frame(), published.generation, model_name="fixture"
    )
    return seeded_db


@pytest.fixture
def synthetic_snapshot():
    return make_snapshot()

