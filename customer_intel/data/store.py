"""
Transaction Store
=================

SQLAlchemy models for the transactional tables, the derived feature table,
churn predictions and model metadata, plus engine/session helpers.
"""

from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from loguru import logger

from customer_intel.config import DATA_DIR, get_config

GENDERS = ("Male", "Female", "Other")
PAYMENT_METHODS = ("UPI", "Card", "NetBanking", "COD")

# Base class for models
Base = declarative_base()


def _in_list(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Customer(Base):
    """A physical customer; customer_id is the join key for every other table."""

    __tablename__ = "customers"
    __table_args__ = (
        CheckConstraint(_in_list("gender", GENDERS), name="ck_customers_gender"),
        CheckConstraint("age BETWEEN 18 AND 65", name="ck_customers_age"),
    )

    customer_id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    gender = Column(String(10))
    age = Column(Integer)
    city = Column(String(50), nullable=False)
    signup_date = Column(Date, nullable=False)

    orders = relationship("Order", back_populates="customer", cascade="all, delete-orphan", passive_deletes=True)
    activity = relationship("CustomerActivity", back_populates="customer", uselist=False,
                            cascade="all, delete-orphan", passive_deletes=True)
    prediction = relationship("ChurnPrediction", uselist=False, cascade="all, delete-orphan",
                              passive_deletes=True)


class Product(Base):
    """Static catalog entry; price is evaluated at query time."""

    __tablename__ = "products"
    __table_args__ = (CheckConstraint("price > 0", name="ck_products_price"),)

    product_id = Column(Integer, primary_key=True)
    product_name = Column(String(100), nullable=False)
    category = Column(String(50), nullable=False, index=True)
    price = Column(Numeric(10, 2, asdecimal=False))


class Order(Base):
    """An order; order_value is recorded independently of its items."""

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(_in_list("payment_method", PAYMENT_METHODS), name="ck_orders_payment_method"),
        CheckConstraint("order_value > 0", name="ck_orders_value"),
    )

    order_id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.customer_id", ondelete="CASCADE"),
                         nullable=False, index=True)
    order_date = Column(Date, nullable=False, index=True)
    payment_method = Column(String(20))
    order_value = Column(Numeric(10, 2, asdecimal=False))

    customer = relationship("Customer", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", passive_deletes=True)


class OrderItem(Base):
    """A line of an order."""

    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_items_quantity"),)

    order_item_id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.product_id"), nullable=False, index=True)
    quantity = Column(Integer)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


class CustomerActivity(Base):
    """Login recency and support load, one row per customer."""

    __tablename__ = "customer_activity"
    __table_args__ = (CheckConstraint("support_tickets >= 0", name="ck_activity_tickets"),)

    activity_id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.customer_id", ondelete="CASCADE"),
                         nullable=False, unique=True)
    last_login = Column(Date, nullable=False)
    support_tickets = Column(Integer)

    customer = relationship("Customer", back_populates="activity")


class FeatureGeneration(Base):
    """One row per published feature build."""

    __tablename__ = "feature_generations"

    generation = Column(Integer, primary_key=True, autoincrement=True)
    as_of = Column(Date, nullable=False)
    customer_count = Column(Integer, nullable=False)
    built_at = Column(DateTime, default=datetime.utcnow)


class CustomerFeature(Base):
    """Derived feature snapshot; the feature builder is the only writer."""

    __tablename__ = "customer_ml_features"

    customer_id = Column(Integer, primary_key=True)
    age = Column(Integer)
    gender = Column(String(10))
    city = Column(String(50))
    total_orders = Column(Integer, nullable=False)
    total_spent = Column(Float, nullable=False)
    avg_order_value = Column(Float, nullable=False)
    last_order_date = Column(Date, nullable=False)
    days_since_last_order = Column(Integer, nullable=False)
    churn_label = Column(Boolean, nullable=False)
    generation = Column(Integer, ForeignKey("feature_generations.generation"), nullable=False, index=True)


class ChurnPrediction(Base):
    """Live classifier output, one row per customer."""

    __tablename__ = "customer_churn_predictions"
    __table_args__ = (
        CheckConstraint("churn_probability >= 0 AND churn_probability <= 1", name="ck_predictions_probability"),
    )

    customer_id = Column(Integer, ForeignKey("customers.customer_id", ondelete="CASCADE"), primary_key=True)
    churn_prediction = Column(Boolean, nullable=False, index=True)
    churn_probability = Column(Numeric(5, 4, asdecimal=False), nullable=False)
    prediction_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    feature_generation = Column(Integer, nullable=False)
    model_name = Column(String(50))

    def to_dict(self) -> Dict:
        """Convert record to dictionary."""
        return {
            "customer_id": self.customer_id,
            "churn_prediction": bool(self.churn_prediction),
            "churn_probability": self.churn_probability,
            "prediction_date": self.prediction_date.isoformat() if self.prediction_date else None,
            "feature_generation": self.feature_generation,
            "model_name": self.model_name,
        }


class ModelMetadata(Base):
    """Descriptive record of a training run."""

    __tablename__ = "model_metadata"

    model_id = Column(Integer, primary_key=True, autoincrement=True)
    model_name = Column(String(50), nullable=False, index=True)
    accuracy = Column(Float)
    precision_score = Column(Float)
    recall_score = Column(Float)
    f1_score = Column(Float)
    roc_auc = Column(Float)
    training_samples = Column(Integer)
    test_samples = Column(Integer)
    decision_threshold = Column(Float)
    training_date = Column(DateTime, default=datetime.utcnow)
    notes = Column(Text)

    def to_dict(self) -> Dict:
        """Convert record to dictionary."""
        return {
            "model_id": self.model_id,
            "model_name": self.model_name,
            "accuracy": self.accuracy,
            "precision": self.precision_score,
            "recall": self.recall_score,
            "f1": self.f1_score,
            "roc_auc": self.roc_auc,
            "training_samples": self.training_samples,
            "test_samples": self.test_samples,
            "decision_threshold": self.decision_threshold,
            "training_date": self.training_date.isoformat() if self.training_date else None,
            "notes": self.notes,
        }


def default_database_url() -> str:
    """Database URL from config, falling back to a SQLite file under data/."""
    url = get_config().get("database", {}).get("url")
    if url:
        return url
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{DATA_DIR / 'customer_intel.db'}"


def create_db_engine(url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Create an engine for the store.

    SQLite connections get foreign keys switched on so the cascade rules
    declared on the tables are enforced. The pysqlite driver only opens a
    transaction before DML, so its own BEGIN handling is switched off and
    every SQLAlchemy transaction emits BEGIN itself; reads inside one
    transaction then hold their lock until it ends.
    """
    url = url or default_database_url()
    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {}
    )

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _configure_connection(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables(engine: Engine):
    """Create all database tables."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


_engine = None
_session_factory = None


def get_engine() -> Engine:
    """Process-wide engine built from configuration."""
    global _engine
    if _engine is None:
        db_config = get_config().get("database", {})
        _engine = create_db_engine(db_config.get("url"), echo=db_config.get("echo", False))
    return _engine


def get_db():
    """Get database session."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    db = _session_factory()
    try:
        yield db
    finally:
        db.close()
