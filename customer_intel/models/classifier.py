"""
Churn Classifier Module
=======================

Pluggable train/predict contract for churn scoring, with scikit-learn backed
strategies registered by name.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Tuple

import numpy as np
import pandas as pd
from loguru import logger
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.linear_model import LogisticRegression

from customer_intel.config import get_config
from customer_intel.data.preprocessor import DataPreprocessor
from customer_intel.exceptions import (
    CustomerNotFoundError,
    InvalidParameterError,
    ModelNotTrainedError,
    TrainingError,
)

PREDICTION_COLUMNS = ["customer_id", "churn_prediction", "churn_probability"]


class ChurnClassifier(ABC):
    """
    Scoring contract consumed by the pipeline.

    Implementations learn from labelled snapshots and return a churn
    probability per customer; the label is always probability >= threshold.
    """

    name = "classifier"
    target_column = "churn_label"

    def __init__(self, threshold: float = 0.5):
        if not 0.0 <= threshold <= 1.0:
            raise InvalidParameterError("threshold", threshold, "must be within [0, 1]")
        self.threshold = threshold
        self.is_trained = False

    @abstractmethod
    def fit(self, snapshot: pd.DataFrame, y: np.ndarray):
        """Fit on snapshot rows with the given binary targets."""

    @abstractmethod
    def predict_proba(self, snapshot: pd.DataFrame) -> np.ndarray:
        """Churn probability for each snapshot row."""

    def train(self, snapshot: pd.DataFrame, target_column: str = "churn_label") -> "ChurnClassifier":
        """
        Train on labelled feature snapshots.

        Args:
            snapshot: Feature snapshot including the target column
            target_column: Name of the boolean churn label

        Returns:
            self, trained
        """
        if snapshot.empty:
            raise TrainingError("Cannot train on an empty snapshot")
        self.target_column = target_column
        y = snapshot[target_column].astype(int).to_numpy()
        if len(np.unique(y)) < 2:
            raise TrainingError(
                f"Training data has a single class ({int(y[0])}); both churned and retained customers are required"
            )

        self.fit(snapshot.drop(columns=[target_column]), y)
        self.is_trained = True
        logger.info(f"Trained {self.name} on {len(snapshot)} snapshots (churn rate {y.mean():.2%})")
        return self

    def predict(self, snapshot: pd.DataFrame) -> pd.DataFrame:
        """
        Score snapshots.

        Args:
            snapshot: Feature snapshot rows (the label column, if present, is ignored)

        Returns:
            DataFrame with customer_id, churn_prediction and churn_probability
        """
        if not self.is_trained:
            raise ModelNotTrainedError(f"{self.name} has not been trained")

        if snapshot.empty:
            return pd.DataFrame(columns=PREDICTION_COLUMNS)

        # The label is a training target only
        snapshot = snapshot.drop(columns=[self.target_column], errors="ignore")
        probabilities = np.clip(np.asarray(self.predict_proba(snapshot), dtype=float), 0.0, 1.0)
        return pd.DataFrame({
            "customer_id": snapshot["customer_id"].astype("int64").to_numpy(),
            "churn_prediction": probabilities >= self.threshold,
            "churn_probability": probabilities,
        })

    def predict_one(self, snapshot_row) -> Tuple[bool, float]:
        """Score a single snapshot row (Series or dict)."""
        frame = pd.DataFrame([dict(snapshot_row)])
        result = self.predict(frame).iloc[0]
        return bool(result["churn_prediction"]), float(result["churn_probability"])


class SklearnChurnClassifier(ChurnClassifier):
    """Any scikit-learn estimator with predict_proba behind the snapshot preprocessor."""

    def __init__(
        self,
        estimator: Any,
        name: str = "sklearn",
        threshold: float = 0.5,
        config: Optional[dict] = None
    ):
        super().__init__(threshold=threshold)
        if not hasattr(estimator, "predict_proba"):
            raise InvalidParameterError("estimator", type(estimator).__name__, "must implement predict_proba")
        self.estimator = estimator
        self.name = name
        self.preprocessor = DataPreprocessor(config)

    def fit(self, snapshot: pd.DataFrame, y: np.ndarray):
        X = self.preprocessor.fit_transform(snapshot)
        self.estimator.fit(X, y)

    def predict_proba(self, snapshot: pd.DataFrame) -> np.ndarray:
        X = self.preprocessor.transform(snapshot)
        positive = list(self.estimator.classes_).index(1)
        return self.estimator.predict_proba(X)[:, positive]

    def get_feature_names(self):
        return self.preprocessor.get_feature_names()


MODELS = {
    "logistic_regression": LogisticRegression,
    "random_forest": RandomForestClassifier,
    "gradient_boosting": GradientBoostingClassifier,
}


def create_classifier(
    model_name: Optional[str] = None,
    config: Optional[dict] = None,
    params: Optional[dict] = None,
    threshold: Optional[float] = None
) -> SklearnChurnClassifier:
    """
    Build a registered classifier strategy.

    Args:
        model_name: Registry key; defaults to classifier.default_model
        config: Configuration dictionary
        params: Estimator parameters (overrides config)
        threshold: Decision threshold (overrides config)

    Returns:
        Untrained classifier
    """
    config = config or get_config()
    classifier_config = config.get("classifier", {})
    model_name = model_name or classifier_config.get("default_model", "logistic_regression")

    if model_name not in MODELS:
        raise InvalidParameterError("model_name", model_name, f"available: {list(MODELS.keys())}")

    if params is None:
        params = config.get("models", {}).get(model_name, {}).get("params", {})
    if threshold is None:
        threshold = classifier_config.get("threshold", 0.5)

    return SklearnChurnClassifier(
        MODELS[model_name](**params),
        name=model_name,
        threshold=threshold,
        config=config
    )


def select_customers(snapshot: pd.DataFrame, customer_ids) -> pd.DataFrame:
    """
    Snapshot rows for the requested customers.

    Raises:
        CustomerNotFoundError: for the first id with no snapshot row
    """
    indexed = snapshot.set_index("customer_id", drop=False)
    for customer_id in customer_ids:
        if customer_id not in indexed.index:
            raise CustomerNotFoundError(customer_id)
    return indexed.loc[list(customer_ids)].reset_index(drop=True)
