"""
Model Trainer Module
====================

Trains churn classifiers on the published feature snapshot and persists them.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import joblib
import pandas as pd
from loguru import logger
from sklearn.model_selection import train_test_split

from customer_intel.config import MODELS_DIR, get_config
from customer_intel.exceptions import TrainingError
from .classifier import MODELS, ChurnClassifier, create_classifier
from .evaluator import ModelEvaluator


@dataclass
class TrainingResult:
    """A trained classifier with its hold-out metrics."""

    model_name: str
    classifier: ChurnClassifier
    metrics: Dict[str, Optional[float]]
    training_samples: int
    test_samples: int
    notes: List[str] = field(default_factory=list)


class ModelTrainer:
    """Train and manage churn classifiers."""

    def __init__(self, config: Optional[dict] = None):
        """
        Initialize ModelTrainer.

        Args:
            config: Configuration dictionary
        """
        self.config = config or get_config()
        self.data_config = self.config.get("data", {})
        self.models_config = self.config.get("models", {})
        self.target_column = self.config.get("features", {}).get("target_column", "churn_label")
        self.evaluator = ModelEvaluator(self.config)

        self.trained_models: Dict[str, TrainingResult] = {}

    def split(self, snapshot: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame, List[str]]:
        """
        Hold out a test split, stratified on the churn label when possible.

        Args:
            snapshot: Labelled feature snapshot

        Returns:
            Tuple of (train rows, test rows, notes)
        """
        test_size = self.data_config.get("test_size", 0.2)
        random_state = self.data_config.get("random_state", 42)
        notes = []

        try:
            train, test = train_test_split(
                snapshot,
                test_size=test_size,
                random_state=random_state,
                stratify=snapshot[self.target_column]
            )
        except ValueError as e:
            logger.warning(f"Stratified split unavailable ({e}); using a random split")
            notes.append("unstratified split")
            train, test = train_test_split(snapshot, test_size=test_size, random_state=random_state)

        logger.info(f"Train set: {len(train)} samples")
        logger.info(f"Test set: {len(test)} samples")
        return train, test, notes

    def train_model(
        self,
        snapshot: pd.DataFrame,
        model_name: Optional[str] = None,
        params: Optional[dict] = None,
        classifier: Optional[ChurnClassifier] = None
    ) -> TrainingResult:
        """
        Train a single classifier and evaluate it on the hold-out split.

        Args:
            snapshot: Labelled feature snapshot
            model_name: Registered strategy name
            params: Estimator parameters (overrides config)
            classifier: Pre-built classifier; bypasses the registry

        Returns:
            TrainingResult
        """
        if classifier is None:
            classifier = create_classifier(model_name, config=self.config, params=params)
        model_name = classifier.name

        if len(snapshot) < 2:
            raise TrainingError(f"Need at least 2 snapshots to train {model_name}, got {len(snapshot)}")

        train, test, notes = self.split(snapshot)

        logger.info(f"Training {model_name}...")
        classifier.train(train, target_column=self.target_column)
        metrics = self.evaluator.evaluate(classifier, test, model_name)

        result = TrainingResult(
            model_name=model_name,
            classifier=classifier,
            metrics=metrics,
            training_samples=len(train),
            test_samples=len(test),
            notes=notes
        )
        self.trained_models[model_name] = result
        return result

    def train_all_models(self, snapshot: pd.DataFrame) -> Dict[str, TrainingResult]:
        """
        Train every enabled registered strategy.

        Args:
            snapshot: Labelled feature snapshot

        Returns:
            Dictionary of training results by model name
        """
        logger.info("Training all models...")

        for model_name, model_config in self.models_config.items():
            if model_name in MODELS and model_config.get("enabled", True):
                self.train_model(snapshot, model_name)

        return self.trained_models

    def get_best_model(self, metric: str = "f1") -> TrainingResult:
        """
        Get the best performing trained model.

        Args:
            metric: Evaluation metric

        Returns:
            TrainingResult with the highest metric value
        """
        if not self.trained_models:
            raise TrainingError("No trained models to choose from")

        best = max(
            self.trained_models.values(),
            key=lambda result: result.metrics.get(metric) or 0.0
        )
        logger.info(f"Best model: {best.model_name} with {metric}={best.metrics.get(metric)}")
        return best

    def save_model(
        self,
        classifier: ChurnClassifier,
        model_name: Optional[str] = None,
        filepath: Optional[Path] = None
    ) -> Path:
        """
        Save a trained classifier to disk.

        Args:
            classifier: Classifier to save
            model_name: Name for the model file
            filepath: Optional custom filepath

        Returns:
            Path to saved model
        """
        if filepath is None:
            filepath = MODELS_DIR / f"{model_name or classifier.name}.joblib"

        filepath.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(classifier, filepath)
        logger.info(f"Model saved to {filepath}")

        return filepath

    def load_model(self, model_name: str, filepath: Optional[Path] = None) -> ChurnClassifier:
        """
        Load a classifier from disk.

        Args:
            model_name: Name of the model
            filepath: Optional custom filepath

        Returns:
            Loaded classifier
        """
        if filepath is None:
            filepath = MODELS_DIR / f"{model_name}.joblib"

        if not filepath.exists():
            raise FileNotFoundError(f"Model not found: {filepath}")

        classifier = joblib.load(filepath)
        logger.info(f"Model loaded from {filepath}")

        return classifier
