"""
Model Evaluator Module
======================

Classification metrics for churn classifiers, and metric derivation from the
confusion matrix produced by the analytics layer.
"""

from typing import Dict, Optional

import numpy as np
import pandas as pd
from loguru import logger
from sklearn.metrics import (
    accuracy_score,
    confusion_matrix,
    f1_score,
    precision_score,
    recall_score,
    roc_auc_score,
)

from customer_intel.config import get_config
from customer_intel.utils.helpers import safe_divide
from .classifier import ChurnClassifier


class ModelEvaluator:
    """Evaluate churn classifiers against labelled snapshots."""

    def __init__(self, config: Optional[dict] = None):
        """
        Initialize ModelEvaluator.

        Args:
            config: Configuration dictionary
        """
        self.config = config or get_config()
        self.target_column = self.config.get("features", {}).get("target_column", "churn_label")
        self.evaluation_results = {}

    def evaluate(
        self,
        classifier: ChurnClassifier,
        snapshot: pd.DataFrame,
        model_name: Optional[str] = None
    ) -> Dict[str, Optional[float]]:
        """
        Evaluate a trained classifier.

        Args:
            classifier: Trained classifier
            snapshot: Labelled snapshot rows to score
            model_name: Name under which results are stored

        Returns:
            Dictionary of metrics; roc_auc is None when only one class is present
        """
        model_name = model_name or classifier.name
        y_true = snapshot[self.target_column].astype(int).to_numpy()
        predictions = classifier.predict(snapshot.drop(columns=[self.target_column]))
        y_pred = predictions["churn_prediction"].astype(int).to_numpy()
        y_prob = predictions["churn_probability"].to_numpy()

        metrics = {
            "accuracy": accuracy_score(y_true, y_pred),
            "precision": precision_score(y_true, y_pred, zero_division=0),
            "recall": recall_score(y_true, y_pred, zero_division=0),
            "f1": f1_score(y_true, y_pred, zero_division=0),
            "roc_auc": roc_auc_score(y_true, y_prob) if len(np.unique(y_true)) > 1 else None,
        }

        self.evaluation_results[model_name] = {
            "metrics": metrics,
            "confusion_matrix": confusion_matrix(y_true, y_pred, labels=[0, 1]),
        }

        logger.info(
            f"{model_name} - Accuracy: {metrics['accuracy']:.4f}, F1: {metrics['f1']:.4f}, "
            f"ROC-AUC: {metrics['roc_auc'] if metrics['roc_auc'] is not None else 'N/A'}"
        )
        return metrics

    def get_confusion_matrix(self, model_name: str) -> np.ndarray:
        """Confusion matrix from a previous evaluate() call, rows = actual."""
        return self.evaluation_results[model_name]["confusion_matrix"]


def metrics_from_confusion(validation: pd.DataFrame) -> Dict[str, Optional[float]]:
    """
    Derive accuracy, precision, recall and F1 from a confusion table.

    Args:
        validation: Rows of actual_churn, predicted_churn, customer_count

    Returns:
        Metrics with None wherever the denominator is zero
    """
    def cell(actual: bool, predicted: bool) -> int:
        mask = (validation["actual_churn"] == actual) & (validation["predicted_churn"] == predicted)
        return int(validation.loc[mask, "customer_count"].sum())

    tp, fp = cell(True, True), cell(False, True)
    fn, tn = cell(True, False), cell(False, False)

    precision = safe_divide(tp, tp + fp)
    recall = safe_divide(tp, tp + fn)
    f1 = None
    if precision is not None and recall is not None:
        f1 = safe_divide(2 * precision * recall, precision + recall)

    return {
        "true_positives": tp,
        "false_positives": fp,
        "false_negatives": fn,
        "true_negatives": tn,
        "accuracy": safe_divide(tp + tn, tp + tn + fp + fn),
        "precision": precision,
        "recall": recall,
        "f1": f1,
    }
