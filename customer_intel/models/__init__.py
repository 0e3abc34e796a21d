"""Models module for churn classification, training and prediction storage."""

from .classifier import ChurnClassifier, SklearnChurnClassifier, create_classifier
from .evaluator import ModelEvaluator, metrics_from_confusion
from .prediction_store import PredictionStore
from .trainer import ModelTrainer, TrainingResult

__all__ = [
    "ChurnClassifier",
    "SklearnChurnClassifier",
    "create_classifier",
    "ModelEvaluator",
    "metrics_from_confusion",
    "PredictionStore",
    "ModelTrainer",
    "TrainingResult",
]
