"""
Churn Pipeline
==============

Runs the batch stages in order: publish features, train a classifier, score
every customer and persist the predictions. A failing stage halts the run and
is reported with its stage name and the offending entity.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional

import pandas as pd
from loguru import logger
from sqlalchemy.orm import Session

from customer_intel.config import get_config
from customer_intel.exceptions import PipelineStageError
from customer_intel.features import FeatureBuilder
from customer_intel.models.classifier import ChurnClassifier, select_customers
from customer_intel.models.prediction_store import PredictionStore
from customer_intel.models.trainer import ModelTrainer

STAGES = ("features", "training", "scoring", "persist")


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""

    generation: int
    as_of: date
    model_name: str
    metrics: Dict[str, Optional[float]]
    predictions_written: int
    churn_predictions: int
    orphans_purged: int
    model_id: Optional[int] = None
    notes: List[str] = field(default_factory=list)


class ChurnPipeline:
    """Feature build, training, scoring and persistence as one batch."""

    def __init__(
        self,
        config: Optional[dict] = None,
        feature_builder: Optional[FeatureBuilder] = None,
        trainer: Optional[ModelTrainer] = None,
        store: Optional[PredictionStore] = None
    ):
        """
        Initialize ChurnPipeline.

        Args:
            config: Configuration dictionary
            feature_builder: Builder used for the features stage
            trainer: Trainer used for the training stage
            store: Prediction store used for the persist stage
        """
        self.config = config or get_config()
        self.feature_builder = feature_builder or FeatureBuilder(self.config)
        self.trainer = trainer or ModelTrainer(self.config)
        self.store = store or PredictionStore()

    def _stage(self, stage: str, action: Callable, entity: Optional[str] = None):
        logger.info(f"[{stage}] started")
        try:
            result = action()
        except PipelineStageError:
            raise
        except Exception as e:
            entity = entity or getattr(e, "entity", None)
            logger.error(f"[{stage}] failed{f' for {entity}' if entity else ''}: {e}")
            raise PipelineStageError(stage, e, entity=entity) from e
        logger.info(f"[{stage}] finished")
        return result

    def run(
        self,
        db: Session,
        as_of: Optional[date] = None,
        model_name: Optional[str] = None,
        classifier: Optional[ChurnClassifier] = None,
        compare: bool = False
    ) -> PipelineResult:
        """
        Run every stage against the store.

        Args:
            db: Database session
            as_of: Evaluation date for recency; today when omitted
            model_name: Registered classifier strategy
            classifier: Pre-built classifier; bypasses the registry
            compare: Train every enabled strategy on the same build and score
                with the best F1; model_name and classifier are ignored

        Returns:
            PipelineResult

        Raises:
            PipelineStageError: wrapping the first failure
        """
        build = self._stage("features", lambda: self.feature_builder.rebuild(db, as_of))

        def train():
            if compare:
                self.trainer.trained_models.clear()
                self.trainer.train_all_models(build.snapshot)
                return self.trainer.get_best_model("f1")
            return self.trainer.train_model(build.snapshot, model_name, classifier=classifier)

        if compare:
            entity = "compare"
        else:
            entity = model_name or (classifier.name if classifier is not None else None)
        training = self._stage("training", train, entity=entity)

        predictions = self._stage(
            "scoring",
            lambda: training.classifier.predict(build.snapshot),
            entity=training.model_name,
        )
        logger.debug(
            f"Scored {len(predictions)} customers, mean probability "
            f"{predictions['churn_probability'].mean() if len(predictions) else float('nan'):.4f}"
        )

        def persist():
            written = self.store.upsert_predictions(
                db, predictions, build.generation, model_name=training.model_name
            )
            purged = self.store.purge_orphans(db)
            record = self.store.save_model_metadata(
                db,
                training.model_name,
                training.metrics,
                training_samples=training.training_samples,
                test_samples=training.test_samples,
                decision_threshold=training.classifier.threshold,
                notes="; ".join(training.notes) or None,
            )
            return written, purged, record.model_id

        written, purged, model_id = self._stage("persist", persist, entity=training.model_name)

        result = PipelineResult(
            generation=build.generation,
            as_of=build.as_of,
            model_name=training.model_name,
            metrics=training.metrics,
            predictions_written=written,
            churn_predictions=int(predictions["churn_prediction"].sum()) if written else 0,
            orphans_purged=purged,
            model_id=model_id,
            notes=training.notes,
        )
        logger.info(
            f"Pipeline complete: generation {result.generation}, {result.predictions_written} predictions "
            f"({result.churn_predictions} churners) from {result.model_name}"
        )
        return result

    def score_customers(
        self,
        db: Session,
        classifier: ChurnClassifier,
        customer_ids: Iterable[int],
        persist: bool = False
    ) -> pd.DataFrame:
        """
        Score selected customers from the published snapshot.

        Args:
            db: Database session
            classifier: Trained classifier
            customer_ids: Customers to score
            persist: Upsert the scores into the prediction store

        Returns:
            Prediction frame in the order requested

        Raises:
            CustomerNotFoundError: an id has no published snapshot row
        """
        snapshot = self.feature_builder.load_snapshot(db)
        rows = select_customers(snapshot, list(customer_ids))
        predictions = classifier.predict(rows)

        if persist and len(predictions):
            generation = int(rows["generation"].iloc[0])
            self.store.upsert_predictions(db, predictions, generation, model_name=classifier.name)

        return predictions
