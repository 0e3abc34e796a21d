"""
Prediction Store
================

Persists classifier output keyed by customer and records training runs.
"""

from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd
from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from customer_intel.data.store import ChurnPrediction, Customer, ModelMetadata
from customer_intel.exceptions import CustomerNotFoundError


class PredictionStore:
    """Upsert predictions and record model metadata."""

    def upsert_predictions(
        self,
        db: Session,
        predictions: pd.DataFrame,
        feature_generation: int,
        model_name: Optional[str] = None,
        prediction_date: Optional[datetime] = None
    ) -> int:
        """
        Write one live prediction per customer, replacing any previous row.

        Label and probability of a customer are written in the same row
        update, and the whole batch commits together.

        Args:
            db: Database session
            predictions: customer_id, churn_prediction, churn_probability
            feature_generation: Snapshot generation that was scored
            model_name: Name of the classifier that produced the scores
            prediction_date: Timestamp stamped on every row; now when omitted

        Returns:
            Number of rows written
        """
        prediction_date = prediction_date or datetime.utcnow()
        try:
            for row in predictions.itertuples(index=False):
                db.merge(ChurnPrediction(
                    customer_id=int(row.customer_id),
                    churn_prediction=bool(row.churn_prediction),
                    churn_probability=round(float(row.churn_probability), 4),
                    prediction_date=prediction_date,
                    feature_generation=feature_generation,
                    model_name=model_name,
                ))
            db.commit()
        except Exception:
            db.rollback()
            logger.error("Prediction upsert failed; no rows written")
            raise

        logger.info(f"Upserted {len(predictions)} predictions (feature generation {feature_generation})")
        return len(predictions)

    def purge_orphans(self, db: Session) -> int:
        """
        Delete predictions whose customer no longer exists.

        Returns:
            Number of rows removed
        """
        result = db.execute(
            delete(ChurnPrediction)
            .where(ChurnPrediction.customer_id.not_in(select(Customer.customer_id)))
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} orphaned predictions")
        return result.rowcount or 0

    def get_prediction(self, db: Session, customer_id: int) -> ChurnPrediction:
        """
        Live prediction for a customer.

        Raises:
            CustomerNotFoundError: when no prediction exists
        """
        record = db.get(ChurnPrediction, customer_id)
        if record is None:
            raise CustomerNotFoundError(customer_id)
        return record

    def get_predictions(
        self,
        db: Session,
        limit: int = 100,
        offset: int = 0,
        churn_only: bool = False
    ) -> List[ChurnPrediction]:
        """
        Get prediction records, highest probability first.

        Args:
            db: Database session
            limit: Maximum number of records
            offset: Number of records to skip
            churn_only: Only customers predicted to churn

        Returns:
            List of ChurnPrediction
        """
        query = select(ChurnPrediction)
        if churn_only:
            query = query.where(ChurnPrediction.churn_prediction.is_(True))
        query = query.order_by(
            ChurnPrediction.churn_probability.desc(), ChurnPrediction.customer_id
        ).offset(offset).limit(limit)
        return list(db.scalars(query))

    def get_prediction_statistics(self, db: Session) -> Dict:
        """
        Get aggregate statistics of predictions.

        Args:
            db: Database session

        Returns:
            Dictionary with statistics
        """
        total = db.scalar(select(func.count()).select_from(ChurnPrediction)) or 0
        churn_count = db.scalar(
            select(func.count()).select_from(ChurnPrediction).where(ChurnPrediction.churn_prediction.is_(True))
        ) or 0
        avg_prob = db.scalar(select(func.avg(ChurnPrediction.churn_probability)))

        return {
            "total_predictions": total,
            "churn_predictions": churn_count,
            "non_churn_predictions": total - churn_count,
            "churn_rate": churn_count / total if total > 0 else None,
            "average_probability": float(avg_prob) if avg_prob is not None else None,
        }

    def save_model_metadata(
        self,
        db: Session,
        model_name: str,
        metrics: Dict[str, Optional[float]],
        training_samples: Optional[int] = None,
        test_samples: Optional[int] = None,
        decision_threshold: Optional[float] = None,
        notes: Optional[str] = None
    ) -> ModelMetadata:
        """
        Save one training run's metrics.

        Args:
            db: Database session
            model_name: Name of the model
            metrics: Dictionary of metrics
            training_samples: Number of training samples
            test_samples: Number of hold-out samples
            decision_threshold: Threshold used for labels
            notes: Free-text notes

        Returns:
            Created ModelMetadata record
        """
        record = ModelMetadata(
            model_name=model_name,
            accuracy=metrics.get("accuracy"),
            precision_score=metrics.get("precision"),
            recall_score=metrics.get("recall"),
            f1_score=metrics.get("f1"),
            roc_auc=metrics.get("roc_auc"),
            training_samples=training_samples,
            test_samples=test_samples,
            decision_threshold=decision_threshold,
            notes=notes
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    def get_model_history(self, db: Session, limit: int = 20) -> List[ModelMetadata]:
        """Most recent training runs first."""
        query = select(ModelMetadata).order_by(ModelMetadata.model_id.desc()).limit(limit)
        return list(db.scalars(query))
