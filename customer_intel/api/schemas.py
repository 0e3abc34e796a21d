"""
API Schemas (Pydantic Models)
=============================

Response models for the read-only reporting API.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Schema for health check response."""

    status: str
    database_connected: bool
    feature_generation: Optional[int] = None
    timestamp: datetime


class PredictionResponse(BaseModel):
    """Schema for a stored churn prediction."""

    customer_id: int = Field(..., description="Customer identifier")
    churn_prediction: bool = Field(..., description="Predicted to churn")
    churn_probability: float = Field(..., ge=0, le=1, description="Probability of churn")
    prediction_date: Optional[datetime] = Field(None, description="When the customer was scored")
    feature_generation: int = Field(..., description="Feature snapshot generation that was scored")
    model_name: Optional[str] = Field(None, description="Classifier that produced the score")

    class Config:
        json_schema_extra = {
            "example": {
                "customer_id": 42,
                "churn_prediction": True,
                "churn_probability": 0.8123,
                "prediction_date": "2024-12-19T10:30:00",
                "feature_generation": 3,
                "model_name": "logistic_regression"
            }
        }


class PredictionStatistics(BaseModel):
    """Schema for aggregate prediction statistics."""

    total_predictions: int
    churn_predictions: int
    non_churn_predictions: int
    churn_rate: Optional[float]
    average_probability: Optional[float]


class ModelRecord(BaseModel):
    """Schema for one recorded training run."""

    model_id: int
    model_name: str
    accuracy: Optional[float]
    precision: Optional[float]
    recall: Optional[float]
    f1: Optional[float]
    roc_auc: Optional[float]
    training_samples: Optional[int]
    test_samples: Optional[int]
    decision_threshold: Optional[float]
    training_date: Optional[datetime]
    notes: Optional[str]


class AnalyticsResponse(BaseModel):
    """Schema for a tabular analytics result."""

    query: str
    as_of: date
    feature_generation: Optional[int]
    row_count: int
    rows: List[Dict[str, Any]]


class RevenueAtRiskResponse(BaseModel):
    """Schema for the revenue-at-risk summary."""

    as_of: date
    feature_generation: Optional[int]
    total_revenue: float
    revenue_at_risk: float
    customers_at_risk: int
    percentage_at_risk: Optional[float]


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    detail: str
