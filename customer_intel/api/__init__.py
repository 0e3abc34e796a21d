"""FastAPI backend module."""

from .main import app
from .schemas import AnalyticsResponse, PredictionResponse, RevenueAtRiskResponse

__all__ = ["app", "AnalyticsResponse", "PredictionResponse", "RevenueAtRiskResponse"]
