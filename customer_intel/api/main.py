"""
FastAPI Main Application
========================

Read-only REST API over stored churn predictions, training history and the
analytics queries.
"""

import json
from datetime import date, datetime
from typing import List, Optional

import pandas as pd
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from customer_intel import __version__
from customer_intel.analytics import QUERIES, AnalyticsEngine
from customer_intel.config import get_config
from customer_intel.data.store import FeatureGeneration, create_tables, get_db, get_engine
from customer_intel.exceptions import (
    CustomerNotFoundError,
    InvalidParameterError,
    StaleSnapshotError,
)
from customer_intel.models.prediction_store import PredictionStore
from customer_intel.utils.helpers import setup_logging_from_config
from .schemas import (
    AnalyticsResponse,
    HealthResponse,
    ModelRecord,
    PredictionResponse,
    PredictionStatistics,
    RevenueAtRiskResponse,
)

# Initialize FastAPI app
app = FastAPI(
    title="Customer Intelligence API",
    description="Revenue analytics and churn predictions",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = PredictionStore()


def get_analytics_engine() -> AnalyticsEngine:
    """Analytics engine over the configured database."""
    return AnalyticsEngine(get_engine())


@app.on_event("startup")
async def startup_event():
    """Execute on application startup."""
    setup_logging_from_config(get_config())
    create_tables(get_engine())
    logger.info("Customer Intelligence API started")


# Error mapping

@app.exception_handler(InvalidParameterError)
async def invalid_parameter_handler(request: Request, exc: InvalidParameterError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(CustomerNotFoundError)
async def customer_not_found_handler(request: Request, exc: CustomerNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StaleSnapshotError)
async def stale_snapshot_handler(request: Request, exc: StaleSnapshotError):
    logger.warning(f"Rejected analytics request: {exc}")
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def frame_to_records(df: pd.DataFrame) -> List[dict]:
    """JSON-safe records: NaN becomes null and timestamps ISO strings."""
    if df.empty:
        return []
    return json.loads(df.to_json(orient="records", date_format="iso"))


def run_query(
    analytics: AnalyticsEngine,
    query: str,
    as_of: Optional[date] = None,
    **params
) -> AnalyticsResponse:
    snapshot = analytics.load_snapshot(as_of)
    df = analytics.run(query, snapshot=snapshot, **params)
    return AnalyticsResponse(
        query=query,
        as_of=snapshot.as_of,
        feature_generation=snapshot.feature_generation,
        row_count=len(df),
        rows=frame_to_records(df),
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": "Customer Intelligence API",
        "version": __version__,
        "docs": "/docs"
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(db: Session = Depends(get_db)):
    """Check API health status."""
    try:
        db.execute(text("SELECT 1"))
        generation = db.scalar(select(func.max(FeatureGeneration.generation)))
        connected = True
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        generation, connected = None, False

    return HealthResponse(
        status="healthy" if connected else "degraded",
        database_connected=connected,
        feature_generation=generation,
        timestamp=datetime.now()
    )


# Predictions

@app.get("/predictions", response_model=List[PredictionResponse], tags=["Predictions"])
async def list_predictions(
    db: Session = Depends(get_db),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    churn_only: bool = Query(False, description="Only predicted churners")
):
    """Stored predictions, highest probability first."""
    records = store.get_predictions(db, limit=limit, offset=offset, churn_only=churn_only)
    return [r.to_dict() for r in records]


@app.get("/predictions/statistics", response_model=PredictionStatistics, tags=["Predictions"])
async def get_prediction_statistics(db: Session = Depends(get_db)):
    """
    Get aggregate prediction statistics.

    Args:
        db: Database session

    Returns:
        Statistics dictionary
    """
    return store.get_prediction_statistics(db)


@app.get("/predictions/{customer_id}", response_model=PredictionResponse, tags=["Predictions"])
async def get_prediction(customer_id: int, db: Session = Depends(get_db)):
    """Live prediction for one customer; 404 when the customer was never scored."""
    return store.get_prediction(db, customer_id).to_dict()


@app.get("/model/history", response_model=List[ModelRecord], tags=["Model"])
async def get_model_history(
    db: Session = Depends(get_db),
    limit: int = Query(20, ge=1, le=500)
):
    """Most recent training runs first."""
    return [r.to_dict() for r in store.get_model_history(db, limit=limit)]


# Analytics

@app.get("/analytics", tags=["Analytics"])
async def list_queries():
    """Available analytics queries."""
    return {"queries": list(QUERIES)}


@app.get("/analytics/top-customers", response_model=AnalyticsResponse, tags=["Analytics"])
async def top_customers(
    fraction: Optional[float] = Query(None, description="Percent-rank cutoff, e.g. 0.10"),
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "top_customers", as_of, fraction=fraction)


@app.get("/analytics/revenue-by-city", response_model=AnalyticsResponse, tags=["Analytics"])
async def revenue_by_city(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "revenue_by_city", as_of)


@app.get("/analytics/inactive-customers", response_model=AnalyticsResponse, tags=["Analytics"])
async def inactive_customers(
    threshold_days: Optional[int] = Query(None, description="Days without an order"),
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "inactive_customers", as_of, threshold_days=threshold_days)


@app.get("/analytics/order-count-segments", response_model=AnalyticsResponse, tags=["Analytics"])
async def order_count_segments(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "order_count_segments", as_of)


@app.get("/analytics/monthly-revenue-trend", response_model=AnalyticsResponse, tags=["Analytics"])
async def monthly_revenue_trend(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "monthly_revenue_trend", as_of)


@app.get("/analytics/top-products", response_model=AnalyticsResponse, tags=["Analytics"])
async def top_products(
    limit: int = 15,
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "top_products", as_of, limit=limit)


@app.get("/analytics/revenue-by-category", response_model=AnalyticsResponse, tags=["Analytics"])
async def revenue_by_category(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "revenue_by_category", as_of)


@app.get("/analytics/customer-lifetime-value", response_model=AnalyticsResponse, tags=["Analytics"])
async def customer_lifetime_value(
    limit: int = 20,
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "customer_lifetime_value", as_of, limit=limit)


@app.get("/analytics/revenue-ranking", response_model=AnalyticsResponse, tags=["Analytics"])
async def revenue_ranking(
    limit: Optional[int] = None,
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "revenue_ranking", as_of, limit=limit)


@app.get("/analytics/revenue-by-payment-method", response_model=AnalyticsResponse, tags=["Analytics"])
async def revenue_by_payment_method(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "revenue_by_payment_method", as_of)


@app.get("/analytics/cohort-retention", response_model=AnalyticsResponse, tags=["Analytics"])
async def cohort_retention(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "cohort_retention", as_of)


@app.get("/analytics/revenue-by-demographic", response_model=AnalyticsResponse, tags=["Analytics"])
async def revenue_by_demographic(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "revenue_by_demographic", as_of)


@app.get("/analytics/prediction-summary", response_model=AnalyticsResponse, tags=["Analytics"])
async def prediction_summary(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "prediction_summary", as_of)


@app.get("/analytics/high-risk-customers", response_model=AnalyticsResponse, tags=["Analytics"])
async def high_risk_customers(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "high_risk_customers", as_of)


@app.get("/analytics/churn-risk-by-city", response_model=AnalyticsResponse, tags=["Analytics"])
async def churn_risk_by_city(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "churn_risk_by_city", as_of)


@app.get("/analytics/model-validation", response_model=AnalyticsResponse, tags=["Analytics"])
async def model_validation(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "model_validation", as_of)


@app.get("/analytics/revenue-at-risk", response_model=RevenueAtRiskResponse, tags=["Analytics"])
async def revenue_at_risk(
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    snapshot = analytics.load_snapshot(as_of)
    summary = analytics.revenue_at_risk(snapshot=snapshot)
    return RevenueAtRiskResponse(
        as_of=snapshot.as_of,
        feature_generation=snapshot.feature_generation,
        **summary
    )


@app.get("/analytics/retention-priority-list", response_model=AnalyticsResponse, tags=["Analytics"])
async def retention_priority_list(
    limit: int = 50,
    as_of: Optional[date] = None,
    analytics: AnalyticsEngine = Depends(get_analytics_engine)
):
    return run_query(analytics, "retention_priority_list", as_of, limit=limit)


# Run with: uvicorn customer_intel.api.main:app --reload
if __name__ == "__main__":
    import uvicorn

    config = get_config()
    api_config = config.get("api", {})

    uvicorn.run(
        "customer_intel.api.main:app",
        host=api_config.get("host", "0.0.0.0"),
        port=api_config.get("port", 8000),
        reload=api_config.get("reload", False)
    )
