"""
Customer Intelligence System
============================

Customer behavior and revenue intelligence for an e-commerce transaction
store: per-customer feature snapshots, pluggable churn scoring and
read-only revenue analytics.

Modules:
    - data: Transaction store, loading and preprocessing
    - features: Feature snapshot builder
    - models: Churn classifiers, training and prediction storage
    - analytics: Revenue, segmentation and churn-risk queries
    - api: FastAPI backend
    - utils: Utility functions
"""

__version__ = "1.0.0"
