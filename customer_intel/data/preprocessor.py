"""
Data Preprocessor Module
========================

Turns feature snapshots into the numeric matrix the classifiers consume.
"""

from typing import List, Optional

import numpy as np
import pandas as pd
from loguru import logger
from sklearn.compose import ColumnTransformer
from sklearn.impute import SimpleImputer
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from customer_intel.config import get_config


class DataPreprocessor:
    """Scale numeric snapshot columns and one-hot encode the categorical ones."""

    def __init__(self, config: Optional[dict] = None):
        """
        Initialize DataPreprocessor.

        Args:
            config: Configuration dictionary
        """
        self.config = config or get_config()
        feature_config = self.config.get("features", {})
        self.numerical_features = list(feature_config.get("numerical", []))
        self.categorical_features = list(feature_config.get("categorical", []))

        self.preprocessor: Optional[ColumnTransformer] = None
        self.feature_names: List[str] = []

    def select_inputs(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Restrict a snapshot to the classifier input columns.

        Identifiers, dates and the churn label never reach the estimator.
        """
        columns = self.numerical_features + self.categorical_features
        missing = [col for col in columns if col not in df.columns]
        if missing:
            raise KeyError(f"Snapshot is missing feature columns: {missing}")

        inputs = df[columns].copy()
        inputs[self.numerical_features] = inputs[self.numerical_features].astype(float)
        inputs[self.categorical_features] = inputs[self.categorical_features].astype(str)
        return inputs

    def build_transformer(self) -> ColumnTransformer:
        """Median-imputed standard scaling next to mode-imputed one-hot encoding."""
        numeric = Pipeline([
            ("imputer", SimpleImputer(strategy="median")),
            ("scaler", StandardScaler()),
        ])
        categorical = Pipeline([
            ("imputer", SimpleImputer(strategy="most_frequent")),
            ("encoder", OneHotEncoder(handle_unknown="ignore", sparse_output=False)),
        ])
        return ColumnTransformer(
            transformers=[
                ("numerical", numeric, self.numerical_features),
                ("categorical", categorical, self.categorical_features),
            ],
            remainder="drop",
        )

    def fit_transform(self, df: pd.DataFrame) -> np.ndarray:
        """
        Fit on training snapshots and transform them.

        Args:
            df: Feature snapshot

        Returns:
            Transformed numpy array
        """
        self.preprocessor = self.build_transformer()
        transformed = self.preprocessor.fit_transform(self.select_inputs(df))

        encoder = self.preprocessor.named_transformers_["categorical"].named_steps["encoder"]
        self.feature_names = self.numerical_features + list(
            encoder.get_feature_names_out(self.categorical_features)
        )

        logger.debug(f"Transformed shape: {transformed.shape}")
        return transformed

    def transform(self, df: pd.DataFrame) -> np.ndarray:
        """Transform snapshots with the fitted transformer."""
        if self.preprocessor is None:
            raise ValueError("Preprocessor not fitted. Call fit_transform first.")

        return self.preprocessor.transform(self.select_inputs(df))

    def get_feature_names(self) -> List[str]:
        """Get names of all features after transformation."""
        return self.feature_names
