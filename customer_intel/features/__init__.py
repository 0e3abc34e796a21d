"""Feature module: per-customer snapshot derivation."""

from .feature_builder import FEATURE_COLUMNS, FeatureBuild, FeatureBuilder

__all__ = ["FEATURE_COLUMNS", "FeatureBuild", "FeatureBuilder"]
