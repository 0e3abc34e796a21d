"""Data module: transaction store, loading and preprocessing."""

from .data_loader import DataLoader, TransactionTables
from .preprocessor import DataPreprocessor

__all__ = ["DataLoader", "TransactionTables", "DataPreprocessor"]
