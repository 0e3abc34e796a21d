"""Configuration module for the Customer Intelligence system."""

import os
from pathlib import Path

import yaml

# Project root directory
ROOT_DIR = Path(__file__).parent.parent.parent.absolute()

# Load configuration
CONFIG_PATH = Path(
    os.environ.get("CUSTOMER_INTEL_CONFIG", Path(__file__).parent / "config.yaml")
)


def load_config(path=None) -> dict:
    """Load configuration from YAML file."""
    with open(path or CONFIG_PATH, "r") as f:
        config = yaml.safe_load(f)

    database_url = os.environ.get("CUSTOMER_INTEL_DATABASE_URL")
    if database_url:
        config.setdefault("database", {})["url"] = database_url

    return config


def get_config() -> dict:
    """Get configuration dictionary."""
    return load_config()


# Export commonly used paths
DATA_DIR = ROOT_DIR / "data"
MODELS_DIR = ROOT_DIR / "models" / "saved"
LOGS_DIR = ROOT_DIR / "logs"
