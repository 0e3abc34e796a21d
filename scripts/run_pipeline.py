"""
Pipeline Script
===============

Command-line script to rebuild features, train a churn classifier and store
fresh predictions.

Usage:
    python scripts/run_pipeline.py --model random_forest --as-of 2024-06-30
    python scripts/run_pipeline.py --compare --save-model
"""

import argparse
import sys
from datetime import date
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from loguru import logger

from customer_intel.config import MODELS_DIR, get_config
from customer_intel.data.store import create_session_factory, create_tables, get_engine
from customer_intel.exceptions import PipelineStageError
from customer_intel.models.classifier import MODELS
from customer_intel.pipeline import ChurnPipeline
from customer_intel.utils import format_metrics, get_timestamp, setup_logging


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Run the churn scoring pipeline")

    parser.add_argument(
        "--model",
        type=str,
        default=None,
        choices=sorted(MODELS),
        help="Classifier strategy (default from config)"
    )
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Evaluation date, YYYY-MM-DD (default today)"
    )
    parser.add_argument(
        "--compare",
        action="store_true",
        help="Train every enabled strategy and score with the best F1 (overrides --model)"
    )
    parser.add_argument(
        "--save-model",
        action="store_true",
        help="Save the scoring classifier under models/saved/"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )

    return parser.parse_args()


def main():
    """Run the pipeline once."""
    args = parse_args()

    setup_logging(level=args.log_level, log_file="pipeline.log")
    config = get_config()

    engine = get_engine()
    create_tables(engine)
    session = create_session_factory(engine)()
    pipeline = ChurnPipeline(config)

    try:
        result = pipeline.run(session, as_of=args.as_of, model_name=args.model, compare=args.compare)
    except PipelineStageError as e:
        logger.error(f"Pipeline halted at stage '{e.stage}'")
        sys.exit(1)
    finally:
        session.close()

    if args.compare:
        for name, trained in pipeline.trainer.trained_models.items():
            logger.info(f"{name}: {format_metrics(trained.metrics)}")

    logger.info(f"Metrics: {format_metrics(result.metrics)}")
    for note in result.notes:
        logger.warning(note)

    if args.save_model:
        trained = pipeline.trainer.trained_models[result.model_name].classifier
        path = pipeline.trainer.save_model(
            trained, filepath=MODELS_DIR / f"{result.model_name}_{get_timestamp()}.joblib"
        )
        logger.info(f"Scoring classifier saved to: {path}")

    logger.info("Pipeline complete!")


if __name__ == "__main__":
    main()
