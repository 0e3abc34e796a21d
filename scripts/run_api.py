"""
Run FastAPI Server
==================

Script to start the reporting API.

Usage:
    python scripts/run_api.py
    python scripts/run_api.py --port 8080 --reload
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import uvicorn

from customer_intel.config import get_config


def parse_args():
    """Parse command line arguments; defaults come from the api config section."""
    api_config = get_config().get("api", {})
    parser = argparse.ArgumentParser(description="Run the Customer Intelligence API")

    parser.add_argument("--host", type=str, default=api_config.get("host", "0.0.0.0"), help="Host to bind to")
    parser.add_argument("--port", type=int, default=api_config.get("port", 8000), help="Port to bind to")
    parser.add_argument(
        "--reload",
        action="store_true",
        default=api_config.get("reload", False),
        help="Enable auto-reload"
    )
    parser.add_argument("--workers", type=int, default=1, help="Number of workers")

    return parser.parse_args()


def main():
    """Run the API server."""
    args = parse_args()

    print(f"Customer Intelligence API on http://{args.host}:{args.port} (docs at /docs)")

    uvicorn.run(
        "customer_intel.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers if not args.reload else 1
    )


if __name__ == "__main__":
    main()
