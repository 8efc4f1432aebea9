#!/usr/bin/env python3
"""
Simple runner script for the Flask application.
This script ensures the correct Python path is set and runs the app.
"""

import argparse
import atexit
import sys
from pathlib import Path

# Add the current directory to Python path
current_dir = Path(__file__).parent
sys.path.insert(0, str(current_dir))

from app.main import create_app
from config_manager import get_app_config
from suggestion_service import stop_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the annotation suggestion service")
    parser.add_argument("--corpus", help="Corpus JSON file to load into the in-memory storage")
    args = parser.parse_args()

    app = create_app(corpus_path=args.corpus)
    service = app.extensions["recommendation_service"]
    atexit.register(stop_logging)
    atexit.register(service.shutdown)

    app_config = get_app_config()
    print("🚀 Starting suggestion service...")
    print(f"📁 Working directory: {current_dir}")

    app.run(
        host=app_config.host,
        port=app_config.port,
        debug=app_config.debug
    )


if __name__ == "__main__":
    main()
