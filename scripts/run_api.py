#!/usr/bin/env python
"""
Run the pricing API under uvicorn.

Usage:
    python scripts/run_api.py [--host 0.0.0.0] [--port 8000] [--reload]
"""
import argparse
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

import uvicorn

from pricing_core.config.logging_config import setup_logging_from_settings
from pricing_core.config.settings import get_settings


def main():
    parser = argparse.ArgumentParser(description="Run the pricing API")
    parser.add_argument('--host', default='0.0.0.0')
    parser.add_argument('--port', type=int, default=8000)
    parser.add_argument('--reload', action='store_true')
    args = parser.parse_args()

    settings = get_settings()
    setup_logging_from_settings(settings)

    print("Starting Pricing Core API (FastAPI)...")
    try:
        uvicorn.run(
            "pricing_core.api.main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_config=None,
        )
    except KeyboardInterrupt:
        print("\nAPI stopped.")


if __name__ == "__main__":
    main()
