"""
MfgLedger Server - Main entry point.

This module starts the ledger HTTP API:
- Loads LedgerConfig and ApiSettings from the environment
- Configures logging
- Serves the FastAPI app with uvicorn

Usage:
    python -m ledger.mfgledger_server.main

Configuration is entirely via environment variables.
See config.py and api/settings.py for all available settings.

Invariants:
    - Configuration is validated before the server binds
    - The store is opened and closed by the app lifespan

How to change safely:
    - Keep startup free of network calls other than binding the port
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api.app import create_app
from .api.settings import ApiSettings
from .config import LedgerConfig

logger = logging.getLogger(__name__)


def setup_logging(config: LedgerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Ledger configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        config = LedgerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    settings = ApiSettings()
    app = create_app(config, settings)

    logger.info(f"Starting MfgLedger API on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
