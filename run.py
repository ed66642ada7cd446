#!/usr/bin/env python3
"""
Loan Offer Service Entry Point

Starts the FastAPI server with settings from LENDING_* environment variables.
"""

import sys

from loan_offers.api import run_server
from loan_offers.config import get_config
from loan_offers.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file
    )
    logger.info(
        f"Starting loan offer service on {config.api_host}:{config.api_port} "
        f"({config.storage_backend} storage)"
    )

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            log_level=config.log_level.lower()
        )
    except KeyboardInterrupt:
        logger.info("Shutting down loan offer service")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
