from __future__ import annotations

import logging
import os
import sys

LOGGER_NAME = "policyrag"


def setup_logging(level: str | None = None) -> logging.Logger:
    """Return the shared package logger, configuring a console handler once."""
    logger = logging.getLogger(LOGGER_NAME)

    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)
        logger.propagate = False

    return logger
