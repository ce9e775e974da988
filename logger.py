"""
Centralized logging for the gradebook.

Every module asks for its logger through get_logger(__name__) so output
shares one format and one destination (stdout).
"""

import logging
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger with the standard handler attached.

    Args:
        name: Name of the calling module (usually __name__).
    """
    logger = logging.getLogger(name)

    # Attach the handler only once per logger
    if not logger.handlers:
        logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
        )

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)

        logger.addHandler(handler)

    return logger
