import logging
import os
import sys

LOGGER_NAME = "authdb"


def setup_logger(level=None):
    """Console logger shared by the whole package."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level or os.getenv("LOG_LEVEL", "INFO").upper())

    # Format: [TIME] | [LEVEL] | message
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(message)s', datefmt='%H:%M:%S')
    handler.setFormatter(formatter)

    # Re-imports must not stack handlers
    if not logger.handlers:
        logger.addHandler(handler)

    return logger

log = setup_logger()
