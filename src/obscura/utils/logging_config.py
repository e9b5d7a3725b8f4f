"""
Logging Configuration
Stream handler setup for the CLI and API entry points
"""

import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(verbose: bool = False) -> logging.Logger:
    """
    Configure the obscura package logger

    Replaces handlers installed by an earlier call, so repeated calls do not
    duplicate output.

    Args:
        verbose: Log stage boundaries (DEBUG) instead of warnings only

    Returns:
        The configured package logger
    """
    logger = logging.getLogger('obscura')
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
