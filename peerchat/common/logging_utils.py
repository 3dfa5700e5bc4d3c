"""
Logging helpers shared by the session layer, the relay and the CLI.
"""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PACKAGE_LOGGER = "peerchat"


def setup_logger(logger: logging.Logger, log_level: int) -> None:
    """
    Attach a single StreamHandler with the standard format to a logger.

    Args:
        logger: The logger instance to configure
        log_level: The logging level to set
    """
    logger.setLevel(log_level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(log_level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)


def configure_package_logging(log_level: int) -> logging.Logger:
    """Configure the top-level ``peerchat`` logger every module logger inherits."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    setup_logger(logger, log_level)
    return logger
