"""Application-wide logging setup."""
import logging
import sys

LOGGER_NAME = "classpoint_billing"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure the package logger once and return it.

    Module loggers (``logging.getLogger(__name__)``) propagate to this one.
    Calling it again only updates the level.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        # Lambda attaches its own root handler; avoid printing every line twice.
        logger.propagate = False

    return logger
