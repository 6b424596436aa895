"""
Centralized logging configuration for the voice session engine.

All modules log through stdlib loggers obtained with get_logger(__name__).
Transport libraries are kept at WARNING because capture sends a frame
every slice; with ``wire_debug`` the websockets logger is opened up to
DEBUG to trace individual frames.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_TRANSPORT_LOGGERS = ("websockets", "httpcore", "httpx", "asyncio")


def setup_logging(level: str = "INFO", wire_debug: bool = False) -> None:
    """
    Configure the root logger with a single stdout handler.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        wire_debug: Log websocket frames as well
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()

    # Remove all existing handlers to prevent duplication
    while root_logger.handlers:
        root_logger.removeHandler(root_logger.handlers[0])

    root_logger.setLevel(numeric_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(handler)

    for logger_name in _TRANSPORT_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    if wire_debug:
        logging.getLogger("websockets").setLevel(logging.DEBUG)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the specified module.

    Args:
        name: Module name (typically __name__)
    """
    return logging.getLogger(name)
