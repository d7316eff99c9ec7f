"""Logger utility for console and file logging."""

import logging
import sys
from pathlib import Path


LOGGER_NAME = "radiosync"
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Marks the plain handler get_logger() installs so setup_logger() can replace it
DEFAULT_HANDLER_ATTR = '_radiosync_default'


def _console_handler(level: int, fmt: str, datefmt: str = None) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def setup_logger(name: str = LOGGER_NAME, log_file: str = None, verbose: bool = False) -> logging.Logger:
    """
    Set up a logger with timestamped console output and an optional debug log file.

    Args:
        name: Logger name
        log_file: Optional path to log file, which receives DEBUG messages
        verbose: Log DEBUG messages to the console too

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if (log_file or verbose) else logging.INFO)

    for handler in logger.handlers[:]:
        if getattr(handler, DEFAULT_HANDLER_ATTR, False):
            logger.removeHandler(handler)

    if logger.handlers:
        return logger

    logger.addHandler(_console_handler(
        logging.DEBUG if verbose else logging.INFO,
        '%(asctime)s - %(levelname)s - %(message)s',
        DATE_FORMAT
    ))

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s',
            datefmt=DATE_FORMAT
        ))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """Get a logger, giving it a plain INFO console handler if it has none yet."""
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(logging.INFO)
        handler = _console_handler(logging.INFO, '%(message)s')
        setattr(handler, DEFAULT_HANDLER_ATTR, True)
        logger.addHandler(handler)

    return logger
