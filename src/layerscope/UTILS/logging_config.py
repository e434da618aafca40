"""
Logging configuration for the explorer command line.
"""

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


def configure_logging(debug: bool = False, log_file: Optional[str] = None,
                      max_bytes: int = 10 * 1024 * 1024, backup_count: int = 5) -> logging.Logger:
    """
    Configure logging for the application.

    Console output shows warnings and above unless debug is set, in which
    case long layer paths and per-file detail are shown too. A rotating
    file handler is added when log_file is given and always records DEBUG.

    Args:
        debug: Emit DEBUG records to the console.
        log_file: Optional path of a rotating log file.
        max_bytes: Maximum size of log file before rotation (default: 10MB).
        backup_count: Number of backup files to keep (default: 5).

    Returns:
        logging.Logger: Configured package logger.
    """
    level = logging.DEBUG if debug else logging.WARNING

    logger = logging.getLogger("layerscope")
    logger.setLevel(logging.DEBUG)
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter('%(levelname)s - %(message)s'))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logger.addHandler(file_handler)

    return logger
