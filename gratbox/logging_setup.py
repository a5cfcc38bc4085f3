"""Logging configuration for the GratBox command line.

Console output goes to stderr so CSV or JSON printed on stdout stays clean.
"""

import logging
import sys
from typing import Optional

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger with a console handler and an optional file handler.

    Args:
        level: Level name such as "DEBUG" or "INFO". Unknown names fall back to INFO.
        log_file: Optional path to also write log records to (UTF-8, appended).
    """
    log_level = logging.getLevelName(str(level).upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            logging.error("Failed to set up file logging to %s: %s", log_file, e)
        else:
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    # requests/urllib3 are chatty at DEBUG (one line per connection)
    logging.getLogger("urllib3").setLevel(max(log_level, logging.WARNING))
    logging.getLogger("msal").setLevel(max(log_level, logging.WARNING))
