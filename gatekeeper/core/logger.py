"""Logging setup for the Gatekeeper API and workers.

Modules log through ``logging.getLogger(__name__)``, which puts them under
the ``gatekeeper`` logger. ``setup_logger`` is called once at startup and
attaches handlers to that logger only:

- a console handler, unless disabled
- a rotating ``<name>.log`` file when ``GATEKEEPER_LOG_DIR`` is set

Every decision, bulk summary and counter drift is logged at INFO or
WARNING, so the file stays small; the per-request INFO lines of the push
client (httpx) are raised to WARNING.
"""

import logging
import logging.handlers
import os
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

NOISY_LOGGERS = ("httpx", "httpcore")

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def setup_logger(
    name: str = "gatekeeper",
    log_dir: Optional[str] = None,
    level: str = "INFO",
    *,
    console: bool = True,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> logging.Logger:
    """Attach console and rotating-file handlers to the ``name`` logger.

    Calling it again returns the logger unchanged apart from its level.

    Raises:
        ValueError: ``level`` is not a standard level name
    """
    level_name = level.upper()
    if level_name not in LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of: {', '.join(LEVELS)}")

    logger = logging.getLogger(name)
    logger.setLevel(level_name)

    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, f"{name}.log"), maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    for noisy in quiet:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger
