"""Logging configuration for editor-pulse."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(debug: bool = False, log_dir: Optional[Path] = None) -> logging.Logger:
    """Configure the ``editor_pulse`` logger tree.

    Only the package logger is touched so a host process keeps its own
    handlers.
    """
    level = logging.DEBUG if debug else logging.INFO
    package_logger = logging.getLogger("editor_pulse")
    package_logger.setLevel(level)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)

    # Console handler; stdout may be a protocol channel, so log to stderr
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    # File handler
    if log_dir is not None:
        try:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_dir / "editor-pulse.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            package_logger.addHandler(file_handler)
        except OSError as e:
            package_logger.warning(f"Failed to initialize file logging in {log_dir}: {e}")

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return package_logger
