"""Logging setup for the application."""
from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_LOG_FILE: Optional[Path] = None


def configure_logging(log_dir: Path, level: str = "INFO", *, filename: str = "imgvid.log") -> Path:
    """Send ``imgvid`` logs to the console and a rotating file in ``log_dir``.

    Safe to call more than once; handlers are only attached the first time.
    """
    global _LOG_FILE

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / filename

    logger = logging.getLogger("imgvid")
    logger.setLevel(level.upper())
    logger.propagate = False

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        _LOG_FILE = log_file
        logger.info("Logging to %s", log_file)
    return _LOG_FILE or log_file


def current_log_file() -> Optional[Path]:
    return _LOG_FILE
