"""Logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path

from config.settings import AppConfig

LOGGER_NAME = "qr_assistant"


def setup_logging(config: AppConfig, level: int = logging.INFO) -> logging.Logger:
    """Configure root handlers (file + console) and return the application logger."""
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_dir / "application.log", encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )
    return logging.getLogger(LOGGER_NAME)
