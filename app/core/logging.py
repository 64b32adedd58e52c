"""Centralized logging setup with optional rotating file persistence."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s:%(name)s:%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 10


def configure_logging(service_name: str) -> None:
    """Configure root logger for console + rotating file output."""
    level = getattr(logging, settings.LOG_LEVEL.strip().upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if settings.LOG_DIR:
        try:
            Path(settings.LOG_DIR).mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    Path(settings.LOG_DIR) / f"{service_name}.log",
                    maxBytes=LOG_MAX_BYTES,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
            )
        except OSError as error:
            # Console logging still works if the file target is unavailable
            logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT, force=True)
            logging.getLogger(__name__).warning(
                "File logging disabled: failed to initialize %s (%s)",
                settings.LOG_DIR,
                error,
            )
            return

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
