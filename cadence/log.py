"""Logging setup for processes embedding the scheduler."""

import logging

from cadence.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging at *level* (default ``settings.log_level``)."""
    name = (level or settings.log_level).upper()
    logging.basicConfig(format=LOG_FORMAT, level=getattr(logging, name, logging.INFO))
