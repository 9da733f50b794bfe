"""Logging setup shared by the API process and the Celery worker."""

import logging

from receipt_tracker.config import get_settings

LOG_FORMAT = "%(asctime)s  %(name)-40s  %(levelname)-7s  %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once per process.

    Honors ``LOG_LEVEL`` from settings unless a level is passed explicitly.
    Unknown level names fall back to INFO.
    """
    name = (level or get_settings().log_level).upper().strip()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logging.getLogger("receipt_tracker").setLevel(resolved)
