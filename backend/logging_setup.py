"""
Operator log for the ingestion backend.

This is the application log only. The per-event audit trail lives in the
`processing_log` table and is written by `EventService`.
"""

import sys
from loguru import logger
from settings import settings

# UTC to match the timestamps stored for events and audit entries
LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD[T]HH:mm:ss.SSS!UTC}Z</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logging(level: str | None = None, sink=None):
    level = (level or settings.log_level).upper()
    logger.remove()
    logger.add(sink or sys.stdout, format=LOG_FORMAT, level=level, backtrace=False, diagnose=False)
    logger.debug("Ingestion log configured (level={})", level)
    return logger
