"""
Logging setup for the ticks service.
Console logging plus a daily-rotated file under .run/.
"""

import os
import logging
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO") -> None:
    """Configure root console logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )


def setup_log_rotation(path: str = ".run/ticks.log") -> Optional[TimedRotatingFileHandler]:
    """Setup log rotation for service logs."""
    try:
        # Ensure log directory exists
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        handler = TimedRotatingFileHandler(
            filename=path,
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

        # Add to root logger
        logging.getLogger().addHandler(handler)

        logger.info("Log rotation configured (daily, keep 7 days)")
        return handler

    except Exception as e:
        logger.error(f"Failed to setup log rotation: {e}")
        return None
