"""Structured logging setup."""
import logging
import sys
from typing import Optional

import structlog

from ragchat import config


def configure_logging(level: Optional[str] = None) -> None:
    """Configure structlog with JSON output on top of stdlib logging.

    Args:
        level: Log level name (default from config)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
