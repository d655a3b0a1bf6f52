from __future__ import annotations

import logging
from typing import Any

import structlog


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog and standard logging for the bridge."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(*, name: str | None = None, **kwargs: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    if kwargs:
        return logger.bind(**kwargs)
    return logger


def preview(text: str, limit: int = 100) -> str:
    """Trim prompt text for log context."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
