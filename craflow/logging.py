import logging
import structlog
from typing import Optional

from .config import settings


def setup_logging(level: Optional[str] = None) -> None:
    level = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_operation(operation: str, actor_id: Optional[str]) -> None:
    """Attach the running operation and its actor to every log line of the call."""
    structlog.contextvars.bind_contextvars(operation=operation, actor_id=actor_id)


def clear_operation() -> None:
    structlog.contextvars.unbind_contextvars("operation", "actor_id")
