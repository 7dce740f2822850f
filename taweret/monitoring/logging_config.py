"""
Structured logging configuration using structlog.

Produces JSON log lines enriched with timestamps, log levels and the service
name. Records emitted through the stdlib ``logging`` module are rendered the
same way.
"""

import logging
import sys
from typing import Any, Dict, List

import structlog

SERVICE_NAME = "taweret"


def add_service_name(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Inject the service name into every log event."""
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog and the stdlib logging bridge for JSON output.

    Call once at startup.

    Args:
        log_level: Minimum severity level name (DEBUG, INFO, WARNING, ERROR)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    # Werkzeug logs every scrape at INFO
    logging.getLogger("werkzeug").setLevel(max(numeric_level, logging.WARNING))
