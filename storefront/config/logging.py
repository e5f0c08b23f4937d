"""
Logging Configuration

structlog on top of the standard library, so uvicorn and SQLAlchemy records
share one handler and format. JSON in deployed environments, console
rendering while developing.

Customer emails and phone numbers travel through checkout and history log
events; they are masked before rendering.
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.stdlib import ProcessorFormatter

from storefront.config.settings import get_settings

MASKED_FIELDS = ("email", "user_email", "phone", "user_phone")


def mask_value(value: str) -> str:
    """``an.nguyen@example.com`` -> ``a***@example.com``, ``0901234567`` -> ``******4567``"""
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:1]}***@{domain}"
    return "*" * max(len(value) - 4, 0) + value[-4:]


def mask_customer_fields(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for name in MASKED_FIELDS:
        value = event_dict.get(name)
        if isinstance(value, str) and value:
            event_dict[name] = mask_value(value)
    return event_dict


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        log_format: Override renderer, "json" or "text"
    """
    settings = get_settings()
    level_name = (log_level or settings.monitoring.log_level).upper()
    fmt = log_format or settings.monitoring.log_format
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        mask_customer_fields,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=pre_chain + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # Request logging middleware replaces the uvicorn access log
    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True
    logging.getLogger("uvicorn.access").disabled = True

    # SQL echo is controlled by DatabaseSettings.echo
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=level_name,
        format=fmt,
        environment=settings.app_env,
    )
