"""
Structured logging for the operator, built on structlog.

Every event carries the application context and, while a reconciliation
runs, the ``resource`` key (``namespace/name``) of the Database being
worked on, so one resource's history can be filtered out of a busy log.
JSON output in production, colored console output otherwise.
"""
import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from structlog.types import EventDict, Processor

from rds_operator.config.settings import Settings, settings

# Chatty third-party loggers and the level they are capped at.
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "kubernetes_asyncio": logging.WARNING,
    "botocore": logging.WARNING,
    "boto3": logging.WARNING,
    "urllib3": logging.WARNING,
}


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to log events."""
    event_dict["app"] = settings.app_name
    event_dict["version"] = settings.app_version
    event_dict["environment"] = settings.environment
    event_dict["provider"] = event_dict.get("provider", settings.provider)
    return event_dict


def add_severity_level(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    if "level" in event_dict:
        event_dict["severity"] = event_dict["level"].upper()
    return event_dict


def _renderer(config: Settings) -> Processor:
    if config.is_production:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(config: Optional[Settings] = None) -> None:
    """Configure structlog and the standard library root logger once at startup."""
    config = config or settings

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
        add_severity_level,
        structlog.processors.format_exc_info,
        _renderer(config),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, config.log_level))
    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


@contextmanager
def resource_context(key: str, **extra: Any) -> Iterator[None]:
    """Bind ``resource=<namespace/name>`` (and ``extra``) to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(resource=key, **extra):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
