"""
Logging Configuration

Structlog setup for the token proxy. Every event is stamped with the service
name, credential-bearing fields are masked before rendering, and exceptions
passed as exc_info are rendered as full tracebacks.
"""

import logging
import sys
from functools import lru_cache
from typing import Any, List, MutableMapping

import structlog

SERVICE_NAME = "oauth-playground-proxy"

REDACTED = "[redacted]"

# Never written to logs, whichever module passes them
SENSITIVE_KEYS = frozenset(
    {
        "client_secret",
        "code",
        "code_verifier",
        "secret",
        "access_token",
        "refresh_token",
        "id_token",
        "authorization",
    }
)

# Libraries that log full request lines at INFO
QUIET_LOGGERS = ("httpx", "httpcore")


def add_service_name(logger: Any, method_name: str, event_dict: MutableMapping[str, Any]):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def redact_sensitive(logger: Any, method_name: str, event_dict: MutableMapping[str, Any]):
    """Mask values of known credential keys, including bound context."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def build_processors(format_json: bool = True) -> List[Any]:
    """Processor chain ending in a JSON or console renderer."""
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_name,
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if format_json:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        # ConsoleRenderer formats exc_info itself
        processors += [
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]
    return processors


def configure_logging(level: str = "INFO", format_json: bool = True):
    """
    Configure structlog on top of stdlib logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format_json: Use JSON format (True) or console (False)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=build_processors(format_json),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@lru_cache
def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """Logger named after the calling module."""
    return structlog.get_logger(name or "playground")


configure_logging()


def bind_context(**kwargs):
    """Add context variables to all subsequent log entries."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context():
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()
