"""Structured logging setup.

structlog renders through the stdlib root logger: JSON lines in
production, colored console output otherwise. Credentials never reach the
output: values under sensitive keys are masked, including keys nested in
dicts such as logged header mappings.

Request-scoped fields (``request_id``, ``project_id``) are bound with
``bind_request_context`` and merged into every event logged while the
request is handled.
"""

import logging
import sys
from collections.abc import Mapping
from typing import Any

import structlog

REDACTED = "***REDACTED***"

SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "api_key",
        "x-api-key",
        "secret_key",
        "signature",
        "x-signature",
        "password",
        "secret",
        "token",
        "x-admin-token",
        "authorization",
    }
)

_NOISY_LOGGERS: dict[str, int] = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
    "aiosqlite": logging.WARNING,
}


def _mask(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_KEYS else _mask(v)
            for k, v in value.items()
        }
    return value


def _redact_sensitive_keys(
    logger: logging.Logger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key, value in event_dict.items():
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, Mapping):
            event_dict[key] = _mask(value)
    return event_dict


def bind_request_context(**fields: Any) -> None:
    """Bind fields to every log event of the current request."""
    structlog.contextvars.bind_contextvars(**fields)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def configure_logging(
    environment: str = "development",
    log_level: str = "INFO",
) -> None:
    """Install the structlog processor chain and the root handler.

    Args:
        environment: ``production`` selects JSON output.
        log_level: Root log level name (DEBUG, INFO, WARNING, ...).
    """
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _redact_sensitive_keys,
    ]

    renderer: structlog.types.Processor
    if environment == "production":
        renderer = structlog.processors.JSONRenderer()
        pre_chain.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level.upper())

    for name, level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
