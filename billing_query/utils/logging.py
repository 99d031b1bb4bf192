"""
Structured logging setup.

Routes structlog events through the stdlib logging backend.
"""

import logging
import sys
from typing import Optional, TextIO

import structlog


def _drop_credentials(logger, method_name, event_dict):
    """Remove credential values from log entries."""
    event_dict.pop("credential", None)
    return event_dict


def configure_logging(level: str = "INFO", json: bool = True, stream: Optional[TextIO] = None) -> None:
    """Configure structlog for the billing query service.

    Log entries go to stderr unless another stream is given, so CLI output
    on stdout carries query results only.

    Args:
        level: Standard logging level name, e.g. "DEBUG", "INFO", "WARNING".
        json: If True, render log entries as JSON. If False, use console output.
        stream: Destination of log entries (defaults to sys.stderr)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _drop_credentials,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)
