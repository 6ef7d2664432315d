"""
Structured logging for openemr-ops.

Both the startup coordinator and the backup agent run as short-lived
processes inside containers, so their logs are the only record an operator
has of a leader election, an install retry or a failed backup. This module
configures structlog once per process and hands out bound loggers.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="coordinator")
            ↓
        structlog processor chain:
          1. merge_contextvars      (instance, role, ...)
          2. TimeStamper(iso)
          3. add_log_level / add_logger_name
          4. StackInfoRenderer / set_exc_info
          5. service metadata
          6. JSONRenderer (not a tty) | ConsoleRenderer (tty)

        logger = get_logger(__name__)
        logger.info("leader_claimed", epoch=3)

        with log_step("upgrade"):
            ...
        # step_completed step=upgrade duration_s=12.4 elapsed_s=31.0

Examples:
    >>> from openemr_ops.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True, service="backup")
    >>> get_logger(__name__).info("backup_completed", kind="full")
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "openemr-ops"
_BOOT_TIME = time.monotonic()


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "openemr-ops",
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        shared_processors.append(_elasticsearch_compatible)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
        force=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(manifest="2024-05-01-02-00-00"):
            logger.info("restore_started")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


def elapsed_since_boot() -> float:
    """Seconds since this module was first imported (process boot)."""
    return round(time.monotonic() - _BOOT_TIME, 2)


@contextmanager
def log_step(step: str, **fields: Any) -> Iterator[dict[str, Any]]:
    """Log a timed stage of a long-running sequence.

    Yields a dict the body may add metrics to; they are included in the
    completion record. Failures are logged with the duration and re-raised.

    Usage:
        with log_step("auto_configure") as metrics:
            attempts = run_installer()
            metrics["attempts"] = attempts
    """
    log = get_logger("timing")
    metrics: dict[str, Any] = dict(fields)
    started = time.monotonic()
    log.debug("step_started", step=step, **metrics)
    try:
        yield metrics
    except BaseException:
        log.warning(
            "step_failed",
            step=step,
            duration_s=round(time.monotonic() - started, 2),
            elapsed_s=elapsed_since_boot(),
            **metrics,
        )
        raise
    log.info(
        "step_completed",
        step=step,
        duration_s=round(time.monotonic() - started, 2),
        elapsed_s=elapsed_since_boot(),
        **metrics,
    )


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
    "elapsed_since_boot",
    "log_step",
]
