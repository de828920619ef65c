"""Centralized logging utilities for skipsilence."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import IO, Any

import structlog


_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _numeric_level(level: str) -> int:
    name = (level or "").upper()
    return _LEVELS.get(name, logging.INFO)


Processor = Callable[[Any, str, dict[str, Any]], dict[str, Any]]


def _add_service(service_name: str | None) -> Processor:
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        if service_name and "service" not in event_dict:
            event_dict["service"] = service_name
        return event_dict

    return processor


def configure_logging(
    level: str = "INFO",
    *,
    json_logs: bool = True,
    service_name: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Configure structlog + stdlib logging for the process.

    Logs go to ``stream`` (stderr by default) so the simulator summary on
    stdout stays clean. Exceptions are rendered as structured dicts at DEBUG
    and as formatted text otherwise.
    """

    numeric_level = _numeric_level(level)
    exception_processor = (
        structlog.processors.dict_tracebacks
        if numeric_level <= logging.DEBUG
        else structlog.processors.format_exc_info
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        _add_service(service_name),
        exception_processor,
    ]
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric_level)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(
    name: str,
    *,
    target_id: str | None = None,
    service_name: str | None = None,
) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound with standard metadata."""

    logger = structlog.stdlib.get_logger(name)
    if target_id:
        logger = logger.bind(target_id=target_id)
    if service_name:
        logger = logger.bind(service=service_name)
    return logger


@contextmanager
def session_context(
    target_id: str | None,
) -> Generator[structlog.stdlib.BoundLogger, None, None]:
    """Bind a media target id into the structlog context for the duration of a block.

    The previous value, if any, is restored on exit so nested sessions
    (a rebind inside a running controller) do not leak ids.
    """
    previous_target_id = None
    if target_id:
        previous_target_id = structlog.contextvars.get_contextvars().get("target_id")
        structlog.contextvars.bind_contextvars(target_id=target_id)

    logger = structlog.stdlib.get_logger()

    try:
        yield logger
    finally:
        if target_id:
            if previous_target_id is not None:
                structlog.contextvars.bind_contextvars(target_id=previous_target_id)
            else:
                structlog.contextvars.unbind_contextvars("target_id")


__all__ = [
    "configure_logging",
    "get_logger",
    "session_context",
]
