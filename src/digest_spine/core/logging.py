"""
Structured logging for digest-spine.

Manifesto:
    A missed or doubled digest is only explainable after the fact if every
    event names the process, the user and the schedule involved. structlog
    is configured once at startup and stdlib records are rendered by the
    same formatter, so the lease and queue modules can stay on
    ``logging.getLogger(__name__)`` while service code emits events with
    bound context.

Architecture:
    ::

        structlog logger ─┐                        ┌─► JSONRenderer (ECS keys)
                          ├─► shared pre-chain ─►──┤
        stdlib logger ────┘   contextvars          └─► ConsoleRenderer
                              level, logger name
                              timestamp
                              service / node identity

Examples:
    >>> configure_logging(level="DEBUG", json_format=False, instance_id="web-1")
    >>> logger = get_logger(__name__)
    >>> with LogContext(user_id="u1", schedule_id="s1"):
    ...     logger.info("schedule_claimed")

Tags:
    logging, structlog, observability, ecs, json-logging, digest-spine
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from .settings import DigestSettings

_identity: dict[str, str] = {"service.name": "digest-scheduler"}

# structlog key -> ECS key, applied to JSON output only
_ECS_RENAMES = {
    "timestamp": "@timestamp",
    "level": "log.level",
    "logger": "log.logger",
}


def _add_process_identity(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key, value in _identity.items():
        event_dict.setdefault(key, value)
    return event_dict


def _rename_ecs_fields(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    for old, new in _ECS_RENAMES.items():
        if old in event_dict:
            event_dict[new] = event_dict.pop(old)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "digest-scheduler",
    instance_id: str | None = None,
    add_timestamp: bool = True,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name for both structlog and stdlib records
        json_format: JSON lines when True, console when False, JSON unless
            stdout is a tty when None
        service: Value of ``service.name`` on every event
        instance_id: Value of ``service.node.name`` (the lease holder id)
        add_timestamp: Include an ISO timestamp
    """
    _identity.clear()
    _identity["service.name"] = service
    if instance_id:
        _identity["service.node.name"] = instance_id

    if json_format is None:
        json_format = not sys.stdout.isatty()

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_process_identity,
    ]
    if add_timestamp:
        pre_chain.append(structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        rendering: list[Processor] = [
            _rename_ecs_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        rendering = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *rendering],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())


def configure_from_settings(settings: DigestSettings) -> None:
    """Apply the logging fields of :class:`DigestSettings`."""
    configure_logging(
        level=settings.log_level,
        json_format=settings.json_logs,
        service=settings.service_name,
        instance_id=settings.instance_id,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind keys for the duration of a ``with`` or ``async with`` block.

    Example:
        async with LogContext(holder="web-1", pass_at=stamp):
            await check_all()
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *args: Any) -> None:
        self.__exit__(*args)


__all__ = [
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
