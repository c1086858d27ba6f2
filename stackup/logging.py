"""stackup — Structured logging configuration.

structlog renders every record, whether it comes from a stackup logger or
a plain stdlib one.  Records carry an ISO timestamp, level and logger name,
plus the ``plan_id`` and ``unit`` of the run that emitted them.

Run context lives in structlog's own context variables, so each launch task
sees its own ``unit`` while sharing the run's ``plan_id``.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_CONTEXT_KEYS = ("plan_id", "unit")


def bind_plan_context(plan_id: str | None = None, unit: str | None = None) -> None:
    """Bind run context to the current async task / thread."""
    values = {"plan_id": plan_id, "unit": unit}
    structlog.contextvars.bind_contextvars(
        **{key: value for key, value in values.items() if value is not None}
    )


def clear_plan_context() -> None:
    structlog.contextvars.unbind_contextvars(*_CONTEXT_KEYS)


def _renderer(format: str) -> Any:
    if format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(
    level: str = "info",
    format: str = "console",
    log_file: str | None = None,
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        level:    One of debug, info, warning, error, critical.
        format:   ``"console"`` for human-readable output, ``"json"`` for
                  one JSON object per line.
        log_file: Optional path to write logs to in addition to stderr.
    """
    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(format),
        ],
    )

    # stdout is reserved for command output (tables, --json).
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(level.upper())
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger for *name*.

    Usage::

        log = get_logger(__name__)
        log.info("unit_launched", unit="db", rank=0)
    """
    return structlog.get_logger(name)
