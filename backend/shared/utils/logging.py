"""
Structured logging for the Sport Sage core services.

Every service process calls ``setup_logging`` once; library loggers are routed
through the same structlog chain so SQLAlchemy and driver warnings come out in
the same format. Each job run is wrapped in ``run_context`` so all lines it
emits, including those from settlement and lifecycle internals, carry one
``run_id``.
"""
from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from shared.config import Environment, Settings, get_settings

# SQL echo and driver chatter
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "asyncpg", "aiosqlite", "asyncio")


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderers(settings: Settings) -> list[structlog.types.Processor]:
    if settings.environment == Environment.DEV:
        return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]
    # one JSON object per line, tracebacks included as structured data
    return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]


def setup_logging(service_name: str, settings: Settings | None = None) -> None:
    """Route structlog and stdlib logging to stdout and bind the service identity."""
    settings = settings or get_settings()
    pre_chain = _pre_chain()

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
                *_renderers(settings),
            ],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name, instance_id=settings.instance_id)


@contextmanager
def run_context(job: str, **fields: Any) -> Iterator[str]:
    """
    Bind a fresh ``run_id`` (plus ``job`` and any extra fields) for the
    duration of one job run. Tasks created inside inherit the binding.
    Yields the run id.
    """
    run_id = uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(run_id=run_id, job=job, **fields):
        yield run_id


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)
