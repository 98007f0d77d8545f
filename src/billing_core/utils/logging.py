from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO, cast

import structlog


def configure_logging(
    level: str = "INFO",
    json: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog over stdlib logging for billing-core.

    With ``json=True`` each ledger event is one JSON object per line, with
    exception tracebacks rendered into the ``exception`` key. With
    ``json=False`` the console renderer is used. Safe to call again: the
    root handler is replaced and loggers pick up the new level.

    Args:
        level: Standard logging level string, e.g. "DEBUG", "INFO", "WARNING".
        json: Render entries as JSON instead of console output.
        stream: Where to write; defaults to ``sys.stdout``.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    target = stream or sys.stdout

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(target)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a named structlog logger.

    Args:
        name: Logger name, typically ``__name__`` of the calling module.
    """
    return cast(structlog.BoundLogger, structlog.get_logger(name))


@contextmanager
def billing_context(
    *,
    organization_id: str | None = None,
    service_type: str | None = None,
    **extra: object,
) -> Iterator[None]:
    """Bind request-scoped identifiers for the duration of a ``with`` block.

    ``None`` values are skipped so callers can pass optional fields straight
    through from a :class:`~billing_core.pricing.models.PricingContext`.
    Whatever the caller had bound under the same keys is restored on exit;
    other bound context is left alone.
    """
    values: dict[str, object] = {
        "organization_id": organization_id,
        "service_type": service_type,
        **extra,
    }
    with structlog.contextvars.bound_contextvars(
        **{k: v for k, v in values.items() if v is not None}
    ):
        yield
