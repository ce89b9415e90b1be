"""structlog setup shared by the CLI and by applications embedding the engine."""

from __future__ import annotations

import logging

import structlog

from tracegraph.observability.log_capture import audit_log_processor


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog. The audit processor runs before rendering so sinks see raw key/values."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            audit_log_processor,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
