"""Observability: structlog configuration, audit-log capture and Prometheus metrics."""

from tracegraph.observability.log_config import configure_logging
from tracegraph.observability.metrics import metrics

__all__ = ["configure_logging", "metrics"]
