"""
Prometheus metrics for the investigation graph engine.

All metrics are no-op when observability.metrics_enabled is False.
Exposes record_node_created, record_node_deleted, record_extraction,
track_lookup, record_fallback_node, record_session_size and start_server.
"""

from __future__ import annotations

import contextlib
import threading
import time
from collections.abc import AsyncIterator
from typing import Any

import structlog
from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    start_http_server as prometheus_start_http_server,
)

logger = structlog.get_logger()


def _enabled() -> bool:
    from tracegraph.config import get_settings

    return bool(get_settings().observability.metrics_enabled)


# Lazy registry: only create metrics when enabled and first used
_metrics_created = False
_create_lock = threading.Lock()


def _ensure_metrics() -> bool:
    global _metrics_created
    if _metrics_created or not _enabled():
        return _metrics_created
    with _create_lock:
        if not _metrics_created:
            _create_metrics()
            _metrics_created = True
    return True


def _create_metrics() -> None:
    """Create all Prometheus metrics (called once when enabled)."""
    _nodes_created = Counter(
        "tracegraph_nodes_created_total",
        "Investigation nodes created",
        ["node_type", "api_name"],
    )
    _nodes_deleted = Counter(
        "tracegraph_nodes_deleted_total",
        "Investigation nodes deleted by the user",
        ["node_type"],
    )
    _orphaned_nodes = Counter(
        "tracegraph_orphaned_nodes_total",
        "Descendants left orphaned by a delete",
        [],
    )
    _entities_extracted = Counter(
        "tracegraph_entities_extracted_total",
        "Entities produced by extraction",
        ["extractor", "entity_type"],
    )
    _items_skipped = Counter(
        "tracegraph_extraction_items_skipped_total",
        "Malformed upstream items skipped during extraction",
        ["extractor"],
    )
    _lookup_duration = Histogram(
        "tracegraph_lookup_duration_seconds",
        "External lookup latency",
        ["kind"],
        buckets=[0.25, 0.5, 1, 2, 5, 10, 30],
    )
    _lookup_errors = Counter(
        "tracegraph_lookup_errors_total",
        "External lookup failures",
        ["kind", "error_type"],
    )
    _fallback_nodes = Counter(
        "tracegraph_fallback_nodes_total",
        "Placeholder nodes created after a failed person trace",
        [],
    )
    _session_nodes = Gauge(
        "tracegraph_session_nodes",
        "Nodes in the active session",
        [],
    )

    _registry = {
        "nodes_created": _nodes_created,
        "nodes_deleted": _nodes_deleted,
        "orphaned_nodes": _orphaned_nodes,
        "entities_extracted": _entities_extracted,
        "items_skipped": _items_skipped,
        "lookup_duration": _lookup_duration,
        "lookup_errors": _lookup_errors,
        "fallback_nodes": _fallback_nodes,
        "session_nodes": _session_nodes,
    }
    setattr(_MetricsCollector, "_registry", _registry)


class _MetricsCollector:
    """Collector that delegates to Prometheus when enabled, no-op otherwise."""

    _registry: dict[str, Any] = {}

    def _get(self, name: str) -> Any:
        _ensure_metrics()
        return self._registry.get(name)

    # --- Node store ---
    def record_node_created(self, node_type: str = "", api_name: str = "") -> None:
        c = self._get("nodes_created")
        if c:
            c.labels(node_type=node_type or "unknown", api_name=(api_name or "none")[:32]).inc()

    def record_node_deleted(self, node_type: str = "", orphaned: int = 0) -> None:
        c = self._get("nodes_deleted")
        if c:
            c.labels(node_type=node_type or "unknown").inc()
        o = self._get("orphaned_nodes")
        if o and orphaned > 0:
            o.inc(orphaned)

    def record_session_size(self, node_count: int) -> None:
        g = self._get("session_nodes")
        if g:
            g.set(node_count)

    # --- Extraction ---
    def record_extraction(self, extractor: str, counts: dict[str, int], skipped: int = 0) -> None:
        c = self._get("entities_extracted")
        if c:
            for entity_type, n in counts.items():
                if n:
                    c.labels(extractor=extractor, entity_type=entity_type).inc(n)
        s = self._get("items_skipped")
        if s and skipped:
            s.labels(extractor=extractor).inc(skipped)

    # --- Lookups ---
    @contextlib.asynccontextmanager
    async def track_lookup(self, kind: str = "") -> AsyncIterator[None]:
        h = self._get("lookup_duration")
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            err = self._get("lookup_errors")
            if err:
                err.labels(kind=kind or "unknown", error_type=type(e).__name__).inc()
            raise
        finally:
            if h:
                h.labels(kind=kind or "unknown").observe(time.perf_counter() - start)

    def record_fallback_node(self) -> None:
        c = self._get("fallback_nodes")
        if c:
            c.inc()

    def start_server(self, port: int = 8000) -> None:
        if not _enabled():
            return
        _ensure_metrics()

        def run() -> None:
            try:
                prometheus_start_http_server(port, addr="0.0.0.0")
            except OSError as e:
                logger.warning("metrics_server_failed", port=port, error=str(e))

        t = threading.Thread(target=run, daemon=True)
        t.start()


metrics = _MetricsCollector()
