"""
Capture structlog events as plain-text lines for a session audit trail.

While a sink is set, every structlog event is appended as a one-line string.
Sessions use this to keep a human-readable record of what happened to their
nodes (created, searched, failed, deleted) next to the node data itself.
"""

from __future__ import annotations

import contextvars
from typing import Any

_SKIP_KEYS = frozenset({"event", "level", "timestamp", "_record"})

_audit_log_sink: contextvars.ContextVar[list[str] | None] = contextvars.ContextVar(
    "audit_log_sink", default=None
)


def set_sink(sink: list[str] | None) -> contextvars.Token[list[str] | None]:
    """Set the list to append log lines to (or None to stop capturing)."""
    return _audit_log_sink.set(sink)


def reset_sink(token: contextvars.Token[list[str] | None]) -> None:
    _audit_log_sink.reset(token)


def get_sink() -> list[str]:
    """Return a copy of the current sink (empty list if capturing is off)."""
    sink = _audit_log_sink.get()
    return list(sink) if sink is not None else []


def _format_value(v: Any, max_len: int = 120) -> str:
    s = str(v)
    return s if len(s) <= max_len else s[: max_len - 3] + "…"


def audit_log_processor(logger: object, method: str, event_dict: dict) -> dict:
    """
    Structlog processor: append a plain-text log line to the audit sink
    when set. Does not drop the event.
    """
    sink = _audit_log_sink.get()
    if sink is None:
        return event_dict

    level = (event_dict.get("level") or method or "info").lower()
    if level == "warning":
        prefix = "⚠"
    elif level in ("error", "critical"):
        prefix = "✗"
    elif level == "debug":
        prefix = "·"
    else:
        prefix = "▪"

    event = event_dict.get("event", "")
    parts = [
        f"{k}={_format_value(v)}"
        for k, v in sorted(event_dict.items())
        if k not in _SKIP_KEYS
    ]
    line = f"{prefix} {event}  {'  '.join(parts)}".strip()
    sink.append(line)
    return event_dict
