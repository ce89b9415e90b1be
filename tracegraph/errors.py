"""
Error taxonomy for the investigation graph engine.

Store and lifecycle errors signal programming mistakes or invalid user actions
against the node graph. Lookup errors wrap failures of the external lookup
APIs and are classified so callers can decide between "fall back" and
"surface as-is":

  - LookupFailedError: network, 4xx, 5xx. Retryable when transient.
  - RateLimitedError: upstream throttling. Never retried, never papered over.
  - SubscriptionError: missing plan / bad key. Never retried.
"""

from __future__ import annotations

from typing import Optional


class TraceGraphError(Exception):
    """Base for all engine errors."""

    pass


# ── Node store / lifecycle ──


class NodeNotFoundError(TraceGraphError, KeyError):
    """No node with the given mnNodeId or local id exists in the store."""

    def __init__(self, node_id: str) -> None:
        super().__init__(node_id)
        self.node_id = node_id

    def __str__(self) -> str:
        return f"node not found: {self.node_id}"


class DuplicateNodeError(TraceGraphError):
    """A node with the same mnNodeId is already in the store."""

    pass


class UnknownParentError(TraceGraphError):
    """parentNodeId does not reference a node created earlier in the same store."""

    pass


class ImmutableFieldError(TraceGraphError):
    """An update patch tried to change mnNodeId, parentNodeId or timestamp."""

    pass


class SearchInFlightError(TraceGraphError):
    """A second submission was attempted while the node is already searching."""

    pass


# ── External lookups ──


class LookupClientError(TraceGraphError):
    """Base for external lookup failures."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LookupFailedError(LookupClientError):
    """Network error or non-success HTTP status from a lookup API."""

    @property
    def is_transient(self) -> bool:
        return self.status_code is None or self.status_code >= 500


class RateLimitedError(LookupClientError):
    """The upstream API throttled the request (429 / "rate limit")."""

    pass


class SubscriptionError(LookupClientError):
    """The API key is not subscribed or not authorized (403 / "not subscribed")."""

    pass


def classify_lookup_error(exc: BaseException) -> LookupClientError:
    """Map an arbitrary exception onto the lookup taxonomy.

    Already-classified errors pass through unchanged. Everything else is
    classified by message, the same way upstream error strings arrive.
    """
    if isinstance(exc, LookupClientError):
        return exc
    msg = str(exc).lower()
    if "rate limit" in msg or "429" in msg or "too many requests" in msg:
        return RateLimitedError(str(exc), status_code=429)
    if "not subscribed" in msg or "subscription" in msg or "403" in msg or "forbidden" in msg:
        return SubscriptionError(str(exc), status_code=403)
    return LookupFailedError(str(exc))


# ── Session persistence ──


class SessionNotFoundError(TraceGraphError, KeyError):
    """No persisted session with the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"session not found: {self.session_id}"


class SessionLoadError(TraceGraphError):
    """A persisted session file exists but can not be decoded."""

    pass
