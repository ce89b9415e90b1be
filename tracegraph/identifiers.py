"""
Identifier Service — typed, namespaced identifiers for nodes, entities and sessions.

Identifiers look like ``node-9c1e4f0a7b2d4e61001f``: a namespace prefix, a dash,
and a 20-character lowercase hex token. Random identifiers (``generate``) mix
uuid4 entropy with a process-local counter so two calls can never collide, even
within the same clock tick. Derived identifiers (``derive``) hash their inputs,
so the same logical record re-extracted from the same response always gets the
same identifier back.
"""

from __future__ import annotations

import hashlib
import itertools
import json
import re
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

_TOKEN_LENGTH = 20
_ID_PATTERN = re.compile(r"^(node|entity|session)-([0-9a-f]{%d})$" % _TOKEN_LENGTH)


class IdentifierKind(str, Enum):
    """Identifier namespaces. Values double as the string prefix."""

    NODE = "node"
    ENTITY = "entity"
    SESSION = "session"


def _coerce_kind(kind: IdentifierKind | str) -> IdentifierKind:
    try:
        return IdentifierKind(kind)
    except ValueError:
        raise ValueError(f"unknown identifier kind: {kind!r}") from None


class IdentifierService:
    """Generates and inspects namespaced identifiers."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)

    def generate(self, kind: IdentifierKind | str) -> str:
        """Return a fresh identifier in the given namespace."""
        k = _coerce_kind(kind)
        seq = next(self._counter) & 0xFFFF
        token = f"{uuid4().hex[:_TOKEN_LENGTH - 4]}{seq:04x}"
        return f"{k.value}-{token}"

    def generate_batch(self, count: int, kind: IdentifierKind | str = IdentifierKind.NODE) -> list[str]:
        """Generate ``count`` identifiers for bulk operations."""
        return [self.generate(kind) for _ in range(max(count, 0))]

    def derive(self, kind: IdentifierKind | str, *parts: Any) -> str:
        """Deterministic identifier from content. Same parts, same identifier."""
        k = _coerce_kind(kind)
        payload = json.dumps([k.value, *parts], sort_keys=True, default=str, separators=(",", ":"))
        token = hashlib.sha1(payload.encode("utf-8")).hexdigest()[:_TOKEN_LENGTH]
        return f"{k.value}-{token}"

    @staticmethod
    def parse(identifier: str) -> Optional[dict[str, str]]:
        """Split an identifier into ``{"kind", "token"}``; None if not one of ours."""
        if not isinstance(identifier, str):
            return None
        m = _ID_PATTERN.match(identifier)
        if not m:
            return None
        return {"kind": m.group(1), "token": m.group(2)}

    @classmethod
    def kind_of(cls, identifier: str) -> Optional[IdentifierKind]:
        parsed = cls.parse(identifier)
        return IdentifierKind(parsed["kind"]) if parsed else None

    @classmethod
    def is_identifier(cls, identifier: str, kind: IdentifierKind | str | None = None) -> bool:
        found = cls.kind_of(identifier)
        if found is None:
            return False
        return kind is None or found == _coerce_kind(kind)


# Shared instance for the process; sessions and tests may create their own.
identifiers = IdentifierService()


def new_node_id() -> str:
    return identifiers.generate(IdentifierKind.NODE)


def new_session_id() -> str:
    return identifiers.generate(IdentifierKind.SESSION)
