"""
Investigation sessions and their persistence.

A session owns one ``NodeStore`` plus a little metadata. Nothing here is
global: every session is an explicit object created through
``SessionRepository.init`` or ``SessionRepository.load`` and written back
with ``SessionRepository.persist``, so several sessions (or tests) can live
side by side.

Sessions persist as one JSON file per session under ``SESSION_DIR``.
"""

from __future__ import annotations

import contextlib
import json
import os
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tracegraph.config import get_settings
from tracegraph.errors import DuplicateNodeError, SessionLoadError, SessionNotFoundError
from tracegraph.extraction import extract_node_entities
from tracegraph.identifiers import IdentifierKind, IdentifierService, new_session_id
from tracegraph.lifecycle import apply_derived_completions, display_order
from tracegraph.models import EntitySummary, EntityType, Node, NodeType
from tracegraph.observability.log_capture import reset_sink, set_sink
from tracegraph.relationships import NodeRelationships, resolve_relationships
from tracegraph.store import NodeStore
from tracegraph.titles import node_title

logger = structlog.get_logger()

# Audit trails are trimmed to the most recent lines when persisted
MAX_AUDIT_LINES = 2000


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionRecord(BaseModel):
    """The persisted form of a session."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str = ""
    created_at: int = Field(default_factory=_now_ms, alias="createdAt")
    last_accessed: int = Field(default_factory=_now_ms, alias="lastAccessed")
    active_user_found_node_id: str = Field(default="", alias="activeUserFoundNodeId")
    location_tracking_active: bool = Field(default=False, alias="locationTrackingActive")
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    audit_log: list[str] = Field(default_factory=list, alias="auditLog")


class SessionInfo(BaseModel):
    """Listing entry for a persisted session."""

    id: str
    name: str
    created_at: int
    last_accessed: int
    node_count: int


class DisplayRow(BaseModel):
    """One node as a renderer sees it: title and resolved relationships."""

    node: Node
    title: str
    relationships: NodeRelationships


class InvestigationSession:
    """One user's investigation: a node store plus session metadata."""

    def __init__(
        self,
        name: Optional[str] = None,
        session_id: Optional[str] = None,
        store: Optional[NodeStore] = None,
        created_at: Optional[int] = None,
        last_accessed: Optional[int] = None,
    ) -> None:
        self.id = session_id or new_session_id()
        self.name = name or get_settings().session.default_name
        self.store = store if store is not None else NodeStore(id_service=IdentifierService())
        self.created_at = created_at or _now_ms()
        self.last_accessed = last_accessed or self.created_at
        self.active_user_found_node_id = ""
        self.location_tracking_active = False
        self.audit_log: list[str] = []

    def __repr__(self) -> str:
        return f"InvestigationSession(id={self.id!r}, name={self.name!r}, nodes={len(self.store)})"

    def touch(self) -> None:
        self.last_accessed = _now_ms()

    @contextlib.contextmanager
    def recording(self) -> Iterator[list[str]]:
        """Append structlog events emitted inside the block to this session's audit log.

        Requires logging configured through ``configure_logging``.
        """
        token = set_sink(self.audit_log)
        try:
            yield self.audit_log
        finally:
            reset_sink(token)

    # ── Derived views ──

    def active_user_found_node(self) -> Optional[Node]:
        node = self.store.get(self.active_user_found_node_id)
        if node is None or node.type != NodeType.USER_FOUND:
            return None
        return node

    def entity_summary(self) -> EntitySummary:
        """Entity totals across every node, plus how many can seed a follow-up search."""
        summary = EntitySummary()
        for node in self.store:
            result = extract_node_entities(node)
            summary.counts = summary.counts.merge(result.entity_counts)
            for entity in result.traceable():
                if entity.type == EntityType.PERSON.value:
                    summary.traceable_persons += 1
                else:
                    summary.traceable_addresses += 1
        summary.total = summary.counts.total
        return summary

    def display_rows(self) -> list[DisplayRow]:
        nodes = self.store.all()
        return [
            DisplayRow(node=n, title=node_title(n), relationships=resolve_relationships(n, nodes))
            for n in display_order(nodes)
        ]

    # ── Serialization ──

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            id=self.id,
            name=self.name,
            created_at=self.created_at,
            last_accessed=self.last_accessed,
            active_user_found_node_id=self.active_user_found_node_id,
            location_tracking_active=self.location_tracking_active,
            nodes=self.store.to_records(),
            audit_log=self.audit_log[-MAX_AUDIT_LINES:],
        )

    @classmethod
    def from_record(cls, record: SessionRecord) -> InvestigationSession:
        session = cls(
            name=record.name,
            session_id=record.id,
            store=NodeStore.from_records(record.nodes, id_service=IdentifierService()),
            created_at=record.created_at,
            last_accessed=record.last_accessed,
        )
        session.active_user_found_node_id = record.active_user_found_node_id
        session.location_tracking_active = record.location_tracking_active
        session.audit_log = list(record.audit_log)
        apply_derived_completions(session.store)
        return session


class SessionRepository:
    """Stores sessions as ``<session id>.json`` files in one directory."""

    def __init__(self, directory: Optional[str | Path] = None) -> None:
        self.directory = Path(directory or get_settings().session.session_dir)

    def _path(self, session_id: str) -> Path:
        if not IdentifierService.is_identifier(session_id, IdentifierKind.SESSION):
            raise ValueError(f"not a session id: {session_id!r}")
        return self.directory / f"{session_id}.json"

    def init(self, name: Optional[str] = None) -> InvestigationSession:
        """Create and persist a new, empty session."""
        session = InvestigationSession(name=name)
        self.persist(session)
        logger.info("session_created", session_id=session.id, name=session.name)
        return session

    def load(self, session_id: str) -> InvestigationSession:
        path = self._path(session_id)
        if not path.exists():
            raise SessionNotFoundError(session_id)
        try:
            record = SessionRecord.model_validate(json.loads(path.read_text(encoding="utf-8")))
            session = InvestigationSession.from_record(record)
        except (OSError, json.JSONDecodeError, ValidationError, DuplicateNodeError) as e:
            logger.error("session_load_failed", session_id=session_id, error=str(e))
            raise SessionLoadError(f"could not load session {session_id}: {e}") from e
        session.touch()
        logger.info("session_loaded", session_id=session.id, nodes=len(session.store))
        return session

    def persist(self, session: InvestigationSession) -> Path:
        """Write the session atomically (temp file, then rename)."""
        path = self._path(session.id)
        self.directory.mkdir(parents=True, exist_ok=True)
        session.touch()
        payload = json.dumps(session.to_record().model_dump(by_alias=True, mode="json"), indent=2, default=str)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, path)
        logger.debug("session_persisted", session_id=session.id, nodes=len(session.store), path=str(path))
        return path

    def list(self) -> list[SessionInfo]:
        """Sessions on disk, most recently accessed first. Unreadable files are skipped."""
        if not self.directory.exists():
            return []
        infos: list[SessionInfo] = []
        for path in self.directory.glob("session-*.json"):
            try:
                record = SessionRecord.model_validate(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.warning("session_file_unreadable", path=str(path), error=str(e))
                continue
            infos.append(
                SessionInfo(
                    id=record.id,
                    name=record.name,
                    created_at=record.created_at,
                    last_accessed=record.last_accessed,
                    node_count=len(record.nodes),
                )
            )
        return sorted(infos, key=lambda i: i.last_accessed, reverse=True)

    def rename(self, session_id: str, name: str) -> InvestigationSession:
        session = self.load(session_id)
        session.name = name.strip() or session.name
        self.persist(session)
        logger.info("session_renamed", session_id=session_id, name=session.name)
        return session

    def delete(self, session_id: str) -> bool:
        """Remove a persisted session. Returns False if it did not exist."""
        path = self._path(session_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info("session_deleted", session_id=session_id)
        return True
