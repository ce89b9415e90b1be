"""
Investigation Node Store — the ordered collection of a session's nodes.

Store order is creation order and is the only order the store knows about;
display ordering lives in ``tracegraph.lifecycle``. The store is a forest:
a node's parent must already be present when the node is created, so the
parent relation can never form a cycle through ``create``. Deleting a node
orphans its descendants instead of cascading.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any, Optional

import structlog

from tracegraph.errors import DuplicateNodeError, ImmutableFieldError, NodeNotFoundError, UnknownParentError
from tracegraph.identifiers import IdentifierKind, IdentifierService, identifiers
from tracegraph.models import Node
from tracegraph.observability import metrics

logger = structlog.get_logger()


def _field_names() -> dict[str, str]:
    """Python field name and persisted alias, both mapped to the Python field name."""
    names: dict[str, str] = {}
    for name, info in Node.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


_FIELD_BY_NAME = _field_names()

_IMMUTABLE_FIELDS = frozenset({"id", "mn_node_id", "parent_node_id", "timestamp"})


class NodeStore:
    """Ordered, identifier-indexed node collection with parent/child bookkeeping.

    Lookups accept either a node's ``mnNodeId`` or its local ``id``. Nodes
    returned by the store are the stored objects; change them through
    ``update`` so the immutability rules are enforced.
    """

    def __init__(self, id_service: Optional[IdentifierService] = None) -> None:
        self._ids = id_service or identifiers
        self._nodes: list[Node] = []
        self._by_mn_id: dict[str, Node] = {}
        self._by_local_id: dict[str, Node] = {}
        self._local_seq = 0

    # ── Queries ──

    def get(self, node_id: str) -> Optional[Node]:
        if not node_id:
            return None
        return self._by_mn_id.get(node_id) or self._by_local_id.get(node_id)

    def require(self, node_id: str) -> Node:
        node = self.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def all(self) -> list[Node]:
        """All nodes in creation order."""
        return list(self._nodes)

    def children(self, parent_id: str) -> list[Node]:
        """Children in ``childMnudaIds`` order; ids that no longer resolve are skipped."""
        parent = self.get(parent_id)
        if parent is None:
            return []
        return [c for c in (self._by_mn_id.get(cid) for cid in parent.child_mnuda_ids) if c is not None]

    def position(self, node_id: str) -> int:
        """Index of the node in creation order."""
        node = self.require(node_id)
        return self._nodes.index(node)

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(list(self._nodes))

    def __contains__(self, node_id: object) -> bool:
        return isinstance(node_id, str) and self.get(node_id) is not None

    # ── Mutations ──

    def create(self, node: Node) -> str:
        """Append a node, assigning identifiers as needed. Returns its mnNodeId.

        The node is copied; later changes go through ``update``.
        """
        node = node.model_copy(deep=True)
        if not node.mn_node_id:
            node.mn_node_id = self._ids.generate(IdentifierKind.NODE)
        elif node.mn_node_id in self._by_mn_id:
            raise DuplicateNodeError(f"node already exists: {node.mn_node_id}")

        parent: Optional[Node] = None
        if node.parent_node_id:
            parent = self.get(node.parent_node_id)
            if parent is None:
                raise UnknownParentError(
                    f"parent {node.parent_node_id} of {node.mn_node_id} is not in the store"
                )
            node.parent_node_id = parent.mn_node_id

        self._append(node)
        if parent is not None and node.mn_node_id not in parent.child_mnuda_ids:
            parent.child_mnuda_ids = [*parent.child_mnuda_ids, node.mn_node_id]

        logger.info(
            "node_created",
            node_id=node.mn_node_id,
            node_type=node.type.value,
            api_name=node.api_name,
            parent_node_id=node.parent_node_id or None,
        )
        metrics.record_node_created(node.type.value, node.api_name)
        metrics.record_session_size(len(self._nodes))
        return node.mn_node_id

    def update(self, node_id: str, patch: Mapping[str, Any]) -> Node:
        """Apply a partial change (persisted or Python field names) and return the node.

        ``mnNodeId``, ``parentNodeId``, ``timestamp`` and the local ``id`` can
        not be changed. The patch is validated as a whole before anything is
        written, so a rejected patch leaves the node untouched.
        """
        node = self.require(node_id)
        changes: dict[str, Any] = {}
        for key, value in patch.items():
            name = _FIELD_BY_NAME.get(key)
            if name is None:
                raise ValueError(f"unknown node field: {key}")
            if name in _IMMUTABLE_FIELDS and value != getattr(node, name):
                raise ImmutableFieldError(f"{key} can not be changed on {node.mn_node_id}")
            changes[name] = value

        candidate = Node.model_validate({**node.model_dump(), **changes})
        for name in changes:
            setattr(node, name, getattr(candidate, name))
        logger.debug("node_updated", node_id=node.mn_node_id, fields=sorted(changes))
        return node

    def delete(self, node_id: str) -> None:
        """Remove a node and detach it from its parent. Unknown ids are ignored.

        Descendants stay in the store with a dangling parentNodeId (orphans).
        """
        node = self.get(node_id)
        if node is None:
            logger.debug("node_delete_ignored", node_id=node_id)
            return

        self._nodes = [n for n in self._nodes if n is not node]
        self._by_mn_id.pop(node.mn_node_id, None)
        if node.id:
            self._by_local_id.pop(node.id, None)

        parent = self._by_mn_id.get(node.parent_node_id) if node.parent_node_id else None
        if parent is not None:
            parent.child_mnuda_ids = [c for c in parent.child_mnuda_ids if c != node.mn_node_id]

        orphaned = sum(1 for c in node.child_mnuda_ids if c in self._by_mn_id)
        logger.info(
            "node_deleted",
            node_id=node.mn_node_id,
            node_type=node.type.value,
            orphaned_children=orphaned,
        )
        metrics.record_node_deleted(node.type.value, orphaned)
        metrics.record_session_size(len(self._nodes))

    # ── Persistence ──

    def to_records(self) -> list[dict[str, Any]]:
        return [n.to_record() for n in self._nodes]

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        id_service: Optional[IdentifierService] = None,
    ) -> NodeStore:
        """Rebuild a store from persisted records, keeping their order and identifiers.

        Parent references are not checked: persisted sessions may legitimately
        contain orphans left behind by deletes.
        """
        store = cls(id_service=id_service)
        for record in records:
            node = Node.from_record(dict(record))
            if not node.mn_node_id:
                node.mn_node_id = store._ids.generate(IdentifierKind.NODE)
            if node.mn_node_id in store._by_mn_id:
                raise DuplicateNodeError(f"duplicate node in records: {node.mn_node_id}")
            store._append(node)
        return store

    def _append(self, node: Node) -> None:
        if not node.id or node.id in self._by_local_id:
            node.id = self._next_local_id()
        self._nodes.append(node)
        self._by_mn_id[node.mn_node_id] = node
        self._by_local_id[node.id] = node

    def _next_local_id(self) -> str:
        while True:
            self._local_seq += 1
            candidate = f"n{self._local_seq}"
            if candidate not in self._by_local_id:
                return candidate
