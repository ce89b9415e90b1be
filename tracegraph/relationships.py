"""
Relationship Resolver — parent/child/lineage views over a node list.

All functions are pure functions of ``(node, all_nodes)``. The cached
``relationshipType`` and ``entityCount`` fields on a node are display hints
only; everything here is recomputed from ``parentNodeId``,
``childMnudaIds`` and the node's raw response. Dangling references resolve
to "absent" and never raise.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from tracegraph.extraction import extract_node_entities
from tracegraph.models import Node

logger = structlog.get_logger()


class RelationshipType(str, Enum):
    ROOT = "root"
    CHILD = "child"
    ORPHAN = "orphan"  # parentNodeId set but the parent is gone


class NodeRelationships(BaseModel):
    """Everything a renderer needs to place one node in the provenance tree."""

    parent: Optional[Node] = None
    children: list[Node] = Field(default_factory=list)
    relationship_type: RelationshipType = RelationshipType.ROOT
    depth: int = 0
    entity_count: int = 0
    descendant_count: int = 0
    descendant_entity_count: int = 0


class RelationshipReport(BaseModel):
    """Consistency check of a whole node list."""

    orphans: list[str] = Field(default_factory=list)
    dangling_children: list[tuple[str, str]] = Field(default_factory=list)
    mismatched_children: list[tuple[str, str]] = Field(default_factory=list)
    missing_child_links: list[tuple[str, str]] = Field(default_factory=list)
    duplicate_ids: list[str] = Field(default_factory=list)
    cycles: list[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """Orphans are expected after deletes and do not make a graph invalid."""
        return not (
            self.dangling_children
            or self.mismatched_children
            or self.missing_child_links
            or self.duplicate_ids
            or self.cycles
        )


def _index(all_nodes: Sequence[Node]) -> dict[str, Node]:
    index: dict[str, Node] = {}
    for n in all_nodes:
        if n.id:
            index.setdefault(n.id, n)
    for n in all_nodes:
        if n.mn_node_id:
            index[n.mn_node_id] = n
    return index


def resolve_parent(node: Node, all_nodes: Sequence[Node]) -> Optional[Node]:
    if not node.parent_node_id:
        return None
    return _index(all_nodes).get(node.parent_node_id)


def resolve_children(node: Node, all_nodes: Sequence[Node]) -> list[Node]:
    """Children in ``childMnudaIds`` order; ids that do not resolve are skipped."""
    index = _index(all_nodes)
    return [c for c in (index.get(cid) for cid in node.child_mnuda_ids) if c is not None]


def relationship_type(node: Node, all_nodes: Sequence[Node]) -> RelationshipType:
    if not node.parent_node_id:
        return RelationshipType.ROOT
    if resolve_parent(node, all_nodes) is None:
        return RelationshipType.ORPHAN
    return RelationshipType.CHILD


def entity_count(node: Node) -> int:
    """Entities derivable from the node's raw result right now."""
    if not node.key:
        return 0
    return extract_node_entities(node).total_entities


def lineage(node: Node, all_nodes: Sequence[Node]) -> list[Node]:
    """Provenance chain from the topmost reachable ancestor down to ``node``.

    Walks at most ``len(all_nodes)`` parent links, so corrupted data with a
    parent cycle still terminates.
    """
    index = _index(all_nodes)
    chain = [node]
    seen = {node.key}
    current = node
    for _ in range(len(all_nodes)):
        parent = index.get(current.parent_node_id) if current.parent_node_id else None
        if parent is None or parent.key in seen:
            break
        chain.append(parent)
        seen.add(parent.key)
        current = parent
    chain.reverse()
    return chain


def depth(node: Node, all_nodes: Sequence[Node]) -> int:
    return len(lineage(node, all_nodes)) - 1


def descendants(node: Node, all_nodes: Sequence[Node]) -> list[Node]:
    """All nodes reachable through ``childMnudaIds``, breadth first, each once."""
    index = _index(all_nodes)
    found: list[Node] = []
    seen = {node.key}
    queue = list(node.child_mnuda_ids)
    while queue:
        child = index.get(queue.pop(0))
        if child is None or child.key in seen:
            continue
        seen.add(child.key)
        found.append(child)
        queue.extend(child.child_mnuda_ids)
    return found


def resolve_relationships(node: Node, all_nodes: Sequence[Node]) -> NodeRelationships:
    below = descendants(node, all_nodes)
    return NodeRelationships(
        parent=resolve_parent(node, all_nodes),
        children=resolve_children(node, all_nodes),
        relationship_type=relationship_type(node, all_nodes),
        depth=depth(node, all_nodes),
        entity_count=entity_count(node),
        descendant_count=len(below),
        descendant_entity_count=sum(entity_count(d) for d in below),
    )


def validate_relationships(all_nodes: Sequence[Node]) -> RelationshipReport:
    """Check every parent/child link in both directions."""
    report = RelationshipReport()
    index = _index(all_nodes)

    seen_ids: set[str] = set()
    for n in all_nodes:
        if n.mn_node_id in seen_ids:
            report.duplicate_ids.append(n.mn_node_id)
        seen_ids.add(n.mn_node_id)

    for n in all_nodes:
        if n.parent_node_id:
            parent = index.get(n.parent_node_id)
            if parent is None:
                report.orphans.append(n.mn_node_id)
            elif n.mn_node_id not in parent.child_mnuda_ids:
                report.missing_child_links.append((parent.mn_node_id, n.mn_node_id))
        for cid in n.child_mnuda_ids:
            child = index.get(cid)
            if child is None:
                report.dangling_children.append((n.mn_node_id, cid))
            elif child.parent_node_id != n.mn_node_id:
                report.mismatched_children.append((n.mn_node_id, cid))

        # A parent walk that comes back to its start is a cycle
        current, steps = n, 0
        while current.parent_node_id and steps < len(all_nodes):
            current = index.get(current.parent_node_id)
            steps += 1
            if current is None:
                break
            if current is n:
                report.cycles.append(n.mn_node_id)
                break

    if not report.is_valid:
        logger.warning(
            "relationships_invalid",
            dangling_children=len(report.dangling_children),
            mismatched_children=len(report.mismatched_children),
            missing_child_links=len(report.missing_child_links),
            duplicate_ids=len(report.duplicate_ids),
            cycles=len(report.cycles),
        )
    return report
