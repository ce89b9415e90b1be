"""
Node Lifecycle and Display Ordering.

Input nodes (``start``, ``userFound``) move ready → searching → completed.
``Search History`` nodes and result nodes are born completed. An input node
also completes as a derived transition when its immediate next sibling in
store order is a result node with a non-empty primary collection; that rule
is recomputed from store contents, never stored as an event.

Display order is a presentation concern only and never written back to the
store.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Optional

import structlog

from tracegraph.errors import SearchInFlightError
from tracegraph.extraction import primary_result_count
from tracegraph.models import Address, GeoPoint, LocationFix, Node, NodeStatus, NodeType, UserLocationPayload
from tracegraph.store import NodeStore

logger = structlog.get_logger()


def born_completed(node: Node) -> bool:
    return node.is_result_node or node.is_search_history


def initial_state(node: Node) -> Node:
    """Set the lifecycle fields a freshly created node starts with."""
    if born_completed(node):
        node.has_completed = True
        node.status = NodeStatus.COMPLETED
    elif node.status == NodeStatus.SEARCHING:
        node.status = NodeStatus.READY
    return node


# ── Explicit transitions (input nodes) ──


def begin_search(store: NodeStore, node_id: str) -> Node:
    """Mark an input node as searching; a second submission while in flight is refused."""
    node = store.require(node_id)
    if node.status == NodeStatus.SEARCHING:
        raise SearchInFlightError(f"a search is already running for {node.mn_node_id}")
    if born_completed(node):
        raise ValueError(f"{node.type.value} node {node.mn_node_id} can not start a search")
    logger.info("search_started", node_id=node.mn_node_id, api_name=node.api_name)
    return store.update(node.mn_node_id, {"status": NodeStatus.SEARCHING, "error": ""})


def complete_search(store: NodeStore, node_id: str) -> Optional[Node]:
    """Mark a search as completed. A node deleted in the meantime is ignored."""
    node = store.get(node_id)
    if node is None:
        logger.debug("search_result_for_deleted_node", node_id=node_id)
        return None
    logger.info("search_completed", node_id=node.mn_node_id, api_name=node.api_name)
    return store.update(node.mn_node_id, {"status": NodeStatus.COMPLETED, "has_completed": True, "error": ""})


def fail_search(store: NodeStore, node_id: str, error: str) -> Optional[Node]:
    """Revert a searching node to ready and record the user-facing error."""
    node = store.get(node_id)
    if node is None:
        logger.debug("search_failure_for_deleted_node", node_id=node_id, error=error)
        return None
    logger.warning("search_failed", node_id=node.mn_node_id, api_name=node.api_name, error=error)
    return store.update(node.mn_node_id, {"status": NodeStatus.READY, "has_completed": False, "error": error})


# ── Derived transition ──


def next_sibling(node: Node, all_nodes: Sequence[Node]) -> Optional[Node]:
    """The first node after ``node`` in store order that shares its parentNodeId."""
    position = next((i for i, n in enumerate(all_nodes) if n is node or (n.key and n.key == node.key)), None)
    if position is None:
        return None
    for candidate in all_nodes[position + 1:]:
        if candidate.parent_node_id == node.parent_node_id:
            return candidate
    return None


def should_complete(node: Node, all_nodes: Sequence[Node]) -> bool:
    """True when the input node's next sibling is a result with a non-empty primary collection.

    Pure: depends only on the arguments, so repeated calls on unchanged data agree.
    """
    if not node.is_input_node:
        return False
    sibling = next_sibling(node, all_nodes)
    if sibling is None or not sibling.is_result_node:
        return False
    return primary_result_count(sibling) > 0


def apply_derived_completions(store: NodeStore) -> list[str]:
    """Complete every input node whose completion is implied by the store. Returns the ids changed."""
    nodes = store.all()
    changed: list[str] = []
    for node in nodes:
        if node.has_completed or node.status == NodeStatus.SEARCHING:
            continue
        if should_complete(node, nodes):
            store.update(node.mn_node_id, {"status": NodeStatus.COMPLETED, "has_completed": True})
            changed.append(node.mn_node_id)
    if changed:
        logger.debug("derived_completions_applied", node_ids=changed)
    return changed


# ── Display ordering ──


def display_order(nodes: Sequence[Node]) -> list[Node]:
    """Pinned Search History nodes first in creation order, then the rest newest first."""
    pinned = [n for n in nodes if n.is_search_history]
    ordinary = [n for n in nodes if not n.is_search_history]
    return pinned + ordinary[::-1]


# ── User-location bootstrap ──


def create_user_found_node(
    lat: float,
    lng: float,
    address: Optional[Address] = None,
    location_history: Optional[list[LocationFix]] = None,
) -> Node:
    """A ``userFound`` input node for a device-location capture (not yet stored)."""
    return Node(
        type=NodeType.USER_FOUND,
        payload=UserLocationPayload(
            coords=GeoPoint(lat=lat, lng=lng),
            address=address,
            location_history=location_history or [],
        ),
        address=address,
    )


def complete_user_found_node(store: NodeStore, node_id: str, address: Optional[Address] = None) -> Optional[Node]:
    """Attach the resolved address to a userFound node and mark it completed."""
    node = store.get(node_id)
    if node is None:
        logger.debug("user_location_for_deleted_node", node_id=node_id)
        return None
    if node.type != NodeType.USER_FOUND:
        raise ValueError(f"{node.mn_node_id} is not a userFound node")
    patch: dict = {"status": NodeStatus.COMPLETED, "has_completed": True}
    if address is not None and node.payload is not None:
        payload = node.payload.model_copy(update={"address": address})
        payload.location_history = [
            *payload.location_history,
            LocationFix(coords=payload.coords, address=address),
        ]
        patch.update(payload=payload, address=address)
    logger.info("user_location_resolved", node_id=node.mn_node_id, has_address=address is not None)
    return store.update(node.mn_node_id, patch)
