"""Tests for the relationship resolver: parents, children, lineage, validation."""

from typing import Any

from tracegraph.models import Node, NodeType, SearchKind
from tracegraph.relationships import (
    RelationshipType,
    depth,
    descendants,
    lineage,
    resolve_children,
    resolve_parent,
    resolve_relationships,
    validate_relationships,
)
from tracegraph.store import NodeStore


def _node(mn_id: str, parent: str = "", children: list[str] | None = None, **kwargs: Any) -> Node:
    return Node(
        type=kwargs.pop("type", NodeType.START),
        mn_node_id=mn_id,
        parent_node_id=parent,
        child_mnuda_ids=children or [],
        **kwargs,
    )


def _tree(store: NodeStore, people_response: dict[str, Any]) -> tuple[str, str, str]:
    root = store.create(Node(type=NodeType.START, api_name=SearchKind.NAME_SEARCH.value))
    result = store.create(
        Node(
            type=NodeType.API_RESULT,
            api_name=SearchKind.NAME_SEARCH.value,
            parent_node_id=root,
            response=people_response,
        )
    )
    leaf = store.create(
        Node(
            type=NodeType.API_RESULT,
            api_name=SearchKind.ADDRESS_INTEL.value,
            parent_node_id=result,
            response={"people": [{"name": "A"}]},
        )
    )
    return root, result, leaf


class TestResolve:
    def test_parent_and_children(self, store: NodeStore, people_response: dict[str, Any]) -> None:
        root, result, leaf = _tree(store, people_response)
        nodes = store.all()
        assert resolve_parent(store.require(leaf), nodes) is store.require(result)
        assert resolve_parent(store.require(root), nodes) is None
        assert resolve_children(store.require(root), nodes) == [store.require(result)]

    def test_lineage_is_root_first(self, store: NodeStore, people_response: dict[str, Any]) -> None:
        root, result, leaf = _tree(store, people_response)
        chain = lineage(store.require(leaf), store.all())
        assert [n.mn_node_id for n in chain] == [root, result, leaf]
        assert depth(store.require(leaf), store.all()) == 2
        assert depth(store.require(root), store.all()) == 0

    def test_descendants(self, store: NodeStore, people_response: dict[str, Any]) -> None:
        root, result, leaf = _tree(store, people_response)
        assert [n.mn_node_id for n in descendants(store.require(root), store.all())] == [result, leaf]

    def test_summary(self, store: NodeStore, people_response: dict[str, Any]) -> None:
        root, result, _ = _tree(store, people_response)
        rel = resolve_relationships(store.require(root), store.all())
        assert rel.relationship_type == RelationshipType.ROOT
        assert rel.entity_count == 0
        assert rel.descendant_count == 2
        assert rel.descendant_entity_count == 3

        child = resolve_relationships(store.require(result), store.all())
        assert child.relationship_type == RelationshipType.CHILD
        assert child.entity_count == 2
        assert child.depth == 1

    def test_dangling_references_do_not_raise(self) -> None:
        orphan = _node("node-b", parent="node-gone", children=["node-also-gone"])
        nodes = [orphan]
        rel = resolve_relationships(orphan, nodes)
        assert rel.parent is None
        assert rel.children == []
        assert rel.relationship_type == RelationshipType.ORPHAN
        assert lineage(orphan, nodes) == [orphan]


class TestValidate:
    def test_store_built_graph_is_valid(self, store: NodeStore, people_response: dict[str, Any]) -> None:
        _tree(store, people_response)
        report = validate_relationships(store.all())
        assert report.is_valid
        assert report.orphans == []

    def test_orphans_do_not_invalidate(self, store: NodeStore, people_response: dict[str, Any]) -> None:
        _, result, leaf = _tree(store, people_response)
        store.delete(result)
        report = validate_relationships(store.all())
        assert report.orphans == [leaf]
        assert report.is_valid

    def test_inconsistent_links(self) -> None:
        a = _node("node-a", children=["node-b", "node-x"])
        b = _node("node-b", parent="node-c")
        c = _node("node-c")
        report = validate_relationships([a, b, c])
        assert ("node-a", "node-x") in report.dangling_children
        assert ("node-a", "node-b") in report.mismatched_children
        assert ("node-c", "node-b") in report.missing_child_links
        assert not report.is_valid

    def test_cycle_terminates(self) -> None:
        a = _node("node-a", parent="node-b", children=["node-b"])
        b = _node("node-b", parent="node-a", children=["node-a"])
        nodes = [a, b]
        assert [n.mn_node_id for n in lineage(a, nodes)] == ["node-b", "node-a"]
        assert [n.mn_node_id for n in descendants(a, nodes)] == ["node-b"]
        report = validate_relationships(nodes)
        assert set(report.cycles) == {"node-a", "node-b"}

    def test_duplicates(self) -> None:
        report = validate_relationships([_node("node-a"), _node("node-a")])
        assert report.duplicate_ids == ["node-a"]
