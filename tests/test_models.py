"""
Unit tests for core data models.

Verifies wire-name serialization of nodes, legacy value handling, the
entity identifier/traceability invariant, and entity count arithmetic.
"""

import pytest
from pydantic import ValidationError

from tracegraph.models import (
    Address,
    EntityCounts,
    EntityType,
    Node,
    NodeStatus,
    NodeType,
    PersonEntity,
    entity_from_record,
    entity_to_record,
)


class TestNode:
    def test_wire_names(self) -> None:
        node = Node(
            type=NodeType.PEOPLE_RESULT,
            mn_node_id="node-a",
            parent_node_id="node-p",
            child_mnuda_ids=["node-c"],
            clicked_entity_id="entity-e",
            clicked_entity_data={"name": "Jane"},
            has_completed=True,
        )
        record = node.to_record()
        assert record["mnNodeId"] == "node-a"
        assert record["parentNodeId"] == "node-p"
        assert record["childMnudaIds"] == ["node-c"]
        assert record["clickedEntityId"] == "entity-e"
        assert record["clickedEntityData"] == {"name": "Jane"}
        assert record["hasCompleted"] is True
        assert record["type"] == "people-result"
        assert Node.from_record(record).model_dump() == node.model_dump()

    def test_nulls_become_empty(self) -> None:
        node = Node.from_record({"type": "start", "mnNodeId": None, "parentNodeId": None, "childMnudaIds": None})
        assert node.mn_node_id == ""
        assert node.parent_node_id == ""
        assert node.child_mnuda_ids == []

    def test_children_deduplicated(self) -> None:
        node = Node(type=NodeType.START, child_mnuda_ids=["a", "b", "a", ""])
        assert node.child_mnuda_ids == ["a", "b"]

    def test_legacy_pending_status(self) -> None:
        assert Node.from_record({"type": "userFound", "status": "pending"}).status == NodeStatus.READY

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Node.from_record({"type": "mystery"})

    def test_kind_properties(self) -> None:
        assert Node(type=NodeType.USER_FOUND).is_input_node
        assert Node(type=NodeType.API_RESULT).is_result_node
        assert Node(type=NodeType.START, api_name="Search History").is_search_history
        assert Node(type=NodeType.START, id="n1").key == "n1"


class TestAddress:
    def test_completeness(self) -> None:
        assert Address(street="1 A St", city="X", state="MN").is_complete
        assert not Address(street="1 A St", city="X").is_complete

    def test_formatting(self) -> None:
        address = Address(street=" 1 A St ", city="X", state="MN", zip=55401)
        assert address.one_line() == "1 A St, X, MN, 55401"
        assert address.city_state_zip() == "X, MN 55401"
        assert Address(state="MN").city_state_zip() == "MN"


class TestEntities:
    def test_traceable_requires_identifier(self) -> None:
        with pytest.raises(ValidationError):
            PersonEntity(parent_node_id="n1", is_traceable=True, name="Jane")

    def test_identifier_requires_traceable(self) -> None:
        with pytest.raises(ValidationError):
            PersonEntity(parent_node_id="n1", mn_entity_id="entity-x", name="Jane")

    def test_parent_required(self) -> None:
        with pytest.raises(ValidationError):
            PersonEntity(parent_node_id="", name="Jane")

    def test_union_discriminates_on_type(self) -> None:
        entity = entity_from_record(
            {"type": "phone", "parentNodeId": "n1", "number": "612-555-0100", "phoneType": "Wireless"}
        )
        assert entity.type == EntityType.PHONE.value
        assert entity.phone_type == "Wireless"
        assert entity_to_record(entity)["phoneType"] == "Wireless"

    def test_unknown_entity_type(self) -> None:
        with pytest.raises(ValidationError):
            entity_from_record({"type": "vehicle", "parentNodeId": "n1"})


class TestEntityCounts:
    def test_bump_and_total(self) -> None:
        counts = EntityCounts()
        counts.bump(EntityType.PERSON)
        counts.bump("address", by=2)
        assert counts.persons == 1
        assert counts.get(EntityType.ADDRESS) == 2
        assert counts.total == 3

    def test_merge(self) -> None:
        merged = EntityCounts(phones=1).merge(EntityCounts(phones=2, emails=1))
        assert merged.phones == 3
        assert merged.total == 4
