"""
Tests for entity extraction.

Covers the three response shapes (people listing, person detail, property),
upstream key drift, malformed items, and identifier stability across
re-extraction.
"""

import json
from typing import Any

import pytest

from tracegraph.extraction import extract_node_entities, primary_result_count
from tracegraph.extraction.base import is_traceable
from tracegraph.extraction.normalize import (
    as_list,
    lookup,
    norm_key,
    pick_group,
    split_address_line,
    to_float,
    to_str_list,
)
from tracegraph.extraction.people import count_people, extract_people
from tracegraph.extraction.person_detail import extract_person_detail
from tracegraph.extraction.property import extract_property
from tracegraph.models import EntityType, Node, NodeType, SearchKind


class TestPeopleExtraction:
    def test_traceable_person(self) -> None:
        """A listed person with an upstream id is traceable and identified."""
        result = extract_people({"people": [{"name": "Jane Doe", "apiPersonId": "p1"}]}, "n1")
        assert result.total_entities == 1
        person = result.entities[0]
        assert person.type == "person"
        assert person.parent_node_id == "n1"
        assert person.is_traceable is True
        assert person.mn_entity_id and person.mn_entity_id.startswith("entity-")
        assert person.api_person_id == "p1"

    def test_fields_and_provenance(self, people_response: dict[str, Any]) -> None:
        result = extract_people(people_response, "n1", "Name Search")
        jane, jim = result.entities
        assert jane.age == 45
        assert jane.lives_in == "Minneapolis, MN"
        assert jane.related_to == ["John Doe", "Sam Doe"]
        assert jane.source == "Name Search"
        assert jane.category == "listing"
        assert jim.name == "Jim Roe"
        assert jim.is_traceable is False
        assert jim.mn_entity_id is None
        assert result.entity_counts.persons == 2

    def test_source_falls_back_to_response(self, people_response: dict[str, Any]) -> None:
        result = extract_people(people_response, "n1")
        assert {e.source for e in result.entities} == {"SkipTrace"}

    def test_drifted_keys(self) -> None:
        """Alternate group and field spellings resolve to the same entity."""
        response = {"peopleDetails": [{"Person_name": "Jane Doe", "Person ID": "p1", "Lives in": "Duluth"}]}
        person = extract_people(response, "n1").entities[0]
        assert person.name == "Jane Doe"
        assert person.api_person_id == "p1"
        assert person.lives_in == "Duluth"

    def test_json_encoded_response(self) -> None:
        encoded = json.dumps({"people": [{"name": "Jane Doe", "apiPersonId": "p1"}]})
        assert extract_people(encoded, "n1").total_entities == 1

    def test_bare_list_response(self) -> None:
        assert extract_people([{"name": "Jane Doe"}], "n1").total_entities == 1

    def test_malformed_items_are_skipped(self) -> None:
        response = {"people": [None, 42, "junk", {}, {"name": "Ok Person"}]}
        result = extract_people(response, "n1")
        assert [e.name for e in result.entities] == ["Ok Person"]
        assert result.skipped_items == 4

    @pytest.mark.parametrize("age", [float("inf"), json.loads("1e400"), "9" * 400, 10**400])
    def test_out_of_range_numbers_do_not_abort(self, age: Any) -> None:
        """An unrepresentable number drops that field, not the item or the rest of the listing."""
        response = {"people": [{"name": "Bad Age", "age": age}, {"name": "Jane Doe", "apiPersonId": "p1"}]}
        result = extract_people(response, "n1")
        assert [e.name for e in result.entities] == ["Bad Age", "Jane Doe"]
        assert result.entities[0].age is None
        assert result.entities[1].is_traceable

    @pytest.mark.parametrize("response", [None, "", "not json", 17, {"people": "nobody"}, {"other": []}])
    def test_unusable_responses_yield_nothing(self, response: Any) -> None:
        assert extract_people(response, "n1").total_entities == 0

    def test_blank_parent_rejected(self) -> None:
        with pytest.raises(ValueError, match="parent_node_id"):
            extract_people({"people": [{"name": "Jane"}]}, "")

    def test_ids_stable_across_extractions(self, people_response: dict[str, Any]) -> None:
        first = extract_people(people_response, "n1")
        second = extract_people(people_response, "n1")
        assert [e.mn_entity_id for e in first.entities] == [e.mn_entity_id for e in second.entities]

    def test_ids_differ_per_parent(self, people_response: dict[str, Any]) -> None:
        a = extract_people(people_response, "n1").entities[0]
        b = extract_people(people_response, "n2").entities[0]
        assert a.mn_entity_id != b.mn_entity_id

    def test_count_people(self, people_response: dict[str, Any]) -> None:
        assert count_people(people_response) == 2
        assert count_people({"people": [None, {"age": 3}]}) == 0


class TestPersonDetailExtraction:
    def test_all_groups(self, person_detail_response: dict[str, Any]) -> None:
        result = extract_person_detail(person_detail_response, "n1", "Person Details")
        counts = result.entity_counts
        assert counts.persons == 3
        assert counts.addresses == 2
        assert counts.phones == 1
        assert counts.emails == 1
        assert counts.total == result.total_entities == 7

    def test_render_order_and_categories(self, person_detail_response: dict[str, Any]) -> None:
        result = extract_person_detail(person_detail_response, "n1")
        assert [(e.type, e.category) for e in result.entities] == [
            ("person", "subject"),
            ("address", "current"),
            ("address", "previous"),
            ("phone", ""),
            ("email", ""),
            ("person", "relative"),
            ("person", "associate"),
        ]

    def test_traceability(self, person_detail_response: dict[str, Any]) -> None:
        result = extract_person_detail(person_detail_response, "n1")
        traceable = result.traceable()
        assert {e.type for e in traceable} == {"address", "person"}
        address = result.by_type(EntityType.ADDRESS)[0]
        assert address.is_traceable
        assert address.to_address().one_line() == "123 Main St, Minneapolis, MN, 55401"
        previous = result.by_type(EntityType.ADDRESS)[1]
        assert not previous.is_traceable
        assert previous.mn_entity_id is None

    def test_empty_addresses_array(self) -> None:
        """An empty group yields zero entities of that type, without error."""
        result = extract_person_detail({"addresses": [], "phones": ["612-555-0100"]}, "n1")
        assert result.entity_counts.addresses == 0
        assert result.by_type(EntityType.ADDRESS) == []
        assert result.entity_counts.phones == 1

    def test_group_shapes_are_tolerated(self) -> None:
        response = {
            "emails": "jane@example.com",
            "phones": {"number": "612-555-0100"},
            "addresses": ["12 Oak Ave, St Paul, MN 55102", 7, None],
        }
        result = extract_person_detail(response, "n1")
        assert result.entity_counts.emails == 1
        assert result.entity_counts.phones == 1
        assert result.entity_counts.addresses == 1
        assert result.by_type(EntityType.ADDRESS)[0].postal == "55102"
        assert result.skipped_items == 2

    def test_yaml_group_aliases(self) -> None:
        result = extract_person_detail({"Address History": ["12 Oak Ave, St Paul, MN 55102"]}, "n1")
        assert result.entity_counts.addresses == 1

    def test_unwraps_parsed_person_data(self, person_detail_response: dict[str, Any]) -> None:
        wrapped = {"entities": [{"type": "stale"}], "rawResponse": person_detail_response}
        assert extract_person_detail(wrapped, "n1").total_entities == 7

    def test_malformed_response(self) -> None:
        assert extract_person_detail("<html>502</html>", "n1").total_entities == 0


class TestPropertyExtraction:
    def test_listing(self, property_response: dict[str, Any]) -> None:
        result = extract_property(property_response, "n1")
        prop = result.by_type(EntityType.PROPERTY)[0]
        assert prop.zpid == "123456"
        assert prop.street == "123 Main St"
        assert prop.postal == "55401"
        assert prop.price == 350000
        assert prop.year_built == 1925
        assert prop.url.startswith("https://www.zillow.com/homedetails/")
        assert prop.coordinates is not None and prop.coordinates.latitude == pytest.approx(44.97)
        assert prop.price_history[0]["event"] == "Listed for sale"
        assert prop.is_traceable
        assert prop.source == "Zillow"

    def test_images_and_contacts(self, property_response: dict[str, Any]) -> None:
        result = extract_property(property_response, "n1")
        urls = [e.url for e in result.by_type(EntityType.IMAGE)]
        assert urls == ["https://photos.example.com/main.jpg", "https://photos.example.com/large.jpg"]
        assert [(p.name, p.category) for p in result.by_type(EntityType.PERSON)] == [
            ("Pat Agent", "agent"),
            ("North Realty", "broker"),
        ]
        assert result.by_type(EntityType.PHONE)[0].number == "612-555-0199"
        assert result.by_type(EntityType.EMAIL)[0].email == "pat@realty.example"
        assert result.entity_counts.total == 7

    def test_out_of_range_year_built(self, property_response: dict[str, Any]) -> None:
        result = extract_property({**property_response, "yearBuilt": "9" * 400, "price": 1e400}, "n1")
        prop = result.by_type(EntityType.PROPERTY)[0]
        assert prop.year_built is None
        assert prop.price is None
        assert result.entity_counts.total == 7

    def test_wrapped_listing(self, property_response: dict[str, Any]) -> None:
        assert extract_property({"data": property_response}, "n1").entity_counts.properties == 1

    def test_record_without_address_or_zpid(self) -> None:
        result = extract_property({"price": 1}, "n1")
        assert result.total_entities == 0
        assert result.skipped_items == 1


class TestNodeDispatch:
    def test_input_nodes_have_no_entities(self) -> None:
        node = Node(type=NodeType.START, mn_node_id="node-a", query={"name": "x"})
        assert extract_node_entities(node).total_entities == 0
        assert primary_result_count(node) == 0

    def test_people_result_uses_person_data(self, person_detail_response: dict[str, Any]) -> None:
        node = Node(type=NodeType.PEOPLE_RESULT, mn_node_id="node-a", person_data=person_detail_response)
        result = extract_node_entities(node)
        assert result.total_entities == 7
        assert all(e.parent_node_id == "node-a" for e in result.entities)
        assert result.source == "Person Details"

    def test_property_result(self, property_response: dict[str, Any]) -> None:
        node = Node(
            type=NodeType.API_RESULT,
            mn_node_id="node-a",
            api_name=SearchKind.ZILLOW_SEARCH.value,
            response=property_response,
        )
        assert primary_result_count(node) == 1

    def test_people_listing_result(self, people_response: dict[str, Any]) -> None:
        node = Node(type=NodeType.API_RESULT, mn_node_id="node-a", api_name="Phone Search", response=people_response)
        assert primary_result_count(node) == 2
        assert extract_node_entities(node).source == "Phone Search"


class TestNormalize:
    def test_norm_key(self) -> None:
        assert norm_key("Current Address_Details-List") == "currentaddressdetailslist"

    def test_lookup_skips_empty_values(self) -> None:
        assert lookup({"name": "", "fullName": "Jane"}, ("name", "fullName")) == "Jane"

    def test_pick_group_cap(self) -> None:
        assert len(pick_group({"phones": list(range(10))}, "phones", limit=3)) == 3

    def test_as_list(self) -> None:
        assert as_list(None) == []
        assert as_list("x") == ["x"]
        assert as_list('["a", "b"]') == ["a", "b"]

    def test_to_float(self) -> None:
        assert to_float("$350,000") == 350000.0
        assert to_float("Age 45") == 45.0
        assert to_float(True) is None
        assert to_float("n/a") is None
        assert to_float(float("nan")) is None
        assert to_float("9" * 400) is None
        assert to_float(10**400) is None

    def test_to_str_list(self) -> None:
        assert to_str_list("A, B") == ["A", "B"]
        assert to_str_list([{"name": "A"}, "B", None]) == ["A", "B"]

    def test_split_address_line(self) -> None:
        assert split_address_line("123 Main St, Minneapolis, MN 55401") == {
            "street": "123 Main St",
            "city": "Minneapolis",
            "state": "MN",
            "postal": "55401",
        }

    def test_is_traceable(self) -> None:
        assert is_traceable("person", {"apiPersonId": "p1"})
        assert not is_traceable("person", {"apiPersonId": "  "})
        assert is_traceable("address", {"street": "1 A St", "city": "X", "state": "MN"})
        assert not is_traceable("address", {"street": "1 A St", "city": "X"})
        assert not is_traceable("phone", {"number": "1"})
