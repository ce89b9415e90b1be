"""
Title Derivation — human-readable titles for nodes.

Precedence: the user's customTitle, then an automatic title built from the
node's type and payload (address, person name, search query), then a generic
fallback per node type. Titles are derived on every render and never stored.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional, Union

from tracegraph.extraction import extract_node_entities
from tracegraph.extraction.normalize import as_mapping, pick_group, to_str
from tracegraph.extraction.people import people_records, person_name
from tracegraph.extraction.person_detail import unwrap_person_data
from tracegraph.extraction.property import property_address, property_records
from tracegraph.models import PEOPLE_LISTING_KINDS, Address, Entity, EntityType, Node, NodeType, SearchKind

FALLBACK_TITLES: dict[NodeType, str] = {
    NodeType.USER_FOUND: "User Location",
    NodeType.START: "Search Node",
    NodeType.PEOPLE_RESULT: "Person Details",
}


def address_primary_value(address: Union[Address, Mapping[str, Any], str, None]) -> str:
    """Address parts joined as "street, city, state, zip", blank parts left out."""
    if address is None:
        return ""
    if isinstance(address, str):
        return address.strip()
    if isinstance(address, Address):
        return address.one_line()
    data = as_mapping(address)
    parts = (data.get("street"), data.get("city"), data.get("state"), data.get("zip") or data.get("postal"))
    return ", ".join(s for s in (to_str(p) for p in parts) if s)


def person_primary_value(person: Any) -> str:
    """A person's display name from a name field or first/middle/last parts."""
    if hasattr(person, "name") and isinstance(person.name, str):
        return person.name.strip()
    return person_name(as_mapping(person))


def entity_primary_value(entity: Entity) -> str:
    """The one value a row shows for an entity: its address, number, email, name or url."""
    if entity.type in (EntityType.ADDRESS.value, EntityType.PROPERTY.value):
        return entity.to_address().one_line()
    if entity.type == EntityType.PHONE.value:
        return entity.number
    if entity.type == EntityType.EMAIL.value:
        return entity.email
    if entity.type == EntityType.PERSON.value:
        return entity.name
    return entity.url


def search_query_primary_value(query: Any) -> str:
    """The most telling part of a search input: name, then email, phone, address."""
    data = as_mapping(query)
    if not data:
        return ""
    if data.get("firstName") or data.get("lastName"):
        return " ".join(
            s for s in (to_str(data.get(k)) for k in ("firstName", "middleInitial", "lastName")) if s
        )
    for key in ("name", "email", "phone"):
        value = to_str(data.get(key))
        if value:
            return value
    address = data.get("address")
    if isinstance(address, (str, Mapping)):
        return address_primary_value(address)
    if any(data.get(k) for k in ("street", "city", "state", "zip")):
        return address_primary_value(data)
    return ""


def response_primary_value(node: Node) -> str:
    """First person's name from a people listing, or the listing address from a property lookup."""
    if node.response is None:
        return ""
    if node.api_name == SearchKind.ZILLOW_SEARCH.value:
        records = property_records(node.response)
        if records:
            parts = property_address(as_mapping(records[0]))
            return ", ".join(p for p in (parts["street"], parts["city"], parts["state"], parts["postal"]) if p)
        return ""
    if node.api_name in PEOPLE_LISTING_KINDS or pick_group(as_mapping(node.response), "people"):
        for record in people_records(node.response):
            name = person_primary_value(record)
            if name:
                return name
        return ""
    response = as_mapping(node.response)
    return person_primary_value(response) or address_primary_value(response.get("address") or response)


def person_detail_primary_value(node: Node) -> str:
    """Name of the first person entity, else a name in the raw person data."""
    if node.person_data is None:
        return ""
    if node.key:
        people = extract_node_entities(node).by_type(EntityType.PERSON)
        if people and people[0].name:
            return people[0].name
    return person_primary_value(unwrap_person_data(node.person_data))


def _user_found_address(node: Node) -> Optional[Address]:
    if node.payload is not None and node.payload.address is not None:
        return node.payload.address
    return node.address


def node_title(node: Node) -> str:
    if node.custom_title.strip():
        return node.custom_title.strip()

    if node.type == NodeType.USER_FOUND:
        value = address_primary_value(_user_found_address(node))
    elif node.type == NodeType.START:
        value = (
            address_primary_value(node.address)
            or search_query_primary_value(node.query)
            or node.api_name
        )
    elif node.type == NodeType.API_RESULT:
        value = address_primary_value(node.address) or response_primary_value(node)
        return value or f"{node.api_name or 'API'} Result"
    elif node.type == NodeType.PEOPLE_RESULT:
        value = person_detail_primary_value(node)
    else:
        return "Unknown Node"
    return value or FALLBACK_TITLES[node.type]


def should_auto_update_title(node: Node) -> bool:
    """Whether a refreshed automatic title should replace the one on screen.

    Never when the user set a custom title; always once a node has completed;
    otherwise only when the node carries something to derive a title from.
    """
    if node.custom_title:
        return False
    if node.has_completed:
        return True
    if node.type == NodeType.USER_FOUND:
        return _user_found_address(node) is not None
    if node.type == NodeType.START:
        return node.address is not None or bool(node.query)
    if node.type == NodeType.API_RESULT:
        return node.response is not None or node.address is not None
    if node.type == NodeType.PEOPLE_RESULT:
        return node.person_data is not None
    return False
