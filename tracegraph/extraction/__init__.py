"""
Entity extraction: raw lookup responses → typed, identified entities.

``extract_node_entities`` picks the extractor for a node from its type and
apiName. Entities are never cached on the node; callers re-derive them from
the node's raw response whenever they need them.
"""

from __future__ import annotations

from tracegraph.config import get_settings
from tracegraph.extraction.people import count_people, extract_people
from tracegraph.extraction.person_detail import extract_person_detail
from tracegraph.extraction.property import extract_property
from tracegraph.models import ExtractionResult, Node, NodeType, SearchKind

__all__ = [
    "extract_node_entities",
    "extract_people",
    "extract_person_detail",
    "extract_property",
    "primary_result_count",
]


def extract_node_entities(node: Node) -> ExtractionResult:
    """Entities derived from a node's raw result, stamped with the node's identifier.

    Input nodes (start, userFound) carry no result and yield an empty result.
    """
    if node.type == NodeType.PEOPLE_RESULT:
        data = node.person_data if node.person_data is not None else node.response
        return extract_person_detail(data, node.key, node.api_name or SearchKind.PERSON_DETAILS.value)
    if node.type == NodeType.API_RESULT:
        if node.api_name == SearchKind.ZILLOW_SEARCH.value:
            return extract_property(node.response, node.key)
        return extract_people(node.response, node.key, node.api_name or None)
    return ExtractionResult(source=node.api_name or get_settings().extraction.default_source)


def primary_result_count(node: Node) -> int:
    """Size of a result node's primary collection (people, properties, or detail entities)."""
    if node.type == NodeType.API_RESULT:
        if node.api_name == SearchKind.ZILLOW_SEARCH.value:
            return extract_node_entities(node).entity_counts.properties
        return count_people(node.response)
    if node.type == NodeType.PEOPLE_RESULT:
        return extract_node_entities(node).total_entities
    return 0
