"""
People-listing extraction.

Name, address, phone and email searches all answer with the same shape: a
collection of person records under ``people`` (or one of its drift spellings).
Each record becomes a ``person`` entity; records with an upstream person id
are traceable into a person-detail lookup.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from tracegraph.extraction.base import EntityBuilder
from tracegraph.extraction.normalize import (
    as_list,
    as_mapping,
    decode_json_string,
    pick,
    pick_group,
    pick_str,
    to_int,
    to_str,
    to_str_list,
)
from tracegraph.models import EntityType, ExtractionResult

GROUP = "people"


def person_name(item: Mapping[str, Any]) -> str:
    """Full name, assembling first/middle/last when no single name field exists."""
    name = pick_str(item, "name")
    if name:
        return name
    parts = [pick_str(item, "firstName"), pick_str(item, "middleInitial"), pick_str(item, "lastName")]
    return " ".join(p for p in parts if p)


def person_fields(item: Mapping[str, Any]) -> dict[str, Any]:
    """Canonical person fields from one upstream person record."""
    lives_in = pick(item, "livesIn")
    used_to = pick(item, "usedToLiveIn")
    return {
        "name": person_name(item),
        "age": to_int(pick(item, "age")),
        "born": pick_str(item, "born"),
        "livesIn": to_str(lives_in) or ", ".join(to_str_list(lives_in)),
        "usedToLiveIn": to_str(used_to) or ", ".join(to_str_list(used_to)),
        "relatedTo": to_str_list(pick(item, "relatedTo")),
        "telephone": pick_str(item, "telephone"),
        "apiPersonId": pick_str(item, "apiPersonId"),
        "personLink": pick_str(item, "personLink"),
    }


def people_records(response: Any) -> list[Any]:
    """The raw person records of a people-listing response (a bare list is accepted)."""
    decoded = decode_json_string(response)
    if isinstance(decoded, list):
        return decoded
    return pick_group(as_mapping(decoded), GROUP)


def extract_people(response: Any, parent_node_id: str, source: Optional[str] = None) -> ExtractionResult:
    """Extract person entities from a people-listing response."""
    builder = EntityBuilder(parent_node_id, source or pick_str(as_mapping(response), "source"), "people")

    def build(i: int, item: Any) -> None:
        record = as_mapping(item)
        if not record:
            builder.skip(GROUP, i, "not an object")
            return
        fields = person_fields(record)
        if not fields["name"] and not fields["apiPersonId"]:
            builder.skip(GROUP, i, "no name or person id")
            return
        builder.add(EntityType.PERSON, GROUP, i, category="listing", **fields)

    builder.walk(GROUP, people_records(response), build)
    return builder.result(response)


def count_people(response: Any) -> int:
    """Number of usable person records, without building entities."""
    return sum(
        1 for item in as_list(people_records(response))
        if (rec := as_mapping(item)) and (person_name(rec) or pick_str(rec, "apiPersonId"))
    )
