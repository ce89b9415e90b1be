"""
Person-detail extraction.

A person-detail response is a bag of heterogeneous groups: the subject's own
record, current and previous addresses, phones, emails, relatives,
associates, and sometimes properties and images. Group names arrive in
several spellings (``currentAddresses`` vs ``Current Address Details List``);
every spelling resolves to the same group here.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable, Optional

from tracegraph.extraction.base import EntityBuilder
from tracegraph.extraction.normalize import (
    as_mapping,
    decode_json_string,
    pick,
    pick_group,
    pick_str,
    split_address_line,
    to_float,
    to_str,
)
from tracegraph.extraction.people import person_fields
from tracegraph.extraction.property import image_url, property_fields
from tracegraph.models import EntityType, ExtractionResult


def unwrap_person_data(person_data: Any) -> Any:
    """The raw response inside personData.

    Nodes created from an already-parsed lookup store ``{"entities": [...],
    "rawResponse": {...}}``; entities are always re-derived from the raw part.
    """
    data = as_mapping(person_data)
    if "rawResponse" in data and "entities" in data:
        return decode_json_string(data["rawResponse"])
    return decode_json_string(person_data)


def address_fields(item: Any) -> dict[str, Any]:
    """Canonical address fields from an address object or a one-line address string."""
    if isinstance(item, str):
        return dict(split_address_line(item))
    record = as_mapping(item)
    if not record:
        raise TypeError("address item is neither an object nor a string")
    fields: dict[str, Any] = {
        "street": pick_str(record, "street"),
        "city": pick_str(record, "city"),
        "state": pick_str(record, "state"),
        "postal": pick_str(record, "postal"),
        "county": pick_str(record, "county"),
        "dateRange": pick_str(record, "dateRange"),
    }
    lat = to_float(record.get("latitude"))
    lng = to_float(record.get("longitude"))
    if lat is not None and lng is not None:
        fields["coordinates"] = {"latitude": lat, "longitude": lng}
    return fields


def phone_fields(item: Any) -> dict[str, Any]:
    if isinstance(item, (str, int)):
        return {"number": to_str(item)}
    record = as_mapping(item)
    return {
        "number": pick_str(record, "number"),
        "phoneType": pick_str(record, "phoneType"),
        "provider": pick_str(record, "provider"),
        "lastReported": pick_str(record, "lastReported"),
    }


def email_value(item: Any) -> str:
    if isinstance(item, str):
        return item.strip()
    return pick_str(as_mapping(item), "email")


class _DetailWalker:
    """Walks each group of one person-detail response into a shared builder."""

    def __init__(self, builder: EntityBuilder, response: Mapping[str, Any]) -> None:
        self.builder = builder
        self.response = response

    def _walk(self, group: str, build: Callable[[int, Any], None]) -> None:
        self.builder.walk(group, pick_group(self.response, group), build)

    def persons(self, group: str, category: str) -> None:
        def build(i: int, item: Any) -> None:
            if isinstance(item, str):
                fields: dict[str, Any] = {"name": item.strip()}
            else:
                record = as_mapping(item)
                if not record:
                    raise TypeError("person item is neither an object nor a string")
                fields = person_fields(record)
            if not fields.get("name") and not fields.get("apiPersonId"):
                self.builder.skip(group, i, "no name or person id")
                return
            cat = pick_str(as_mapping(item), "category") or category
            self.builder.add(EntityType.PERSON, group, i, category=cat, **fields)

        self._walk(group, build)

    def addresses(self, group: str, category: str) -> None:
        def build(i: int, item: Any) -> None:
            fields = address_fields(item)
            if not any(fields.get(k) for k in ("street", "city", "state", "postal")):
                self.builder.skip(group, i, "empty address")
                return
            cat = pick_str(as_mapping(item), "category") or category
            self.builder.add(EntityType.ADDRESS, group, i, category=cat, **fields)

        self._walk(group, build)

    def phones(self) -> None:
        def build(i: int, item: Any) -> None:
            fields = phone_fields(item)
            if not fields["number"]:
                self.builder.skip("phones", i, "no phone number")
                return
            self.builder.add(EntityType.PHONE, "phones", i, **fields)

        self._walk("phones", build)

    def emails(self) -> None:
        def build(i: int, item: Any) -> None:
            email = email_value(item)
            if "@" not in email:
                self.builder.skip("emails", i, "not an email address")
                return
            self.builder.add(EntityType.EMAIL, "emails", i, email=email)

        self._walk("emails", build)

    def properties(self) -> None:
        def build(i: int, item: Any) -> None:
            record = as_mapping(item)
            if not record:
                raise TypeError("property item is not an object")
            fields = property_fields(record)
            if not fields["zpid"] and not fields["street"]:
                self.builder.skip("properties", i, "no zpid or street")
                return
            self.builder.add(EntityType.PROPERTY, "properties", i, **fields)

        self._walk("properties", build)

    def images(self) -> None:
        def build(i: int, item: Any) -> None:
            url = image_url(item)
            if not url:
                self.builder.skip("images", i, "no image url")
                return
            caption = pick_str(as_mapping(item), "caption")
            self.builder.add(EntityType.IMAGE, "images", i, url=url, caption=caption)

        self._walk("images", build)


def extract_person_detail(person_data: Any, parent_node_id: str, source: Optional[str] = None) -> ExtractionResult:
    """Extract every entity group from a person-detail response.

    Render order: the subject, addresses (generic, current, previous), phones,
    emails, persons (generic, relatives, associates), properties, images.
    """
    raw = unwrap_person_data(person_data)
    response = as_mapping(raw)
    builder = EntityBuilder(parent_node_id, source or to_str(pick(response, "source")), "person_detail")

    walker = _DetailWalker(builder, response)
    walker.persons("person_details", "subject")
    walker.addresses("addresses", "")
    walker.addresses("current_addresses", "current")
    walker.addresses("previous_addresses", "previous")
    walker.phones()
    walker.emails()
    walker.persons("persons", "")
    walker.persons("relatives", "relative")
    walker.persons("associates", "associate")
    walker.properties()
    walker.images()
    return builder.result(raw)
