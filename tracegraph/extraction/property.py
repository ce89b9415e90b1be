"""
Property extraction.

A property lookup answers with one listing record (occasionally a list of
them under ``props``/``properties``). Each record yields a ``property``
entity, one ``image`` entity per photo, and the listing agent/broker contact
details from ``attributionInfo`` as person/phone/email entities.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from tracegraph.extraction.base import EntityBuilder
from tracegraph.extraction.normalize import (
    as_list,
    as_mapping,
    decode_json_string,
    lookup,
    pick_group,
    pick_str,
    split_address_line,
    to_float,
    to_int,
    to_str,
)
from tracegraph.models import EntityType, ExtractionResult

LISTING_BASE_URL = "https://www.zillow.com"

_MAIN_IMAGE_KEYS = ("hiResImageLink", "desktopWebHdpImageLink", "imgSrc")


def property_address(record: Mapping[str, Any]) -> dict[str, str]:
    """street/city/state/postal from a nested ``address`` object, an address line, or top-level keys."""
    raw = decode_json_string(record.get("address"))
    nested = as_mapping(raw)
    if nested:
        parts = {
            "street": pick_str(nested, "street"),
            "city": pick_str(nested, "city"),
            "state": pick_str(nested, "state"),
            "postal": pick_str(nested, "postal"),
        }
    elif isinstance(raw, str) and raw.strip():
        parts = split_address_line(raw)
    else:
        parts = {"street": "", "city": "", "state": "", "postal": ""}
    if not parts["street"]:
        parts["street"] = pick_str(record, "street") or to_str(lookup(record, ("abbreviatedAddress",)))
    for key in ("city", "state", "postal"):
        if not parts[key]:
            parts[key] = pick_str(record, key)
    return parts


def listing_url(record: Mapping[str, Any]) -> str:
    path = to_str(lookup(record, ("hdpUrl", "detailUrl", "url")))
    if path and not path.startswith(("http://", "https://")):
        return LISTING_BASE_URL + (path if path.startswith("/") else "/" + path)
    return path


def coordinates(record: Mapping[str, Any]) -> Optional[dict[str, float]]:
    source = as_mapping(record.get("latLong")) or record
    lat = to_float(lookup(source, ("latitude", "lat")))
    lng = to_float(lookup(source, ("longitude", "lng", "long")))
    if lat is None or lng is None:
        return None
    return {"latitude": lat, "longitude": lng}


def _history(value: Any) -> list[dict[str, Any]]:
    return [m for m in (as_mapping(x) for x in as_list(value)) if m]


def property_fields(record: Mapping[str, Any]) -> dict[str, Any]:
    """Canonical property fields from one upstream listing record."""
    fields: dict[str, Any] = dict(property_address(record))
    fields.update(
        zpid=to_str(lookup(record, ("zpid",))),
        county=pick_str(record, "county"),
        price=to_float(lookup(record, ("price", "listPriceLow", "unformattedPrice"))),
        bedrooms=to_float(lookup(record, ("bedrooms", "beds"))),
        bathrooms=to_float(lookup(record, ("bathrooms", "baths"))),
        livingArea=to_float(lookup(record, ("livingArea", "livingAreaValue", "area"))),
        lotSize=to_float(lookup(record, ("lotSize", "lotAreaValue"))),
        yearBuilt=to_int(lookup(record, ("yearBuilt",))),
        homeType=to_str(lookup(record, ("homeType", "propertyTypeDimension"))),
        homeStatus=to_str(lookup(record, ("homeStatus", "keystoneHomeStatus", "statusType"))),
        priceHistory=_history(lookup(record, ("priceHistory",))),
        taxHistory=_history(lookup(record, ("taxHistory",))),
        url=listing_url(record),
        coordinates=coordinates(record),
        source=pick_str(record, "source"),
    )
    return fields


def image_url(item: Any) -> str:
    """URL of an image given as a string, ``{url: ...}``, or ``{mixedSources: {jpeg: [...]}}``."""
    if isinstance(item, str):
        return item.strip()
    record = as_mapping(item)
    url = pick_str(record, "url")
    if url:
        return url
    jpeg = as_list(as_mapping(record.get("mixedSources")).get("jpeg"))
    for candidate in reversed(jpeg):
        url = pick_str(as_mapping(candidate), "url")
        if url:
            return url
    return ""


def property_records(response: Any) -> list[Any]:
    decoded = decode_json_string(response)
    if isinstance(decoded, list):
        return decoded
    data = as_mapping(decoded)
    listed = pick_group(data, "properties")
    if listed:
        return listed
    for wrapper in ("property", "data"):
        inner = as_mapping(data.get(wrapper))
        if inner and (lookup(inner, ("zpid",)) or inner.get("address")):
            return [inner]
    return [data] if data else []


def _add_images(builder: EntityBuilder, record: Mapping[str, Any], caption: str) -> None:
    main = [u for u in (to_str(lookup(record, (k,))) for k in _MAIN_IMAGE_KEYS) if u][:1]
    photos: list[Any] = main + pick_group(record, "images") + as_list(record.get("responsivePhotos"))

    def build(i: int, item: Any) -> None:
        url = image_url(item)
        if not url:
            builder.skip("images", i, "no image url")
            return
        builder.add(EntityType.IMAGE, "images", i, url=url, caption=caption)

    builder.walk("images", photos, build)


def _add_attribution(builder: EntityBuilder, record: Mapping[str, Any]) -> None:
    info = as_mapping(record.get("attributionInfo"))
    if not info:
        return
    ordinal = 0
    for role in ("agent", "broker"):
        name = to_str(lookup(info, (f"{role}Name",)))
        phone = to_str(lookup(info, (f"{role}PhoneNumber",)))
        email = to_str(lookup(info, (f"{role}Email",)))
        if name:
            builder.add(EntityType.PERSON, "attribution", ordinal, name=name, category=role)
        if phone:
            builder.add(EntityType.PHONE, "attribution", ordinal, number=phone, category=role)
        if email and "@" in email:
            builder.add(EntityType.EMAIL, "attribution", ordinal, email=email, category=role)
        ordinal += 1


def extract_property(response: Any, parent_node_id: str, source: Optional[str] = None) -> ExtractionResult:
    """Extract property, image and listing-contact entities from a property response."""
    builder = EntityBuilder(parent_node_id, source or "Zillow", "property")

    def build(i: int, item: Any) -> None:
        record = as_mapping(item)
        if not record:
            builder.skip("properties", i, "not an object")
            return
        fields = property_fields(record)
        if not fields["zpid"] and not fields["street"]:
            builder.skip("properties", i, "no zpid or street")
            return
        entity = builder.add(EntityType.PROPERTY, "properties", i, category="listing", **fields)
        if entity is None:
            return
        caption = ", ".join(p for p in (fields["street"], fields["city"], fields["state"]) if p)
        _add_images(builder, record, caption)
        _add_attribution(builder, record)

    builder.walk("properties", property_records(response), build)
    return builder.result(response)
