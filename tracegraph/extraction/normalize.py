"""
Tolerant coercion helpers for weakly-typed upstream payloads.

Upstream lookup APIs drift: a field may be a single value, a list, a
JSON-encoded string, or missing, and the same key shows up as ``livesIn``,
``lives_in`` or ``Lives in`` depending on the provider and the day. Every
helper here returns an empty/absent value instead of raising, so one odd
payload can never abort an extraction.

Key matching is spelling-insensitive: keys are compared after lowercasing and
dropping spaces, underscores and dashes.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable, Mapping
from functools import lru_cache
from typing import Any, Optional

from tracegraph.config import get_settings

_KEY_STRIP = re.compile(r"[\s_\-]+")
_NUMBER = re.compile(r"-?\d[\d,]*(?:\.\d+)?")

# Canonical group name → upstream spellings
GROUP_ALIASES: dict[str, tuple[str, ...]] = {
    "people": ("people", "peopleDetails", "records", "results"),
    "person_details": ("personDetails", "Person Details"),
    "addresses": ("addresses",),
    "current_addresses": ("currentAddresses", "Current Address Details List", "currentAddressDetails"),
    "previous_addresses": ("previousAddresses", "Previous Address Details", "previousAddressDetailsList"),
    "phones": ("phones", "All Phone Details", "phoneNumbers"),
    "emails": ("emails", "Email Addresses", "emailAddresses"),
    "persons": ("persons",),
    "relatives": ("relatives", "All Relatives"),
    "associates": ("associates", "All Associates"),
    "properties": ("properties", "props"),
    "images": ("images", "photos"),
}

# Canonical item field → upstream spellings
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("name", "personName", "Person_name", "fullName"),
    "firstName": ("firstName", "first"),
    "middleInitial": ("middleInitial", "middleName"),
    "lastName": ("lastName", "last"),
    "age": ("age",),
    "born": ("born", "dob", "birthDate"),
    "livesIn": ("livesIn", "Lives in", "currentCity"),
    "usedToLiveIn": ("usedToLiveIn", "Used to live in", "previousCities"),
    "relatedTo": ("relatedTo", "Related to", "relatives"),
    "telephone": ("telephone", "phone"),
    "apiPersonId": ("apiPersonId", "personId", "Person ID", "id"),
    "personLink": ("personLink", "Person Link", "profileUrl", "link"),
    "street": ("street", "streetAddress", "address1", "line1"),
    "city": ("city", "addressLocality", "locality"),
    "state": ("state", "addressRegion", "region"),
    "postal": ("postal", "postalCode", "zip", "zipcode", "zipCode"),
    "county": ("county",),
    "dateRange": ("dateRange", "timespan", "dates"),
    "number": ("number", "phoneNumber", "phone", "telephone"),
    "phoneType": ("phoneType", "type", "lineType"),
    "provider": ("provider", "carrier"),
    "lastReported": ("lastReported", "lastSeen"),
    "email": ("email", "emailAddress", "address"),
    "url": ("url", "src", "link", "href"),
    "caption": ("caption", "title", "description"),
    "source": ("source",),
}


def norm_key(key: Any) -> str:
    return _KEY_STRIP.sub("", str(key)).lower()


@lru_cache(maxsize=1)
def _yaml_aliases() -> tuple[dict[str, tuple[str, ...]], dict[str, tuple[str, ...]]]:
    extra = get_settings().field_aliases or {}
    groups = {k: tuple(str(v) for v in as_list(vals)) for k, vals in as_mapping(extra.get("groups")).items()}
    fields = {k: tuple(str(v) for v in as_list(vals)) for k, vals in as_mapping(extra.get("fields")).items()}
    return groups, fields


def group_keys(group: str) -> tuple[str, ...]:
    extra_groups, _ = _yaml_aliases()
    return GROUP_ALIASES.get(group, (group,)) + extra_groups.get(group, ())


def field_keys(field: str) -> tuple[str, ...]:
    _, extra_fields = _yaml_aliases()
    return FIELD_ALIASES.get(field, (field,)) + extra_fields.get(field, ())


# ── Shape coercion ──


def decode_json_string(value: Any) -> Any:
    """Decode a JSON-encoded object/array string; anything else is returned unchanged."""
    if isinstance(value, (bytes, bytearray)):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("{", "["):
            try:
                return json.loads(stripped)
            except (json.JSONDecodeError, RecursionError):
                return value
    return value


def as_mapping(value: Any) -> dict[str, Any]:
    """The value as a dict, or an empty dict."""
    value = decode_json_string(value)
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def as_list(value: Any) -> list[Any]:
    """The value as a list: None → [], scalar or mapping → [value]."""
    value = decode_json_string(value)
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return [value]


def lookup(mapping: Mapping[str, Any], keys: Iterable[str]) -> Any:
    """First non-empty value among ``keys``, matching spelling-insensitively."""
    if not isinstance(mapping, Mapping) or not mapping:
        return None
    wanted = [norm_key(k) for k in keys]
    index: dict[str, Any] = {}
    for k, v in mapping.items():
        index.setdefault(norm_key(k), v)
    for w in wanted:
        v = index.get(w)
        if v is not None and v != "" and v != [] and v != {}:
            return v
    return None


def pick(mapping: Mapping[str, Any], field: str) -> Any:
    return lookup(mapping, field_keys(field))


def pick_group(response: Mapping[str, Any], group: str, limit: Optional[int] = None) -> list[Any]:
    """Items of a response group, coerced to a list and capped to the configured limit."""
    items = as_list(lookup(response, group_keys(group)))
    if limit is None:
        limit = get_settings().extraction.max_items_per_group
    return items[:limit] if limit and limit > 0 else items


# ── Scalar coercion ──


def to_str(value: Any) -> str:
    """Text for str/number values; empty for containers, bools and None."""
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return str(int(value)) if isinstance(value, float) and value.is_integer() else str(value)
    if isinstance(value, str):
        return value.strip()
    return ""


def pick_str(mapping: Mapping[str, Any], field: str) -> str:
    return to_str(pick(mapping, field))


def to_float(value: Any) -> Optional[float]:
    """Numbers, or the first number in a string like "$350,000" or "Age 45"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            f = float(value)
        except OverflowError:
            return None
        return f if math.isfinite(f) else None
    if isinstance(value, str):
        m = _NUMBER.search(value)
        if m:
            try:
                f = float(m.group().replace(",", ""))
            except ValueError:
                return None
            return f if math.isfinite(f) else None
    return None


def to_int(value: Any) -> Optional[int]:
    f = to_float(value)
    return int(f) if f is not None else None


def to_str_list(value: Any) -> list[str]:
    """Names from a list of strings, a list of {name: ...} records, or a comma-separated string."""
    value = decode_json_string(value)
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    out: list[str] = []
    for item in as_list(value):
        if isinstance(item, Mapping):
            s = to_str(lookup(item, field_keys("name")))
        else:
            s = to_str(item)
        if s:
            out.append(s)
    return out


def split_address_line(line: str) -> dict[str, str]:
    """Best-effort split of "123 Main St, Minneapolis, MN 55401" into parts."""
    parts = [p.strip() for p in (line or "").split(",") if p.strip()]
    result = {"street": "", "city": "", "state": "", "postal": ""}
    if not parts:
        return result
    result["street"] = parts[0]
    if len(parts) >= 2:
        result["city"] = parts[1]
    if len(parts) >= 3:
        tail = parts[2].split()
        if tail:
            result["state"] = tail[0]
        if len(tail) > 1:
            result["postal"] = tail[1]
    return result
