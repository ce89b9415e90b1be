"""
Core data models for the investigation graph engine.

These Pydantic models define the typed records the engine works with: the
search-step nodes that make up an investigation, the addresses they carry, and
the entities extracted from upstream lookup responses.

Design principles:
  - Every entity carries provenance (parentNodeId, source) and is traceable
    back to the node whose response produced it
  - Entities are one tagged union discriminated on ``type``; code switches on
    the tag, never on the Python class
  - Raw upstream payloads stay ``Any`` on the node and are only converted to
    strict types inside the extraction layer
  - Everything serializes with the camelCase wire names (mnNodeId,
    childMnudaIds, ...) so persisted sessions round-trip without loss
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


def _now_ms() -> int:
    return int(time.time() * 1000)


# ═══════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════


class NodeType(str, Enum):
    """Kinds of investigation steps."""

    START = "start"
    API_RESULT = "api-result"
    PEOPLE_RESULT = "people-result"
    USER_FOUND = "userFound"


class NodeStatus(str, Enum):
    """Lifecycle states of a node."""

    READY = "ready"
    SEARCHING = "searching"
    COMPLETED = "completed"


class SearchKind(str, Enum):
    """Upstream search modalities, as stored in a node's ``apiName``."""

    SKIP_TRACE = "Skip Trace"
    NAME_SEARCH = "Name Search"
    EMAIL_SEARCH = "Email Search"
    PHONE_SEARCH = "Phone Search"
    ZILLOW_SEARCH = "Zillow Search"
    ADDRESS_INTEL = "Address Intel"
    PERSON_DETAILS = "Person Details"
    SEARCH_HISTORY = "Search History"


class EntityType(str, Enum):
    """Entity tags of the extracted-entity union."""

    ADDRESS = "address"
    PROPERTY = "property"
    PHONE = "phone"
    EMAIL = "email"
    PERSON = "person"
    IMAGE = "image"


# Result kinds whose response is a people listing (name/address/phone/email searches)
PEOPLE_LISTING_KINDS = frozenset({
    SearchKind.SKIP_TRACE.value,
    SearchKind.NAME_SEARCH.value,
    SearchKind.EMAIL_SEARCH.value,
    SearchKind.PHONE_SEARCH.value,
    SearchKind.ADDRESS_INTEL.value,
})


# ═══════════════════════════════════════════════════════════
# Node payloads
# ═══════════════════════════════════════════════════════════


class Coordinates(BaseModel):
    latitude: float
    longitude: float


class Address(BaseModel):
    """A postal address as entered by the user or produced by an entity click."""

    street: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    coordinates: Optional[Coordinates] = None

    @field_validator("street", "city", "state", "zip", mode="before")
    @classmethod
    def _coerce_none_str(cls, v: Any) -> Any:
        return "" if v is None else str(v).strip()

    @property
    def is_complete(self) -> bool:
        """Enough to run an address-intel lookup."""
        return bool(self.street and self.city and self.state)

    def one_line(self) -> str:
        return ", ".join(p for p in (self.street, self.city, self.state, self.zip) if p)

    def city_state_zip(self) -> str:
        tail = " ".join(p for p in (self.state, self.zip) if p)
        return ", ".join(p for p in (self.city, tail) if p)


class GeoPoint(BaseModel):
    lat: float
    lng: float


class LocationFix(BaseModel):
    coords: GeoPoint
    address: Optional[Address] = None
    timestamp: int = Field(default_factory=_now_ms)


class UserLocationPayload(BaseModel):
    """Device-location capture carried by ``userFound`` bootstrap nodes."""

    model_config = ConfigDict(populate_by_name=True)

    coords: GeoPoint
    address: Optional[Address] = None
    location_history: list[LocationFix] = Field(default_factory=list, alias="locationHistory")


# ═══════════════════════════════════════════════════════════
# Node
# ═══════════════════════════════════════════════════════════


class Node(BaseModel):
    """One recorded investigation step (an input/search or a result)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", validate_assignment=True)

    id: str = ""
    mn_node_id: str = Field(default="", alias="mnNodeId")
    type: NodeType
    api_name: str = Field(default="", alias="apiName")

    # ── Graph linkage ──
    parent_node_id: str = Field(default="", alias="parentNodeId")
    child_mnuda_ids: list[str] = Field(default_factory=list, alias="childMnudaIds")

    # ── Inputs and results (shape depends on type) ──
    address: Optional[Address] = None
    query: dict[str, Any] = Field(default_factory=dict)
    person_id: str = Field(default="", alias="personId")
    person_data: Any = Field(default=None, alias="personData")
    response: Any = None
    payload: Optional[UserLocationPayload] = None

    # ── Audit: which entity spawned this node ──
    clicked_entity_id: str = Field(default="", alias="clickedEntityId")
    clicked_entity_data: Any = Field(default=None, alias="clickedEntityData")

    # ── Lifecycle ──
    has_completed: bool = Field(default=False, alias="hasCompleted")
    status: NodeStatus = NodeStatus.READY
    error: str = ""

    # ── Presentation ──
    custom_title: str = Field(default="", alias="customTitle")
    timestamp: int = Field(default_factory=_now_ms)
    relationship_type: str = Field(default="", alias="relationshipType")
    entity_count: int = Field(default=0, alias="entityCount")

    @field_validator(
        "id", "mn_node_id", "api_name", "parent_node_id", "person_id",
        "clicked_entity_id", "custom_title", "relationship_type", "error",
        mode="before",
    )
    @classmethod
    def _coerce_none_str(cls, v: Any) -> Any:
        return v if v is not None else ""

    @field_validator("child_mnuda_ids", mode="before")
    @classmethod
    def _dedupe_children(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, (list, tuple, set)):
            seen: list[str] = []
            for item in v:
                if item and item not in seen:
                    seen.append(str(item))
            return seen
        return v

    @field_validator("status", mode="before")
    @classmethod
    def _legacy_status(cls, v: Any) -> Any:
        # userFound nodes persisted by older clients use "pending"
        if v in (None, "", "pending"):
            return NodeStatus.READY
        return v

    @property
    def key(self) -> str:
        """The stable identifier, falling back to the local key before assignment."""
        return self.mn_node_id or self.id

    @property
    def is_input_node(self) -> bool:
        return self.type in (NodeType.START, NodeType.USER_FOUND)

    @property
    def is_result_node(self) -> bool:
        return self.type in (NodeType.API_RESULT, NodeType.PEOPLE_RESULT)

    @property
    def is_search_history(self) -> bool:
        return self.api_name == SearchKind.SEARCH_HISTORY.value

    def to_record(self) -> dict[str, Any]:
        """JSON-safe dict using the persisted wire names."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Node:
        return cls.model_validate(record)


# ═══════════════════════════════════════════════════════════
# Entities (one tagged union, discriminated on ``type``)
# ═══════════════════════════════════════════════════════════


class EntityBase(BaseModel):
    """Fields every entity case carries. Holds no behaviour of its own."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    mn_entity_id: Optional[str] = Field(default=None, alias="mnEntityId")
    parent_node_id: str = Field(alias="parentNodeId", min_length=1)
    source: str = "Unknown"
    is_traceable: bool = Field(default=False, alias="isTraceable")
    category: str = ""
    group: str = ""

    @model_validator(mode="after")
    def _identifier_iff_traceable(self) -> EntityBase:
        if self.is_traceable and not self.mn_entity_id:
            raise ValueError("traceable entities must carry an mnEntityId")
        if not self.is_traceable and self.mn_entity_id:
            raise ValueError("non-traceable entities must not carry an mnEntityId")
        return self


class AddressEntity(EntityBase):
    type: Literal["address"] = "address"
    street: str = ""
    city: str = ""
    state: str = ""
    postal: str = ""
    county: str = ""
    date_range: str = Field(default="", alias="dateRange")
    coordinates: Optional[Coordinates] = None

    def to_address(self) -> Address:
        return Address(street=self.street, city=self.city, state=self.state, zip=self.postal,
                       coordinates=self.coordinates)


class PropertyEntity(EntityBase):
    type: Literal["property"] = "property"
    zpid: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    postal: str = ""
    county: str = ""
    price: Optional[float] = None
    bedrooms: Optional[float] = None
    bathrooms: Optional[float] = None
    living_area: Optional[float] = Field(default=None, alias="livingArea")
    lot_size: Optional[float] = Field(default=None, alias="lotSize")
    year_built: Optional[int] = Field(default=None, alias="yearBuilt")
    home_type: str = Field(default="", alias="homeType")
    home_status: str = Field(default="", alias="homeStatus")
    price_history: list[dict[str, Any]] = Field(default_factory=list, alias="priceHistory")
    tax_history: list[dict[str, Any]] = Field(default_factory=list, alias="taxHistory")
    url: str = ""
    coordinates: Optional[Coordinates] = None

    def to_address(self) -> Address:
        return Address(street=self.street, city=self.city, state=self.state, zip=self.postal,
                       coordinates=self.coordinates)


class PhoneEntity(EntityBase):
    type: Literal["phone"] = "phone"
    number: str
    phone_type: str = Field(default="", alias="phoneType")
    provider: str = ""
    last_reported: str = Field(default="", alias="lastReported")


class EmailEntity(EntityBase):
    type: Literal["email"] = "email"
    email: str


class PersonEntity(EntityBase):
    """A person, either a people-listing record or a person-detail relation."""

    type: Literal["person"] = "person"
    name: str = ""
    age: Optional[int] = None
    born: str = ""
    lives_in: str = Field(default="", alias="livesIn")
    used_to_live_in: str = Field(default="", alias="usedToLiveIn")
    related_to: list[str] = Field(default_factory=list, alias="relatedTo")
    telephone: str = ""
    api_person_id: str = Field(default="", alias="apiPersonId")
    person_link: str = Field(default="", alias="personLink")


class ImageEntity(EntityBase):
    type: Literal["image"] = "image"
    url: str
    caption: str = ""


Entity = Annotated[
    Union[AddressEntity, PropertyEntity, PhoneEntity, EmailEntity, PersonEntity, ImageEntity],
    Field(discriminator="type"),
]

# People-listing records are the person case of the same union
PersonRecord = PersonEntity

ENTITY_ADAPTER: TypeAdapter[Entity] = TypeAdapter(Entity)


def entity_from_record(record: dict[str, Any]) -> Entity:
    """Rebuild an entity from its serialized form (e.g. clickedEntityData)."""
    return ENTITY_ADAPTER.validate_python(record)


def entity_to_record(entity: Entity) -> dict[str, Any]:
    return entity.model_dump(by_alias=True, mode="json")


# ═══════════════════════════════════════════════════════════
# Extraction output
# ═══════════════════════════════════════════════════════════

_COUNT_FIELD: dict[EntityType, str] = {
    EntityType.PROPERTY: "properties",
    EntityType.ADDRESS: "addresses",
    EntityType.PHONE: "phones",
    EntityType.EMAIL: "emails",
    EntityType.PERSON: "persons",
    EntityType.IMAGE: "images",
}


class EntityCounts(BaseModel):
    """Per-type entity counts."""

    properties: int = 0
    addresses: int = 0
    phones: int = 0
    emails: int = 0
    persons: int = 0
    images: int = 0

    @property
    def total(self) -> int:
        return self.properties + self.addresses + self.phones + self.emails + self.persons + self.images

    def bump(self, entity_type: EntityType, by: int = 1) -> None:
        name = _COUNT_FIELD[EntityType(entity_type)]
        setattr(self, name, getattr(self, name) + by)

    def get(self, entity_type: EntityType) -> int:
        return getattr(self, _COUNT_FIELD[EntityType(entity_type)])

    def merge(self, other: EntityCounts) -> EntityCounts:
        return EntityCounts(**{f: getattr(self, f) + getattr(other, f) for f in _COUNT_FIELD.values()})

    @classmethod
    def of(cls, entities: list[Entity]) -> EntityCounts:
        counts = cls()
        for entity in entities:
            counts.bump(entity.type)
        return counts


class ExtractionResult(BaseModel):
    """Entities extracted from one node's raw response."""

    model_config = ConfigDict(populate_by_name=True)

    entities: list[Entity] = Field(default_factory=list)
    entity_counts: EntityCounts = Field(default_factory=EntityCounts, alias="entityCounts")
    source: str = "Unknown"
    raw_response: Any = Field(default=None, alias="rawResponse")
    skipped_items: int = Field(default=0, alias="skippedItems")

    @property
    def total_entities(self) -> int:
        return len(self.entities)

    def by_type(self, entity_type: EntityType) -> list[Entity]:
        return [e for e in self.entities if e.type == entity_type]

    def traceable(self) -> list[Entity]:
        return [e for e in self.entities if e.is_traceable]

    def find(self, mn_entity_id: str) -> Optional[Entity]:
        """Look up an entity by its identifier."""
        if not mn_entity_id:
            return None
        return next((e for e in self.entities if e.mn_entity_id == mn_entity_id), None)


class EntitySummary(BaseModel):
    """Entity totals across a whole session."""

    total: int = 0
    counts: EntityCounts = Field(default_factory=EntityCounts)
    traceable_persons: int = 0
    traceable_addresses: int = 0
