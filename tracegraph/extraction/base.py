"""
Shared entity construction for all extractors.

An ``EntityBuilder`` is created per extraction call. It stamps provenance
(parentNodeId, source) on every entity, applies the traceability test,
derives identifiers for traceable entities, and counts items it had to skip.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError

from tracegraph.config import get_settings
from tracegraph.identifiers import IdentifierKind, identifiers
from tracegraph.models import ENTITY_ADAPTER, Entity, EntityCounts, EntityType, ExtractionResult
from tracegraph.observability import metrics

logger = structlog.get_logger()

# Fields that identify an entity of each type for identifier derivation
_IDENTITY_FIELDS: dict[str, tuple[str, ...]] = {
    EntityType.ADDRESS.value: ("street", "city", "state", "postal"),
    EntityType.PROPERTY.value: ("zpid", "street", "city", "state", "postal"),
    EntityType.PHONE.value: ("number",),
    EntityType.EMAIL.value: ("email",),
    EntityType.PERSON.value: ("apiPersonId", "name"),
    EntityType.IMAGE.value: ("url",),
}


def is_traceable(entity_type: str, fields: dict[str, Any]) -> bool:
    """True when the entity can seed a follow-up search.

    Persons need an upstream person id (person-detail lookup). Addresses and
    properties need street, city and state (address-intel lookup).
    """
    if entity_type == EntityType.PERSON.value:
        return bool(str(fields.get("apiPersonId") or "").strip())
    if entity_type in (EntityType.ADDRESS.value, EntityType.PROPERTY.value):
        return all(str(fields.get(k) or "").strip() for k in ("street", "city", "state"))
    return False


class EntityBuilder:
    """Accumulates entities for one node's response."""

    def __init__(self, parent_node_id: str, source: Optional[str], extractor: str) -> None:
        if not isinstance(parent_node_id, str) or not parent_node_id.strip():
            raise ValueError("parent_node_id is required to extract entities")
        self.parent_node_id = parent_node_id
        self.source = source or get_settings().extraction.default_source
        self.extractor = extractor
        self.entities: list[Entity] = []
        self.skipped = 0

    def add(self, entity_type: EntityType, group: str, ordinal: int, **fields: Any) -> Optional[Entity]:
        """Build and append one entity. Returns None (and counts a skip) if it fails validation."""
        etype = EntityType(entity_type).value
        traceable = is_traceable(etype, fields)
        record: dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
        record.update(
            type=etype,
            parentNodeId=self.parent_node_id,
            source=record.get("source") or self.source,
            isTraceable=traceable,
            group=group,
        )
        if traceable:
            identity = [str(fields.get(k) or "").strip().lower() for k in _IDENTITY_FIELDS[etype]]
            record["mnEntityId"] = identifiers.derive(
                IdentifierKind.ENTITY, self.parent_node_id, group, ordinal, etype, *identity
            )
        try:
            entity = ENTITY_ADAPTER.validate_python(record)
        except ValidationError as e:
            self.skip(group, ordinal, f"{e.error_count()} validation error(s)")
            return None
        self.entities.append(entity)
        return entity

    def skip(self, group: str, ordinal: int, reason: str) -> None:
        self.skipped += 1
        logger.debug(
            "extraction_item_skipped",
            extractor=self.extractor,
            group=group,
            index=ordinal,
            reason=reason,
            parent_node_id=self.parent_node_id,
        )

    def walk(self, group: str, items: list[Any], build: Callable[[int, Any], None]) -> None:
        """Run ``build`` over every item, skipping (not raising on) malformed ones."""
        for i, item in enumerate(items):
            try:
                build(i, item)
            except (TypeError, ValueError, AttributeError, KeyError, ArithmeticError) as e:
                self.skip(group, i, str(e)[:200])

    def result(self, raw_response: Any) -> ExtractionResult:
        counts = EntityCounts.of(self.entities)
        metrics.record_extraction(self.extractor, counts.model_dump(), self.skipped)
        logger.debug(
            "entities_extracted",
            extractor=self.extractor,
            parent_node_id=self.parent_node_id,
            total=len(self.entities),
            skipped=self.skipped,
        )
        return ExtractionResult(
            entities=list(self.entities),
            entity_counts=counts,
            source=self.source,
            raw_response=raw_response,
            skipped_items=self.skipped,
        )
