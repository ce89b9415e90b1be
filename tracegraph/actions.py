"""
Action intents raised by the enclosing application.

``InvestigationController`` turns user actions (add a node, delete a node,
trace a person, run address intel on an address, run an input node's search)
into store mutations, performing the external lookups in between. A failed
lookup never leaves partial results behind: the triggering node reverts to
ready with the error recorded, and a late response for a node deleted in the
meantime is dropped.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional, Union

import httpx
import structlog
from pydantic import BaseModel

from tracegraph.errors import LookupClientError, RateLimitedError, classify_lookup_error
from tracegraph.extraction import extract_node_entities
from tracegraph.lifecycle import apply_derived_completions, begin_search, complete_search, fail_search, initial_state
from tracegraph.models import Address, Entity, ExtractionResult, Node, NodeStatus, NodeType, SearchKind
from tracegraph.observability import metrics
from tracegraph.store import NodeStore
from tracegraph.titles import person_primary_value
from tracegraph.tools.lookup import LookupClient

logger = structlog.get_logger()


def _snapshot(entity_data: Any) -> Any:
    """The clicked entity as plain data, frozen at click time."""
    if isinstance(entity_data, BaseModel):
        return entity_data.model_dump(by_alias=True, mode="json")
    if isinstance(entity_data, Mapping):
        return dict(entity_data)
    return entity_data


class InvestigationController:
    """Applies user intents to one session's node store."""

    def __init__(self, store: NodeStore, lookup: LookupClient) -> None:
        self.store = store
        self.lookup = lookup

    # ── Plain store intents ──

    def on_add_node(self, node: Node) -> str:
        """Create a node with its initial lifecycle state. Returns its mnNodeId."""
        node_id = self.store.create(initial_state(node.model_copy(deep=True)))
        apply_derived_completions(self.store)
        return node_id

    def on_delete_node(self, node_id: str) -> None:
        self.store.delete(node_id)

    # ── Entity lookups ──

    def entities(self, node_id: str) -> ExtractionResult:
        return extract_node_entities(self.store.require(node_id))

    def find_entity(self, entity_id: str) -> Optional[tuple[Node, Entity]]:
        """The result node and entity carrying ``entity_id``, searching newest nodes first."""
        if not entity_id:
            return None
        for node in reversed(self.store.all()):
            if not node.is_result_node:
                continue
            entity = extract_node_entities(node).find(entity_id)
            if entity is not None:
                return node, entity
        return None

    # ── Traced searches ──

    async def on_person_trace(
        self,
        person_id: str,
        person_data: Any = None,
        api_name: str = SearchKind.PERSON_DETAILS.value,
        parent_node_id: str = "",
        entity_id: str = "",
        entity_data: Any = None,
    ) -> Optional[str]:
        """Create a person-detail node for a clicked person.

        When ``person_data`` is None the detail is fetched first. If that
        lookup fails, a placeholder node holding only the person id and name
        is created so the click is not lost, unless the failure was a rate
        limit, which is re-raised without creating anything.
        """
        log = logger.bind(person_id=person_id, parent_node_id=parent_node_id or None, entity_id=entity_id or None)
        snapshot = _snapshot(entity_data)
        error = ""
        if person_data is None:
            try:
                person_data = await self.lookup.person_details(person_id)
            except (LookupClientError, httpx.HTTPError, ValueError) as exc:
                err = classify_lookup_error(exc)
                if isinstance(err, RateLimitedError):
                    log.warning("person_trace_rate_limited", error=str(err))
                    if err is exc:
                        raise
                    raise err from exc
                log.warning("person_trace_failed", error=str(err), error_type=type(err).__name__)
                name = person_primary_value(snapshot) if snapshot else ""
                person_data = {"apiPersonId": person_id, "name": name}
                error = str(err)

        if parent_node_id and parent_node_id not in self.store:
            log.info("person_trace_parent_gone")
            return None

        node = Node(
            type=NodeType.PEOPLE_RESULT,
            api_name=api_name or SearchKind.PERSON_DETAILS.value,
            parent_node_id=parent_node_id,
            person_id=person_id,
            person_data=person_data,
            clicked_entity_id=entity_id,
            clicked_entity_data=snapshot,
        )
        if not error:
            return self.on_add_node(node)

        node.error = error
        node_id = self.store.create(node)
        metrics.record_fallback_node()
        log.info("person_trace_fallback_node_created", node_id=node_id)
        return node_id

    async def on_address_intel(
        self,
        address: Union[Address, Mapping[str, Any]],
        entity_id: str = "",
        parent_node_id: Optional[str] = None,
        entity_data: Any = None,
    ) -> Optional[str]:
        """Run an address-intel lookup for a clicked address and record the result node.

        The parent defaults to the node whose response produced ``entity_id``.
        Lookup errors propagate; nothing is created on failure.
        """
        address = address if isinstance(address, Address) else Address.model_validate(dict(address))
        if not address.is_complete:
            raise ValueError("address intel needs street, city and state")

        if parent_node_id is None or entity_data is None:
            found = self.find_entity(entity_id)
            if found is not None:
                owner, entity = found
                parent_node_id = owner.mn_node_id if parent_node_id is None else parent_node_id
                entity_data = entity if entity_data is None else entity_data

        log = logger.bind(address=address.one_line(), entity_id=entity_id or None, parent_node_id=parent_node_id)
        try:
            response = await self.lookup.address_intel(address)
        except Exception as exc:
            err = classify_lookup_error(exc)
            log.warning("address_intel_failed", error=str(err), error_type=type(err).__name__)
            if err is exc:
                raise
            raise err from exc

        if parent_node_id and parent_node_id not in self.store:
            log.info("address_intel_parent_gone")
            return None

        return self.on_add_node(
            Node(
                type=NodeType.API_RESULT,
                api_name=SearchKind.ADDRESS_INTEL.value,
                parent_node_id=parent_node_id or "",
                address=address,
                response=response,
                clicked_entity_id=entity_id,
                clicked_entity_data=_snapshot(entity_data),
            )
        )

    # ── Input node searches ──

    async def run_search(
        self,
        node_id: str,
        kind: Optional[Union[SearchKind, str]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Optional[str]:
        """Run the search an input node describes and record its result as the next sibling.

        Raises ``SearchInFlightError`` if the node is already searching. On
        failure the node reverts to ready with the error recorded, and the
        (classified) error is re-raised.
        """
        node = begin_search(self.store, node_id)
        search_kind = SearchKind(kind or node.api_name or SearchKind.SKIP_TRACE.value)
        if params is None:
            params = dict(node.query)
            if node.address is not None:
                params.setdefault("address", node.address.model_dump())
        mn_node_id = node.mn_node_id
        log = logger.bind(node_id=mn_node_id, kind=search_kind.value)

        try:
            response = await self.lookup.search(search_kind, params)
        except ValueError as e:
            fail_search(self.store, mn_node_id, str(e))
            raise
        except Exception as exc:
            err = classify_lookup_error(exc)
            fail_search(self.store, mn_node_id, str(err))
            if err is exc:
                raise
            raise err from exc

        current = self.store.get(mn_node_id)
        if current is None or current.status != NodeStatus.SEARCHING:
            log.info("search_result_dropped", reason="node deleted" if current is None else "node reset")
            return None

        result_type = NodeType.PEOPLE_RESULT if search_kind == SearchKind.PERSON_DETAILS else NodeType.API_RESULT
        result = Node(
            type=result_type,
            api_name=search_kind.value,
            parent_node_id=current.parent_node_id,
            address=current.address,
            query=params,
            response=response if result_type == NodeType.API_RESULT else None,
            person_data=response if result_type == NodeType.PEOPLE_RESULT else None,
        )
        result_id = self.on_add_node(result)
        complete_search(self.store, mn_node_id)
        log.info("search_recorded", result_node_id=result_id)
        return result_id
