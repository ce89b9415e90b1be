"""Shared pytest fixtures for investigation graph tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest

from tracegraph.actions import InvestigationController
from tracegraph.identifiers import IdentifierService
from tracegraph.models import Node, NodeType, SearchKind
from tracegraph.store import NodeStore


@pytest.fixture
def store() -> NodeStore:
    """An empty store with its own identifier service."""
    return NodeStore(id_service=IdentifierService())


@pytest.fixture
def people_response() -> dict[str, Any]:
    """Name-search response: one traceable person, one without an upstream id."""
    return {
        "people": [
            {
                "name": "Jane Doe",
                "apiPersonId": "p1",
                "age": "45",
                "livesIn": "Minneapolis, MN",
                "relatedTo": ["John Doe", "Sam Doe"],
            },
            {"firstName": "Jim", "lastName": "Roe"},
        ],
        "source": "SkipTrace",
    }


@pytest.fixture
def person_detail_response() -> dict[str, Any]:
    """Person-detail response using the upstream's spaced group and field names."""
    return {
        "Person Details": [{"Person_name": "Jane Doe", "Age": "45", "Born": "May 1979"}],
        "Current Address Details List": [
            {
                "street_address": "123 Main St",
                "address_locality": "Minneapolis",
                "address_region": "MN",
                "postal_code": "55401",
                "date_range": "2019 - 2024",
            }
        ],
        "Previous Address Details": [{"street_address": "9 Elm St", "address_locality": "Duluth"}],
        "All Phone Details": [{"phone_number": "(612) 555-0100", "phone_type": "Wireless"}],
        "Email Addresses": ["jane@example.com", "not-an-email"],
        "All Relatives": [{"Name": "John Doe", "Person ID": "p2"}],
        "All Associates": ["Sam Poe"],
    }


@pytest.fixture
def property_response() -> dict[str, Any]:
    """Property lookup response for one listing."""
    return {
        "zpid": 123456,
        "address": {
            "streetAddress": "123 Main St",
            "city": "Minneapolis",
            "state": "MN",
            "zipcode": "55401",
        },
        "price": 350000,
        "bedrooms": 3,
        "bathrooms": 2,
        "livingArea": 1500,
        "yearBuilt": 1925,
        "homeType": "SINGLE_FAMILY",
        "homeStatus": "FOR_SALE",
        "hdpUrl": "/homedetails/123-Main-St-Minneapolis-MN-55401/123456_zpid/",
        "latitude": 44.97,
        "longitude": -93.26,
        "priceHistory": [{"date": "2024-01-01", "price": 350000, "event": "Listed for sale"}],
        "taxHistory": [{"time": 1700000000000, "taxPaid": 4200}],
        "hiResImageLink": "https://photos.example.com/main.jpg",
        "responsivePhotos": [
            {
                "mixedSources": {
                    "jpeg": [
                        {"url": "https://photos.example.com/small.jpg", "width": 384},
                        {"url": "https://photos.example.com/large.jpg", "width": 1536},
                    ]
                }
            }
        ],
        "attributionInfo": {
            "agentName": "Pat Agent",
            "agentPhoneNumber": "612-555-0199",
            "agentEmail": "pat@realty.example",
            "brokerName": "North Realty",
        },
    }


@pytest.fixture
def lookup() -> AsyncMock:
    """Lookup backend double; configure return_value / side_effect per test."""
    mock = AsyncMock()
    mock.search = AsyncMock()
    mock.person_details = AsyncMock()
    mock.address_intel = AsyncMock()
    return mock


@pytest.fixture
def controller(store: NodeStore, lookup: AsyncMock) -> InvestigationController:
    return InvestigationController(store, lookup)


@pytest.fixture
def listing_node(controller: InvestigationController, people_response: dict[str, Any]) -> Node:
    """A stored name-search result node holding ``people_response``."""
    node_id = controller.on_add_node(
        Node(type=NodeType.API_RESULT, api_name=SearchKind.NAME_SEARCH.value, response=people_response)
    )
    return controller.store.require(node_id)
