"""Tests for the JSON and CSV session exports."""

import csv
import io
import json
from pathlib import Path
from typing import Any

import pytest

from tracegraph.export import EXPORT_FORMAT_VERSION, build_csv, build_export, export_session
from tracegraph.models import Node, NodeType, SearchKind
from tracegraph.session import InvestigationSession


@pytest.fixture
def session(people_response: dict[str, Any], person_detail_response: dict[str, Any]) -> InvestigationSession:
    session = InvestigationSession("Export me")
    listing = session.store.create(
        Node(type=NodeType.API_RESULT, api_name=SearchKind.NAME_SEARCH.value, response=people_response)
    )
    session.store.create(
        Node(
            type=NodeType.PEOPLE_RESULT,
            api_name=SearchKind.PERSON_DETAILS.value,
            parent_node_id=listing,
            person_data=person_detail_response,
        )
    )
    return session


class TestBuildExport:
    def test_metadata_and_session(self, session: InvestigationSession) -> None:
        doc = build_export(session)
        assert doc["metadata"]["version"] == EXPORT_FORMAT_VERSION
        assert doc["metadata"]["totalNodes"] == 2
        assert doc["metadata"]["totalEntities"] == 9
        assert doc["session"]["id"] == session.id
        assert doc["session"]["name"] == "Export me"

    def test_nodes_in_display_order(self, session: InvestigationSession) -> None:
        doc = build_export(session)
        detail, listing = doc["nodes"]
        assert detail["type"] == "people-result"
        assert detail["parentNodeId"] == listing["id"]
        assert listing["childMnudaIds"] == [detail["id"]]
        assert listing["entityCount"] == 2
        assert listing["entities"][0]["name"] == "Jane Doe"
        assert "rawData" not in listing

    def test_raw_data_optional(self, session: InvestigationSession, people_response: dict[str, Any]) -> None:
        doc = build_export(session, include_raw_data=True)
        assert doc["nodes"][1]["rawData"] == people_response

    def test_analytics(self, session: InvestigationSession) -> None:
        doc = build_export(session)
        breakdown = doc["summary"]["breakdown"]
        assert breakdown["byEntityType"]["persons"] == 5
        assert breakdown["bySource"] == {"Name Search": 2, "Person Details": 7}
        assert breakdown["byTraceability"] == {"traceable": 3, "nonTraceable": 6}
        assert doc["analytics"]["traceabilityMetrics"]["traceabilityRate"] == pytest.approx(33.3)
        persons = next(d for d in doc["analytics"]["entityTypeDistribution"] if d["type"] == "Persons")
        assert persons["count"] == 5

    def test_empty_session(self) -> None:
        doc = build_export(InvestigationSession())
        assert doc["metadata"]["totalEntities"] == 0
        assert doc["analytics"]["traceabilityMetrics"]["traceabilityRate"] == 0.0


def test_export_session_writes_json(session: InvestigationSession, tmp_path: Path) -> None:
    out = export_session(session, tmp_path / "exports" / "session.json", include_raw_data=True)
    data = json.loads(out.read_text(encoding="utf-8"))
    assert data["metadata"]["includeRawData"] is True
    assert len(data["nodes"]) == 2


def _section(rows: list[list[str]], title: str) -> list[list[str]]:
    """Header plus data rows of one CSV section, up to the blank separator row."""
    start = rows.index([title]) + 1
    end = next((i for i in range(start, len(rows)) if not rows[i]), len(rows))
    return rows[start:end]


class TestBuildCsv:
    def _rows(self, session: InvestigationSession, **kwargs: Any) -> list[list[str]]:
        return list(csv.reader(io.StringIO(build_csv(session, **kwargs))))

    def test_session_information(self, session: InvestigationSession) -> None:
        info = dict(map(tuple, _section(self._rows(session), "SESSION INFORMATION")[1:]))
        assert info["Session Name"] == "Export me"
        assert info["Session ID"] == session.id
        assert info["Total Nodes"] == "2"
        assert info["Total Entities"] == "9"

    def test_summaries(self, session: InvestigationSession) -> None:
        rows = self._rows(session)
        summary = {r[0]: r[1:] for r in _section(rows, "ENTITY SUMMARY")[1:]}
        assert summary["Persons"] == ["5", "55.6%"]
        assert dict(map(tuple, _section(rows, "SOURCE BREAKDOWN")[1:])) == {"Name Search": "2", "Person Details": "7"}
        assert _section(rows, "TRACEABILITY BREAKDOWN")[1:] == [["Traceable", "3"], ["Non-Traceable", "6"]]

    def test_node_rows_in_display_order(self, session: InvestigationSession) -> None:
        header, detail, listing = _section(self._rows(session), "NODE SUMMARY")
        assert header[:3] == ["Node ID", "Node Title", "Node Type"]
        assert detail[2] == "people-result"
        assert detail[7] == listing[0]
        assert listing[3] == "2"
        assert listing[6] == "No"
        assert "Raw Data" not in header

    def test_one_row_per_entity(self, session: InvestigationSession) -> None:
        header, *rows = _section(self._rows(session), "ALL ENTITIES")
        entities = [dict(zip(header, r)) for r in rows]
        assert len(entities) == 9
        current = next(e for e in entities if e["Type"] == "address" and e["Category"] == "current")
        assert current["Primary Value"] == "123 Main St, Minneapolis, MN, 55401"
        assert current["Is Traceable"] == "Yes"
        assert current["Entity ID"].startswith("entity-")
        assert current["Node Type"] == "people-result"
        assert "dateRange: 2019 - 2024" in current["Details"]
        jim = next(e for e in entities if e["Primary Value"] == "Jim Roe")
        assert jim["Is Traceable"] == "No"
        assert jim["Entity ID"] == ""
        assert jim["Source"] == "Name Search"

    def test_raw_data_column(self, session: InvestigationSession, people_response: dict[str, Any]) -> None:
        header, _, listing = _section(self._rows(session, include_raw_data=True), "NODE SUMMARY")
        assert header[-1] == "Raw Data"
        assert json.loads(listing[-1]) == people_response


def test_export_session_writes_csv(session: InvestigationSession, tmp_path: Path) -> None:
    out = export_session(session, tmp_path / "session.csv", export_format="csv")
    assert out.read_text(encoding="utf-8").startswith("tracegraph Session Export\n")


def test_export_session_rejects_unknown_format(session: InvestigationSession, tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="unknown export format"):
        export_session(session, tmp_path / "session.pdf", export_format="pdf")
