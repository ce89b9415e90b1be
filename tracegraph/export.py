"""
Export of a whole session: metadata, per-node entities and analytics.

Two formats: a JSON document, and a sectioned CSV (session info, summaries,
then one row per node and one row per entity) for spreadsheets. Entities are
derived at export time from each node's raw response, the same way every
other view derives them.
"""

from __future__ import annotations

import csv
import io
import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from tracegraph import __version__
from tracegraph.extraction import extract_node_entities
from tracegraph.lifecycle import display_order
from tracegraph.models import EntityCounts, ExtractionResult, Node
from tracegraph.session import InvestigationSession
from tracegraph.titles import entity_primary_value, node_title

logger = structlog.get_logger()

EXPORT_FORMAT_VERSION = "1.0"
EXPORT_FORMATS = ("json", "csv")

# Entity fields already given their own CSV column
_ENTITY_BASE_FIELDS = {"mnEntityId", "parentNodeId", "source", "isTraceable", "category", "group", "type"}


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def _pct(part: int, whole: int) -> float:
    return round(part * 100.0 / whole, 1) if whole else 0.0


def _node_entry(node: Node, result: ExtractionResult, include_raw_data: bool) -> dict[str, Any]:
    entities = [e.model_dump(by_alias=True, mode="json", exclude_none=True) for e in result.entities]
    entry: dict[str, Any] = {
        "id": node.mn_node_id,
        "type": node.type.value,
        "title": node_title(node),
        "timestamp": _iso(node.timestamp),
        "parentNodeId": node.parent_node_id or None,
        "childMnudaIds": list(node.child_mnuda_ids),
        "entityCount": result.total_entities,
        "metadata": {
            "apiName": node.api_name,
            "hasCompleted": node.has_completed,
            "status": node.status.value,
            "address": node.address.model_dump() if node.address else None,
            "personId": node.person_id or None,
            "clickedEntityId": node.clicked_entity_id or None,
            "error": node.error or None,
        },
        "entities": entities,
    }
    if include_raw_data:
        entry["rawData"] = node.person_data if node.person_data is not None else node.response
    return entry


def build_export(session: InvestigationSession, include_raw_data: bool = False) -> dict[str, Any]:
    """The export document for a session, as a JSON-ready dict."""
    nodes = display_order(session.store.all())
    results = {n.mn_node_id: extract_node_entities(n) for n in nodes}

    counts = EntityCounts()
    by_source: Counter[str] = Counter()
    traceable = 0
    by_node = []
    for node in nodes:
        result = results[node.mn_node_id]
        counts = counts.merge(result.entity_counts)
        by_source.update(e.source for e in result.entities)
        traceable += len(result.traceable())
        by_node.append({
            "nodeId": node.mn_node_id,
            "nodeTitle": node_title(node),
            "nodeType": node.type.value,
            "entityCount": result.total_entities,
            "entityTypes": sorted({e.type for e in result.entities}),
        })
    total = counts.total

    document = {
        "metadata": {
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "format": "json",
            "version": EXPORT_FORMAT_VERSION,
            "generator": f"tracegraph {__version__}",
            "includeRawData": include_raw_data,
            "totalNodes": len(nodes),
            "totalEntities": total,
        },
        "session": {
            "id": session.id,
            "name": session.name,
            "createdAt": _iso(session.created_at),
            "lastAccessed": _iso(session.last_accessed),
            "nodeCount": len(nodes),
            "entityCount": total,
        },
        "summary": {
            "totalEntities": total,
            "entityCounts": counts.model_dump(),
            "breakdown": {
                "byNode": by_node,
                "byEntityType": counts.model_dump(),
                "bySource": dict(by_source),
                "byTraceability": {"traceable": traceable, "nonTraceable": total - traceable},
            },
        },
        "nodes": [_node_entry(n, results[n.mn_node_id], include_raw_data) for n in nodes],
        "analytics": {
            "entityTypeDistribution": [
                {"type": name.capitalize(), "count": n, "percentage": _pct(n, total)}
                for name, n in counts.model_dump().items()
            ],
            "sourceDistribution": [{"source": s, "count": n} for s, n in by_source.most_common()],
            "traceabilityMetrics": {
                "total": total,
                "traceable": traceable,
                "nonTraceable": total - traceable,
                "traceabilityRate": _pct(traceable, total),
            },
            "nodePerformance": [
                {**row, "efficiency": _pct(row["entityCount"], total)} for row in by_node
            ],
        },
    }
    return document


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def _entity_details(record: dict[str, Any]) -> str:
    parts = []
    for key, value in record.items():
        if key in _ENTITY_BASE_FIELDS or value in ("", [], {}, None):
            continue
        if isinstance(value, (list, dict)):
            value = json.dumps(value, default=str)
        parts.append(f"{key}: {value}")
    return "; ".join(parts)


def build_csv(session: InvestigationSession, include_raw_data: bool = False) -> str:
    """The export of a session as sectioned CSV text, one row per node and per entity."""
    document = build_export(session, include_raw_data=include_raw_data)
    entities = {n.mn_node_id: extract_node_entities(n).entities for n in session.store.all()}
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    info = document["session"]
    breakdown = document["summary"]["breakdown"]

    writer.writerows([
        ["tracegraph Session Export"],
        ["Generated", document["metadata"]["exportedAt"]],
        ["Format", "CSV"],
        ["Version", document["metadata"]["version"]],
        [],
        ["SESSION INFORMATION"],
        ["Property", "Value"],
        ["Session Name", info["name"]],
        ["Session ID", info["id"]],
        ["Created", info["createdAt"]],
        ["Last Accessed", info["lastAccessed"]],
        ["Total Nodes", info["nodeCount"]],
        ["Total Entities", info["entityCount"]],
        [],
        ["ENTITY SUMMARY"],
        ["Entity Type", "Count", "Percentage"],
    ])
    for row in document["analytics"]["entityTypeDistribution"]:
        writer.writerow([row["type"], row["count"], f"{row['percentage']:.1f}%"])

    writer.writerows([[], ["SOURCE BREAKDOWN"], ["Source", "Count"]])
    writer.writerows([source, n] for source, n in breakdown["bySource"].items())

    writer.writerows([
        [],
        ["TRACEABILITY BREAKDOWN"],
        ["Type", "Count"],
        ["Traceable", breakdown["byTraceability"]["traceable"]],
        ["Non-Traceable", breakdown["byTraceability"]["nonTraceable"]],
        [],
        ["NODE SUMMARY"],
    ])
    node_header = ["Node ID", "Node Title", "Node Type", "Entity Count", "API Name", "Status", "Has Completed",
                   "Parent Node ID", "Created"]
    if include_raw_data:
        node_header.append("Raw Data")
    writer.writerow(node_header)
    for node in document["nodes"]:
        meta = node["metadata"]
        row = [
            node["id"],
            node["title"],
            node["type"],
            node["entityCount"],
            meta["apiName"],
            meta["status"],
            _yes_no(meta["hasCompleted"]),
            node["parentNodeId"] or "",
            node["timestamp"],
        ]
        if include_raw_data:
            raw = node.get("rawData")
            row.append(json.dumps(raw, default=str) if raw is not None else "")
        writer.writerow(row)

    writer.writerows([[], ["ALL ENTITIES"]])
    writer.writerow([
        "Entity ID", "Type", "Category", "Node ID", "Node Title", "Node Type", "Has Completed",
        "Source", "Is Traceable", "Primary Value", "Details",
    ])
    for node in document["nodes"]:
        for entity in entities[node["id"]]:
            record = entity.model_dump(by_alias=True, mode="json", exclude_none=True)
            writer.writerow([
                record.get("mnEntityId", ""),
                record["type"],
                record.get("category", ""),
                node["id"],
                node["title"],
                node["type"],
                _yes_no(node["metadata"]["hasCompleted"]),
                record.get("source", ""),
                _yes_no(record.get("isTraceable", False)),
                entity_primary_value(entity),
                _entity_details(record),
            ])
    return buffer.getvalue()


def export_session(
    session: InvestigationSession,
    path: str | Path,
    include_raw_data: bool = False,
    export_format: str = "json",
) -> Path:
    """Write the session export to ``path`` in ``export_format`` and return the path."""
    if export_format not in EXPORT_FORMATS:
        raise ValueError(f"unknown export format {export_format!r}; expected one of {', '.join(EXPORT_FORMATS)}")
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    if export_format == "csv":
        out.write_text(build_csv(session, include_raw_data=include_raw_data), encoding="utf-8")
    else:
        document = build_export(session, include_raw_data=include_raw_data)
        out.write_text(json.dumps(document, indent=2, default=str), encoding="utf-8")
    logger.info(
        "session_exported",
        session_id=session.id,
        path=str(out),
        format=export_format,
        nodes=len(session.store),
    )
    return out
