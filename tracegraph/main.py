"""
tracegraph — Main Entry Point.

Usage:
    python -m tracegraph.main new --name "Lake Street canvass"
    python -m tracegraph.main list
    python -m tracegraph.main search SESSION_ID --kind "Name Search" --name "Jane Doe"
    python -m tracegraph.main search SESSION_ID --kind "Skip Trace" --address "123 Main St, Minneapolis, MN 55401"
    python -m tracegraph.main trace SESSION_ID ENTITY_ID
    python -m tracegraph.main show SESSION_ID
    python -m tracegraph.main validate SESSION_ID
    python -m tracegraph.main export SESSION_ID --output exports/session.json --raw
    python -m tracegraph.main export SESSION_ID --format csv --output exports/session.csv
"""

from __future__ import annotations

# Load .env before anything reads the environment
import tracegraph.config  # noqa: F401, E402

import argparse
import asyncio
import sys
from datetime import datetime
from typing import Any, Optional

import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme
from rich.tree import Tree

from tracegraph.actions import InvestigationController
from tracegraph.config import get_settings
from tracegraph.errors import LookupClientError, SessionLoadError, SessionNotFoundError, TraceGraphError
from tracegraph.export import EXPORT_FORMATS, export_session
from tracegraph.models import Address, EntityType, Node, NodeStatus, NodeType, SearchKind
from tracegraph.observability import configure_logging, metrics
from tracegraph.relationships import RelationshipType, lineage, validate_relationships
from tracegraph.session import InvestigationSession, SessionRepository
from tracegraph.titles import entity_primary_value, node_title
from tracegraph.tools.lookup import LookupService

logger = structlog.get_logger()

_CUSTOM_THEME = Theme({
    "primary":          "#ea580c",
    "node.start":       "bold #94a3b8",
    "node.result":      "bold #e87900",
    "node.person":      "bold #d97706",
    "node.location":    "bold #64748b",
    "status.ready":     "dim white",
    "status.searching": "bold #f59e0b",
    "status.completed": "#16a34a",
    "orphan":           "bold #dc2626",
    "muted":            "dim #64748b",
})

console = Console(theme=_CUSTOM_THEME, highlight=False)

_NODE_STYLE: dict[NodeType, str] = {
    NodeType.START: "node.start",
    NodeType.API_RESULT: "node.result",
    NodeType.PEOPLE_RESULT: "node.person",
    NodeType.USER_FOUND: "node.location",
}


def _fmt_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _status_text(node: Node) -> str:
    status = node.status.value
    label = f"[status.{status}]{status}[/]"
    if node.error:
        label += f" [orphan]({node.error[:60]})[/]"
    return label


# ── Commands ─────────────────────────────────────────────────────────────────


def cmd_new(repo: SessionRepository, name: Optional[str]) -> None:
    session = repo.init(name)
    console.print(f"[primary]Created[/] {session.name}  [muted]{session.id}[/]")


def cmd_list(repo: SessionRepository) -> None:
    infos = repo.list()
    if not infos:
        console.print("[muted]No sessions yet.[/]")
        return
    table = Table(title="Sessions", header_style="bold", border_style="#64748b")
    table.add_column("Id", style="muted")
    table.add_column("Name")
    table.add_column("Nodes", justify="right")
    table.add_column("Last accessed")
    for info in infos:
        table.add_row(info.id, info.name, str(info.node_count), _fmt_ms(info.last_accessed))
    console.print(table)


def cmd_show(session: InvestigationSession) -> None:
    """Nodes in display order, then the provenance tree."""
    summary = session.entity_summary()
    console.print(
        Panel(
            f"[bold]{session.name}[/]  [muted]{session.id}[/]\n"
            f"{len(session.store)} nodes · {summary.total} entities · "
            f"{summary.traceable_persons} traceable persons · {summary.traceable_addresses} traceable addresses",
            border_style="#ea580c",
        )
    )

    table = Table(header_style="bold", border_style="#64748b")
    table.add_column("Node", style="muted")
    table.add_column("Type")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Entities", justify="right")
    table.add_column("Depth", justify="right")
    table.add_column("Created")
    for row in session.display_rows():
        node, rel = row.node, row.relationships
        title = row.title
        if rel.relationship_type == RelationshipType.ORPHAN:
            title += " [orphan](orphan)[/]"
        table.add_row(
            node.mn_node_id,
            f"[{_NODE_STYLE[node.type]}]{node.type.value}[/]",
            title,
            _status_text(node),
            str(rel.entity_count),
            str(rel.depth),
            _fmt_ms(node.timestamp),
        )
    console.print(table)

    nodes = session.store.all()
    tree = Tree(f"[primary]{session.name}[/]")
    roots = [n for n in nodes if not n.parent_node_id or n.parent_node_id not in session.store]

    def add(branch: Tree, node: Node) -> None:
        child = branch.add(f"[{_NODE_STYLE[node.type]}]{node_title(node)}[/] [muted]{node.mn_node_id}[/]")
        for c in session.store.children(node.mn_node_id):
            add(child, c)

    for root in roots:
        add(tree, root)
    console.print(tree)


def cmd_entities(session: InvestigationSession, node_id: str) -> None:
    controller = InvestigationController(session.store, LookupService())
    node = session.store.require(node_id)
    result = controller.entities(node_id)
    chain = " → ".join(node_title(n) for n in lineage(node, session.store.all()))
    console.print(f"[primary]{node_title(node)}[/]  [muted]{chain}[/]")
    table = Table(header_style="bold", border_style="#64748b")
    table.add_column("Type")
    table.add_column("Category")
    table.add_column("Value")
    table.add_column("Entity id", style="muted")
    for entity in result.entities:
        table.add_row(entity.type, entity.category, entity_primary_value(entity), entity.mn_entity_id or "")
    console.print(table)


def cmd_validate(session: InvestigationSession) -> int:
    report = validate_relationships(session.store.all())
    status = "[status.completed]valid[/]" if report.is_valid else "[orphan]invalid[/]"
    console.print(f"Relationships: {status}")
    rows: list[tuple[str, Any]] = [
        ("orphans", report.orphans),
        ("dangling children", report.dangling_children),
        ("mismatched children", report.mismatched_children),
        ("missing child links", report.missing_child_links),
        ("duplicate ids", report.duplicate_ids),
        ("cycles", report.cycles),
    ]
    for label, items in rows:
        if items:
            console.print(f"  {label}: {len(items)}")
            for item in items[:20]:
                console.print(f"    [muted]{item}[/]")
    return 0 if report.is_valid else 1


def _search_params(args: argparse.Namespace) -> tuple[dict[str, Any], Optional[Address]]:
    params: dict[str, Any] = {}
    for key in ("name", "email", "phone", "zpid"):
        value = getattr(args, key, None)
        if value:
            params[key] = value
    address: Optional[Address] = None
    if args.address:
        parts = [p.strip() for p in args.address.split(",")]
        tail = parts[2].split() if len(parts) > 2 else []
        address = Address(
            street=parts[0],
            city=parts[1] if len(parts) > 1 else "",
            state=tail[0] if tail else "",
            zip=tail[1] if len(tail) > 1 else "",
        )
    return params, address


async def cmd_search(repo: SessionRepository, session: InvestigationSession, args: argparse.Namespace) -> None:
    params, address = _search_params(args)
    kind = SearchKind(args.kind)
    lookup = LookupService()
    controller = InvestigationController(session.store, lookup)
    try:
        with session.recording():
            node_id = controller.on_add_node(
                Node(type=NodeType.START, api_name=kind.value, query=params, address=address,
                     parent_node_id=args.parent or "")
            )
            try:
                result_id = await controller.run_search(node_id)
            except (LookupClientError, ValueError) as e:
                console.print(f"[orphan]Search failed:[/] {e}")
                result_id = None
    finally:
        await lookup.close()
        repo.persist(session)
    if result_id:
        result = controller.entities(result_id)
        console.print(
            f"[primary]{node_title(session.store.require(result_id))}[/] · {result.total_entities} entities"
        )


async def cmd_trace(repo: SessionRepository, session: InvestigationSession, entity_id: str) -> None:
    """Follow a traceable entity: person detail for persons, address intel for addresses."""
    lookup = LookupService()
    controller = InvestigationController(session.store, lookup)
    found = controller.find_entity(entity_id)
    if found is None:
        console.print(f"[orphan]No entity {entity_id} in this session.[/]")
        return
    owner, entity = found
    try:
        with session.recording():
            if entity.type == EntityType.PERSON.value:
                node_id = await controller.on_person_trace(
                    entity.api_person_id,
                    api_name=SearchKind.PERSON_DETAILS.value,
                    parent_node_id=owner.mn_node_id,
                    entity_id=entity_id,
                    entity_data=entity,
                )
            elif entity.type in (EntityType.ADDRESS.value, EntityType.PROPERTY.value):
                node_id = await controller.on_address_intel(
                    entity.to_address(), entity_id, parent_node_id=owner.mn_node_id, entity_data=entity
                )
            else:
                console.print(f"[muted]{entity.type} entities can not be traced.[/]")
                return
    except LookupClientError as e:
        console.print(f"[orphan]Trace failed:[/] {e}")
        return
    finally:
        await lookup.close()
        repo.persist(session)
    if node_id:
        node = session.store.require(node_id)
        note = f" [orphan]({node.error})[/]" if node.error and node.status != NodeStatus.COMPLETED else ""
        console.print(f"[primary]{node_title(node)}[/] [muted]{node_id}[/]{note}")


def main() -> None:
    settings = get_settings()
    configure_logging(settings.observability.log_level, settings.observability.log_json)
    metrics.start_server(settings.observability.metrics_port)

    parser = argparse.ArgumentParser(description="Investigation graph sessions")
    parser.add_argument("--sessions", default=None, help="Session directory (defaults to SESSION_DIR)")
    sub = parser.add_subparsers(dest="command")

    new = sub.add_parser("new", help="Start a new session")
    new.add_argument("--name", help="Session name")

    sub.add_parser("list", help="List saved sessions")

    show = sub.add_parser("show", help="Show a session's nodes and provenance tree")
    show.add_argument("session_id")

    ent = sub.add_parser("entities", help="List the entities of one node")
    ent.add_argument("session_id")
    ent.add_argument("node_id")

    val = sub.add_parser("validate", help="Check parent/child consistency")
    val.add_argument("session_id")

    exp = sub.add_parser("export", help="Write a JSON or CSV export of a session")
    exp.add_argument("session_id")
    exp.add_argument("--format", dest="export_format", choices=EXPORT_FORMATS, default="json")
    exp.add_argument("--output", default=None, help="Output file (default: exports/<session id>.<format>)")
    exp.add_argument("--raw", action="store_true", help="Include raw lookup responses")

    srch = sub.add_parser("search", help="Run a new search in a session")
    srch.add_argument("session_id")
    srch.add_argument("--kind", default=SearchKind.SKIP_TRACE.value,
                      choices=[k.value for k in SearchKind if k not in (SearchKind.SEARCH_HISTORY,
                                                                      SearchKind.PERSON_DETAILS)])
    srch.add_argument("--name")
    srch.add_argument("--email")
    srch.add_argument("--phone")
    srch.add_argument("--zpid")
    srch.add_argument("--address", help='"street, city, ST zip"')
    srch.add_argument("--parent", help="Parent node id")

    trc = sub.add_parser("trace", help="Trace a person or address entity")
    trc.add_argument("session_id")
    trc.add_argument("entity_id")

    args = parser.parse_args()
    repo = SessionRepository(args.sessions)
    if args.command is None:
        parser.print_help()
        return
    if args.command == "new":
        cmd_new(repo, args.name)
        return
    if args.command == "list":
        cmd_list(repo)
        return

    try:
        session = repo.load(args.session_id)
    except (SessionNotFoundError, SessionLoadError, ValueError) as e:
        console.print(f"[orphan]{e}[/]")
        sys.exit(2)

    try:
        if args.command == "show":
            cmd_show(session)
        elif args.command == "entities":
            cmd_entities(session, args.node_id)
        elif args.command == "validate":
            sys.exit(cmd_validate(session))
        elif args.command == "export":
            out = export_session(
                session,
                args.output or f"exports/{session.id}.{args.export_format}",
                include_raw_data=args.raw,
                export_format=args.export_format,
            )
            console.print(f"[primary]Exported[/] {out}")
        elif args.command == "search":
            asyncio.run(cmd_search(repo, session, args))
        elif args.command == "trace":
            asyncio.run(cmd_trace(repo, session, args.entity_id))
    except TraceGraphError as e:
        console.print(f"[orphan]{e}[/]")
        sys.exit(1)


if __name__ == "__main__":
    main()
