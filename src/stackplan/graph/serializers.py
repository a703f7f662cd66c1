"""
Graph serializers: JSON, Mermaid, and DOT output formats.

Pure functions that convert a ResourceGraph to string output. Edges point
from a resource to the resource it depends on.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Mapping

if TYPE_CHECKING:
    from stackplan.graph.models import ResourceAddress, ResourceGraph

# Nord palette mapped to planned actions
ACTION_COLORS = {
    "create": "#A3BE8C",
    "update": "#EBCB8B",
    "replace": "#D08770",
    "delete": "#BF616A",
    "no-op": "#4C566A",
}

FORMATS = ("dot", "mermaid", "json")


def serialize_json(graph: ResourceGraph) -> str:
    return json.dumps(graph.to_dict(), indent=2)


def serialize_mermaid(
    graph: ResourceGraph, actions: Mapping[ResourceAddress, str] | None = None
) -> str:
    """
    Serialize the graph as a Mermaid flowchart.

    Uses graph LR layout; when ``actions`` is given, nodes are styled with
    Nord-themed classDefs per planned action.
    """
    lines: list[str] = ["graph LR"]

    for address in graph.topological_order():
        lines.append(f"    {_node_id(str(address))}[{address}]")

    lines.append("")

    for edge in _sorted_edges(graph):
        lines.append(f"    {_node_id(str(edge.source))} --> {_node_id(str(edge.target))}")

    if actions:
        lines.append("")
        for action, color in ACTION_COLORS.items():
            lines.append(f"    classDef {_class_name(action)} fill:{color},stroke:#2E3440,color:#ECEFF4")
        for address, action in sorted(actions.items(), key=lambda item: str(item[0])):
            if address in graph:
                lines.append(f"    class {_node_id(str(address))} {_class_name(action)}")

    return "\n".join(lines)


def serialize_dot(
    graph: ResourceGraph, actions: Mapping[ResourceAddress, str] | None = None
) -> str:
    """
    Serialize the graph as a Graphviz DOT digraph.

    Nodes are boxes labelled with their address. Planned actions, when
    given, set the fill color.
    """
    lines: list[str] = [
        "digraph stack {",
        "    rankdir=LR;",
        '    node [shape=box, style=filled, fontname="sans-serif", fontcolor="#ECEFF4"];',
        "",
    ]

    for address in graph.topological_order():
        action = (actions or {}).get(address, "no-op")
        color = ACTION_COLORS.get(action, ACTION_COLORS["no-op"])
        lines.append(f'    {_node_id(str(address))} [label="{address}", fillcolor="{color}"];')

    lines.append("")

    for edge in _sorted_edges(graph):
        lines.append(f"    {_node_id(str(edge.source))} -> {_node_id(str(edge.target))};")

    lines.append("}")

    return "\n".join(lines)


def serialize(graph: ResourceGraph, fmt: str, actions: Mapping[ResourceAddress, str] | None = None) -> str:
    if fmt == "dot":
        return serialize_dot(graph, actions)
    if fmt == "mermaid":
        return serialize_mermaid(graph, actions)
    if fmt == "json":
        return serialize_json(graph)
    raise ValueError(f"Unknown graph format: {fmt}")


def _sorted_edges(graph: ResourceGraph) -> list:
    return sorted(graph.edges, key=lambda edge: (str(edge.source), str(edge.target)))


def _node_id(address: str) -> str:
    """Convert a resource address to a valid Mermaid/DOT node ID."""
    return re.sub(r"[^a-zA-Z0-9]", "_", address)


def _class_name(action: str) -> str:
    return action.replace("-", "")
