"""
Graph models for declared resources and their dependencies.

A ResourceDefinition is what the document declares; the builder expands it
into one ResourceNode per replica and connects nodes with Edges.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from stackplan.core.errors import CycleError

_ADDRESS_RE = re.compile(r"^(?P<kind>[A-Za-z_][\w-]*)\.(?P<name>[A-Za-z_][\w-]*)(?:\[(?P<index>\d+)\])?$")


@dataclass(frozen=True, order=True)
class ResourceAddress:
    """Identity of one resource instance: kind, name and replica index."""

    kind: str
    name: str
    index: int | None = None

    def __str__(self) -> str:
        if self.index is None:
            return f"{self.kind}.{self.name}"
        return f"{self.kind}.{self.name}[{self.index}]"

    @property
    def base(self) -> str:
        """Address of the definition this instance belongs to."""
        return f"{self.kind}.{self.name}"

    @classmethod
    def parse(cls, value: str) -> ResourceAddress:
        match = _ADDRESS_RE.match(value.strip())
        if match is None:
            raise ValueError(f"Invalid resource address: {value!r}")
        index = match.group("index")
        return cls(
            kind=match.group("kind"),
            name=match.group("name"),
            index=int(index) if index is not None else None,
        )


class ResourceStatus(str, Enum):
    """Lifecycle of a single resource during a run."""

    PLANNED = "planned"
    CREATING = "creating"
    CREATED = "created"
    FAILED = "failed"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class ResourceDefinition:
    """A declared resource, immutable once loaded for a run."""

    kind: str
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    count: int | None = None
    depends_on: tuple[str, ...] = ()
    position: int = 0

    @property
    def address(self) -> str:
        return f"{self.kind}.{self.name}"

    @property
    def is_repeated(self) -> bool:
        return self.count is not None


@dataclass
class ResourceNode:
    """One instantiated resource (one replica of a definition)."""

    address: ResourceAddress
    attributes: dict[str, Any]
    dependencies: set[ResourceAddress] = field(default_factory=set)
    position: int = 0
    status: ResourceStatus = ResourceStatus.PLANNED

    @property
    def kind(self) -> str:
        return self.address.kind

    @property
    def name(self) -> str:
        return self.address.name

    @property
    def index(self) -> int | None:
        return self.address.index


@dataclass(frozen=True)
class Edge:
    """``source`` depends on ``target``: target is realized first."""

    source: ResourceAddress
    target: ResourceAddress

    def to_dict(self) -> dict[str, str]:
        return {"source": str(self.source), "target": str(self.target)}


@dataclass
class ResourceGraph:
    """Directed acyclic graph of resource nodes."""

    nodes: dict[ResourceAddress, ResourceNode] = field(default_factory=dict)
    edges: set[Edge] = field(default_factory=set)

    def __contains__(self, address: object) -> bool:
        return address in self.nodes

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, address: ResourceAddress) -> ResourceNode | None:
        return self.nodes.get(address)

    def dependencies_of(self, address: ResourceAddress) -> set[ResourceAddress]:
        return {edge.target for edge in self.edges if edge.source == address}

    def dependents_of(self, address: ResourceAddress) -> set[ResourceAddress]:
        return {edge.source for edge in self.edges if edge.target == address}

    def transitive_dependents(self, address: ResourceAddress) -> set[ResourceAddress]:
        """All nodes that depend on ``address`` directly or indirectly."""
        seen: set[ResourceAddress] = set()
        stack = [address]
        while stack:
            current = stack.pop()
            for dependent in self.dependents_of(current):
                if dependent not in seen:
                    seen.add(dependent)
                    stack.append(dependent)
        return seen

    def topological_order(self) -> list[ResourceAddress]:
        """Dependencies first; ties broken by declaration order."""
        return topological_sort(
            {address: node.dependencies for address, node in self.nodes.items()},
            key=lambda address: (self.nodes[address].position, address.index or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [str(address) for address in self.topological_order()],
            "edges": sorted(
                (edge.to_dict() for edge in self.edges),
                key=lambda e: (e["source"], e["target"]),
            ),
        }


def topological_sort(dependencies: dict[Any, set[Any]], key: Any = None) -> list[Any]:
    """Kahn's algorithm with a deterministic tie-break.

    ``dependencies`` maps every node to the nodes it depends on; entries that
    are not themselves keys are ignored. Raises ``CycleError`` when some
    nodes can never become ready.
    """
    sort_key = key or (lambda item: item)
    remaining = {node: {dep for dep in deps if dep in dependencies} for node, deps in dependencies.items()}
    order: list[Any] = []
    ready = sorted((node for node, deps in remaining.items() if not deps), key=sort_key)

    while ready:
        node = ready.pop(0)
        order.append(node)
        del remaining[node]
        released = []
        for other, deps in remaining.items():
            if node in deps:
                deps.discard(node)
                if not deps:
                    released.append(other)
        if released:
            ready = sorted(ready + released, key=sort_key)

    if remaining:
        raise CycleError([str(node) for node in find_cycle(remaining)])
    return order


def find_cycle(dependencies: dict[Any, set[Any]]) -> list[Any]:
    """Return one cycle (first node repeated at the end) from a cyclic remainder."""
    visiting: list[Any] = []
    visited: set[Any] = set()

    def visit(node: Any) -> list[Any] | None:
        if node in visiting:
            start = visiting.index(node)
            return visiting[start:] + [node]
        if node in visited:
            return None
        visiting.append(node)
        for dep in sorted(dependencies.get(node, ()), key=str):
            if dep in dependencies:
                cycle = visit(dep)
                if cycle:
                    return cycle
        visiting.pop()
        visited.add(node)
        return None

    for start in sorted(dependencies, key=str):
        cycle = visit(start)
        if cycle:
            return cycle
    return sorted(dependencies, key=str)
