"""Build the resource dependency graph from declared definitions."""

from __future__ import annotations

from typing import Callable, Collection, Iterable

import structlog

from stackplan.core.errors import (
    ConfigurationError,
    CycleError,
    DuplicateResourceError,
    UnresolvedReferenceError,
)
from stackplan.graph.expressions import COUNT_INDEX, SPLAT, Reference, expand, iter_references
from stackplan.graph.models import (
    Edge,
    ResourceAddress,
    ResourceDefinition,
    ResourceGraph,
    ResourceNode,
)

logger = structlog.get_logger()

# Attribute every realized resource exposes (the provider-assigned identifier)
ID_ATTRIBUTE = "id"

SchemaLookup = Callable[[str], Collection[str]]


class GraphBuilder:
    """Turns ResourceDefinitions into a validated, acyclic ResourceGraph.

    ``computed_attributes`` optionally maps a resource kind to the attributes
    its provider fills in on create (``arn``, ``endpoint``...). References to
    those are accepted even though the definition does not set them.
    """

    def __init__(self, computed_attributes: SchemaLookup | None = None) -> None:
        self._computed_attributes = computed_attributes

    def build(self, definitions: Iterable[ResourceDefinition]) -> ResourceGraph:
        ordered = sorted(definitions, key=lambda d: d.position)
        by_address = self._index_definitions(ordered)
        counts = {address: definition.count for address, definition in by_address.items()}

        for definition in ordered:
            self._validate_references(definition, by_address)

        graph = ResourceGraph()
        for definition in ordered:
            for node in self._expand(definition, counts, by_address):
                graph.nodes[node.address] = node

        for node in graph:
            for target in node.dependencies:
                graph.edges.add(Edge(source=node.address, target=target))

        # Raises CycleError; no partial graph escapes.
        graph.topological_order()

        logger.debug("graph_built", nodes=len(graph.nodes), edges=len(graph.edges))
        return graph

    def _index_definitions(
        self, definitions: list[ResourceDefinition]
    ) -> dict[str, ResourceDefinition]:
        by_address: dict[str, ResourceDefinition] = {}
        for definition in definitions:
            if definition.address in by_address:
                raise DuplicateResourceError(
                    f"Resource '{definition.address}' is declared more than once",
                    details={"address": definition.address},
                )
            if definition.count is not None and (
                isinstance(definition.count, bool)
                or not isinstance(definition.count, int)
                or definition.count < 0
            ):
                raise ConfigurationError(
                    f"Resource '{definition.address}' has invalid count {definition.count!r}"
                )
            by_address[definition.address] = definition
        return by_address

    def _validate_references(
        self,
        definition: ResourceDefinition,
        by_address: dict[str, ResourceDefinition],
    ) -> None:
        for reference in iter_references(definition.attributes):
            target = by_address.get(reference.base)
            if target is None:
                raise UnresolvedReferenceError(
                    str(reference), source=definition.address, reason="resource is not declared"
                )
            self._check_index(reference, definition, target)
            if not self._declares(target, reference.attribute):
                raise UnresolvedReferenceError(
                    str(reference),
                    source=definition.address,
                    reason=f"'{target.address}' has no attribute '{reference.attribute}'",
                )

        for entry in definition.depends_on:
            if entry not in by_address:
                raise UnresolvedReferenceError(
                    entry, source=definition.address, reason="depends_on names an undeclared resource"
                )

    def _check_index(
        self,
        reference: Reference,
        source: ResourceDefinition,
        target: ResourceDefinition,
    ) -> None:
        if not target.is_repeated:
            if reference.index is not None:
                raise UnresolvedReferenceError(
                    str(reference),
                    source=source.address,
                    reason=f"'{target.address}' has no count and cannot be indexed",
                )
            return

        if reference.index is None:
            raise UnresolvedReferenceError(
                str(reference),
                source=source.address,
                reason=f"'{target.address}' has count; use an index or [*]",
            )
        if reference.index == COUNT_INDEX:
            if not source.is_repeated:
                raise ConfigurationError(
                    f"'{COUNT_INDEX}' used in {source.address}, which has no count"
                )
            if source.count > target.count:  # type: ignore[operator]
                raise UnresolvedReferenceError(
                    str(reference),
                    source=source.address,
                    reason=f"count {source.count} exceeds count {target.count} of '{target.address}'",
                )
        elif reference.index != SPLAT and reference.index >= target.count:  # type: ignore[operator]
            raise UnresolvedReferenceError(
                str(reference),
                source=source.address,
                reason=f"index out of range for '{target.address}' (count {target.count})",
            )

    def _declares(self, definition: ResourceDefinition, attribute: str) -> bool:
        if attribute == ID_ATTRIBUTE or attribute in definition.attributes:
            return True
        if self._computed_attributes is None:
            return False
        return attribute in self._computed_attributes(definition.kind)

    def _expand(
        self,
        definition: ResourceDefinition,
        counts: dict[str, int | None],
        by_address: dict[str, ResourceDefinition],
    ) -> list[ResourceNode]:
        if definition.count is None:
            indices: list[int | None] = [None]
        else:
            indices = list(range(definition.count))

        explicit: set[ResourceAddress] = set()
        for entry in definition.depends_on:
            target = by_address[entry]
            if target.count is None:
                explicit.add(ResourceAddress(target.kind, target.name))
            else:
                explicit.update(
                    ResourceAddress(target.kind, target.name, i) for i in range(target.count)
                )

        nodes = []
        for index in indices:
            address = ResourceAddress(definition.kind, definition.name, index)
            attributes = expand(definition.attributes, index, counts, source=str(address))
            dependencies = {reference.target for reference in iter_references(attributes)}
            dependencies |= explicit
            if address in dependencies:
                raise CycleError([str(address), str(address)])
            nodes.append(
                ResourceNode(
                    address=address,
                    attributes=attributes,
                    dependencies=dependencies,
                    position=definition.position,
                )
            )
        return nodes
