"""Plan builder: diffs the desired graph against state."""

from __future__ import annotations

from typing import Any, Dict, List

import structlog

from stackplan.graph.expressions import UNKNOWN, Reference, contains_unknown, resolve
from stackplan.graph.models import ResourceAddress, ResourceGraph, topological_sort
from stackplan.orchestration.results import Action, Plan, PlannedChange
from stackplan.providers.base import ResourceSchema
from stackplan.providers.registry import ProviderRegistry
from stackplan.state.models import StateRecord, StateSnapshot

logger = structlog.get_logger()


class PlanBuilder:
    """Builds a plan by diffing graph nodes against their StateRecords.

    Creates, updates and replacements come first, dependencies before
    dependents. Deletes come last, dependents before dependencies. A
    replacement creates the new object first; the old (deposed) object is
    deleted once everything that referenced it has moved on.
    """

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    def build(self, graph: ResourceGraph, snapshot: StateSnapshot) -> Plan:
        """Build a plan reconciling ``snapshot`` with ``graph``."""
        planned: Dict[ResourceAddress, Dict[str, Any]] = {}
        forward: Dict[ResourceAddress, PlannedChange] = {}
        unchanged: List[ResourceAddress] = []

        def lookup(reference: Reference) -> Any:
            return planned[reference.target].get(reference.attribute, UNKNOWN)

        for address in graph.topological_order():
            node = graph.nodes[address]
            record = snapshot.get(address)
            schema = self._registry.schema(node.kind)
            desired = resolve(node.attributes, lookup, source=str(address))
            action, changed, after = _diff(desired, record, schema)
            planned[address] = after

            if action is Action.NOOP:
                unchanged.append(address)
                continue

            forward[address] = PlannedChange(
                address=address,
                action=action,
                provider=self._registry.provider_name_for(node.kind),
                desired=node.attributes,
                before=_before(record),
                after=after,
                resource_id=record.resource_id if record else None,
                dependencies=tuple(sorted(node.dependencies, key=str)),
                changed_attributes=changed,
                node=node,
            )

        self._link_forward(graph, forward)
        deletes = self._plan_deletes(
            snapshot,
            doomed=[address for address in snapshot.records if address not in graph],
            forward=forward,
            graph=graph,
        )

        plan = Plan(changes=list(forward.values()) + deletes, unchanged=unchanged)
        logger.info("plan_built", **plan.counts(), unchanged=len(unchanged))
        return plan

    def build_destroy(self, snapshot: StateSnapshot) -> Plan:
        """Build a plan deleting every resource recorded in ``snapshot``."""
        deletes = self._plan_deletes(snapshot, doomed=list(snapshot.records), forward={}, graph=None)
        plan = Plan(changes=deletes, destroy=True)
        logger.info("destroy_plan_built", delete=len(deletes))
        return plan

    # ------------------------------------------------------------------

    def _link_forward(
        self, graph: ResourceGraph, forward: Dict[ResourceAddress, PlannedChange]
    ) -> None:
        """Wait on the nearest changed ancestors, looking through no-op nodes."""
        nearest: Dict[ResourceAddress, set[str]] = {}

        def changed_ancestors(address: ResourceAddress) -> set[str]:
            if address not in nearest:
                result: set[str] = set()
                for dependency in graph.nodes[address].dependencies:
                    if dependency in forward:
                        result.add(str(dependency))
                    else:
                        result |= changed_ancestors(dependency)
                nearest[address] = result
            return nearest[address]

        for address, change in forward.items():
            change.depends_on = tuple(sorted(changed_ancestors(address)))

    def _plan_deletes(
        self,
        snapshot: StateSnapshot,
        *,
        doomed: List[ResourceAddress],
        forward: Dict[ResourceAddress, PlannedChange],
        graph: ResourceGraph | None,
    ) -> List[PlannedChange]:
        deletes: List[PlannedChange] = []
        sequence: Dict[str, int] = {}

        for address, record in snapshot.records.items():
            provider = self._provider_for(record)
            pending_ids = list(record.deposed)
            replacing = address in forward and forward[address].action is Action.REPLACE
            if replacing:
                pending_ids.append(record.resource_id)
            for old_id in pending_ids:
                change = PlannedChange(
                    address=address,
                    action=Action.DELETE,
                    provider=provider,
                    before=_before(record),
                    resource_id=old_id,
                    dependencies=tuple(sorted(record.dependency_addresses, key=str)),
                    deposed=True,
                )
                deletes.append(change)
                sequence[change.key] = record.sequence
            if address in doomed:
                change = PlannedChange(
                    address=address,
                    action=Action.DELETE,
                    provider=provider,
                    before=_before(record),
                    resource_id=record.resource_id,
                    dependencies=tuple(sorted(record.dependency_addresses, key=str)),
                )
                deletes.append(change)
                sequence[change.key] = record.sequence

        for change in deletes:
            waits: set[str] = set()
            # Old objects that referenced this one go first.
            for other in deletes:
                if other is not change and change.address in other.dependencies:
                    if other.address != change.address:
                        waits.add(other.key)
            # Kept resources must move off it before it disappears.
            for kept_address, kept in forward.items():
                record = snapshot.get(kept_address)
                if record is not None and change.address in record.dependency_addresses:
                    waits.add(kept.key)
            if change.deposed and change.address in forward:
                waits.add(forward[change.address].key)
                if graph is not None:
                    for dependent in graph.dependents_of(change.address):
                        if dependent in forward:
                            waits.add(forward[dependent].key)
            change.depends_on = tuple(sorted(waits))

        delete_keys = {change.key for change in deletes}
        by_key = {change.key: change for change in deletes}
        ordered = topological_sort(
            {change.key: set(change.depends_on) & delete_keys for change in deletes},
            key=lambda key: (-sequence[key], key),
        )
        return [by_key[key] for key in ordered]

    def _provider_for(self, record: StateRecord) -> str:
        if record.provider and self._registry.get(record.provider) is not None:
            return record.provider
        return self._registry.provider_name_for(record.kind)


def _diff(
    desired: Dict[str, Any],
    record: StateRecord | None,
    schema: ResourceSchema,
) -> tuple[Action, tuple[str, ...], Dict[str, Any]]:
    """Compare resolved desired attributes with a StateRecord.

    Returns the action, the changed attribute names and the planned values
    later nodes resolve their references against.
    """
    if record is None:
        return Action.CREATE, tuple(sorted(desired)), {**desired, "id": UNKNOWN}

    current = record.attributes
    changed = []
    for attribute in sorted(set(desired) | set(current)):
        if attribute not in desired:
            if attribute not in schema.computed_attributes:
                changed.append(attribute)
        elif contains_unknown(desired[attribute]) or desired[attribute] != current.get(attribute):
            changed.append(attribute)

    if not changed:
        return Action.NOOP, (), {**current, "id": record.resource_id}

    if set(changed) & schema.immutable_attributes:
        return Action.REPLACE, tuple(changed), {**desired, "id": UNKNOWN}

    computed = {k: v for k, v in current.items() if k in schema.computed_attributes}
    return Action.UPDATE, tuple(changed), {**computed, **desired, "id": record.resource_id}


def _before(record: StateRecord | None) -> Dict[str, Any] | None:
    if record is None:
        return None
    return {**record.attributes, "id": record.resource_id}
