"""Plan and apply result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from stackplan.graph.expressions import render
from stackplan.graph.models import ResourceAddress, ResourceNode, ResourceStatus

DEPOSED_MARKER = " (deposed "


class Action(str, Enum):
    """Planned action for one resource."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "no-op"


class OperationStatus(str, Enum):
    """Per-operation state machine: planned -> in progress -> done/failed."""

    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunState(str, Enum):
    """Global state of an apply run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    ABORTED = "aborted"


@dataclass
class PlannedChange:
    """One operation of a plan."""

    address: ResourceAddress
    action: Action
    provider: str
    desired: Any = None  # expanded attributes, references resolved lazily at apply
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    resource_id: Optional[str] = None
    dependencies: tuple[ResourceAddress, ...] = ()
    depends_on: tuple[str, ...] = ()
    changed_attributes: tuple[str, ...] = ()
    deposed: bool = False
    node: Optional[ResourceNode] = None

    @property
    def key(self) -> str:
        """Unique key of this operation within its plan."""
        if self.deposed:
            return f"{self.address}{DEPOSED_MARKER}{self.resource_id})"
        return str(self.address)

    @property
    def kind(self) -> str:
        return self.address.kind

    @property
    def is_delete(self) -> bool:
        return self.action is Action.DELETE

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": str(self.address),
            "action": self.action.value,
            "provider": self.provider,
            "id": self.resource_id,
            "deposed": self.deposed,
            "before": render(self.before),
            "after": render(self.after),
            "changed_attributes": list(self.changed_attributes),
            "depends_on": list(self.depends_on),
        }


@dataclass
class Plan:
    """Ordered, dependency-respecting list of operations."""

    changes: List[PlannedChange] = field(default_factory=list)
    unchanged: List[ResourceAddress] = field(default_factory=list)
    destroy: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def get(self, key: str) -> Optional[PlannedChange]:
        for change in self.changes:
            if change.key == key:
                return change
        return None

    def index_of(self, key: str) -> int:
        for position, change in enumerate(self.changes):
            if change.key == key:
                return position
        raise KeyError(key)

    def counts(self) -> Dict[str, int]:
        counts = {action.value: 0 for action in Action if action is not Action.NOOP}
        for change in self.changes:
            if not change.deposed:
                counts[change.action.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "destroy": self.destroy,
            "changes": [change.to_dict() for change in self.changes],
            "unchanged": [str(address) for address in self.unchanged],
            "summary": self.counts(),
        }


@dataclass
class ApplyResult:
    """Outcome of executing a plan."""

    state: RunState = RunState.IDLE
    statuses: Dict[str, OperationStatus] = field(default_factory=dict)
    actions: Dict[str, Action] = field(default_factory=dict)
    lifecycle: Dict[str, ResourceStatus] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    def _with_status(self, status: OperationStatus) -> List[str]:
        return [key for key, value in self.statuses.items() if value is status]

    @property
    def done(self) -> List[str]:
        return self._with_status(OperationStatus.DONE)

    @property
    def failed(self) -> List[str]:
        return self._with_status(OperationStatus.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self._with_status(OperationStatus.SKIPPED)

    @property
    def not_started(self) -> List[str]:
        return self._with_status(OperationStatus.PLANNED)

    @property
    def success(self) -> bool:
        """Whether the run completed without errors."""
        return self.state is RunState.COMPLETED

    def completed_counts(self) -> Dict[str, int]:
        counts = {"added": 0, "changed": 0, "destroyed": 0}
        for key in self.done:
            action = self.actions[key]
            if action in (Action.CREATE, Action.REPLACE):
                counts["added"] += 1
            elif action is Action.UPDATE:
                counts["changed"] += 1
            elif action is Action.DELETE and DEPOSED_MARKER not in key:
                counts["destroyed"] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "success": self.success,
            "duration_seconds": round(self.duration_seconds, 3),
            "operations": {key: status.value for key, status in self.statuses.items()},
            "failed": self.failed,
            "skipped": self.skipped,
            "not_started": self.not_started,
            "errors": dict(self.errors),
            "summary": self.completed_counts(),
        }


class ResultCollector:
    """Tracks operation and resource status while a plan executes."""

    def __init__(self, plan: Plan) -> None:
        self._result = ApplyResult()
        for change in plan.changes:
            self._result.statuses[change.key] = OperationStatus.PLANNED
            self._result.actions[change.key] = change.action
            if not change.deposed:
                self._result.lifecycle[str(change.address)] = ResourceStatus.PLANNED

    def status(self, key: str) -> OperationStatus:
        return self._result.statuses[key]

    def start(self, change: PlannedChange) -> None:
        self._result.statuses[change.key] = OperationStatus.IN_PROGRESS
        self._set_lifecycle(
            change, ResourceStatus.DESTROYING if change.is_delete else ResourceStatus.CREATING
        )

    def record(self, change: PlannedChange) -> None:
        """Record a successful operation."""
        self._result.statuses[change.key] = OperationStatus.DONE
        self._set_lifecycle(
            change, ResourceStatus.DESTROYED if change.is_delete else ResourceStatus.CREATED
        )

    def record_error(self, change: PlannedChange, error: Exception) -> None:
        """Record an operation failure."""
        self._result.statuses[change.key] = OperationStatus.FAILED
        self._result.errors[change.key] = str(error)
        self._set_lifecycle(change, ResourceStatus.FAILED)

    def skip(self, key: str, reason: str) -> None:
        self._result.statuses[key] = OperationStatus.SKIPPED
        self._result.errors[key] = reason

    def finalize(self, state: RunState, duration: float) -> ApplyResult:
        """Return the final result with run state and duration set."""
        self._result.state = state
        self._result.duration_seconds = duration
        return self._result

    def _set_lifecycle(self, change: PlannedChange, status: ResourceStatus) -> None:
        if change.deposed:
            return
        self._result.lifecycle[str(change.address)] = status
        if change.node is not None:
            change.node.status = status
