"""Orchestration package: planning and applying resource changes."""

from stackplan.orchestration.engine import ExecutionEngine, is_retryable
from stackplan.orchestration.plan_builder import PlanBuilder
from stackplan.orchestration.results import (
    Action,
    ApplyResult,
    OperationStatus,
    Plan,
    PlannedChange,
    ResultCollector,
    RunState,
)

__all__ = [
    "Action",
    "ApplyResult",
    "ExecutionEngine",
    "OperationStatus",
    "Plan",
    "PlanBuilder",
    "PlannedChange",
    "ResultCollector",
    "RunState",
    "is_retryable",
]
