"""Execution engine: applies a plan against providers with bounded parallelism."""

from __future__ import annotations

import asyncio
import functools
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Set

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from stackplan.core.errors import ConfigurationError, ProviderError
from stackplan.graph.expressions import attribute_lookup, resolve
from stackplan.graph.models import ResourceAddress
from stackplan.orchestration.results import (
    Action,
    ApplyResult,
    Plan,
    PlannedChange,
    ResultCollector,
    RunState,
)
from stackplan.providers.registry import ProviderRegistry
from stackplan.state.models import StateSnapshot
from stackplan.state.store import StateStore

logger = structlog.get_logger()


def is_retryable(error: BaseException) -> bool:
    """Only provider errors flagged as transient are retried."""
    return isinstance(error, ProviderError) and error.retryable


def _log_retry(key: str, retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "provider_retry",
        address=key,
        attempt=retry_state.attempt_number,
        error=str(error),
    )


class ExecutionEngine:
    """Runs plan operations as soon as everything they wait on is done.

    At most ``parallelism`` operations are in flight. A failed operation
    marks every operation that transitively waits on it as skipped while
    independent branches continue. State is written after each success.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: StateStore,
        *,
        parallelism: int = 10,
        max_retries: int = 3,
        backoff_min: float = 1.0,
        backoff_max: float = 30.0,
        backoff_multiplier: float = 2.0,
        retry_wait: wait_base | None = None,
    ) -> None:
        if parallelism < 1:
            raise ConfigurationError(f"Parallelism must be at least 1, got {parallelism}")
        if max_retries < 0:
            raise ConfigurationError(f"max_retries cannot be negative, got {max_retries}")
        self._registry = registry
        self._store = store
        self.parallelism = parallelism
        self.max_retries = max_retries
        self._retry_wait = retry_wait or wait_exponential(
            multiplier=backoff_multiplier, min=backoff_min, max=backoff_max
        )
        self._state = RunState.IDLE
        self._cancel_requested = False

    @property
    def state(self) -> RunState:
        return self._state

    def cancel(self) -> None:
        """Stop starting new operations; in-flight ones finish and are recorded."""
        if not self._cancel_requested:
            logger.warning("run_cancelled", state=self._state.value)
        self._cancel_requested = True

    async def execute(self, plan: Plan, snapshot: StateSnapshot) -> ApplyResult:
        """Apply ``plan``; ``snapshot`` seeds values for unchanged resources."""
        collector = ResultCollector(plan)
        changes = {change.key: change for change in plan.changes}
        waiting: Dict[str, Set[str]] = {
            key: {dep for dep in change.depends_on if dep in changes}
            for key, change in changes.items()
        }
        dependents: Dict[str, Set[str]] = defaultdict(set)
        for key, deps in waiting.items():
            for dep in deps:
                dependents[dep].add(key)

        values = snapshot.attribute_values()
        pending: List[str] = [change.key for change in plan.changes]
        running: Dict[asyncio.Task[None], str] = {}
        had_errors = False
        started_at = time.monotonic()

        self._state = RunState.RUNNING
        logger.info("run_started", operations=len(changes), parallelism=self.parallelism)

        while True:
            if not self._cancel_requested:
                for key in list(pending):
                    if len(running) >= self.parallelism:
                        break
                    if waiting[key]:
                        continue
                    pending.remove(key)
                    change = changes[key]
                    collector.start(change)
                    task = asyncio.create_task(self._run(change, values))
                    running[task] = key

            if not running:
                break

            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                key = running.pop(task)
                change = changes[key]
                error = task.exception()
                if error is None:
                    collector.record(change)
                    logger.info("operation_completed", address=key, action=change.action.value)
                    for dependent in dependents[key]:
                        waiting[dependent].discard(key)
                    continue

                had_errors = True
                collector.record_error(change, error)
                logger.error(
                    "operation_failed",
                    address=key,
                    action=change.action.value,
                    error_type=type(error).__name__,
                    error=str(error),
                )
                for skipped in _transitive(key, dependents):
                    if skipped in pending:
                        pending.remove(skipped)
                        collector.skip(skipped, f"dependency {key} failed")
                        logger.info("operation_skipped", address=skipped, failed_dependency=key)

        if self._cancel_requested:
            self._state = RunState.ABORTED
        elif had_errors:
            self._state = RunState.COMPLETED_WITH_ERRORS
        else:
            self._state = RunState.COMPLETED

        result = collector.finalize(self._state, time.monotonic() - started_at)
        logger.info(
            "run_finished",
            state=result.state.value,
            done=len(result.done),
            failed=len(result.failed),
            skipped=len(result.skipped),
            not_started=len(result.not_started),
        )
        return result

    # ------------------------------------------------------------------

    async def _run(self, change: PlannedChange, values: Dict[ResourceAddress, Dict[str, Any]]) -> None:
        provider = self._registry.get(change.provider)
        if provider is None:
            raise ConfigurationError(f"Provider '{change.provider}' is not configured")

        logger.info("operation_started", address=change.key, action=change.action.value)
        address = change.address

        if change.action is Action.DELETE:
            await self._call(change, provider.delete, change.kind, change.resource_id)
            if change.deposed:
                await self._store.clear_deposed(address, change.resource_id)
            else:
                await self._store.record_removal(address)
                values.pop(address, None)
            return

        attributes = resolve(change.desired, attribute_lookup(values, str(address)), str(address))

        deposed: List[str] = []
        if change.action is Action.UPDATE:
            resource_id = change.resource_id
            realized = await self._call(change, provider.update, change.kind, resource_id, attributes)
        else:
            resource_id, realized = await self._call(change, provider.create, change.kind, attributes)
            if change.action is Action.REPLACE and change.resource_id:
                deposed.append(change.resource_id)

        await self._store.record_success(
            address,
            resource_id,
            realized,
            dependencies=change.dependencies,
            provider=change.provider,
            deposed=deposed,
        )
        values[address] = {**realized, "id": resource_id}

    async def _call(self, change: PlannedChange, method: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        retrying = AsyncRetrying(
            retry=retry_if_exception(is_retryable),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._retry_wait,
            reraise=True,
            before_sleep=functools.partial(_log_retry, change.key),
        )
        return await retrying(method, *args)


def _transitive(key: str, dependents: Dict[str, Set[str]]) -> List[str]:
    seen: Set[str] = set()
    stack = list(dependents.get(key, ()))
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        stack.extend(dependents.get(current, ()))
    return sorted(seen)


