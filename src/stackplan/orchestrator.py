"""
Stack orchestrator for the plan/apply workflow.

Coordinates document loading, graph building, provider configuration, state
locking, planning and execution behind one facade used by the CLI.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

import structlog
from tenacity.wait import wait_base

from stackplan.config.document import StackDocument
from stackplan.config.loader import load_document
from stackplan.config.settings import Settings, get_settings
from stackplan.core.errors import ResourceNotFoundError, StateError
from stackplan.graph.builder import GraphBuilder
from stackplan.graph.models import ResourceAddress, ResourceGraph
from stackplan.graph.serializers import serialize
from stackplan.logging import bind_context
from stackplan.orchestration.engine import ExecutionEngine
from stackplan.orchestration.plan_builder import PlanBuilder
from stackplan.orchestration.results import ApplyResult, Plan
from stackplan.providers.lock import ProviderLock, load_lock, lock_from_registry, save_lock
from stackplan.providers.registry import ProviderRegistry, default_registry
from stackplan.state.models import StateRecord, StateSnapshot
from stackplan.state.store import StateStore

logger = structlog.get_logger()

ConfirmCallback = Callable[[Plan], Awaitable[bool]]


@dataclass
class ApplyOutcome:
    """Plan that was executed and its result; ``result`` is None when declined."""

    plan: Plan
    result: Optional[ApplyResult] = None

    @property
    def declined(self) -> bool:
        return self.result is None


class StackOrchestrator:
    """Runs validate, plan, apply and destroy for one stack document."""

    def __init__(
        self,
        document: StackDocument,
        *,
        settings: Settings | None = None,
        registry: ProviderRegistry | None = None,
        store: StateStore | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self.document = document
        self.settings = settings or get_settings()
        self.registry = registry if registry is not None else default_registry()
        if not self.registry.instances():
            self._configure_providers()
        self.store = store or document.backend.build_store(self.settings)
        self._retry_wait = retry_wait
        self._engine: ExecutionEngine | None = None
        self._cancel_requested = False
        self._log = bind_context(stack=document.backend.key)

    @classmethod
    def from_path(cls, path: str | Path | None = None, **kwargs) -> StackOrchestrator:
        return cls(load_document(path), **kwargs)

    def _configure_providers(self) -> None:
        if self.document.providers:
            self.document.configure_providers(self.registry)
            return
        # No providers block: every kind runs against the simulated provider,
        # whose objects live beside the state file so later runs see them.
        kinds = sorted({definition.kind for definition in self.document.definitions})
        objects_path = self.document.backend.path.with_name("objects.json")
        self.registry.configure("memory", "memory", kinds=kinds, path=objects_path)

    # ------------------------------------------------------------------
    # Read-only operations

    def validate(self) -> ResourceGraph:
        """Build the graph and check every kind resolves to a provider."""
        graph = GraphBuilder(self.registry.computed_attributes).build(self.document.definitions)
        for node in graph:
            self.registry.provider_name_for(node.kind)
        self._log.info("stack_validated", resources=len(graph), edges=len(graph.edges))
        return graph

    def render_graph(self, fmt: str = "dot") -> str:
        return serialize(self.validate(), fmt)

    async def state_list(self) -> List[StateRecord]:
        snapshot = await self.store.load()
        return sorted(snapshot.records.values(), key=lambda record: str(record.address))

    async def state_show(self, address: str) -> StateRecord:
        snapshot = await self.store.load()
        record = snapshot.get(ResourceAddress.parse(address))
        if record is None:
            raise StateError(f"No resource '{address}' in state")
        return record

    async def force_unlock(self, lock_id: str) -> None:
        await self.store.force_unlock(lock_id)

    # ------------------------------------------------------------------
    # Backend and provider lock

    @property
    def provider_lock_path(self) -> Path:
        path = Path(self.settings.provider_lock_path)
        if not path.is_absolute() and self.document.path is not None:
            path = self.document.path.resolve().parent / path
        return path

    async def init(self) -> ProviderLock:
        """Prepare the state backend and pin provider versions."""
        await self.store.initialize()
        lock = lock_from_registry(self.registry)
        save_lock(lock, self.provider_lock_path)
        self._log.info("stack_initialized", providers=lock.providers)
        return lock

    def check_provider_lock(self) -> Dict[str, tuple[str, str]]:
        """Warn about providers whose version differs from the lock file."""
        mismatches = load_lock(self.provider_lock_path).mismatches(self.registry)
        for name, (locked, current) in mismatches.items():
            self._log.warning("provider_version_mismatch", provider=name, locked=locked, current=current)
        return mismatches

    # ------------------------------------------------------------------
    # Plan / apply / destroy

    async def refresh(self, snapshot: StateSnapshot) -> StateSnapshot:
        """Re-read every StateRecord through its provider; drop vanished ones."""
        refreshed = StateSnapshot(serial=snapshot.serial, lineage=snapshot.lineage)
        for address, record in snapshot.records.items():
            provider = self.registry.get(record.provider or "") or self.registry.resolve(record.kind)
            try:
                attributes = await provider.read(record.kind, record.resource_id)
            except ResourceNotFoundError:
                self._log.warning("resource_drift_missing", address=str(address), id=record.resource_id)
                continue
            if attributes != record.attributes:
                self._log.info("resource_drift_changed", address=str(address))
            refreshed.records[address] = replace(record, attributes=attributes)
        return refreshed

    async def plan(self, *, refresh: bool = False) -> Plan:
        graph = self.validate()
        self.check_provider_lock()
        async with self.store.lock("plan"):
            snapshot = await self.store.load()
            if refresh:
                snapshot = await self.refresh(snapshot)
            return PlanBuilder(self.registry).build(graph, snapshot)

    async def apply(
        self,
        *,
        refresh: bool = False,
        confirm: ConfirmCallback | None = None,
        parallelism: int | None = None,
    ) -> ApplyOutcome:
        graph = self.validate()
        self.check_provider_lock()
        async with self.store.lock("apply"):
            snapshot = await self.store.load()
            if refresh:
                snapshot = await self.refresh(snapshot)
                await self.store.write_snapshot(snapshot)
            plan = PlanBuilder(self.registry).build(graph, snapshot)
            return await self._execute(plan, snapshot, confirm, parallelism)

    async def destroy(
        self,
        *,
        confirm: ConfirmCallback | None = None,
        parallelism: int | None = None,
    ) -> ApplyOutcome:
        async with self.store.lock("destroy"):
            snapshot = await self.store.load()
            plan = PlanBuilder(self.registry).build_destroy(snapshot)
            return await self._execute(plan, snapshot, confirm, parallelism)

    def cancel(self) -> None:
        """Graceful cancellation: running operations finish, nothing new starts."""
        self._cancel_requested = True
        if self._engine is not None:
            self._engine.cancel()

    async def close(self) -> None:
        await self.store.close()

    async def _execute(
        self,
        plan: Plan,
        snapshot: StateSnapshot,
        confirm: ConfirmCallback | None,
        parallelism: int | None,
    ) -> ApplyOutcome:
        if not plan.is_empty and confirm is not None and not await confirm(plan):
            self._log.info("apply_declined")
            return ApplyOutcome(plan=plan)

        structlog.contextvars.bind_contextvars(run_id=str(uuid.uuid4()))
        try:
            self._engine = ExecutionEngine(
                self.registry,
                self.store,
                parallelism=parallelism or self.settings.parallelism,
                max_retries=self.settings.max_retries,
                backoff_min=self.settings.retry_backoff_min,
                backoff_max=self.settings.retry_backoff_max,
                backoff_multiplier=self.settings.retry_backoff_multiplier,
                retry_wait=self._retry_wait,
            )
            if self._cancel_requested:
                self._engine.cancel()
            result = await self._engine.execute(plan, snapshot)
        finally:
            structlog.contextvars.unbind_contextvars("run_id")
        return ApplyOutcome(plan=plan, result=result)
