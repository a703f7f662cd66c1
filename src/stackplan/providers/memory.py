"""
In-process provider simulating a remote resource API.

Objects live in a dict (optionally mirrored to a JSON file so separate CLI
invocations see the same "remote" objects). Scripted failures make it
possible to exercise retries and partial-failure handling.
"""

from __future__ import annotations

import asyncio
import copy
import json
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from stackplan.core.errors import ProviderError, ResourceNotFoundError
from stackplan.providers.base import ResourceSchema

logger = structlog.get_logger()

PROVIDER_VERSION = "1.0.0"

OPERATIONS = ("create", "read", "update", "delete")


@dataclass
class ScriptedFailure:
    """A failure the provider raises for matching calls."""

    operation: str
    kind: str
    retryable: bool = False
    times: Optional[int] = None  # None = every matching call
    message: str = "injected failure"

    def matches(self, operation: str, kind: str) -> bool:
        if self.times is not None and self.times <= 0:
            return False
        return self.operation == operation and self.kind in (kind, "*")


class InMemoryProvider:
    """Simulated provider for local runs and tests."""

    def __init__(
        self,
        name: str = "memory",
        *,
        immutable: Dict[str, List[str]] | None = None,
        computed: Dict[str, List[str]] | None = None,
        failures: List[Dict[str, Any]] | None = None,
        latency: float = 0.0,
        path: str | Path | None = None,
    ) -> None:
        self.name = name
        self.version = PROVIDER_VERSION
        self._immutable = {kind: frozenset(attrs) for kind, attrs in (immutable or {}).items()}
        self._computed = {kind: frozenset(attrs) for kind, attrs in (computed or {}).items()}
        self._failures = [ScriptedFailure(**failure) for failure in failures or []]
        self._latency = latency
        self._path = Path(path) if path else None
        self._objects: Dict[str, Dict[str, Any]] = self._load()
        self.calls: List[tuple[str, str, Any]] = []
        self._in_flight = 0
        self.max_in_flight = 0

    # ------------------------------------------------------------------
    # Test helpers

    def inject_failure(
        self,
        operation: str,
        kind: str,
        *,
        retryable: bool = False,
        times: int | None = None,
        message: str = "injected failure",
    ) -> None:
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")
        self._failures.append(
            ScriptedFailure(
                operation=operation,
                kind=kind,
                retryable=retryable,
                times=times,
                message=message,
            )
        )

    def calls_for(self, operation: str) -> List[tuple[str, str, Any]]:
        return [call for call in self.calls if call[0] == operation]

    def objects(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._objects)

    def forget(self, resource_id: str) -> None:
        """Remove an object behind the engine's back (simulated drift)."""
        self._objects.pop(resource_id, None)
        self._save()

    # ------------------------------------------------------------------
    # Provider interface

    def schema(self, kind: str) -> ResourceSchema:
        return ResourceSchema(
            kind=kind,
            immutable_attributes=self._immutable.get(kind, frozenset()),
            computed_attributes=self._computed.get(kind, frozenset()) | {"arn"},
        )

    async def create(self, kind: str, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        await self._call("create", kind, attributes)
        resource_id = f"{_short_kind(kind)}-{uuid.uuid4().hex[:12]}"
        resolved = copy.deepcopy(attributes)
        for attribute in self.schema(kind).computed_attributes:
            resolved[attribute] = _computed_value(kind, resource_id, attribute)
        self._objects[resource_id] = {"kind": kind, "attributes": resolved}
        self._save()
        return resource_id, copy.deepcopy(resolved)

    async def read(self, kind: str, resource_id: str) -> dict[str, Any]:
        await self._call("read", kind, resource_id)
        stored = self._objects.get(resource_id)
        if stored is None or stored["kind"] != kind:
            raise ResourceNotFoundError(
                f"{kind} '{resource_id}' not found",
                details={"kind": kind, "id": resource_id},
            )
        return copy.deepcopy(stored["attributes"])

    async def update(
        self, kind: str, resource_id: str, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        await self._call("update", kind, (resource_id, attributes))
        stored = self._objects.get(resource_id)
        if stored is None:
            raise ProviderError(f"{kind} '{resource_id}' not found", retryable=False)
        current = stored["attributes"]
        for attribute in self.schema(kind).immutable_attributes:
            if attribute in attributes and attributes[attribute] != current.get(attribute):
                raise ProviderError(
                    f"Attribute '{attribute}' of {kind} cannot be changed in place",
                    retryable=False,
                )
        resolved = copy.deepcopy(attributes)
        for attribute in self.schema(kind).computed_attributes:
            resolved[attribute] = current.get(attribute, _computed_value(kind, resource_id, attribute))
        stored["attributes"] = resolved
        self._save()
        return copy.deepcopy(resolved)

    async def delete(self, kind: str, resource_id: str) -> None:
        await self._call("delete", kind, resource_id)
        self._objects.pop(resource_id, None)
        self._save()

    # ------------------------------------------------------------------

    async def _call(self, operation: str, kind: str, payload: Any) -> None:
        self.calls.append((operation, kind, payload))
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self._latency:
                await asyncio.sleep(self._latency)
            for failure in self._failures:
                if failure.matches(operation, kind):
                    if failure.times is not None:
                        failure.times -= 1
                    logger.debug("provider_injected_failure", operation=operation, kind=kind)
                    raise ProviderError(
                        f"{operation} {kind}: {failure.message}",
                        retryable=failure.retryable,
                    )
        finally:
            self._in_flight -= 1

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self._path is None or not self._path.exists():
            return {}
        return json.loads(self._path.read_text())

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._objects, indent=2, sort_keys=True) + "\n")


def _short_kind(kind: str) -> str:
    return kind.split("_", 1)[-1].replace("_", "-")


def _computed_value(kind: str, resource_id: str, attribute: str) -> str:
    if attribute == "arn":
        return f"arn:stackplan:{kind}:{resource_id}"
    return f"{resource_id}.{attribute}"
