from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ResourceSchema:
    """Schema metadata describing a provider-managed resource kind."""

    kind: str
    immutable_attributes: frozenset[str] = field(default_factory=frozenset)
    computed_attributes: frozenset[str] = field(default_factory=frozenset)
    description: str | None = None


@runtime_checkable
class Provider(Protocol):
    """Capability set the core calls through for one group of resource kinds.

    Every call is an opaque, fallible remote operation. Failures are raised
    as ``ProviderError`` with ``retryable`` set by the provider; ``read``
    raises ``ResourceNotFoundError`` when the object is gone.
    """

    name: str
    version: str

    def schema(self, kind: str) -> ResourceSchema:
        ...

    async def create(self, kind: str, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        ...

    async def read(self, kind: str, resource_id: str) -> dict[str, Any]:
        ...

    async def update(
        self, kind: str, resource_id: str, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        ...

    async def delete(self, kind: str, resource_id: str) -> None:
        ...
