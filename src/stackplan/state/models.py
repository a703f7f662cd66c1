"""Persisted state models."""

from __future__ import annotations

import getpass
import os
import socket
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from stackplan.core.errors import StateError
from stackplan.graph.models import ResourceAddress

STATE_VERSION = 1


@dataclass
class StateRecord:
    """Last-known realized state of one resource."""

    kind: str
    name: str
    resource_id: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    index: int | None = None
    dependencies: List[str] = field(default_factory=list)
    provider: str | None = None
    sequence: int = 0  # creation order, used as a destroy tie-break
    deposed: List[str] = field(default_factory=list)  # replaced ids awaiting deletion

    @property
    def address(self) -> ResourceAddress:
        return ResourceAddress(self.kind, self.name, self.index)

    @property
    def dependency_addresses(self) -> set[ResourceAddress]:
        return {ResourceAddress.parse(entry) for entry in self.dependencies}

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "index": self.index,
            "id": self.resource_id,
            "attributes": self.attributes,
            "dependencies": sorted(self.dependencies),
            "provider": self.provider,
            "sequence": self.sequence,
            "deposed": list(self.deposed),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateRecord:
        try:
            return cls(
                kind=data["kind"],
                name=data["name"],
                index=data.get("index"),
                resource_id=data["id"],
                attributes=dict(data.get("attributes") or {}),
                dependencies=list(data.get("dependencies") or []),
                provider=data.get("provider"),
                sequence=int(data.get("sequence", 0)),
                deposed=list(data.get("deposed") or []),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise StateError(f"Invalid state record: {e}") from e


@dataclass
class StateSnapshot:
    """All StateRecords of one state key, as read at one point in time."""

    records: Dict[ResourceAddress, StateRecord] = field(default_factory=dict)
    serial: int = 0
    lineage: str | None = None

    def get(self, address: ResourceAddress) -> StateRecord | None:
        return self.records.get(address)

    def __contains__(self, address: object) -> bool:
        return address in self.records

    def __len__(self) -> int:
        return len(self.records)

    @property
    def next_sequence(self) -> int:
        return max((record.sequence for record in self.records.values()), default=0) + 1

    def attribute_values(self) -> Dict[ResourceAddress, Dict[str, Any]]:
        """Realized attributes per address, including the ``id``."""
        return {
            address: {**record.attributes, "id": record.resource_id}
            for address, record in self.records.items()
        }

    def to_document(self) -> dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "serial": self.serial,
            "lineage": self.lineage,
            "resources": {
                str(address): record.to_dict()
                for address, record in sorted(self.records.items(), key=lambda item: str(item[0]))
            },
        }

    @classmethod
    def from_document(cls, document: dict[str, Any] | None) -> StateSnapshot:
        if not document:
            return cls()
        version = document.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise StateError(f"Unsupported state version {version}")
        records: Dict[ResourceAddress, StateRecord] = {}
        for record_data in (document.get("resources") or {}).values():
            record = StateRecord.from_dict(record_data)
            records[record.address] = record
        return cls(
            records=records,
            serial=int(document.get("serial", 0)),
            lineage=document.get("lineage"),
        )


@dataclass(frozen=True)
class LockInfo:
    """Who holds the state lock, for which operation, since when."""

    lock_id: str
    operation: str
    who: str
    created: str

    @classmethod
    def new(cls, operation: str) -> LockInfo:
        return cls(
            lock_id=str(uuid.uuid4()),
            operation=operation,
            who=f"{_whoami()}@{socket.gethostname()}",
            created=datetime.now(timezone.utc).isoformat(),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.lock_id,
            "operation": self.operation,
            "who": self.who,
            "created": self.created,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockInfo:
        return cls(
            lock_id=str(data.get("id", "unknown")),
            operation=str(data.get("operation", "unknown")),
            who=str(data.get("who", "unknown")),
            created=str(data.get("created", "unknown")),
        )


def _whoami() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USER", "unknown")
