"""
State store: durable record of realized resources plus a run-level lock.

Writes are read-modify-write of the whole document, serialized through a
single asyncio lock, and performed while the run holds the state lock.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable

import structlog

from stackplan.core.errors import LockError, StateError
from stackplan.graph.models import ResourceAddress
from stackplan.state.models import LockInfo, StateRecord, StateSnapshot

logger = structlog.get_logger()


class StateStore(ABC):
    """Narrow interface the planner and engine use for persisted state."""

    def __init__(self, *, lock_timeout: float = 0.0, poll_interval: float = 1.0) -> None:
        self.lock_timeout = lock_timeout
        self.poll_interval = poll_interval
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Backend primitives

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (directories, connectivity)."""

    @abstractmethod
    async def _read_document(self) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def _write_document(self, document: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def _try_acquire(self, info: LockInfo) -> LockInfo | None:
        """Take the lock; return the current holder when it is already taken."""

    @abstractmethod
    async def _release(self, info: LockInfo) -> None:
        ...

    @abstractmethod
    async def force_unlock(self, lock_id: str) -> None:
        """Remove a lock left behind by a crashed run."""

    # ------------------------------------------------------------------

    async def load(self) -> StateSnapshot:
        return StateSnapshot.from_document(await self._read_document())

    async def record_success(
        self,
        address: ResourceAddress,
        resource_id: str,
        attributes: dict[str, Any],
        *,
        dependencies: Iterable[ResourceAddress] = (),
        provider: str | None = None,
        deposed: Iterable[str] = (),
    ) -> StateRecord:
        """Store the realized resource; ``deposed`` adds replaced ids still to delete."""
        async with self._write_lock:
            snapshot = await self.load()
            previous = snapshot.get(address)
            pending = list(previous.deposed) if previous else []
            pending.extend(resource for resource in deposed if resource not in pending)
            record = StateRecord(
                kind=address.kind,
                name=address.name,
                index=address.index,
                resource_id=resource_id,
                attributes=dict(attributes),
                dependencies=sorted(str(dependency) for dependency in dependencies),
                provider=provider,
                sequence=previous.sequence if previous else snapshot.next_sequence,
                deposed=pending,
            )
            snapshot.records[address] = record
            await self._commit(snapshot)
            logger.debug("state_recorded", address=str(address), serial=snapshot.serial)
            return record

    async def record_removal(self, address: ResourceAddress) -> None:
        async with self._write_lock:
            snapshot = await self.load()
            if snapshot.records.pop(address, None) is None:
                return
            await self._commit(snapshot)
            logger.debug("state_removed", address=str(address), serial=snapshot.serial)

    async def clear_deposed(self, address: ResourceAddress, resource_id: str) -> None:
        async with self._write_lock:
            snapshot = await self.load()
            record = snapshot.get(address)
            if record is None or resource_id not in record.deposed:
                return
            record.deposed.remove(resource_id)
            await self._commit(snapshot)

    async def write_snapshot(self, snapshot: StateSnapshot) -> None:
        """Replace the stored records with ``snapshot`` (used after refresh)."""
        async with self._write_lock:
            current = await self.load()
            snapshot.serial = current.serial
            snapshot.lineage = snapshot.lineage or current.lineage
            await self._commit(snapshot)

    async def close(self) -> None:
        """Release backend resources."""

    async def _commit(self, snapshot: StateSnapshot) -> None:
        snapshot.serial += 1
        if snapshot.lineage is None:
            snapshot.lineage = str(uuid.uuid4())
        await self._write_document(snapshot.to_document())

    @asynccontextmanager
    async def lock(self, operation: str) -> AsyncIterator[LockInfo]:
        """Hold the state lock for the duration of the block.

        Fails fast when ``lock_timeout`` is 0, otherwise polls until the
        timeout elapses. The lock is released on every exit path.
        """
        info = LockInfo.new(operation)
        await self._acquire(info)
        logger.info("state_lock_acquired", lock_id=info.lock_id, operation=operation)
        try:
            yield info
        finally:
            await self._release(info)
            logger.info("state_lock_released", lock_id=info.lock_id)

    async def _acquire(self, info: LockInfo) -> None:
        deadline = time.monotonic() + self.lock_timeout
        while True:
            holder = await self._try_acquire(info)
            if holder is None:
                return
            if time.monotonic() >= deadline:
                raise LockError(
                    f"State is locked by {holder.who} ({holder.operation} since {holder.created})",
                    details={"lock_id": holder.lock_id},
                )
            logger.debug("state_lock_waiting", holder=holder.lock_id)
            await asyncio.sleep(self.poll_interval)


class LocalStateStore(StateStore):
    """State document in a local JSON file, lock as an exclusive lock file."""

    def __init__(
        self,
        path: str | Path,
        *,
        lock_path: str | Path | None = None,
        lock_timeout: float = 0.0,
        poll_interval: float = 1.0,
    ) -> None:
        super().__init__(lock_timeout=lock_timeout, poll_interval=poll_interval)
        self.path = Path(path)
        self.lock_path = Path(lock_path) if lock_path else self.path.with_name(self.path.name + ".lock")

    async def initialize(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

    async def _read_document(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise StateError(f"Cannot read state file {self.path}: {e}") from e

    async def _write_document(self, document: dict[str, Any]) -> None:
        try:
            payload = json.dumps(document, indent=2, sort_keys=True) + "\n"
        except (TypeError, ValueError) as e:
            raise StateError(f"State for {self.path} is not serializable: {e}") from e

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        replaced = False
        try:
            with os.fdopen(fd, "w") as f:
                f.write(payload)
            os.replace(tmp_name, self.path)
            replaced = True
        except OSError as e:
            raise StateError(f"Cannot write state file {self.path}: {e}") from e
        finally:
            if not replaced:
                Path(tmp_name).unlink(missing_ok=True)

    async def _try_acquire(self, info: LockInfo) -> LockInfo | None:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return self._read_holder() or LockInfo.from_dict({})
        with os.fdopen(fd, "w") as f:
            json.dump(info.to_dict(), f)
        return None

    async def _release(self, info: LockInfo) -> None:
        holder = self._read_holder()
        if holder is None:
            logger.warning("state_lock_missing", lock_id=info.lock_id)
            return
        if holder.lock_id != info.lock_id:
            logger.warning("state_lock_stolen", lock_id=info.lock_id, holder=holder.lock_id)
            return
        self.lock_path.unlink(missing_ok=True)

    async def force_unlock(self, lock_id: str) -> None:
        holder = self._read_holder()
        if holder is None:
            raise LockError("State is not locked")
        if holder.lock_id != lock_id:
            raise LockError(
                f"Lock ID '{lock_id}' does not match the current lock",
                details={"lock_id": holder.lock_id},
            )
        self.lock_path.unlink(missing_ok=True)
        logger.warning("state_lock_forced", lock_id=lock_id)

    def _read_holder(self) -> LockInfo | None:
        try:
            return LockInfo.from_dict(json.loads(self.lock_path.read_text()))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            return LockInfo.from_dict({})
