"""
CLI commands for inspecting persisted state and clearing stale locks.
"""

from __future__ import annotations

import asyncio
import json
from typing import Awaitable, Optional, TypeVar

from stackplan.cli.ux import console, info, print_key_value, print_table, success
from stackplan.core.errors import main_with_error_handling
from stackplan.orchestrator import StackOrchestrator

T = TypeVar("T")


async def _run(orchestrator: StackOrchestrator, call: Awaitable[T]) -> T:
    try:
        return await call
    finally:
        await orchestrator.close()


@main_with_error_handling()
def state_list_command(config: Optional[str] = None) -> int:
    orchestrator = StackOrchestrator.from_path(config)
    records = asyncio.run(_run(orchestrator, orchestrator.state_list()))

    if not records:
        info("State is empty")
        return 0

    rows = [
        [str(record.address), record.resource_id, record.provider or ""]
        for record in records
    ]
    print_table("Resources in state", ["Address", "ID", "Provider"], rows)
    return 0


@main_with_error_handling()
def state_show_command(address: str, config: Optional[str] = None) -> int:
    orchestrator = StackOrchestrator.from_path(config)
    record = asyncio.run(_run(orchestrator, orchestrator.state_show(address)))

    print_key_value(
        {
            "id": record.resource_id,
            "provider": record.provider or "",
            "dependencies": ", ".join(record.dependencies) or "-",
        },
        title=str(record.address),
    )
    if record.deposed:
        print_key_value({"deposed": ", ".join(record.deposed)})
    console.print()
    console.print_json(json.dumps(record.attributes, sort_keys=True))
    return 0


@main_with_error_handling()
def force_unlock_command(lock_id: str, config: Optional[str] = None) -> int:
    orchestrator = StackOrchestrator.from_path(config)
    asyncio.run(_run(orchestrator, orchestrator.force_unlock(lock_id)))
    success(f"Lock {lock_id} removed")
    return 0
