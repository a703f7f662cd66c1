"""
CLI command for initializing the state backend and provider lock file.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from stackplan.cli.ux import console, print_table, success
from stackplan.core.errors import main_with_error_handling
from stackplan.orchestrator import StackOrchestrator
from stackplan.providers.lock import ProviderLock


async def _init(orchestrator: StackOrchestrator) -> ProviderLock:
    try:
        return await orchestrator.init()
    finally:
        await orchestrator.close()


@main_with_error_handling()
def init_command(config: Optional[str] = None) -> int:
    """Prepare the backend and record provider versions."""
    orchestrator = StackOrchestrator.from_path(config)
    lock = asyncio.run(_init(orchestrator))

    backend = orchestrator.document.backend
    if backend.type == "redis":
        location = backend.redis_url or orchestrator.settings.redis_url
    else:
        location = str(backend.path)
    success(f"Backend '{backend.type}' ready ({location}, key={backend.key})")

    rows = [[name, version] for name, version in sorted(lock.providers.items())]
    print_table("Providers", ["Name", "Version"], rows)
    console.print(f"[muted]Provider versions written to {orchestrator.provider_lock_path}[/muted]")
    return 0
