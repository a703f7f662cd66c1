"""
CLI command for destroying every resource recorded in state.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from stackplan.cli.apply import build_confirm, report, run_with_interrupts
from stackplan.core.errors import main_with_error_handling
from stackplan.orchestrator import StackOrchestrator


@main_with_error_handling()
def destroy_command(
    config: Optional[str] = None,
    parallelism: Optional[int] = None,
    auto_approve: bool = False,
    output_format: str = "text",
) -> int:
    """Delete all recorded resources, dependents first."""
    orchestrator = StackOrchestrator.from_path(config)
    confirm = build_confirm(auto_approve, output_format, "Destroy all resources?")
    outcome = asyncio.run(
        run_with_interrupts(
            orchestrator,
            lambda: orchestrator.destroy(confirm=confirm, parallelism=parallelism),
        )
    )
    return report(outcome, output_format, destroy=True)
