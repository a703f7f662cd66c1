"""
CLI command for planning (dry-run) stack changes.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from stackplan.cli.ux import console, header, success
from stackplan.core.errors import main_with_error_handling
from stackplan.graph.expressions import UNKNOWN, render
from stackplan.orchestration.results import Action, Plan, PlannedChange
from stackplan.orchestrator import StackOrchestrator

ACTION_SYMBOLS = {
    Action.CREATE: "+",
    Action.UPDATE: "~",
    Action.REPLACE: "-/+",
    Action.DELETE: "-",
}


def _format_value(value: Any) -> str:
    if value is UNKNOWN:
        return "[muted](known after apply)[/muted]"
    if isinstance(value, str):
        return json.dumps(value)
    return json.dumps(render(value), sort_keys=True)


def _print_change(change: PlannedChange) -> None:
    style = change.action.value
    symbol = ACTION_SYMBOLS[change.action]
    title = change.key
    if change.action is Action.REPLACE:
        title = f"{title} [muted](must be replaced)[/muted]"
    console.print(f"  [{style}]{symbol} {title}[/{style}]")

    if change.action is Action.DELETE:
        return

    before = change.before or {}
    after = change.after or {}
    for attribute in change.changed_attributes:
        new = _format_value(after[attribute]) if attribute in after else "[muted]null[/muted]"
        if attribute in before:
            old = _format_value(before[attribute])
            console.print(f"      [muted]{attribute}:[/muted] {old} → {new}")
        else:
            console.print(f"      [muted]{attribute}:[/muted] {new}")


def print_plan_summary(plan: Plan) -> None:
    """Print the plan, one line per operation in execution order."""
    header("Destroy plan" if plan.destroy else "Plan")
    console.print()

    if plan.is_empty:
        success("No changes. Infrastructure matches the configuration.")
        console.print()
        return

    for change in plan.changes:
        _print_change(change)

    counts = plan.counts()
    console.print()
    console.print(
        f"[bold]Plan:[/bold] {counts['create']} to add, {counts['update']} to change, "
        f"{counts['replace']} to replace, {counts['delete']} to destroy."
    )
    console.print()


def print_plan_json(plan: Plan) -> None:
    print(json.dumps(plan.to_dict(), indent=2))


async def _plan(orchestrator: StackOrchestrator, refresh: bool) -> Plan:
    try:
        return await orchestrator.plan(refresh=refresh)
    finally:
        await orchestrator.close()


@main_with_error_handling()
def plan_command(
    config: Optional[str] = None,
    output_format: str = "text",
    refresh: bool = False,
) -> int:
    """
    Preview the changes apply would make (dry-run).

    Args:
        config: Path to the stack document
        output_format: Output format (text, json)
        refresh: Re-read every recorded resource through its provider first

    Returns:
        Exit code (0 for success)
    """
    orchestrator = StackOrchestrator.from_path(config)
    plan = asyncio.run(_plan(orchestrator, refresh))

    if output_format == "json":
        print_plan_json(plan)
    else:
        print_plan_summary(plan)

    return 0
