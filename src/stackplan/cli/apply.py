"""
CLI command for applying stack changes.
"""

from __future__ import annotations

import asyncio
import json
import signal
from typing import Awaitable, Callable, Optional

from stackplan.cli.plan import print_plan_summary
from stackplan.cli.ux import confirm_async, console, is_interactive, warning
from stackplan.core.errors import main_with_error_handling
from stackplan.orchestration.results import ApplyResult, Plan, RunState
from stackplan.orchestrator import ApplyOutcome, ConfirmCallback, StackOrchestrator

RUN_EXIT_CODES = {
    RunState.COMPLETED: 0,
    RunState.COMPLETED_WITH_ERRORS: 1,
    RunState.ABORTED: 2,
}


def exit_code_for(result: ApplyResult) -> int:
    return RUN_EXIT_CODES.get(result.state, 1)


def print_apply_summary(result: ApplyResult, destroy: bool = False) -> None:
    """Print the outcome of an apply or destroy run."""
    console.print()
    for key in result.failed:
        console.print(f"  [error]✗ {key}[/error] {result.errors.get(key, '')}")
    for key in result.skipped:
        console.print(f"  [warning]⊘ {key}[/warning] [muted]{result.errors.get(key, '')}[/muted]")
    for key in result.not_started:
        console.print(f"  [muted]· {key} not started[/muted]")

    counts = result.completed_counts()
    verb = "Destroy" if destroy else "Apply"
    duration = f" in {result.duration_seconds:.1f}s" if result.duration_seconds > 0 else ""
    if destroy:
        summary = f"{counts['destroyed']} destroyed"
    else:
        summary = f"{counts['added']} added, {counts['changed']} changed, {counts['destroyed']} destroyed"

    if result.state is RunState.COMPLETED:
        console.print(f"[success]{verb} complete! Resources: {summary}{duration}[/success]")
    elif result.state is RunState.ABORTED:
        console.print(f"[warning]{verb} cancelled. Resources: {summary}{duration}[/warning]")
    else:
        console.print(
            f"[error]{verb} finished with errors. Resources: {summary}{duration}[/error]"
        )
        console.print(
            f"[muted]{len(result.failed)} failed, {len(result.skipped)} skipped. "
            f"Fix the errors and run {verb.lower()} again.[/muted]"
        )
    console.print()


def print_apply_json(outcome: ApplyOutcome) -> None:
    output = {
        "plan": outcome.plan.to_dict(),
        "declined": outcome.declined,
        "result": outcome.result.to_dict() if outcome.result else None,
    }
    print(json.dumps(output, indent=2))


def build_confirm(auto_approve: bool, output_format: str, prompt: str) -> ConfirmCallback:
    """Show the plan in text mode, then ask unless approval is implied."""

    async def confirm(plan: Plan) -> bool:
        if output_format != "json":
            print_plan_summary(plan)
        if auto_approve or not is_interactive():
            return True
        return await confirm_async(prompt)

    return confirm


async def run_with_interrupts(
    orchestrator: StackOrchestrator,
    action: Callable[[], Awaitable[ApplyOutcome]],
) -> ApplyOutcome:
    """Run ``action`` with SIGINT mapped to graceful cancellation."""
    loop = asyncio.get_running_loop()

    def on_interrupt() -> None:
        warning("Interrupt received, waiting for running operations to finish...")
        orchestrator.cancel()

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False

    try:
        return await action()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
        await orchestrator.close()


def report(outcome: ApplyOutcome, output_format: str, destroy: bool = False) -> int:
    if output_format == "json":
        print_apply_json(outcome)
    elif outcome.plan.is_empty:
        print_plan_summary(outcome.plan)
    elif outcome.declined:
        warning("Cancelled, no changes were made.")

    if outcome.result is None:
        return 0
    if output_format != "json":
        print_apply_summary(outcome.result, destroy=destroy)
    return exit_code_for(outcome.result)


@main_with_error_handling()
def apply_command(
    config: Optional[str] = None,
    parallelism: Optional[int] = None,
    auto_approve: bool = False,
    refresh: bool = False,
    output_format: str = "text",
) -> int:
    """
    Apply the plan for a stack document.

    Args:
        config: Path to the stack document
        parallelism: Maximum concurrent operations (default from settings)
        auto_approve: Skip the interactive confirmation
        refresh: Re-read every recorded resource before planning
        output_format: Output format (text, json)

    Returns:
        Exit code (0 completed, 1 completed with errors, 2 aborted)
    """
    orchestrator = StackOrchestrator.from_path(config)
    confirm = build_confirm(auto_approve, output_format, "Apply these changes?")
    outcome = asyncio.run(
        run_with_interrupts(
            orchestrator,
            lambda: orchestrator.apply(refresh=refresh, confirm=confirm, parallelism=parallelism),
        )
    )
    return report(outcome, output_format)
