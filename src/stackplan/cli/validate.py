"""
CLI command for validating a stack document.

Builds the dependency graph without touching state or providers.
"""

from __future__ import annotations

from typing import Optional

from stackplan.cli.ux import success
from stackplan.core.errors import main_with_error_handling
from stackplan.orchestrator import StackOrchestrator


@main_with_error_handling()
def validate_command(config: Optional[str] = None) -> int:
    orchestrator = StackOrchestrator.from_path(config)
    graph = orchestrator.validate()
    success(f"Configuration is valid: {len(graph)} resources, {len(graph.edges)} dependencies")
    return 0
