"""
CLI command for rendering the dependency graph.
"""

from __future__ import annotations

from typing import Optional

from stackplan.core.errors import main_with_error_handling
from stackplan.orchestrator import StackOrchestrator


@main_with_error_handling()
def graph_command(config: Optional[str] = None, fmt: str = "dot") -> int:
    """Print the graph as DOT or Mermaid; pipe into ``dot -Tsvg`` to draw it."""
    orchestrator = StackOrchestrator.from_path(config)
    print(orchestrator.render_graph(fmt))
    return 0
