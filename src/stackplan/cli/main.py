"""Command-line entry point for stackplan."""

from __future__ import annotations

import argparse
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Sequence

from stackplan.config.settings import get_settings
from stackplan.graph.serializers import FORMATS
from stackplan.logging import configure_logging


def _version() -> str:
    try:
        return version("stackplan")
    except PackageNotFoundError:
        return "unknown"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackplan",
        description="Plan and apply declarative resource stacks",
    )
    parser.add_argument("-c", "--config", help="Stack document (default: stack.yaml)")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--log-format", choices=["json", "console"], help="Log output format")
    parser.add_argument("--version", action="version", version=f"%(prog)s {_version()}")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init", help="Prepare the state backend and write the provider lock file")
    subparsers.add_parser("validate", help="Check the document and build the dependency graph")

    plan_parser = subparsers.add_parser("plan", help="Preview changes (dry-run)")
    plan_parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")
    plan_parser.add_argument("--refresh", action="store_true",
                             help="Re-read recorded resources from providers before planning")

    apply_parser = subparsers.add_parser("apply", help="Create, update and delete resources")
    apply_parser.add_argument("--parallelism", type=int, help="Maximum concurrent operations")
    apply_parser.add_argument("--auto-approve", action="store_true", help="Skip interactive approval")
    apply_parser.add_argument("--refresh", action="store_true",
                              help="Re-read recorded resources from providers before planning")
    apply_parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")

    destroy_parser = subparsers.add_parser("destroy", help="Delete every resource recorded in state")
    destroy_parser.add_argument("--parallelism", type=int, help="Maximum concurrent operations")
    destroy_parser.add_argument("--auto-approve", action="store_true", help="Skip interactive approval")
    destroy_parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")

    state_parser = subparsers.add_parser("state", help="Inspect persisted state")
    state_subparsers = state_parser.add_subparsers(dest="state_command")
    state_subparsers.add_parser("list", help="List resources in state")
    show_parser = state_subparsers.add_parser("show", help="Show one resource in state")
    show_parser.add_argument("address", help="Resource address, e.g. aws_subnet.public[0]")

    unlock_parser = subparsers.add_parser("force-unlock", help="Remove a stale state lock")
    unlock_parser.add_argument("lock_id", help="ID of the lock to remove")

    graph_parser = subparsers.add_parser("graph", help="Render the dependency graph")
    graph_parser.add_argument("--format", dest="fmt", choices=list(FORMATS), default="dot",
                              help="Output format")

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, args.log_format or settings.log_format)

    if args.command == "init":
        from stackplan.cli.init import init_command

        sys.exit(init_command(config=args.config))

    if args.command == "validate":
        from stackplan.cli.validate import validate_command

        sys.exit(validate_command(config=args.config))

    if args.command == "plan":
        from stackplan.cli.plan import plan_command

        sys.exit(plan_command(config=args.config, output_format=args.output, refresh=args.refresh))

    if args.command == "apply":
        from stackplan.cli.apply import apply_command

        sys.exit(apply_command(
            config=args.config,
            parallelism=args.parallelism,
            auto_approve=args.auto_approve,
            refresh=args.refresh,
            output_format=args.output,
        ))

    if args.command == "destroy":
        from stackplan.cli.destroy import destroy_command

        sys.exit(destroy_command(
            config=args.config,
            parallelism=args.parallelism,
            auto_approve=args.auto_approve,
            output_format=args.output,
        ))

    if args.command == "state":
        from stackplan.cli.state import state_list_command, state_show_command

        if args.state_command == "list":
            sys.exit(state_list_command(config=args.config))
        if args.state_command == "show":
            sys.exit(state_show_command(args.address, config=args.config))
        parser.parse_args(["state", "--help"])

    if args.command == "force-unlock":
        from stackplan.cli.state import force_unlock_command

        sys.exit(force_unlock_command(args.lock_id, config=args.config))

    if args.command == "graph":
        from stackplan.cli.graph import graph_command

        sys.exit(graph_command(config=args.config, fmt=args.fmt))

    parser.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
