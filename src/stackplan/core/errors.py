"""
Unified error handling for stackplan CLI commands.

This module provides the error taxonomy, exit codes, and error reporting
shared by every command.

Exit Codes:
- 0: Success (run COMPLETED)
- 1: Partial failure (run COMPLETED_WITH_ERRORS)
- 2: Aborted (run cancelled before completion)
- 10: Configuration error (cycle, unresolved reference, duplicate identity)
- 11: Provider error (external API failure)
- 13: Lock error (state is locked by another run)
- 14: State error (unreadable or corrupt state)
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    PARTIAL_FAILURE = 1
    ABORTED = 2
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    LOCK_ERROR = 13
    STATE_ERROR = 14
    UNKNOWN_ERROR = 127


class StackplanError(Exception):
    """Base exception for stackplan errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(StackplanError):
    """Raised for configuration errors detected before any execution."""

    exit_code = ExitCode.CONFIG_ERROR


class CycleError(ConfigurationError):
    """Raised when resource references form a cycle."""

    def __init__(self, cycle: list[str]):
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(cycle)}",
            details={"cycle": cycle},
        )
        self.cycle = cycle


class UnresolvedReferenceError(ConfigurationError):
    """Raised when a reference does not name a declared resource attribute."""

    def __init__(self, reference: str, source: str | None = None, reason: str | None = None):
        message = f"Unresolved reference '{reference}'"
        if source:
            message = f"{message} in {source}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details={"reference": reference})
        self.reference = reference
        self.source = source


class DuplicateResourceError(ConfigurationError):
    """Raised when two definitions share the same kind and name."""


class IndexOutOfRangeError(ConfigurationError):
    """Raised when an index-based selection falls outside its list."""


class ProviderError(StackplanError):
    """Raised when an external provider fails.

    Providers classify their own failures: ``retryable`` errors (throttling,
    transient network faults) are retried with backoff by the engine, all
    others fail the operation immediately.
    """

    exit_code = ExitCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details=details)
        self.retryable = retryable


class ResourceNotFoundError(ProviderError):
    """Raised by ``Provider.read`` when the remote object no longer exists."""


class LockError(StackplanError):
    """Raised when the state lock cannot be acquired or released."""

    exit_code = ExitCode.LOCK_ERROR


class StateError(StackplanError):
    """Raised when persisted state cannot be read or written."""

    exit_code = ExitCode.STATE_ERROR


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Usage:
        @main_with_error_handling()
        def my_command() -> int:
            return 0

    Exit codes:
        - StackplanError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except StackplanError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                    )
                from stackplan.cli.ux import error as print_error

                print_error(format_error_message(e))
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: StackplanError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
