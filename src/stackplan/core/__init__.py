"""Core modules for stackplan - centralized error definitions."""

from stackplan.core.errors import (
    ConfigurationError,
    CycleError,
    DuplicateResourceError,
    ExitCode,
    IndexOutOfRangeError,
    LockError,
    ProviderError,
    ResourceNotFoundError,
    StackplanError,
    StateError,
    UnresolvedReferenceError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "StackplanError",
    "ConfigurationError",
    "CycleError",
    "UnresolvedReferenceError",
    "DuplicateResourceError",
    "IndexOutOfRangeError",
    "ProviderError",
    "ResourceNotFoundError",
    "LockError",
    "StateError",
    "main_with_error_handling",
    "format_error_message",
]
