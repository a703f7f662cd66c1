"""Persisted state and state locking."""

from stackplan.state.models import LockInfo, StateRecord, StateSnapshot
from stackplan.state.store import LocalStateStore, StateStore

__all__ = [
    "LocalStateStore",
    "LockInfo",
    "StateRecord",
    "StateSnapshot",
    "StateStore",
]
