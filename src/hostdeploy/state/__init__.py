"""Shared remote state: lock detection and backend bootstrap."""

from .backend import BackendConfig, StateBackend
from .lock import LockClient, parse_lock_info

__all__ = ["BackendConfig", "StateBackend", "LockClient", "parse_lock_info"]
