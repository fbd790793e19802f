"""
State storage and locking engine.

This package owns the stored state document (`StateStore`), the advisory
lock protecting it (`LockManager`) and the operation surface combining the
two (`StateService`), plus the durable blob backends they persist through.
"""

from .errors import MalformedRequest, StateBackendError, StorageUnavailable
from .lock_manager import LockManager
from .models import (
    Conflict,
    LockGranted,
    LockInfo,
    LockReleased,
    NotLocked,
    StateDocument,
    WriteAccepted,
    WriteAuthorized,
)
from .service import StateRegistry, StateService
from .store import StateStore

__all__ = [
    "Conflict",
    "LockGranted",
    "LockInfo",
    "LockManager",
    "LockReleased",
    "MalformedRequest",
    "NotLocked",
    "StateBackendError",
    "StateDocument",
    "StateRegistry",
    "StateService",
    "StateStore",
    "StorageUnavailable",
    "WriteAccepted",
    "WriteAuthorized",
]
