from __future__ import annotations

import logging
import re
import threading
from typing import Dict, Optional

from .backends import BlobBackend
from .errors import MalformedRequest
from .lock_manager import LockManager
from .models import (
    AcquireOutcome,
    Conflict,
    LockInfo,
    ReleaseOutcome,
    StateDocument,
    WriteAccepted,
    WriteOutcome,
)
from .store import StateStore


logger = logging.getLogger(__name__)

STATE_NAME_RE = re.compile(r"[A-Za-z0-9_.-]{1,64}")
STATE_SUFFIX = ".tfstate"
LOCK_SUFFIX = ".tflock"


class StateService:
    """
    Operation surface for one named state document.

    Combines a `StateStore` and a `LockManager`; `write_state` runs the lock
    check and the store write inside the lock manager's critical section so
    no acquire can land between authorization and commit.
    """

    def __init__(self, store: StateStore, locks: LockManager, *, name: str = "default") -> None:
        self._store = store
        self._locks = locks
        self.name = name

    @classmethod
    def build(cls, name: str, backend: BlobBackend, *, persist_locks: bool = True) -> "StateService":
        store = StateStore(backend, f"{name}{STATE_SUFFIX}")
        if persist_locks:
            locks = LockManager(backend=backend, key=f"{name}{LOCK_SUFFIX}")
        else:
            locks = LockManager()
        return cls(store, locks, name=name)

    def read_state(self) -> StateDocument:
        return self._store.get()

    def write_state(self, content: bytes, lock_id: Optional[str] = None) -> WriteOutcome:
        if not content:
            raise MalformedRequest("State content is required")
        with self._locks.holding():
            decision = self._locks.authorize_write(lock_id)
            if isinstance(decision, Conflict):
                return decision
            checksum = self._store.put(content)
        logger.info("State %s written (%d bytes, checksum=%s)", self.name, len(content), checksum)
        return WriteAccepted(checksum=checksum)

    def lock_acquire(self, info: LockInfo) -> AcquireOutcome:
        return self._locks.acquire(info)

    def lock_release(self, lock_id: Optional[str]) -> ReleaseOutcome:
        return self._locks.release(lock_id)

    def lock_status(self) -> Optional[LockInfo]:
        return self._locks.current_lock()

    def force_unlock(self) -> Optional[LockInfo]:
        return self._locks.force_unlock()


class StateRegistry:
    """Hands out one `StateService` per state name, created on first use."""

    def __init__(self, backend: BlobBackend, *, persist_locks: bool = True) -> None:
        self._backend = backend
        self._persist_locks = persist_locks
        self._services: Dict[str, StateService] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> StateService:
        if not STATE_NAME_RE.fullmatch(name or "") or name in (".", ".."):
            raise MalformedRequest(f"Invalid state name: {name!r}")
        with self._lock:
            svc = self._services.get(name)
        if svc is not None:
            return svc

        # Backend reads run outside the registry mutex; the first service inserted wins.
        # Construction may raise StorageUnavailable; nothing is cached then.
        built = StateService.build(name, self._backend, persist_locks=self._persist_locks)
        with self._lock:
            return self._services.setdefault(name, built)
