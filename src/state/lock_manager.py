from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Callable, Iterator, Optional

from pydantic import ValidationError

from .backends import BlobBackend
from .errors import MalformedRequest, StorageUnavailable
from .models import (
    UNLOCKED,
    AcquireOutcome,
    AuthorizeOutcome,
    Conflict,
    LockGranted,
    LockInfo,
    LockReleased,
    LockState,
    Locked,
    NotLocked,
    ReleaseOutcome,
    WriteAuthorized,
)


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class LockManager:
    """
    Single-writer advisory lock for one state document.

    State machine
    - Unlocked --acquire--> Locked(info)
    - Locked(info) --acquire(same ID)--> Locked(info), granted as a renewal
    - Locked(info) --acquire(other ID)--> Conflict(info)
    - Locked(info) --release(info ID)--> Unlocked
    - Locked(info) --release(other ID)--> Conflict(info)
    - Unlocked --release--> NotLocked

    Every check-and-transition runs under one re-entrant mutex; `holding()`
    exposes it so callers can bundle `authorize_write` with the write itself.
    Among concurrent `acquire` calls the first to enter the mutex wins.

    When a `backend` is given, the lock record is loaded at construction and
    every transition is persisted before it becomes visible in memory.
    """

    def __init__(
        self,
        *,
        backend: Optional[BlobBackend] = None,
        key: Optional[str] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if backend is not None and not key:
            raise ValueError("key is required when a backend is given")
        self._backend = backend
        self._key = key
        self._clock = clock
        self._mutex = threading.RLock()
        self._state: LockState = self._load()

    # -------- Persistence --------
    def _load(self) -> LockState:
        if self._backend is None:
            return UNLOCKED
        raw = self._backend.read(self._key)
        if raw is None:
            return UNLOCKED
        try:
            lock = LockInfo.model_validate(json.loads(raw.decode("utf-8")))
        except (ValueError, ValidationError) as ex:
            raise StorageUnavailable(f"Lock record {self._key} is unreadable") from ex
        logger.info("Restored lock %s held by %r", lock.lock_id, lock.who)
        return Locked(lock)

    def _persist(self, state: LockState) -> None:
        if self._backend is None:
            return
        if isinstance(state, Locked):
            self._backend.write(self._key, state.lock.to_json_bytes())
        else:
            self._backend.delete(self._key)

    # -------- Operations --------
    @contextmanager
    def holding(self) -> Iterator[None]:
        with self._mutex:
            yield

    def acquire(self, info: LockInfo) -> AcquireOutcome:
        if not info.lock_id:
            raise MalformedRequest("Lock ID is required")
        if not info.created:
            info = info.model_copy(update={"created": self._clock().isoformat()})

        with self._mutex:
            state = self._state
            if isinstance(state, Locked):
                if state.lock.lock_id == info.lock_id:
                    # Retry of an acquire that already succeeded
                    return LockGranted(lock=state.lock, renewed=True)
                logger.info(
                    "Lock conflict: %r wanted lock for %r, held by %r (%s)",
                    info.who,
                    info.operation,
                    state.lock.who,
                    state.lock.lock_id,
                )
                return Conflict(holder=state.lock)

            new_state = Locked(info)
            self._persist(new_state)
            self._state = new_state

        logger.info("Lock %s acquired by %r for %r", info.lock_id, info.who, info.operation)
        return LockGranted(lock=info)

    def release(self, lock_id: Optional[str]) -> ReleaseOutcome:
        if not lock_id:
            raise MalformedRequest("Lock ID is required to unlock")

        with self._mutex:
            state = self._state
            if not isinstance(state, Locked):
                logger.info("Unlock of %s requested but state is not locked", lock_id)
                return NotLocked()
            if state.lock.lock_id != lock_id:
                logger.info(
                    "Unlock conflict: %s presented, lock held as %s by %r",
                    lock_id,
                    state.lock.lock_id,
                    state.lock.who,
                )
                return Conflict(holder=state.lock)

            self._persist(UNLOCKED)
            self._state = UNLOCKED

        logger.info("Lock %s released", lock_id)
        return LockReleased(lock=state.lock)

    def authorize_write(self, presented_lock_id: Optional[str]) -> AuthorizeOutcome:
        with self._mutex:
            state = self._state
            if not isinstance(state, Locked):
                # Advisory locking: nobody claimed the lock, writes are open
                return WriteAuthorized()
            if presented_lock_id and presented_lock_id == state.lock.lock_id:
                return WriteAuthorized()
            logger.info("Write rejected: lock held as %s by %r", state.lock.lock_id, state.lock.who)
            return Conflict(holder=state.lock)

    def current_lock(self) -> Optional[LockInfo]:
        with self._mutex:
            state = self._state
        return state.lock if isinstance(state, Locked) else None

    def force_unlock(self) -> Optional[LockInfo]:
        """Clear the lock regardless of its holder; returns the removed lock.

        Privileged administrative path, deliberately separate from `release`.
        """
        with self._mutex:
            state = self._state
            if not isinstance(state, Locked):
                return None
            self._persist(UNLOCKED)
            self._state = UNLOCKED
        logger.warning("Lock %s held by %r was force-unlocked", state.lock.lock_id, state.lock.who)
        return state.lock
