from __future__ import annotations

import threading
from typing import Optional

import pytest

from state.backends import MemoryBackend
from state.errors import MalformedRequest
from state.models import (
    Conflict,
    LockGranted,
    LockInfo,
    LockReleased,
    NotLocked,
    WriteAccepted,
    compute_checksum,
)
from state.service import StateRegistry, StateService


def _svc() -> StateService:
    return StateService.build("default", MemoryBackend())


def test_lock_write_unlock_scenario():
    svc = _svc()

    assert isinstance(svc.lock_acquire(LockInfo(lock_id="A", who="alice")), LockGranted)

    blocked = svc.lock_acquire(LockInfo(lock_id="B", who="bob"))
    assert isinstance(blocked, Conflict) and blocked.holder.lock_id == "A"

    wrong_write = svc.write_state(b"v1", "B")
    assert isinstance(wrong_write, Conflict) and wrong_write.holder.lock_id == "A"
    assert svc.read_state().is_empty

    written = svc.write_state(b"v1", "A")
    assert written == WriteAccepted(checksum=compute_checksum(b"v1"))

    wrong_release = svc.lock_release("B")
    assert isinstance(wrong_release, Conflict) and wrong_release.holder.lock_id == "A"

    assert isinstance(svc.lock_release("A"), LockReleased)
    assert isinstance(svc.lock_release("A"), NotLocked)


def test_write_without_token_blocked_only_while_locked():
    svc = _svc()
    assert isinstance(svc.write_state(b"v1"), WriteAccepted)
    assert isinstance(svc.write_state(b"v2", "stray-token"), WriteAccepted)

    svc.lock_acquire(LockInfo(lock_id="A"))
    assert isinstance(svc.write_state(b"v3"), Conflict)
    assert svc.read_state().content == b"v2"


def test_roundtrip_checksum_is_stable():
    svc = _svc()
    first = svc.write_state(b'{"serial":7}')
    doc = svc.read_state()
    second = svc.write_state(b'{"serial":7}')

    assert doc.content == b'{"serial":7}'
    assert first.checksum == doc.checksum == second.checksum


def test_empty_content_is_malformed():
    with pytest.raises(MalformedRequest):
        _svc().write_state(b"")


def test_status_reflects_transitions():
    svc = _svc()
    assert svc.lock_status() is None
    svc.lock_acquire(LockInfo(lock_id="A", who="alice"))
    assert svc.lock_status().who == "alice"
    svc.lock_release("A")
    assert svc.lock_status() is None


def test_force_unlock_then_writes_open_again():
    svc = _svc()
    svc.lock_acquire(LockInfo(lock_id="A"))
    assert svc.force_unlock().lock_id == "A"
    assert isinstance(svc.write_state(b"v1"), WriteAccepted)


def test_locks_persist_by_default_and_can_be_disabled():
    backend = MemoryBackend()
    StateService.build("default", backend).lock_acquire(LockInfo(lock_id="A"))
    assert StateService.build("default", backend).lock_status().lock_id == "A"

    other = MemoryBackend()
    StateService.build("default", other, persist_locks=False).lock_acquire(LockInfo(lock_id="A"))
    assert other.read("default.tflock") is None


def test_write_and_acquire_race_never_writes_under_foreign_lock():
    svc = _svc()
    start = threading.Barrier(2)
    outcomes = {}

    def writer() -> None:
        start.wait()
        outcomes["write"] = svc.write_state(b"unlocked-write")

    def locker() -> None:
        start.wait()
        outcomes["lock"] = svc.lock_acquire(LockInfo(lock_id="A"))

    threads = [threading.Thread(target=writer), threading.Thread(target=locker)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert isinstance(outcomes["lock"], LockGranted)
    if isinstance(outcomes["write"], WriteAccepted):
        assert svc.read_state().content == b"unlocked-write"
    else:
        assert isinstance(outcomes["write"], Conflict)
        assert svc.read_state().is_empty


def test_registry_returns_one_service_per_name():
    backend = MemoryBackend()
    registry = StateRegistry(backend)

    default = registry.get("default")
    assert registry.get("default") is default
    staging = registry.get("staging")
    assert staging is not default

    default.write_state(b"prod")
    staging.write_state(b"stage")
    assert backend.read("default.tfstate") == b"prod"
    assert backend.read("staging.tfstate") == b"stage"


@pytest.mark.parametrize("name", ["", "..", "a/b", "x" * 65, "has space", "default\n"])
def test_registry_rejects_bad_names(name: str):
    with pytest.raises(MalformedRequest):
        StateRegistry(MemoryBackend()).get(name)


class _GatedBackend(MemoryBackend):
    """Blocks reads of one key until released."""

    def __init__(self, gated_key: str) -> None:
        super().__init__()
        self.gated_key = gated_key
        self.entered = threading.Event()
        self.release = threading.Event()

    def read(self, key: str) -> Optional[bytes]:
        if key == self.gated_key:
            self.entered.set()
            self.release.wait(timeout=5)
        return super().read(key)


def test_registry_slow_load_does_not_block_other_names():
    backend = _GatedBackend("slow.tflock")
    registry = StateRegistry(backend)
    loaded = {}

    t = threading.Thread(target=lambda: loaded.setdefault("slow", registry.get("slow")))
    t.start()
    try:
        assert backend.entered.wait(timeout=5)
        fast = registry.get("fast")
        assert fast.lock_status() is None
        assert "slow" not in loaded
    finally:
        backend.release.set()
        t.join()

    assert registry.get("slow") is loaded["slow"]


def test_registry_concurrent_first_access_yields_one_service():
    registry = StateRegistry(MemoryBackend())
    start = threading.Barrier(8)
    seen = []
    seen_lock = threading.Lock()

    def worker() -> None:
        start.wait()
        svc = registry.get("default")
        with seen_lock:
            seen.append(svc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(s is seen[0] for s in seen)
    assert registry.get("default") is seen[0]
