from __future__ import annotations


class StateBackendError(Exception):
    """Base error for the state storage and locking engine."""


class StorageUnavailable(StateBackendError):
    """The durable medium could not be read or written.

    Scoped to the single operation that hit it; the in-memory state is left
    as it was before the call, so a retry can succeed once storage recovers.
    """


class MalformedRequest(StateBackendError):
    """Caller supplied an invalid or missing token, name or content."""


__all__ = [
    "StateBackendError",
    "StorageUnavailable",
    "MalformedRequest",
]
