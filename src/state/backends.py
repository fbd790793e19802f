"""
Durable blob storage for state documents and lock records.

A backend maps a flat key (e.g. "default.tfstate") to opaque bytes. Every
backend reports failures of its medium as `StorageUnavailable` so the store
and lock manager can stay backend-agnostic.
"""

from __future__ import annotations

import abc
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from .errors import StorageUnavailable


class BlobBackend(abc.ABC):
    @abc.abstractmethod
    def read(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None if nothing was stored under `key`."""

    @abc.abstractmethod
    def write(self, key: str, data: bytes) -> None:
        """Durably replace the object under `key`; returns only once persisted."""

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        """Remove `key`. Deleting a missing key is not an error."""


class MemoryBackend(BlobBackend):
    """Process-local backend; contents are lost on restart."""

    def __init__(self) -> None:
        self._objects: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._objects.get(key)

    def write(self, key: str, data: bytes) -> None:
        with self._lock:
            self._objects[key] = bytes(data)

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)


class FileBackend(BlobBackend):
    """
    One file per key under `root`.

    Writes go to a temporary file in the same directory, are fsynced, then
    renamed over the destination, so a crash mid-write leaves either the old
    or the new file, never a truncated one.
    """

    def __init__(self, root: os.PathLike[str] | str) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._root / key

    def read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as ex:
            raise StorageUnavailable(f"Failed to read {path}: {ex}") from ex

    def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        tmp_name: Optional[str] = None
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self._root)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as ex:
            raise StorageUnavailable(f"Failed to write {path}: {ex}") from ex
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as ex:
            raise StorageUnavailable(f"Failed to delete {path}: {ex}") from ex


def _to_fernet(key: str | bytes) -> Fernet:
    """Construct a Fernet instance from a user-provided key.

    The key must be a URL-safe base64-encoded 32-byte key (str or bytes),
    as returned by `cryptography.fernet.Fernet.generate_key()`.
    """
    if isinstance(key, str):
        key_bytes = key.encode("utf-8")
    else:
        key_bytes = key
    return Fernet(key_bytes)


class EncryptedBackend(BlobBackend):
    """Wraps another backend and encrypts every object at rest with Fernet."""

    def __init__(self, inner: BlobBackend, fernet_key: str | bytes) -> None:
        self._inner = inner
        self._fernet = _to_fernet(fernet_key)

    def read(self, key: str) -> Optional[bytes]:
        token = self._inner.read(key)
        if token is None:
            return None
        try:
            return self._fernet.decrypt(token)
        except InvalidToken as ex:
            raise StorageUnavailable(f"Failed to decrypt {key}: invalid Fernet token") from ex

    def write(self, key: str, data: bytes) -> None:
        self._inner.write(key, self._fernet.encrypt(data))

    def delete(self, key: str) -> None:
        self._inner.delete(key)


__all__ = [
    "BlobBackend",
    "MemoryBackend",
    "FileBackend",
    "EncryptedBackend",
]
