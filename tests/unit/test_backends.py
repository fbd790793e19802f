from __future__ import annotations

import os

import pytest
from cryptography.fernet import Fernet

from state.backends import EncryptedBackend, FileBackend, MemoryBackend
from state.errors import StorageUnavailable


def test_memory_backend_roundtrip_and_delete():
    backend = MemoryBackend()
    assert backend.read("k") is None
    backend.write("k", b"v1")
    assert backend.read("k") == b"v1"
    backend.delete("k")
    backend.delete("k")
    assert backend.read("k") is None


def test_file_backend_creates_root_and_leaves_no_temp_files(tmp_path):
    root = tmp_path / "data"
    backend = FileBackend(root)

    assert backend.read("default.tfstate") is None
    backend.write("default.tfstate", b"v1")
    backend.write("default.tfstate", b"v2")

    assert backend.read("default.tfstate") == b"v2"
    assert sorted(os.listdir(root)) == ["default.tfstate"]


def test_file_backend_delete_missing_is_noop(tmp_path):
    backend = FileBackend(tmp_path)
    backend.delete("default.tflock")
    backend.write("default.tflock", b"{}")
    backend.delete("default.tflock")
    assert backend.read("default.tflock") is None


def test_file_backend_rejects_path_like_keys(tmp_path):
    backend = FileBackend(tmp_path)
    with pytest.raises(ValueError):
        backend.write("../escape", b"x")


def test_file_backend_write_failure_is_storage_unavailable(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_bytes(b"")
    backend = FileBackend(blocker)  # root is a regular file

    with pytest.raises(StorageUnavailable):
        backend.write("default.tfstate", b"v1")


def test_encrypted_backend_stores_ciphertext():
    inner = MemoryBackend()
    backend = EncryptedBackend(inner, Fernet.generate_key())

    backend.write("k", b'{"secret":"hunter2"}')
    assert b"hunter2" not in inner.read("k")
    assert backend.read("k") == b'{"secret":"hunter2"}'
    assert backend.read("missing") is None


def test_encrypted_backend_wrong_key_is_storage_unavailable():
    inner = MemoryBackend()
    EncryptedBackend(inner, Fernet.generate_key()).write("k", b"data")

    other = EncryptedBackend(inner, Fernet.generate_key().decode("ascii"))
    with pytest.raises(StorageUnavailable):
        other.read("k")
