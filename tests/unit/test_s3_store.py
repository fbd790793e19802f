from __future__ import annotations

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from state.errors import StorageUnavailable
from state.s3_store import S3Backend


class _FakeBody:
    def __init__(self, data: bytes) -> None:
        self._data = data

    def read(self) -> bytes:
        return self._data


class _FakeS3:
    def __init__(self) -> None:
        self._store = {}  # (bucket, key) -> bytes
        self.fail_with = None  # exception raised by the next call, if set

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def put_object(self, *, Bucket: str, Key: str, Body: bytes, ContentType: str):
        self._maybe_fail()
        self._store[(Bucket, Key)] = Body
        return {"ETag": f'"fake-{len(Body)}"'}

    def get_object(self, *, Bucket: str, Key: str):
        self._maybe_fail()
        item = self._store.get((Bucket, Key))
        if item is None:
            raise ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        return {"Body": _FakeBody(item), "ETag": f'"fake-{len(item)}"'}

    def delete_object(self, *, Bucket: str, Key: str):
        self._maybe_fail()
        self._store.pop((Bucket, Key), None)
        return {}


def test_read_missing_returns_none():
    backend = S3Backend(s3=_FakeS3(), bucket="b")
    assert backend.read("default.tfstate") is None


def test_write_read_delete_under_prefix():
    s3 = _FakeS3()
    backend = S3Backend(s3=s3, bucket="b", prefix="tofu/")

    backend.write("default.tfstate", b'{"version":4}')
    assert ("b", "tofu/default.tfstate") in s3._store
    assert backend.read("default.tfstate") == b'{"version":4}'

    backend.delete("default.tfstate")
    assert backend.read("default.tfstate") is None
    backend.delete("default.tfstate")  # missing key is fine


def test_client_errors_become_storage_unavailable():
    s3 = _FakeS3()
    backend = S3Backend(s3=s3, bucket="b")
    s3.fail_with = ClientError({"Error": {"Code": "AccessDenied"}}, "PutObject")

    with pytest.raises(StorageUnavailable):
        backend.write("k", b"data")
    with pytest.raises(StorageUnavailable):
        backend.read("k")
    with pytest.raises(StorageUnavailable):
        backend.delete("k")


def test_transport_errors_become_storage_unavailable():
    s3 = _FakeS3()
    backend = S3Backend(s3=s3, bucket="b")
    s3.fail_with = EndpointConnectionError(endpoint_url="https://s3.example")

    with pytest.raises(StorageUnavailable):
        backend.write("k", b"data")


def test_from_env_missing_bucket_raises(monkeypatch):
    monkeypatch.delenv("TOFU_S3_BUCKET", raising=False)
    with pytest.raises(RuntimeError):
        S3Backend.from_env()


def test_requires_bucket():
    with pytest.raises(ValueError):
        S3Backend(s3=_FakeS3(), bucket="")
