from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .backends import BlobBackend
from .errors import StorageUnavailable


# Environment variable names for convenience configuration
ENV_BUCKET = "TOFU_S3_BUCKET"
ENV_PREFIX = "TOFU_S3_PREFIX"
ENV_REGION = "TOFU_S3_REGION"


@dataclass
class S3ObjectRef:
    bucket: str
    key: str

    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


class S3Backend(BlobBackend):
    """
    S3-backed blob storage; one object per key under `prefix`.

    Usage
    - Provide the bucket and an optional key prefix (e.g. "tofu/").
    - `read(key)` returns None if the object does not exist.
    - `write(key, data)` returns once S3 acknowledged the PutObject, which is
      durable by S3's contract.
    - Wrap in `EncryptedBackend` to keep state encrypted at rest.

    Environment variables (optional)
    - `TOFU_S3_BUCKET`: bucket holding state objects
    - `TOFU_S3_PREFIX`: key prefix inside the bucket
    - `TOFU_S3_REGION`: region for the boto3 client
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        prefix: str = "",
        region_name: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._bucket = bucket
        self._prefix = prefix

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls) -> "S3Backend":
        bucket = os.environ.get(ENV_BUCKET)
        if not bucket:
            raise RuntimeError(f"Missing required environment variables for S3 backend: {ENV_BUCKET}")
        return cls(
            bucket=bucket,
            prefix=os.environ.get(ENV_PREFIX, ""),
            region_name=os.environ.get(ENV_REGION) or None,
        )

    def _ref(self, key: str) -> S3ObjectRef:
        return S3ObjectRef(bucket=self._bucket, key=f"{self._prefix}{key}")

    # -------- Core operations --------
    def read(self, key: str) -> Optional[bytes]:
        """Fetch the object body.

        Returns None if the object is missing.
        Raises StorageUnavailable for any other S3 or transport failure.
        """
        obj = self._ref(key)
        try:
            resp = self._s3.get_object(Bucket=obj.bucket, Key=obj.key)
            return resp["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return None
            raise StorageUnavailable(f"Failed to read {obj.uri()}: {code}") from e
        except BotoCoreError as e:
            raise StorageUnavailable(f"Failed to read {obj.uri()}: {e}") from e

    def write(self, key: str, data: bytes) -> None:
        obj = self._ref(key)
        try:
            self._s3.put_object(
                Bucket=obj.bucket,
                Key=obj.key,
                Body=data,
                ContentType="application/octet-stream",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            raise StorageUnavailable(f"Failed to write {obj.uri()}: {code}") from e
        except BotoCoreError as e:
            raise StorageUnavailable(f"Failed to write {obj.uri()}: {e}") from e

    def delete(self, key: str) -> None:
        # S3 DeleteObject succeeds for missing keys
        obj = self._ref(key)
        try:
            self._s3.delete_object(Bucket=obj.bucket, Key=obj.key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            raise StorageUnavailable(f"Failed to delete {obj.uri()}: {code}") from e
        except BotoCoreError as e:
            raise StorageUnavailable(f"Failed to delete {obj.uri()}: {e}") from e
