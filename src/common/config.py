from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


# Environment variable names
ENV_HOST = "TOFU_HOST"
ENV_PORT = "TOFU_PORT"
ENV_STORAGE = "TOFU_STORAGE"
ENV_DATA_DIR = "TOFU_DATA_DIR"
ENV_S3_BUCKET = "TOFU_S3_BUCKET"
ENV_S3_PREFIX = "TOFU_S3_PREFIX"
ENV_S3_REGION = "TOFU_S3_REGION"
ENV_FERNET_KEY = "TOFU_FERNET_KEY"
ENV_PERSIST_LOCKS = "TOFU_PERSIST_LOCKS"
ENV_ALLOW_FORCE_UNLOCK = "TOFU_ALLOW_FORCE_UNLOCK"
ENV_LOG_LEVEL = "TOFU_LOG_LEVEL"
ENV_LOG_FILE = "TOFU_LOG_FILE"

STORAGE_KINDS = ("file", "s3", "memory")

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""


def _getenv(environ: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    v = environ.get(name)
    return v if v not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise RuntimeError(f"Missing required configuration: {what}")
    return v


def _parse_bool(raw: Optional[str], *, name: str, default: bool) -> bool:
    if raw is None:
        return default
    s = raw.strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _parse_port(raw: Optional[str], *, default: int) -> int:
    if raw is None:
        return default
    try:
        port = int(raw)
    except ValueError as ex:
        raise ConfigError(f"{ENV_PORT} must be an integer, got {raw!r}") from ex
    if not 0 < port < 65536:
        raise ConfigError(f"{ENV_PORT} out of range: {port}")
    return port


@dataclass
class BackendConfig:
    """
    Runtime configuration for the backend server.

    Fields
    - host/port: listen address (defaults match the original server: localhost:8080).
    - storage: "file" (under `data_dir`), "s3" (needs `s3_bucket`) or "memory".
    - fernet_key: when set, state and lock records are Fernet-encrypted at rest.
    - persist_locks: store lock records next to the state so locks survive restarts.
    - allow_force_unlock: enable the administrative force-unlock route.
    """

    host: str = "localhost"
    port: int = 8080
    storage: str = "file"
    data_dir: str = ".tofulicious"
    s3_bucket: Optional[str] = None
    s3_prefix: str = ""
    s3_region: Optional[str] = None
    fernet_key: Optional[str] = None
    persist_locks: bool = True
    allow_force_unlock: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.storage not in STORAGE_KINDS:
            raise ConfigError(
                f"Unknown storage {self.storage!r}; expected one of {', '.join(STORAGE_KINDS)}"
            )
        if self.storage == "s3":
            _require(self.s3_bucket, ENV_S3_BUCKET)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BackendConfig":
        env = os.environ if environ is None else environ
        defaults = cls.__dataclass_fields__
        return cls(
            host=_getenv(env, ENV_HOST, defaults["host"].default),
            port=_parse_port(_getenv(env, ENV_PORT), default=defaults["port"].default),
            storage=(_getenv(env, ENV_STORAGE, "file") or "file").lower(),
            data_dir=_getenv(env, ENV_DATA_DIR, defaults["data_dir"].default),
            s3_bucket=_getenv(env, ENV_S3_BUCKET),
            s3_prefix=_getenv(env, ENV_S3_PREFIX, ""),
            s3_region=_getenv(env, ENV_S3_REGION),
            fernet_key=_getenv(env, ENV_FERNET_KEY),
            persist_locks=_parse_bool(_getenv(env, ENV_PERSIST_LOCKS), name=ENV_PERSIST_LOCKS, default=True),
            allow_force_unlock=_parse_bool(
                _getenv(env, ENV_ALLOW_FORCE_UNLOCK), name=ENV_ALLOW_FORCE_UNLOCK, default=False
            ),
            log_level=_getenv(env, ENV_LOG_LEVEL, "INFO"),
            log_file=_getenv(env, ENV_LOG_FILE),
        )
