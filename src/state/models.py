from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def compute_checksum(content: bytes) -> str:
    """MD5 hex digest of `content` (the value Terraform sends as Content-MD5)."""
    return hashlib.md5(content).hexdigest()


class StateDocument(BaseModel):
    """
    The stored state: opaque bytes plus their content digest.

    Notes
    - `content` is never parsed or transformed; the backend stores exactly what
      the client sent.
    - `checksum` is derived from `content`; build documents through
      `from_content()` so the two never disagree.
    """

    model_config = ConfigDict(frozen=True)

    content: bytes = Field(default=b"", description="Serialized state, verbatim")
    checksum: str = Field(default_factory=lambda: compute_checksum(b""))

    @classmethod
    def from_content(cls, content: bytes) -> "StateDocument":
        return cls(content=content, checksum=compute_checksum(content))

    @classmethod
    def empty(cls) -> "StateDocument":
        """Convenience constructor for a backend that has no state yet."""
        return cls.from_content(b"")

    @property
    def is_empty(self) -> bool:
        return not self.content


class LockInfo(BaseModel):
    """
    Lock claim as exchanged with Terraform/OpenTofu clients.

    Fields use snake_case in Python and the Terraform JSON names on the wire
    ("ID", "Operation", "Info", "Who", "Version", "Created", "Path").
    Unknown extra keys are ignored.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    lock_id: str = Field(alias="ID", description="Token the holder must echo back")
    operation: str = Field(default="", alias="Operation")
    info: str = Field(default="", alias="Info")
    who: str = Field(default="", alias="Who")
    version: str = Field(default="", alias="Version")
    created: Optional[str] = Field(
        default=None,
        alias="Created",
        description="Acquisition time; stamped by the server when absent",
    )
    path: str = Field(default="", alias="Path")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


# -------- Lock state --------
@dataclass(frozen=True)
class Unlocked:
    pass


@dataclass(frozen=True)
class Locked:
    lock: LockInfo


LockState = Union[Unlocked, Locked]
UNLOCKED = Unlocked()


# -------- Operation outcomes --------
@dataclass(frozen=True)
class LockGranted:
    lock: LockInfo
    renewed: bool = False  # same lock_id re-submitted while already held


@dataclass(frozen=True)
class LockReleased:
    lock: LockInfo


@dataclass(frozen=True)
class WriteAuthorized:
    pass


@dataclass(frozen=True)
class WriteAccepted:
    checksum: str


@dataclass(frozen=True)
class Conflict:
    """Another holder is active; `holder` is the lock that blocked the call."""

    holder: LockInfo


@dataclass(frozen=True)
class NotLocked:
    pass


AcquireOutcome = Union[LockGranted, Conflict]
ReleaseOutcome = Union[LockReleased, Conflict, NotLocked]
AuthorizeOutcome = Union[WriteAuthorized, Conflict]
WriteOutcome = Union[WriteAccepted, Conflict]
