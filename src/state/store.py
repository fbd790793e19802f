from __future__ import annotations

import logging
import threading
from typing import Optional

from .backends import BlobBackend
from .models import StateDocument


logger = logging.getLogger(__name__)


class StateStore:
    """
    Authoritative holder of one state document.

    - `get()` serves the in-memory copy, loading it from the backend on first
      use. A missing object is the empty document, not an error.
    - `put(content)` persists first and only then swaps the in-memory copy, so
      a failed backend write (StorageUnavailable) leaves the previous document
      in place and readers never see a document that was not persisted.
    """

    def __init__(self, backend: BlobBackend, key: str) -> None:
        self._backend = backend
        self._key = key
        self._lock = threading.Lock()
        self._doc: Optional[StateDocument] = None

    @property
    def key(self) -> str:
        return self._key

    def _ensure_loaded(self) -> StateDocument:
        # Caller holds self._lock
        if self._doc is None:
            raw = self._backend.read(self._key)
            self._doc = StateDocument.empty() if raw is None else StateDocument.from_content(raw)
            logger.debug("Loaded state %s (%d bytes)", self._key, len(self._doc.content))
        return self._doc

    def get(self) -> StateDocument:
        with self._lock:
            return self._ensure_loaded()

    def put(self, content: bytes) -> str:
        doc = StateDocument.from_content(bytes(content))
        with self._lock:
            self._backend.write(self._key, doc.content)
            self._doc = doc
        logger.debug("Stored state %s checksum=%s", self._key, doc.checksum)
        return doc.checksum
