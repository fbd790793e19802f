from __future__ import annotations

import time
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from state.models import LockInfo


DEFAULT_BASE_URL = "http://localhost:8080"
_RETRY_STATUSES = (502, 503, 504)


class StateBackendClientError(RuntimeError):
    """Base error for the backend admin client."""


class StateBackendApiError(StateBackendClientError):
    """The backend answered with an unexpected status or payload."""


class StateBackendClient:
    """
    Minimal client for a running backend, used by the admin CLI.

    Notes
    - Retries transport errors and 502/503/504 with exponential backoff.
    - Lock payloads are parsed into `LockInfo`.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 15.0,
        max_attempts: int = 3,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self._base_url = base_url.rstrip("/")
        self._max_attempts = max_attempts
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=self._base_url, timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "StateBackendClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def ping(self) -> bool:
        resp = self._request("GET", "/ping")
        return resp.status_code == 200 and resp.text.strip() == "pong"

    def read_state(self, name: str) -> bytes:
        """Return the stored state bytes (empty when the backend has none)."""
        resp = self._request("GET", f"/api/v1/state/{name}")
        if resp.status_code == 204:
            return b""
        self._expect(resp, 200)
        return resp.content

    def lock_status(self, name: str) -> Optional[LockInfo]:
        resp = self._request("GET", f"/api/v1/state/{name}/lock")
        if resp.status_code == 204:
            return None
        self._expect(resp, 200)
        return self._parse_lock(resp.json())

    def force_unlock(self, name: str) -> Optional[LockInfo]:
        """Clear the lock on `name`; returns the removed lock, if any."""
        resp = self._request("DELETE", f"/api/v1/admin/state/{name}/lock")
        self._expect(resp, 200)
        body = resp.json()
        released = body.get("released") if isinstance(body, dict) else None
        return self._parse_lock(released) if released else None

    # --------------- Internal ---------------
    @staticmethod
    def _parse_lock(data: Any) -> LockInfo:
        try:
            return LockInfo.model_validate(data)
        except ValidationError as ve:
            raise StateBackendApiError(f"Malformed lock payload: {ve}") from ve

    @staticmethod
    def _expect(resp: httpx.Response, status: int) -> None:
        if resp.status_code == status:
            return
        detail = ""
        try:
            body: Dict[str, Any] = resp.json()
            detail = str(body.get("error", "")) if isinstance(body, dict) else ""
        except ValueError:
            detail = resp.text[:200]
        raise StateBackendApiError(f"HTTP {resp.status_code} from backend: {detail}".rstrip(": "))

    def _request(self, method: str, path: str) -> httpx.Response:
        backoff = 0.5
        last_exc: Optional[Exception] = None
        for attempt in range(self._max_attempts):
            try:
                resp = self._client.request(method, path)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if resp.status_code not in _RETRY_STATUSES or attempt == self._max_attempts - 1:
                    return resp
            if attempt < self._max_attempts - 1:
                time.sleep(backoff)
                backoff = min(backoff * 2, 8.0)

        raise StateBackendClientError(f"{method} {path} failed after retries") from last_exc


__all__ = [
    "StateBackendClient",
    "StateBackendClientError",
    "StateBackendApiError",
]
