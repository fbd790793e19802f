"""
HTTP transport for the state backend (Terraform/OpenTofu `http` backend protocol).

Routes
- GET    /api/v1/state/<name>            read state (204 when empty)
- POST   /api/v1/state/<name>?ID=<id>    write state, ID required while locked
- LOCK   /api/v1/state/<name>/lock       acquire (PUT accepted too)
- UNLOCK /api/v1/state/<name>/lock       release (DELETE accepted too)
- GET    /api/v1/state/<name>/lock       current holder (204 when unlocked)
- DELETE /api/v1/admin/state/<name>/lock force-unlock, when enabled

Backend configuration example:

    terraform {
      backend "http" {
        address        = "http://localhost:8080/api/v1/state/default"
        lock_address   = "http://localhost:8080/api/v1/state/default/lock"
        unlock_address = "http://localhost:8080/api/v1/state/default/lock"
      }
    }
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import time
from typing import Any, Optional, Tuple
from uuid import uuid4

from flask import Flask, Response, g, jsonify, request
from pydantic import ValidationError

from common.config import BackendConfig
from state.backends import BlobBackend, EncryptedBackend, FileBackend, MemoryBackend
from state.errors import MalformedRequest, StorageUnavailable
from state.models import Conflict, LockInfo, NotLocked, StateDocument
from state.s3_store import S3Backend
from state.service import StateRegistry


logger = logging.getLogger(__name__)
access_logger = logging.getLogger("tofulicious.access")

REQUEST_ID_HEADER = "X-Request-ID"
LOCK_METHODS = ["LOCK", "PUT"]
UNLOCK_METHODS = ["UNLOCK", "DELETE"]


def build_backend(config: BackendConfig) -> BlobBackend:
    """Construct the blob backend selected by `config.storage`."""
    if config.storage == "memory":
        backend: BlobBackend = MemoryBackend()
    elif config.storage == "s3":
        backend = S3Backend(bucket=config.s3_bucket or "", prefix=config.s3_prefix, region_name=config.s3_region)
    else:
        backend = FileBackend(config.data_dir)
    if config.fernet_key:
        backend = EncryptedBackend(backend, config.fernet_key)
    return backend


def _content_md5(content: bytes) -> str:
    return base64.b64encode(hashlib.md5(content).digest()).decode("ascii")


def _conflict_response(outcome: Conflict, status: int) -> Tuple[Response, int]:
    return jsonify(outcome.holder.to_wire()), status


def _error_response(message: str, status: int) -> Tuple[Response, int]:
    return jsonify({"error": message}), status


def _json_body() -> Any:
    # Terraform does not always send a JSON content type
    return request.get_json(force=True, silent=True)


def _state_response(doc: StateDocument) -> Response:
    if doc.is_empty:
        return Response(status=204)
    return Response(
        doc.content,
        status=200,
        mimetype="application/json",
        headers={"ETag": f'"{doc.checksum}"', "Content-MD5": _content_md5(doc.content)},
    )


def create_app(registry: StateRegistry, *, allow_force_unlock: bool = False) -> Flask:
    app = Flask(__name__)
    app.config["ALLOW_FORCE_UNLOCK"] = allow_force_unlock

    # -------- Request bookkeeping --------
    @app.before_request
    def _start_request() -> None:
        g.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        g.started = time.monotonic()

    @app.after_request
    def _finish_request(resp: Response) -> Response:
        resp.headers[REQUEST_ID_HEADER] = g.get("request_id", "")
        elapsed_ms = (time.monotonic() - g.get("started", time.monotonic())) * 1000
        access_logger.info(
            "%s %s %s %.1fms rid=%s",
            request.method,
            request.full_path.rstrip("?"),
            resp.status_code,
            elapsed_ms,
            g.get("request_id", ""),
        )
        return resp

    @app.errorhandler(MalformedRequest)
    def _malformed(err: MalformedRequest):
        return _error_response(str(err), 400)

    @app.errorhandler(StorageUnavailable)
    def _storage_unavailable(err: StorageUnavailable):
        logger.error("Storage unavailable: %s", err)
        return _error_response("storage unavailable", 503)

    # -------- Routes --------
    @app.route("/ping", methods=["GET"])
    def ping():
        return Response("pong", mimetype="text/plain")

    @app.route("/api/v1/state/<name>", methods=["GET"])
    def read_state(name: str):
        return _state_response(registry.get(name).read_state())

    @app.route("/api/v1/state/<name>", methods=["POST"])
    def write_state(name: str):
        svc = registry.get(name)
        content = request.get_data(cache=False)
        expected_md5 = request.headers.get("Content-MD5")
        if expected_md5 and content:
            try:
                valid = base64.b64decode(expected_md5, validate=True) == hashlib.md5(content).digest()
            except (binascii.Error, ValueError):
                valid = False
            if not valid:
                raise MalformedRequest("Content-MD5 does not match request body")

        outcome = svc.write_state(content, request.args.get("ID") or None)
        if isinstance(outcome, Conflict):
            return _conflict_response(outcome, 409)
        resp = Response(status=200)
        resp.headers["ETag"] = f'"{outcome.checksum}"'
        return resp

    @app.route("/api/v1/state/<name>/lock", methods=LOCK_METHODS)
    def lock_state(name: str):
        svc = registry.get(name)
        body = _json_body()
        if not isinstance(body, dict):
            raise MalformedRequest("Lock request body must be a JSON object")
        try:
            info = LockInfo.model_validate(body)
        except ValidationError as ve:
            raise MalformedRequest(f"Invalid lock info: {ve.error_count()} error(s)") from ve

        outcome = svc.lock_acquire(info)
        if isinstance(outcome, Conflict):
            return _conflict_response(outcome, 423)
        return jsonify(outcome.lock.to_wire()), 200

    @app.route("/api/v1/state/<name>/lock", methods=UNLOCK_METHODS)
    def unlock_state(name: str):
        svc = registry.get(name)
        body = _json_body()
        lock_id: Optional[str] = None
        if isinstance(body, dict) and isinstance(body.get("ID"), str):
            lock_id = body["ID"]
        elif request.args.get("ID"):
            lock_id = request.args["ID"]

        outcome = svc.lock_release(lock_id)
        if isinstance(outcome, Conflict):
            return _conflict_response(outcome, 409)
        if isinstance(outcome, NotLocked):
            # Nothing to release; the client's goal already holds
            return jsonify({"unlocked": True, "was_locked": False}), 200
        return jsonify({"unlocked": True, "was_locked": True}), 200

    @app.route("/api/v1/state/<name>/lock", methods=["GET"])
    def lock_status(name: str):
        holder = registry.get(name).lock_status()
        if holder is None:
            return Response(status=204)
        return jsonify(holder.to_wire()), 200

    @app.route("/api/v1/admin/state/<name>/lock", methods=["DELETE"])
    def force_unlock(name: str):
        if not app.config["ALLOW_FORCE_UNLOCK"]:
            return _error_response("force-unlock is disabled", 403)
        released = registry.get(name).force_unlock()
        return jsonify({"released": released.to_wire() if released else None}), 200

    return app


def create_app_from_config(config: BackendConfig) -> Flask:
    registry = StateRegistry(build_backend(config), persist_locks=config.persist_locks)
    return create_app(registry, allow_force_unlock=config.allow_force_unlock)
