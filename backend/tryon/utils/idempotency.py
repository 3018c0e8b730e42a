from __future__ import annotations

import hashlib
import json
import logging
import os
from datetime import datetime
from typing import Any, Callable

from flask import has_request_context, request
from sqlalchemy.exc import IntegrityError

from tryon.errors import FulfilmentError
from tryon.extensions import db
from tryon.models import IdempotencyKey

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def idempotency_enforced() -> bool:
    return _env_bool("ENABLE_IDEMPOTENCY_ENFORCEMENT", False)


def _canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def _request_method() -> str:
    if has_request_context():
        return str(request.method or "").strip().upper() or "POST"
    return "POST"


def _hash_request(*, method: str, scope: str, payload: Any) -> str:
    raw = f"{method.strip().upper()}|{scope.strip()}|{_canonical_json(payload)}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def _required_scope_prefixes() -> list[str]:
    raw = (os.getenv("IDEMPOTENCY_REQUIRED_SCOPES") or "").strip()
    if raw:
        out = [s.strip() for s in raw.split(",") if s.strip()]
        if out:
            return out
    return ["/api/orders", "/api/wallet"]


def _scope_requires_header(scope: str) -> bool:
    normalized = str(scope or "").strip()
    if not normalized:
        return False
    return any(normalized.startswith(prefix) for prefix in _required_scope_prefixes())


def get_idempotency_key() -> str | None:
    if not has_request_context():
        return None
    k = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")
    if not k:
        return None
    return k.strip()[:128] or None


def _error_body(code: str, message: str, status: int) -> dict:
    return {"ok": False, "error": code, "message": message, "status": status}


def _required_key_response(scope: str) -> tuple[str, dict, int]:
    return (
        "required",
        _error_body(
            "IDEMPOTENCY_KEY_REQUIRED",
            f"Idempotency-Key header is required for {scope or 'this operation'}.",
            400,
        ),
        400,
    )


def _reuse_conflict_response() -> tuple[str, dict, int]:
    return (
        "conflict",
        _error_body(
            "IDEMPOTENCY_KEY_REUSE",
            "This Idempotency-Key was already used with a different request payload.",
            409,
        ),
        409,
    )


def _in_progress_response() -> tuple[str, dict, int]:
    return (
        "conflict",
        _error_body(
            "IDEMPOTENCY_IN_PROGRESS",
            "A request with this Idempotency-Key is still being processed.",
            409,
        ),
        409,
    )


def _replay(row: IdempotencyKey, req_hash: str):
    if (row.request_hash or "").strip() and str(row.request_hash).strip() != req_hash:
        return _reuse_conflict_response()
    if not row.completed:
        return _in_progress_response()
    return ("hit", row.response_body(), int(row.status_code or 200))


def lookup_response(
    user_id: int | None,
    scope: str,
    payload: Any,
    *,
    idempotency_key: str | None = None,
    require_header: bool | None = None,
):
    """Resolve an Idempotency-Key before running a handler.

    Returns None when no key applies, ``("hit", body, status)`` for a replay,
    ``("conflict"|"required", body, status)`` for a rejected request, or
    ``("miss", row, 0)`` when the caller must run the handler and then call
    :func:`store_response`.
    """
    scope_key = str(scope or "").strip()[:128]
    k = (idempotency_key or get_idempotency_key() or "").strip()[:128]
    should_require = bool(require_header) if require_header is not None else (
        bool(idempotency_enforced() and _scope_requires_header(scope_key))
    )
    if not k:
        if should_require:
            return _required_key_response(scope_key)
        return None

    req_hash = _hash_request(method=_request_method(), scope=scope_key, payload=payload)
    row = IdempotencyKey.query.filter_by(scope=scope_key, key=k).first()
    if row is not None:
        return _replay(row, req_hash)

    now = datetime.utcnow()
    row = IdempotencyKey(
        key=k,
        scope=scope_key,
        user_id=int(user_id) if user_id is not None else None,
        request_hash=req_hash,
        response_json=None,
        status_code=200,
        created_at=now,
        updated_at=now,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except IntegrityError:
        # Same key claimed by a concurrent request.
        db.session.rollback()
        existing = IdempotencyKey.query.filter_by(scope=scope_key, key=k).first()
        if existing is None:
            raise
        return _replay(existing, req_hash)
    return ("miss", row, 0)


def store_response(row: IdempotencyKey, response_json: Any, status_code: int) -> None:
    row.response_json = json.dumps(response_json, separators=(",", ":"), default=str)
    row.status_code = int(status_code or 200)
    row.updated_at = datetime.utcnow()
    try:
        db.session.add(row)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def discard(row: IdempotencyKey) -> None:
    try:
        db.session.delete(row)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def run_idempotent(
    scope: str,
    user_id: int | None,
    payload: Any,
    handler: Callable[[], tuple[dict, int]],
) -> tuple[dict, int]:
    """Run ``handler`` at most once per Idempotency-Key.

    Domain errors are recorded and replayed like successes. Any other failure
    frees the key so the client can retry.
    """
    outcome = lookup_response(user_id, scope, payload)
    if outcome is None:
        return handler()
    state, body_or_row, status = outcome
    if state != "miss":
        logger.info("idempotency_%s scope=%s status=%s", state, scope, status)
        return body_or_row, status

    row = body_or_row
    try:
        body, status = handler()
    except FulfilmentError as e:
        store_response(row, e.to_dict(), e.status_code)
        raise
    except Exception:
        discard(row)
        raise
    store_response(row, body, status)
    return body, status
