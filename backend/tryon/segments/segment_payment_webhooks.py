from __future__ import annotations

import hashlib
import hmac
from decimal import Decimal, InvalidOperation

from flask import Blueprint, current_app, jsonify, request

from tryon.errors import InvalidAmount, InvalidCommand, NotFound
from tryon.extensions import db
from tryon.models import User
from tryon.services import ledger_service
from tryon.utils.observability import get_request_id

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")

SIGNATURE_HEADER = "X-Tryon-Signature"
SUCCESS_EVENTS = ("charge.success", "payment.succeeded")


def sign_payload(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw or b"", hashlib.sha512).hexdigest()


def _signature_ok(raw: bytes, signature: str | None) -> bool:
    secret = str(current_app.config.get("PAYMENT_WEBHOOK_SECRET") or "")
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign_payload(raw, secret), signature.strip().lower())


def _parse_credit(payload: dict) -> tuple[int, Decimal, str]:
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    meta = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    try:
        user_id = int(meta.get("user_id"))
    except (TypeError, ValueError):
        raise InvalidCommand("metadata.user_id is required", field="metadata.user_id")
    reference = str(data.get("reference") or "").strip()
    if not reference:
        raise InvalidCommand("reference is required", field="reference")
    try:
        # Providers report minor units.
        amount = Decimal(str(data.get("amount"))) / Decimal(100)
    except (InvalidOperation, ValueError):
        raise InvalidAmount("amount must be a positive number", amount=str(data.get("amount")))
    return user_id, amount, reference


@webhooks_bp.post("/payments/<provider>")
def payment_webhook(provider: str):
    provider = (provider or "").strip().lower()[:32]
    raw = request.get_data() or b""
    if not _signature_ok(raw, request.headers.get(SIGNATURE_HEADER)):
        current_app.logger.warning("payment_webhook_bad_signature provider=%s", provider)
        return jsonify({"ok": False, "error": "INVALID_SIGNATURE", "message": "Invalid signature", "status": 401}), 401

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidCommand("webhook body must be a JSON object")

    event = str(payload.get("event") or "").strip().lower()
    if event not in SUCCESS_EVENTS:
        return jsonify({"ok": True, "ignored": True, "event": event}), 200

    user_id, amount, reference = _parse_credit(payload)
    if db.session.get(User, user_id) is None:
        raise NotFound("user not found", user_id=user_id)
    txn = ledger_service.credit(user_id, amount, provider=provider, provider_id=reference)
    current_app.logger.info(
        "payment_webhook_credit provider=%s reference=%s txn_id=%s trace_id=%s",
        provider,
        reference,
        int(txn.id),
        get_request_id(),
    )
    return jsonify({"ok": True, "transaction": txn.to_dict()}), 200
