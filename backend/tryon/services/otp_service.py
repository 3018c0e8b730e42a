"""Single-use handoff codes for pickup and delivery.

Codes are produced by the caller and stored as an HMAC digest on the
delivery row. Verification is a compare-and-clear UPDATE, so a code can be
consumed once even when two verifications race.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import os
from datetime import datetime, timedelta

import sqlalchemy as sa
from flask import current_app, has_app_context

from tryon.extensions import db
from tryon.models import Delivery
from tryon.services.delivery_service import _lock_by_delivery_id

logger = logging.getLogger(__name__)

PICKUP = "pickup"
DELIVERY = "delivery"

_COLUMNS = {
    PICKUP: ("pickup_otp_hash", "pickup_otp_attempts", "pickup_otp_expires_at"),
    DELIVERY: ("delivery_otp_hash", "delivery_otp_attempts", "delivery_otp_expires_at"),
}


def _config_int(name: str, default: int = 0) -> int:
    raw = None
    if has_app_context():
        raw = current_app.config.get(name)
    if raw is None:
        raw = os.getenv(name)
    try:
        value = int(raw) if raw is not None and str(raw).strip() != "" else int(default)
    except (TypeError, ValueError):
        value = int(default)
    return max(0, value)


def max_attempts() -> int:
    """0 disables the attempt limit."""
    return _config_int("OTP_MAX_ATTEMPTS")


def ttl_seconds() -> int:
    """0 disables expiry."""
    return _config_int("OTP_TTL_SECONDS")


def _secret() -> bytes:
    key = ""
    if has_app_context():
        key = str(current_app.config.get("SECRET_KEY") or "")
    return (key or os.getenv("SECRET_KEY") or "dev-secret").encode("utf-8")


def hash_code(delivery_id: int, step: str, code: str) -> str:
    msg = f"{int(delivery_id)}:{step}:{code}".encode("utf-8")
    return hmac.new(_secret(), msg, hashlib.sha256).hexdigest()


def _normalize_code(code) -> str:
    return str(code if code is not None else "").strip()


def _set(delivery_id: int, step: str, code) -> Delivery:
    raw = _normalize_code(code)
    if not raw:
        raise ValueError("code required")
    hash_col, attempts_col, expires_col = _COLUMNS[step]
    try:
        # Missing deliveries and inactive orders are both NotFound.
        _order, delivery = _lock_by_delivery_id(delivery_id)
        ttl = ttl_seconds()
        setattr(delivery, hash_col, hash_code(delivery.id, step, raw))
        setattr(delivery, attempts_col, 0)
        setattr(delivery, expires_col, datetime.utcnow() + timedelta(seconds=ttl) if ttl else None)
        delivery.updated_at = datetime.utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("otp_issued delivery_id=%s step=%s", int(delivery_id), step)
    return delivery


def _verify(delivery_id: int, step: str, code) -> bool:
    raw = _normalize_code(code)
    hash_col, attempts_col, expires_col = _COLUMNS[step]
    stored_col = getattr(Delivery, hash_col)
    attempts_attr = getattr(Delivery, attempts_col)
    expires_attr = getattr(Delivery, expires_col)

    try:
        delivery = db.session.get(Delivery, int(delivery_id))
        if delivery is None or not raw or not getattr(delivery, hash_col) or not delivery.order.is_active:
            db.session.rollback()
            return False

        limit = max_attempts()
        now = datetime.utcnow()
        candidate = hash_code(delivery.id, step, raw)

        conditions = [Delivery.id == int(delivery_id), stored_col == candidate]
        if limit:
            conditions.append(attempts_attr < limit)
        conditions.append(sa.or_(expires_attr.is_(None), expires_attr > now))

        stmt = (
            sa.update(Delivery)
            .where(*conditions)
            .values({hash_col: None, expires_col: None, "updated_at": now})
            .execution_options(synchronize_session=False)
        )
        consumed = int(db.session.execute(stmt).rowcount or 0) == 1

        if not consumed and limit and not hmac.compare_digest(getattr(delivery, hash_col) or "", candidate):
            db.session.execute(
                sa.update(Delivery)
                .where(Delivery.id == int(delivery_id), stored_col.is_not(None))
                .values({attempts_col: attempts_attr + 1})
                .execution_options(synchronize_session=False)
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    # The bulk UPDATEs bypassed the identity map.
    db.session.expire_all()
    logger.info("otp_verify delivery_id=%s step=%s ok=%s", int(delivery_id), step, consumed)
    return consumed


def set_pickup_otp(delivery_id: int, code) -> Delivery:
    return _set(delivery_id, PICKUP, code)


def set_delivery_otp(delivery_id: int, code) -> Delivery:
    return _set(delivery_id, DELIVERY, code)


def verify_pickup_otp(delivery_id: int, code) -> bool:
    return _verify(delivery_id, PICKUP, code)


def verify_delivery_otp(delivery_id: int, code) -> bool:
    return _verify(delivery_id, DELIVERY, code)
