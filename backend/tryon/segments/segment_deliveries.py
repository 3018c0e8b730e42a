from __future__ import annotations

import secrets

from flask import Blueprint, jsonify, request

from tryon.errors import InvalidCommand, Unauthorized
from tryon.models import Delivery, User
from tryon.services import delivery_service, otp_service
from tryon.utils.auth import is_admin, require_role, require_user

deliveries_bp = Blueprint("deliveries_bp", __name__, url_prefix="/api/deliveries")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidCommand("request body must be a JSON object")
    return data


def _is_worker(user: User, delivery: Delivery) -> bool:
    return delivery.assigned_to_id is not None and int(delivery.assigned_to_id) == int(user.id)


def _is_buyer(user: User, delivery: Delivery) -> bool:
    return delivery.order is not None and int(delivery.order.buyer_id) == int(user.id)


def _is_seller(user: User, delivery: Delivery) -> bool:
    order = delivery.order
    return order is not None and order.seller_id is not None and int(order.seller_id) == int(user.id)


def _require(user: User, delivery: Delivery, *checks) -> None:
    if is_admin(user) or any(check(user, delivery) for check in checks):
        return
    raise Unauthorized("not allowed for this delivery", delivery_id=int(delivery.id))


def _code_from(data: dict) -> str:
    code = data.get("code")
    if isinstance(code, int) and not isinstance(code, bool):
        code = str(code)
    if not isinstance(code, str) or not code.strip():
        raise InvalidCommand("code is required", field="code")
    return code.strip()


def _issued_code(data: dict) -> str:
    if data.get("code") is None:
        return f"{secrets.randbelow(10 ** 6):06d}"
    return _code_from(data)


def _photo_urls(data: dict) -> list:
    urls = data.get("photo_urls")
    if isinstance(urls, str):
        urls = [urls]
    if not isinstance(urls, list):
        raise InvalidCommand("photo_urls must be a non-empty list of strings", field="photo_urls")
    return urls


@deliveries_bp.get("/assignments")
def my_assignments():
    u = require_user()
    require_role(u, "delivery")
    items = [d.to_dict() for d in delivery_service.deliveries_for_worker(int(u.id))]
    return jsonify({"ok": True, "items": items, "count": len(items)}), 200


@deliveries_bp.get("/pending")
def pending():
    u = require_user()
    require_role(u, "delivery")
    items = [o.to_dict() for o in delivery_service.pending_deliveries()]
    return jsonify({"ok": True, "items": items, "count": len(items)}), 200


@deliveries_bp.get("/<int:delivery_id>")
def get_delivery(delivery_id: int):
    u = require_user()
    delivery = delivery_service.get_delivery(delivery_id)
    _require(u, delivery, _is_worker, _is_buyer, _is_seller)
    return jsonify({"ok": True, "delivery": delivery.to_dict()}), 200


@deliveries_bp.patch("/<int:delivery_id>/status")
def update_status(delivery_id: int):
    u = require_user()
    data = _json_body()
    target = str(data.get("status") or "").strip().upper()
    _require(u, delivery_service.get_delivery(delivery_id), _is_worker)
    delivery = delivery_service.update_delivery_status_to(delivery_id, target, data, actor_id=int(u.id))
    return jsonify({"ok": True, "delivery": delivery.to_dict()}), 200


@deliveries_bp.post("/<int:delivery_id>/pickup-photos")
def pickup_photos(delivery_id: int):
    u = require_user()
    urls = _photo_urls(_json_body())
    _require(u, delivery_service.get_delivery(delivery_id), _is_worker)
    delivery = delivery_service.add_pickup_photos(delivery_id, urls)
    return jsonify({"ok": True, "delivery": delivery.to_dict()}), 200


@deliveries_bp.post("/<int:delivery_id>/delivery-photos")
def delivery_photos(delivery_id: int):
    u = require_user()
    urls = _photo_urls(_json_body())
    _require(u, delivery_service.get_delivery(delivery_id), _is_worker)
    delivery = delivery_service.add_delivery_photos(delivery_id, urls)
    return jsonify({"ok": True, "delivery": delivery.to_dict()}), 200


@deliveries_bp.post("/<int:delivery_id>/pickup-otp")
def issue_pickup_otp(delivery_id: int):
    u = require_user()
    code = _issued_code(_json_body())
    _require(u, delivery_service.get_delivery(delivery_id), _is_seller)
    otp_service.set_pickup_otp(delivery_id, code)
    return jsonify({"ok": True, "delivery_id": int(delivery_id), "code": code}), 200


@deliveries_bp.post("/<int:delivery_id>/pickup-otp/verify")
def verify_pickup_otp(delivery_id: int):
    u = require_user()
    code = _code_from(_json_body())
    _require(u, delivery_service.get_delivery(delivery_id), _is_worker)
    verified = otp_service.verify_pickup_otp(delivery_id, code)
    return jsonify({"ok": True, "verified": bool(verified)}), 200


@deliveries_bp.post("/<int:delivery_id>/delivery-otp")
def issue_delivery_otp(delivery_id: int):
    u = require_user()
    code = _issued_code(_json_body())
    _require(u, delivery_service.get_delivery(delivery_id), _is_buyer)
    otp_service.set_delivery_otp(delivery_id, code)
    return jsonify({"ok": True, "delivery_id": int(delivery_id), "code": code}), 200


@deliveries_bp.post("/<int:delivery_id>/delivery-otp/verify")
def verify_delivery_otp(delivery_id: int):
    u = require_user()
    code = _code_from(_json_body())
    _require(u, delivery_service.get_delivery(delivery_id), _is_worker)
    verified = otp_service.verify_delivery_otp(delivery_id, code)
    return jsonify({"ok": True, "verified": bool(verified)}), 200
