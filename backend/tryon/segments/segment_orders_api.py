from __future__ import annotations

from flask import Blueprint, jsonify, request

from tryon.errors import InvalidCommand, Unauthorized
from tryon.models import Order, User
from tryon.services import order_service
from tryon.utils.auth import is_admin, require_role, require_user, role_of
from tryon.utils.idempotency import run_idempotent

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")


# Target status -> role that may request it, besides admin.
_STATUS_ACTORS = {
    "PICKED_UP": "worker",
    "IN_TRANSIT": "worker",
    "DELIVERED_FOR_TRYON": "worker",
    "RETURNED": "worker",
    "VERIFIED_OK": "buyer",
    "RETURN_SCHEDULED": "buyer",
    "COMPLETED": "seller",
}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidCommand("request body must be a JSON object")
    return data


def _int_field(data: dict, name: str, *, required: bool = True) -> int | None:
    raw = data.get(name)
    if raw is None or raw == "":
        if required:
            raise InvalidCommand(f"{name} is required", field=name)
        return None
    if isinstance(raw, bool):
        raise InvalidCommand(f"{name} must be an integer", field=name)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise InvalidCommand(f"{name} must be an integer", field=name)


def _assigned_worker_id(order: Order) -> int | None:
    if order.delivery is None or order.delivery.assigned_to_id is None:
        return None
    return int(order.delivery.assigned_to_id)


def _relation(user: User, order: Order) -> set[str]:
    out = set()
    uid = int(user.id)
    if int(order.buyer_id) == uid:
        out.add("buyer")
    if order.seller_id is not None and int(order.seller_id) == uid:
        out.add("seller")
    if _assigned_worker_id(order) == uid:
        out.add("worker")
    return out


def _require_participant(user: User, order: Order) -> None:
    if is_admin(user) or _relation(user, order):
        return
    raise Unauthorized("not a participant of this order", order_id=int(order.id))


def _require_relation(user: User, order: Order, *relations: str) -> None:
    if is_admin(user) or _relation(user, order).intersection(relations):
        return
    raise Unauthorized(
        f"{role_of(user)} may not perform this action on order {int(order.id)}",
        order_id=int(order.id),
    )


@orders_bp.post("/orders")
def create_order():
    u = require_user()
    data = _json_body()

    def _create():
        order = order_service.create_order(
            buyer_id=int(u.id),
            listing_id=_int_field(data, "listing_id"),
            pickup_address_id=_int_field(data, "pickup_address_id", required=False),
            delivery_address_id=_int_field(data, "delivery_address_id", required=False),
            total_amount=data.get("total_amount", data.get("amount")),
            seller_id=_int_field(data, "seller_id", required=False),
        )
        return {"ok": True, "order": order.to_dict()}, 201

    body, status = run_idempotent("/api/orders", int(u.id), data, _create)
    return jsonify(body), status


@orders_bp.get("/orders/mine")
def my_orders():
    u = require_user()
    items = [o.to_dict() for o in order_service.orders_for_buyer(int(u.id))]
    return jsonify({"ok": True, "items": items, "count": len(items)}), 200


@orders_bp.get("/seller/orders")
def seller_orders():
    u = require_user()
    require_role(u, "seller")
    items = [o.to_dict() for o in order_service.orders_for_seller(int(u.id))]
    return jsonify({"ok": True, "items": items, "count": len(items)}), 200


@orders_bp.get("/orders/<int:order_id>")
def get_order(order_id: int):
    u = require_user()
    order = order_service.get_order(order_id, include_inactive=True)
    _require_participant(u, order)
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@orders_bp.get("/orders/<int:order_id>/transitions")
def order_transitions(order_id: int):
    u = require_user()
    order = order_service.get_order(order_id, include_inactive=True)
    _require_participant(u, order)
    items = [t.to_dict() for t in order_service.order_transitions(order_id)]
    return jsonify({"ok": True, "items": items}), 200


@orders_bp.patch("/orders/<int:order_id>/status")
def update_order_status(order_id: int):
    u = require_user()
    data = _json_body()
    target = str(data.get("status") or "").strip().upper()

    order = order_service.get_order(order_id)
    _require_relation(u, order, _STATUS_ACTORS.get(target, "admin"))

    order = order_service.transition_order_to(order_id, target, data, actor_id=int(u.id))
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@orders_bp.patch("/orders/<int:order_id>/assign-delivery")
def assign_delivery(order_id: int):
    u = require_user()
    data = _json_body()
    worker_id = _int_field(data, "delivery_user_id", required=False)
    if worker_id is None:
        worker_id = _int_field(data, "worker_id")

    order = order_service.get_order(order_id)
    _require_relation(u, order, "seller")

    order = order_service.assign_delivery(order_id, worker_id, actor_id=int(u.id))
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@orders_bp.post("/orders/<int:order_id>/cancel")
def cancel_order(order_id: int):
    u = require_user()
    data = _json_body()
    reason = data.get("reason") or ""
    if not isinstance(reason, str):
        raise InvalidCommand("reason must be a string", field="reason")

    order = order_service.get_order(order_id, include_inactive=True)
    _require_relation(u, order, "buyer", "seller")

    order = order_service.cancel_order(order_id, actor_id=int(u.id), reason=reason.strip()[:240])
    return jsonify({"ok": True, "order": order.to_dict()}), 200
