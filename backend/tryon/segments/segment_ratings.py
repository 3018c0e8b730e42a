from __future__ import annotations

from flask import Blueprint, jsonify, request

from tryon.errors import InvalidCommand, Unauthorized
from tryon.services import order_service, rating_service
from tryon.utils.auth import is_admin, require_user

ratings_bp = Blueprint("ratings_bp", __name__, url_prefix="/api/ratings")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidCommand("request body must be a JSON object")
    return data


def _required_int(data: dict, name: str) -> int:
    raw = data.get(name)
    if raw is None or raw == "" or isinstance(raw, bool):
        raise InvalidCommand(f"{name} is required", field=name)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise InvalidCommand(f"{name} must be an integer", field=name)


@ratings_bp.post("")
def create_rating():
    u = require_user()
    data = _json_body()
    comment = data.get("comment") or ""
    if not isinstance(comment, str):
        raise InvalidCommand("comment must be a string", field="comment")
    if data.get("score") is None:
        raise InvalidCommand("score is required", field="score")

    rating = rating_service.rate(
        order_id=_required_int(data, "order_id"),
        giver_id=int(u.id),
        receiver_id=_required_int(data, "receiver_id"),
        score=data.get("score"),
        comment=comment,
    )
    return jsonify({"ok": True, "rating": rating.to_dict()}), 201


@ratings_bp.get("/user/<int:user_id>")
def user_ratings(user_id: int):
    items = [r.to_dict() for r in rating_service.ratings_for_user(user_id)]
    return jsonify({"ok": True, "items": items, "summary": rating_service.average_for_user(user_id)}), 200


@ratings_bp.get("/order/<int:order_id>")
def order_ratings(order_id: int):
    u = require_user()
    order = order_service.get_order(order_id, include_inactive=True)
    if not is_admin(u) and int(u.id) not in rating_service.participants(order):
        raise Unauthorized("not a participant of this order", order_id=int(order.id))
    items = [r.to_dict() for r in rating_service.ratings_for_order(order_id)]
    return jsonify({"ok": True, "items": items}), 200
