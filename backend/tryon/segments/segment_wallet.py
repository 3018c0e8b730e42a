from __future__ import annotations

from flask import Blueprint, jsonify, request

from tryon.errors import InvalidCommand, NotFound, Unauthorized
from tryon.extensions import db
from tryon.models import User, Wallet
from tryon.services import ledger_service, order_service
from tryon.utils.auth import is_admin, require_admin, require_user
from tryon.utils.idempotency import run_idempotent

wallet_bp = Blueprint("wallet_bp", __name__, url_prefix="/api/wallet")
transactions_bp = Blueprint("transactions_bp", __name__, url_prefix="/api/transactions")
admin_wallet_bp = Blueprint("admin_wallet_bp", __name__, url_prefix="/api/admin")


def _wallet_payload(user_id: int) -> dict:
    wallet = Wallet.query.filter_by(user_id=int(user_id)).first()
    if wallet is None:
        return {"id": None, "user_id": int(user_id), "balance": 0.0, "updated_at": None}
    return wallet.to_dict()


def _posting_args(data: dict) -> dict:
    try:
        user_id = int(data.get("user_id"))
    except (TypeError, ValueError):
        raise InvalidCommand("user_id is required", field="user_id")
    order_id = data.get("order_id")
    if order_id is not None:
        try:
            order_id = int(order_id)
        except (TypeError, ValueError):
            raise InvalidCommand("order_id must be an integer", field="order_id")
    reference = data.get("reference")
    if reference is not None and not isinstance(reference, str):
        raise InvalidCommand("reference must be a string", field="reference")
    return {
        "user_id": user_id,
        "amount": data.get("amount"),
        "order_id": order_id,
        "provider_id": (reference or "").strip() or None,
    }


@wallet_bp.get("")
def my_wallet():
    u = require_user()
    return jsonify({"ok": True, "wallet": _wallet_payload(int(u.id))}), 200


@wallet_bp.get("/transactions")
def my_wallet_transactions():
    u = require_user()
    items = [t.to_dict() for t in ledger_service.transactions_for_user(int(u.id))]
    return jsonify({"ok": True, "items": items}), 200


def _post(kind: str):
    u = require_user()
    require_admin(u)
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise InvalidCommand("request body must be a JSON object")

    def _apply():
        args = _posting_args(data)
        post = ledger_service.credit if kind == "credit" else ledger_service.debit
        txn = post(
            args["user_id"],
            args["amount"],
            args["order_id"],
            provider=ledger_service.WALLET_PROVIDER,
            provider_id=args["provider_id"],
        )
        return {"ok": True, "transaction": txn.to_dict(), "wallet": _wallet_payload(args["user_id"])}, 200

    body, status = run_idempotent(f"/api/wallet/{kind}", int(u.id), data, _apply)
    return jsonify(body), status


@wallet_bp.post("/credit")
def credit_wallet():
    return _post("credit")


@wallet_bp.post("/debit")
def debit_wallet():
    return _post("debit")


@transactions_bp.get("/me")
def my_transactions():
    u = require_user()
    items = [t.to_dict() for t in ledger_service.transactions_for_user(int(u.id))]
    return jsonify({"ok": True, "items": items}), 200


@transactions_bp.get("/order/<int:order_id>")
def order_transactions(order_id: int):
    u = require_user()
    order = order_service.get_order(order_id, include_inactive=True)
    uid = int(u.id)
    if not is_admin(u) and uid not in (int(order.buyer_id), int(order.seller_id or 0)):
        raise Unauthorized("not a party to this order", order_id=int(order_id))
    items = [t.to_dict() for t in ledger_service.transactions_for_order(order_id)]
    return jsonify({"ok": True, "items": items}), 200


@transactions_bp.get("/<int:txn_id>")
def get_transaction(txn_id: int):
    u = require_user()
    txn = ledger_service.get_transaction(txn_id)
    if txn is None:
        raise NotFound("transaction not found", transaction_id=int(txn_id))
    if not is_admin(u) and int(txn.user_id) != int(u.id):
        raise Unauthorized("not your transaction", transaction_id=int(txn_id))
    return jsonify({"ok": True, "transaction": txn.to_dict()}), 200


@transactions_bp.get("/")
def all_transactions():
    u = require_user()
    require_admin(u)
    try:
        limit = int(request.args.get("limit") or 200)
    except ValueError:
        raise InvalidCommand("limit must be an integer", field="limit")
    items = [t.to_dict() for t in ledger_service.all_transactions(limit=limit)]
    return jsonify({"ok": True, "items": items, "count": len(items)}), 200


@admin_wallet_bp.get("/users/<int:user_id>/wallet")
def admin_user_wallet(user_id: int):
    u = require_user()
    require_admin(u)
    if db.session.get(User, int(user_id)) is None:
        raise NotFound("user not found", user_id=int(user_id))
    items = [t.to_dict() for t in ledger_service.transactions_for_user(int(user_id))]
    return jsonify({"ok": True, "wallet": _wallet_payload(int(user_id)), "transactions": items}), 200
