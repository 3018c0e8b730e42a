from __future__ import annotations

import logging
from datetime import datetime

from tryon.errors import InvalidCommand, InvalidTransition, NotFound, Unauthorized
from tryon.extensions import db
from tryon.models import Delivery, Order, OrderTransition, User
from tryon.services import commands, ledger_service
from tryon.services.delivery_service import (
    DeliveryStatus,
    PhotoKind,
    attach_photos,
    advance_to,
    lock_order_and_delivery,
    record_transition,
)

logger = logging.getLogger(__name__)


class OrderStatus:
    CREATED = "CREATED"
    PICKUP_ASSIGNED = "PICKUP_ASSIGNED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED_FOR_TRYON = "DELIVERED_FOR_TRYON"
    VERIFIED_OK = "VERIFIED_OK"
    RETURN_SCHEDULED = "RETURN_SCHEDULED"
    RETURNED = "RETURNED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    ALLOWED = {
        CREATED: {PICKUP_ASSIGNED, CANCELLED},
        PICKUP_ASSIGNED: {PICKED_UP, CANCELLED},
        PICKED_UP: {IN_TRANSIT},
        IN_TRANSIT: {DELIVERED_FOR_TRYON},
        DELIVERED_FOR_TRYON: {VERIFIED_OK, RETURN_SCHEDULED},
        VERIFIED_OK: {COMPLETED},
        RETURN_SCHEDULED: {RETURNED},
        RETURNED: {COMPLETED},
        COMPLETED: set(),
        CANCELLED: set(),
    }
    TERMINAL = {COMPLETED, CANCELLED}
    CANCELLABLE = {CREATED, PICKUP_ASSIGNED}
    AWAITING_DELIVERY = (CREATED, PICKUP_ASSIGNED, PICKED_UP, IN_TRANSIT)


# Order status -> status its delivery must reach in the same unit of work.
DELIVERY_PROJECTION = {
    OrderStatus.PICKED_UP: DeliveryStatus.PICKED_UP,
    OrderStatus.DELIVERED_FOR_TRYON: DeliveryStatus.DELIVERED,
    OrderStatus.COMPLETED: DeliveryStatus.COMPLETED,
}

# Order status -> furthest status its delivery may be in.
DELIVERY_CEILING = {
    OrderStatus.CREATED: DeliveryStatus.PENDING_PICKUP,
    OrderStatus.PICKUP_ASSIGNED: DeliveryStatus.ASSIGNED,
    OrderStatus.PICKED_UP: DeliveryStatus.IN_TRANSIT,
    OrderStatus.IN_TRANSIT: DeliveryStatus.IN_TRANSIT,
    OrderStatus.DELIVERED_FOR_TRYON: DeliveryStatus.DELIVERED,
    OrderStatus.VERIFIED_OK: DeliveryStatus.DELIVERED,
    OrderStatus.RETURN_SCHEDULED: DeliveryStatus.DELIVERED,
    OrderStatus.RETURNED: DeliveryStatus.DELIVERED,
    OrderStatus.COMPLETED: DeliveryStatus.COMPLETED,
    OrderStatus.CANCELLED: DeliveryStatus.ASSIGNED,
}


def _normalize(value: str | None) -> str:
    return (value or "").strip().upper()


def can_transition(current: str | None, target: str | None) -> bool:
    return _normalize(target) in OrderStatus.ALLOWED.get(_normalize(current), set())


def _require_user(user_id: int, label: str) -> User:
    user = db.session.get(User, int(user_id))
    if user is None:
        raise NotFound(f"{label} not found", user_id=int(user_id))
    return user


def create_order(
    buyer_id: int,
    listing_id: int,
    pickup_address_id: int | None,
    delivery_address_id: int | None,
    total_amount,
    *,
    seller_id: int | None = None,
) -> Order:
    """Create an order with its delivery job and the buyer's HOLD row."""
    amount = ledger_service.to_amount(total_amount)
    try:
        _require_user(buyer_id, "buyer")
        if seller_id is not None:
            _require_user(seller_id, "seller")

        now = datetime.utcnow()
        order = Order(
            buyer_id=int(buyer_id),
            seller_id=int(seller_id) if seller_id is not None else None,
            listing_id=int(listing_id),
            status=OrderStatus.CREATED,
            total_amount=amount,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)
        db.session.flush()

        delivery = Delivery(
            order_id=int(order.id),
            status=DeliveryStatus.PENDING_PICKUP,
            pickup_address_id=int(pickup_address_id) if pickup_address_id is not None else None,
            delivery_address_id=int(delivery_address_id) if delivery_address_id is not None else None,
            created_at=now,
            updated_at=now,
        )
        db.session.add(delivery)
        db.session.flush()

        ledger_service.hold_for_order(order)
        record_transition(order.id, "order", "", OrderStatus.CREATED, actor_id=int(buyer_id))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("order_created order_id=%s buyer_id=%s amount=%s", int(order.id), int(buyer_id), amount)
    return order


def get_order(order_id: int, *, include_inactive: bool = False) -> Order:
    order = db.session.get(Order, int(order_id))
    if order is None or (not include_inactive and not order.is_active):
        raise NotFound("order not found", order_id=int(order_id))
    return order


def _set_order_status(order: Order, target: str, *, actor_id: int | None, reason: str = "") -> str:
    current = _normalize(order.status)
    if not can_transition(current, target):
        raise InvalidTransition(
            f"order cannot move from {current} to {target}",
            order_id=int(order.id),
            current=current,
            target=target,
        )
    order.status = target
    order.updated_at = datetime.utcnow()
    record_transition(order.id, "order", current, target, actor_id=actor_id, reason=reason)
    return current


def transition_order(order_id: int, command, *, actor_id: int | None = None) -> Order:
    """Apply a typed command to the order and project it onto the delivery."""
    if not isinstance(command, tuple(commands.ORDER_COMMANDS.values())):
        raise InvalidCommand("not an order command")
    target = command.target
    reason = getattr(command, "reason", "") or ""
    try:
        order, delivery = lock_order_and_delivery(order_id)
        previous = _set_order_status(order, target, actor_id=actor_id, reason=reason)

        projected = DELIVERY_PROJECTION.get(target)
        if projected is not None:
            advance_to(delivery, projected, actor_id=actor_id, reason=f"order:{target}")
        if isinstance(command, commands.PickUp):
            attach_photos(delivery, PhotoKind.PICKUP, command.pickup_photo_urls)
        elif isinstance(command, commands.DeliverForTryOn):
            attach_photos(delivery, PhotoKind.DELIVERY, command.delivery_photo_urls)

        db.session.add(order)
        db.session.add(delivery)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(
        "order_transition order_id=%s from=%s to=%s actor_id=%s",
        int(order.id),
        previous,
        target,
        actor_id,
    )
    return order


def transition_order_to(
    order_id: int,
    target_status: str,
    payload: dict | None = None,
    *,
    actor_id: int | None = None,
) -> Order:
    """Status-keyed entry point that builds the typed command for ``target_status``.

    Targets without a command (PICKUP_ASSIGNED, CANCELLED, unknown names)
    are rejected as invalid transitions once the order is known to exist.
    """
    target = _normalize(target_status)
    if target not in commands.ORDER_COMMANDS:
        order = get_order(order_id)
        raise InvalidTransition(
            f"order cannot move from {_normalize(order.status)} to {target or '<empty>'}",
            order_id=int(order.id),
            current=_normalize(order.status),
            target=target,
        )
    return transition_order(order_id, commands.parse_order_command(target, payload), actor_id=actor_id)


def assign_delivery(order_id: int, worker_id: int, *, actor_id: int | None = None) -> Order:
    try:
        worker = _require_user(worker_id, "delivery worker")
        if worker.normalized_role != "delivery":
            raise Unauthorized("assignee does not have the delivery role", user_id=int(worker_id))

        order, delivery = lock_order_and_delivery(order_id)
        if _normalize(delivery.status) != DeliveryStatus.PENDING_PICKUP:
            raise InvalidTransition(
                f"delivery cannot be assigned from {_normalize(delivery.status)}",
                delivery_id=int(delivery.id),
            )
        _set_order_status(order, OrderStatus.PICKUP_ASSIGNED, actor_id=actor_id, reason=f"worker:{int(worker_id)}")

        now = datetime.utcnow()
        delivery.assigned_to_id = int(worker_id)
        delivery.status = DeliveryStatus.ASSIGNED
        delivery.updated_at = now
        record_transition(
            order.id,
            "delivery",
            DeliveryStatus.PENDING_PICKUP,
            DeliveryStatus.ASSIGNED,
            actor_id=actor_id,
            reason=f"worker:{int(worker_id)}",
        )
        db.session.add(order)
        db.session.add(delivery)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("delivery_assigned order_id=%s worker_id=%s", int(order.id), int(worker_id))
    return order


def cancel_order(order_id: int, *, actor_id: int | None = None, reason: str = "") -> Order:
    try:
        order, delivery = lock_order_and_delivery(order_id, include_inactive=True)
        current = _normalize(order.status)
        if current not in OrderStatus.CANCELLABLE:
            raise InvalidTransition(
                f"order cannot be cancelled from {current}",
                order_id=int(order.id),
                current=current,
            )
        if _normalize(delivery.status) not in (DeliveryStatus.PENDING_PICKUP, DeliveryStatus.ASSIGNED):
            raise InvalidTransition(
                f"order cannot be cancelled once its delivery is {_normalize(delivery.status)}",
                order_id=int(order.id),
                delivery_id=int(delivery.id),
            )
        _set_order_status(order, OrderStatus.CANCELLED, actor_id=actor_id, reason=reason)
        order.is_active = False

        delivery.pickup_otp_hash = None
        delivery.delivery_otp_hash = None
        delivery.updated_at = datetime.utcnow()

        ledger_service.release_hold(order)
        db.session.add(order)
        db.session.add(delivery)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("order_cancelled order_id=%s from=%s actor_id=%s", int(order.id), current, actor_id)
    return order


def orders_for_buyer(buyer_id: int) -> list[Order]:
    return (
        Order.query.filter_by(buyer_id=int(buyer_id), is_active=True)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def orders_for_seller(seller_id: int) -> list[Order]:
    return (
        Order.query.filter_by(seller_id=int(seller_id), is_active=True)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def order_transitions(order_id: int) -> list[OrderTransition]:
    return (
        OrderTransition.query.filter_by(order_id=int(order_id))
        .order_by(OrderTransition.id.asc())
        .all()
    )
