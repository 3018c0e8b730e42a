from __future__ import annotations

import logging
from datetime import datetime

from tryon.errors import InvalidCommand, InvalidTransition, NotFound
from tryon.extensions import db
from tryon.models import Delivery, DeliveryPhoto, Order, OrderTransition
from tryon.services import commands
from tryon.utils.observability import get_request_id

logger = logging.getLogger(__name__)


class DeliveryStatus:
    PENDING_PICKUP = "PENDING_PICKUP"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"

    SEQUENCE = (PENDING_PICKUP, ASSIGNED, PICKED_UP, IN_TRANSIT, DELIVERED, COMPLETED)
    NEXT = {
        PENDING_PICKUP: ASSIGNED,
        ASSIGNED: PICKED_UP,
        PICKED_UP: IN_TRANSIT,
        IN_TRANSIT: DELIVERED,
        DELIVERED: COMPLETED,
    }


class PhotoKind:
    PICKUP = "pickup"
    DELIVERY = "delivery"


def _normalize(value: str | None) -> str:
    return (value or "").strip().upper()


def next_status(current: str | None) -> str | None:
    return DeliveryStatus.NEXT.get(_normalize(current))


def _rank(status: str | None) -> int:
    try:
        return DeliveryStatus.SEQUENCE.index(_normalize(status))
    except ValueError:
        return -1


def record_transition(
    order_id: int,
    subject: str,
    from_status: str,
    to_status: str,
    *,
    actor_id: int | None = None,
    reason: str = "",
) -> OrderTransition:
    row = OrderTransition(
        order_id=int(order_id),
        subject=subject,
        from_status=from_status or "",
        to_status=to_status,
        actor_user_id=int(actor_id) if actor_id is not None else None,
        reason=(reason or "")[:240] or None,
        request_id=(get_request_id() or "")[:80] or None,
        created_at=datetime.utcnow(),
    )
    db.session.add(row)
    return row


def _stamp(delivery: Delivery, target: str, now: datetime) -> None:
    if target == DeliveryStatus.PICKED_UP:
        delivery.picked_at = now
    elif target == DeliveryStatus.DELIVERED:
        delivery.delivered_at = now


def attach_photos(delivery: Delivery, kind: str, urls) -> int:
    added = 0
    for url in urls or ():
        db.session.add(DeliveryPhoto(delivery_id=int(delivery.id), kind=kind, url=url))
        added += 1
    return added


def step(delivery: Delivery, target: str, *, actor_id: int | None = None, reason: str = "") -> None:
    """Move the delivery to its single allowed successor ``target``."""
    current = _normalize(delivery.status)
    if next_status(current) != target:
        raise InvalidTransition(
            f"delivery cannot move from {current} to {target}",
            delivery_id=int(delivery.id),
            current=current,
            target=target,
        )
    now = datetime.utcnow()
    delivery.status = target
    _stamp(delivery, target, now)
    delivery.updated_at = now
    record_transition(delivery.order_id, "delivery", current, target, actor_id=actor_id, reason=reason)


def advance_to(delivery: Delivery, target: str, *, actor_id: int | None = None, reason: str = "") -> list[str]:
    """Walk the delivery forward until it reaches ``target``.

    Used when an order transition drags its delivery along. Statuses already
    at or past ``target`` are left untouched. Never passes through ASSIGNED,
    which needs a worker.
    """
    if _rank(delivery.status) >= _rank(target):
        return []
    walked = []
    while _normalize(delivery.status) != target:
        upcoming = next_status(delivery.status)
        if upcoming is None or upcoming == DeliveryStatus.ASSIGNED:
            raise InvalidTransition(
                f"delivery in {_normalize(delivery.status)} cannot follow the order to {target}",
                delivery_id=int(delivery.id),
            )
        step(delivery, upcoming, actor_id=actor_id, reason=reason)
        walked.append(upcoming)
    return walked


def lock_order_and_delivery(order_id: int, *, include_inactive: bool = False) -> tuple[Order, Delivery]:
    """Row-lock an order and then its delivery, in that order."""
    order = Order.query.filter_by(id=int(order_id)).with_for_update().first()
    if order is None or (not include_inactive and not order.is_active):
        raise NotFound("order not found", order_id=int(order_id))
    delivery = Delivery.query.filter_by(order_id=int(order.id)).with_for_update().first()
    if delivery is None:
        raise NotFound("delivery not found for order", order_id=int(order_id))
    return order, delivery


def _lock_by_delivery_id(delivery_id: int) -> tuple[Order, Delivery]:
    row = db.session.query(Delivery.order_id).filter(Delivery.id == int(delivery_id)).first()
    if row is None:
        raise NotFound("delivery not found", delivery_id=int(delivery_id))
    try:
        return lock_order_and_delivery(int(row[0]))
    except NotFound:
        raise NotFound("delivery not found", delivery_id=int(delivery_id))


def get_delivery(delivery_id: int) -> Delivery:
    delivery = db.session.get(Delivery, int(delivery_id))
    if delivery is None:
        raise NotFound("delivery not found", delivery_id=int(delivery_id))
    return delivery


def _check_ceiling(order: Order, delivery: Delivery, target: str) -> None:
    from tryon.services.order_service import DELIVERY_CEILING

    order_status = _normalize(order.status)
    ceiling = DELIVERY_CEILING.get(order_status, DeliveryStatus.PENDING_PICKUP)
    if _rank(target) > _rank(ceiling):
        raise InvalidTransition(
            f"delivery cannot move to {target} while the order is {order_status}",
            delivery_id=int(delivery.id),
            order_status=order_status,
            target=target,
        )


def update_delivery_status(delivery_id: int, command, *, actor_id: int | None = None) -> Delivery:
    """Step the delivery to ``command.target``.

    The delivery never runs ahead of its order: the target must not rank
    above the ceiling for the order's current status.
    """
    if not isinstance(command, tuple(commands.DELIVERY_COMMANDS.values())):
        raise InvalidCommand("not a delivery command")
    try:
        order, delivery = _lock_by_delivery_id(delivery_id)
        current = _normalize(delivery.status)
        _check_ceiling(order, delivery, command.target)
        step(delivery, command.target, actor_id=actor_id)
        if isinstance(command, commands.DeliveryPickedUp):
            attach_photos(delivery, PhotoKind.PICKUP, command.photo_urls)
        elif isinstance(command, commands.DeliveryDelivered):
            attach_photos(delivery, PhotoKind.DELIVERY, command.photo_urls)
        db.session.add(delivery)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(
        "delivery_transition delivery_id=%s from=%s to=%s actor_id=%s",
        int(delivery.id),
        current,
        command.target,
        actor_id,
    )
    return delivery


def update_delivery_status_to(
    delivery_id: int,
    target_status: str,
    payload: dict | None = None,
    *,
    actor_id: int | None = None,
) -> Delivery:
    target = _normalize(target_status)
    if target not in commands.DELIVERY_COMMANDS:
        delivery = get_delivery(delivery_id)
        raise InvalidTransition(
            f"delivery cannot move from {_normalize(delivery.status)} to {target or '<empty>'}",
            delivery_id=int(delivery.id),
            current=_normalize(delivery.status),
            target=target,
        )
    return update_delivery_status(delivery_id, commands.parse_delivery_command(target, payload), actor_id=actor_id)


def _add_photos(delivery_id: int, kind: str, urls) -> Delivery:
    cleaned = [str(u).strip()[:1024] for u in (urls or []) if isinstance(u, str) and u.strip()]
    if not cleaned:
        raise InvalidCommand("photo_urls must be a non-empty list of strings", field="photo_urls")
    try:
        _order, delivery = _lock_by_delivery_id(delivery_id)
        attach_photos(delivery, kind, cleaned)
        delivery.updated_at = datetime.utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    db.session.refresh(delivery)
    return delivery


def add_pickup_photos(delivery_id: int, urls) -> Delivery:
    return _add_photos(delivery_id, PhotoKind.PICKUP, urls)


def add_delivery_photos(delivery_id: int, urls) -> Delivery:
    return _add_photos(delivery_id, PhotoKind.DELIVERY, urls)


def deliveries_for_worker(worker_id: int) -> list[Delivery]:
    return (
        Delivery.query.filter_by(assigned_to_id=int(worker_id))
        .order_by(Delivery.created_at.desc(), Delivery.id.desc())
        .all()
    )


def pending_deliveries() -> list[Order]:
    from tryon.services.order_service import OrderStatus

    return (
        Order.query.filter(Order.is_active.is_(True), Order.status.in_(OrderStatus.AWAITING_DELIVERY))
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )
