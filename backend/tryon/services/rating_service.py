"""Ratings between the parties of a completed order.

Buyer, seller and assigned worker may each rate any other party of the
order once the order is COMPLETED, one rating per (order, giver, receiver).
"""
from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from tryon.errors import InvalidCommand, InvalidTransition, NotFound, Unauthorized
from tryon.extensions import db
from tryon.models import Order, Rating, User
from tryon.services.order_service import OrderStatus, get_order

logger = logging.getLogger(__name__)

MIN_SCORE = 1
MAX_SCORE = 5


def participants(order: Order) -> set[int]:
    out = {int(order.buyer_id)}
    if order.seller_id is not None:
        out.add(int(order.seller_id))
    if order.delivery is not None and order.delivery.assigned_to_id is not None:
        out.add(int(order.delivery.assigned_to_id))
    return out


def _score(value) -> int:
    if isinstance(value, bool):
        raise InvalidCommand("score must be an integer", field="score")
    try:
        score = int(value)
    except (TypeError, ValueError):
        raise InvalidCommand("score must be an integer", field="score")
    if score != value and str(score) != str(value).strip():
        raise InvalidCommand("score must be an integer", field="score")
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise InvalidCommand(f"score must be between {MIN_SCORE} and {MAX_SCORE}", field="score")
    return score


def rate(order_id: int, giver_id: int, receiver_id: int, score, comment: str = "") -> Rating:
    order = get_order(order_id)
    if (order.status or "").upper() != OrderStatus.COMPLETED:
        raise InvalidTransition(
            "ratings open once the order is completed",
            order_id=int(order.id),
            current=order.status,
        )
    parties = participants(order)
    if int(giver_id) not in parties:
        raise Unauthorized("not a participant of this order", order_id=int(order.id))
    if int(receiver_id) == int(giver_id) or int(receiver_id) not in parties:
        raise InvalidCommand("receiver must be another party of the order", field="receiver_id")

    row = Rating(
        order_id=int(order.id),
        giver_id=int(giver_id),
        receiver_id=int(receiver_id),
        score=_score(score),
        comment=(comment or "").strip()[:500] or None,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise InvalidTransition(
            "this party was already rated for the order",
            order_id=int(order_id),
            receiver_id=int(receiver_id),
        )
    logger.info(
        "rating_created order_id=%s giver_id=%s receiver_id=%s score=%s",
        int(order_id),
        int(giver_id),
        int(receiver_id),
        int(row.score),
    )
    return row


def ratings_for_user(user_id: int) -> list[Rating]:
    if db.session.get(User, int(user_id)) is None:
        raise NotFound("user not found", user_id=int(user_id))
    return (
        Rating.query.filter_by(receiver_id=int(user_id))
        .order_by(Rating.created_at.desc(), Rating.id.desc())
        .all()
    )


def average_for_user(user_id: int) -> dict:
    avg, count = (
        db.session.query(func.avg(Rating.score), func.count(Rating.id))
        .filter(Rating.receiver_id == int(user_id))
        .one()
    )
    return {"average": round(float(avg or 0), 2), "total_ratings": int(count or 0)}


def ratings_for_order(order_id: int) -> list[Rating]:
    return Rating.query.filter_by(order_id=int(order_id)).order_by(Rating.id.asc()).all()
