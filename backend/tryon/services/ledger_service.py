from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from tryon.errors import InsufficientFunds, InvalidAmount
from tryon.extensions import db
from tryon.models import Order, Transaction, Wallet

logger = logging.getLogger(__name__)

WALLET_PROVIDER = "WALLET"
SYSTEM_PROVIDER = "system"

_CENT = Decimal("0.01")


class TransactionType:
    HOLD = "HOLD"
    CHARGE = "CHARGE"
    PAYOUT = "PAYOUT"
    REFUND = "REFUND"

    ALL = {HOLD, CHARGE, PAYOUT, REFUND}
    # HOLD rows reserve funds on paper only and never move a wallet balance.
    BALANCE_BEARING = {CHARGE, PAYOUT, REFUND}


class TransactionStatus:
    COMPLETED = "COMPLETED"
    HELD = "HELD"
    RELEASED = "RELEASED"


def to_amount(value) -> Decimal:
    """Parse a positive money amount, rounded half-up to cents."""
    if isinstance(value, bool) or value is None:
        raise InvalidAmount("amount must be a positive number", amount=value)
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount("amount must be a positive number", amount=str(value))
    if not parsed.is_finite():
        raise InvalidAmount("amount must be a positive number", amount=str(value))
    parsed = parsed.quantize(_CENT, rounding=ROUND_HALF_UP)
    if parsed <= 0:
        raise InvalidAmount("amount must be positive", amount=str(value))
    return parsed


def _provider_ref(provider: str | None, provider_id: str | None) -> tuple[str, str | None]:
    prov = (provider or WALLET_PROVIDER).strip()[:32] or WALLET_PROVIDER
    ref = (provider_id or "").strip()[:160] or None
    return prov, ref


def find_by_provider(provider: str, provider_id: str) -> Transaction | None:
    prov, ref = _provider_ref(provider, provider_id)
    if not ref:
        return None
    return Transaction.query.filter_by(provider=prov, provider_id=ref).first()


def _ensure_wallet(user_id: int) -> Wallet:
    wallet = Wallet.query.filter_by(user_id=int(user_id)).first()
    if wallet is not None:
        return wallet
    try:
        with db.session.begin_nested():
            wallet = Wallet(user_id=int(user_id), balance=Decimal("0.00"))
            db.session.add(wallet)
            db.session.flush()
        return wallet
    except IntegrityError:
        # Created concurrently by another request.
        return Wallet.query.filter_by(user_id=int(user_id)).one()


def ensure_wallet(user_id: int) -> Wallet:
    try:
        wallet = _ensure_wallet(int(user_id))
        db.session.commit()
        return wallet
    except Exception:
        db.session.rollback()
        raise


def get_balance(user_id: int) -> Decimal:
    wallet = Wallet.query.filter_by(user_id=int(user_id)).first()
    if wallet is None:
        return Decimal("0.00")
    return Decimal(str(wallet.balance or 0)).quantize(_CENT)


def _shift_balance(user_id: int, delta: Decimal) -> bool:
    """Apply ``delta`` to the wallet in a single UPDATE.

    Debits carry the funds check in the WHERE clause so the check and the
    decrement cannot be split by a concurrent writer.
    """
    stmt = (
        sa.update(Wallet)
        .where(Wallet.user_id == int(user_id))
        .values(balance=Wallet.balance + delta, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if delta < 0:
        stmt = stmt.where(Wallet.balance >= -delta)
    result = db.session.execute(stmt)
    return int(result.rowcount or 0) == 1


def _insert_transaction(
    *,
    user_id: int,
    amount: Decimal,
    txn_type: str,
    order_id: int | None,
    provider: str,
    provider_id: str | None,
    status: str,
) -> Transaction:
    row = Transaction(
        user_id=int(user_id),
        order_id=int(order_id) if order_id is not None else None,
        amount=amount,
        type=txn_type,
        provider=provider,
        provider_id=provider_id,
        status=status,
        created_at=datetime.utcnow(),
    )
    db.session.add(row)
    db.session.flush()
    return row


def record_transaction(
    *,
    user_id: int,
    amount,
    txn_type: str,
    order_id: int | None = None,
    provider: str | None = SYSTEM_PROVIDER,
    provider_id: str | None = None,
    status: str = TransactionStatus.COMPLETED,
    commit: bool = True,
) -> Transaction:
    """Append a ledger row without touching any wallet.

    A second call with the same ``(provider, provider_id)`` returns the row
    written by the first one.
    """
    if txn_type not in TransactionType.ALL:
        raise ValueError(f"unknown transaction type {txn_type}")
    prov, ref = _provider_ref(provider, provider_id)
    if ref:
        existing = find_by_provider(prov, ref)
        if existing is not None:
            return existing
    signed = Decimal(str(amount)).quantize(_CENT, rounding=ROUND_HALF_UP)

    if not commit:
        return _insert_transaction(
            user_id=user_id,
            amount=signed,
            txn_type=txn_type,
            order_id=order_id,
            provider=prov,
            provider_id=ref,
            status=status,
        )
    try:
        row = _insert_transaction(
            user_id=user_id,
            amount=signed,
            txn_type=txn_type,
            order_id=order_id,
            provider=prov,
            provider_id=ref,
            status=status,
        )
        db.session.commit()
        return row
    except IntegrityError:
        db.session.rollback()
        existing = find_by_provider(prov, ref) if ref else None
        if existing is None:
            raise
        return existing
    except Exception:
        db.session.rollback()
        raise


def _post(
    user_id: int,
    amount,
    txn_type: str,
    *,
    order_id: int | None,
    provider: str | None,
    provider_id: str | None,
) -> Transaction:
    value = to_amount(amount)
    delta = -value if txn_type == TransactionType.CHARGE else value
    prov, ref = _provider_ref(provider, provider_id)

    try:
        if ref:
            existing = find_by_provider(prov, ref)
            if existing is not None:
                db.session.rollback()
                logger.info("ledger_duplicate provider=%s provider_id=%s txn_id=%s", prov, ref, existing.id)
                return existing

        _ensure_wallet(int(user_id))
        if not _shift_balance(int(user_id), delta):
            raise InsufficientFunds(
                "wallet balance is lower than the requested debit",
                user_id=int(user_id),
                amount=float(value),
            )
        row = _insert_transaction(
            user_id=user_id,
            amount=delta,
            txn_type=txn_type,
            order_id=order_id,
            provider=prov,
            provider_id=ref,
            status=TransactionStatus.COMPLETED,
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = find_by_provider(prov, ref) if ref else None
        if existing is None:
            raise
        return existing
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "ledger_post user_id=%s type=%s amount=%s order_id=%s txn_id=%s",
        int(user_id),
        txn_type,
        delta,
        order_id,
        row.id,
    )
    return row


def credit(
    user_id: int,
    amount,
    order_id: int | None = None,
    *,
    provider: str | None = WALLET_PROVIDER,
    provider_id: str | None = None,
) -> Transaction:
    return _post(
        user_id,
        amount,
        TransactionType.PAYOUT,
        order_id=order_id,
        provider=provider,
        provider_id=provider_id,
    )


def debit(
    user_id: int,
    amount,
    order_id: int | None = None,
    *,
    provider: str | None = WALLET_PROVIDER,
    provider_id: str | None = None,
) -> Transaction:
    return _post(
        user_id,
        amount,
        TransactionType.CHARGE,
        order_id=order_id,
        provider=provider,
        provider_id=provider_id,
    )


def refund(
    user_id: int,
    amount,
    order_id: int | None = None,
    *,
    provider: str | None = WALLET_PROVIDER,
    provider_id: str | None = None,
) -> Transaction:
    return _post(
        user_id,
        amount,
        TransactionType.REFUND,
        order_id=order_id,
        provider=provider,
        provider_id=provider_id,
    )


def hold_for_order(order: Order) -> Transaction:
    """Stage the order's HOLD row in the caller's unit of work."""
    return record_transaction(
        user_id=int(order.buyer_id),
        amount=order.total_amount,
        txn_type=TransactionType.HOLD,
        order_id=int(order.id),
        provider=SYSTEM_PROVIDER,
        provider_id=f"hold_{int(order.id)}",
        status=TransactionStatus.HELD,
        commit=False,
    )


def release_hold(order: Order) -> Transaction | None:
    """Stage the offsetting HOLD row for a cancelled order."""
    hold = find_by_provider(SYSTEM_PROVIDER, f"hold_{int(order.id)}")
    if hold is None:
        return None
    return record_transaction(
        user_id=int(hold.user_id),
        amount=-Decimal(str(hold.amount or 0)),
        txn_type=TransactionType.HOLD,
        order_id=int(order.id),
        provider=SYSTEM_PROVIDER,
        provider_id=f"hold_release_{int(order.id)}",
        status=TransactionStatus.RELEASED,
        commit=False,
    )


def get_transaction(txn_id: int) -> Transaction | None:
    return db.session.get(Transaction, int(txn_id))


def transactions_for_user(user_id: int) -> list[Transaction]:
    return (
        Transaction.query.filter_by(user_id=int(user_id))
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .all()
    )


def transactions_for_order(order_id: int) -> list[Transaction]:
    return (
        Transaction.query.filter_by(order_id=int(order_id))
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .all()
    )


def all_transactions(*, limit: int = 200) -> list[Transaction]:
    return (
        Transaction.query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(max(1, min(int(limit), 1000)))
        .all()
    )
