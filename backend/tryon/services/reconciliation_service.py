from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa

from tryon.extensions import db
from tryon.models import ReconciliationReport, Transaction, Wallet
from tryon.services.ledger_service import TransactionType

logger = logging.getLogger(__name__)


def _ledger_sums() -> dict[int, Decimal]:
    rows = (
        db.session.query(Transaction.user_id, sa.func.coalesce(sa.func.sum(Transaction.amount), 0))
        .filter(Transaction.type.in_(sorted(TransactionType.BALANCE_BEARING)))
        .group_by(Transaction.user_id)
        .all()
    )
    return {int(user_id): Decimal(str(total or 0)).quantize(Decimal("0.01")) for user_id, total in rows}


def recompute_wallet_balances(*, tolerance: Decimal | str = "0.00") -> dict:
    """Compare each stored wallet balance with the sum of its ledger rows.

    HOLD rows are excluded; they never move a balance. Users with ledger rows
    but no wallet are reported against a stored balance of zero.
    """
    limit = Decimal(str(tolerance))
    sums = _ledger_sums()
    wallets = Wallet.query.order_by(Wallet.user_id.asc()).all()
    seen = set()
    drift_items = []

    for wallet in wallets:
        seen.add(int(wallet.user_id))
        stored = Decimal(str(wallet.balance or 0)).quantize(Decimal("0.01"))
        computed = sums.get(int(wallet.user_id), Decimal("0.00"))
        drift = stored - computed
        if abs(drift) > limit:
            drift_items.append(
                {
                    "wallet_id": int(wallet.id),
                    "user_id": int(wallet.user_id),
                    "stored_balance": str(stored),
                    "computed_balance": str(computed),
                    "drift": str(drift),
                }
            )

    for user_id, computed in sorted(sums.items()):
        if user_id in seen or abs(computed) <= limit:
            continue
        drift_items.append(
            {
                "wallet_id": None,
                "user_id": user_id,
                "stored_balance": "0.00",
                "computed_balance": str(computed),
                "drift": str(-computed),
            }
        )

    summary = {
        "ok": not drift_items,
        "scope": "wallet_ledger",
        "wallet_count": len(wallets),
        "drift_count": len(drift_items),
        "drift_items": drift_items,
        "generated_at": datetime.utcnow().isoformat(),
    }
    if drift_items:
        logger.warning("ledger_drift wallet_count=%s drift_count=%s", len(wallets), len(drift_items))
    else:
        logger.info("ledger_reconciled wallet_count=%s", len(wallets))
    return summary


def persist_report(summary: dict, *, created_by: int | None = None) -> ReconciliationReport:
    report = ReconciliationReport(
        wallet_count=int(summary.get("wallet_count") or 0),
        drift_count=int(summary.get("drift_count") or 0),
        summary_json=json.dumps(summary)[:200000],
        created_by=int(created_by) if created_by is not None else None,
        created_at=datetime.utcnow(),
    )
    try:
        db.session.add(report)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return report


def latest_report() -> ReconciliationReport | None:
    return ReconciliationReport.query.order_by(ReconciliationReport.id.desc()).first()
