from __future__ import annotations

import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from tryon.services.reconciliation_service import persist_report, recompute_wallet_balances


def _task_log(task_name: str, *, status: str, started_at: float, **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload))


@shared_task(name="tryon.tasks.ledger_tasks.reconcile_wallets")
def reconcile_wallets(persist: bool = True) -> dict:
    """Scheduled drift check of stored balances against the ledger."""
    started = time.perf_counter()
    summary = recompute_wallet_balances()
    report_id = None
    if persist:
        report_id = int(persist_report(summary, created_by=None).id)
    _task_log(
        "reconcile_wallets",
        status="drift" if summary.get("drift_count") else "ok",
        started_at=started,
        wallet_count=int(summary.get("wallet_count") or 0),
        drift_count=int(summary.get("drift_count") or 0),
        report_id=report_id,
    )
    return {
        "ok": not summary.get("drift_count"),
        "drift_count": int(summary.get("drift_count") or 0),
        "report_id": report_id,
    }
