from __future__ import annotations

from flask import Blueprint, jsonify, request

from tryon.services.reconciliation_service import latest_report as _latest_report
from tryon.services.reconciliation_service import persist_report, recompute_wallet_balances
from tryon.utils.auth import require_admin, require_user

recon_bp = Blueprint("recon_bp", __name__, url_prefix="/api/admin/reconcile")


@recon_bp.post("")
def run_recon():
    u = require_user()
    require_admin(u)
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    summary = recompute_wallet_balances()
    report_id = None
    if bool(data.get("persist", True)):
        report = persist_report(summary, created_by=int(u.id))
        report_id = int(report.id)
    return jsonify({"ok": True, "report_id": report_id, "summary": summary}), 200


@recon_bp.get("/latest")
def latest_report():
    u = require_user()
    require_admin(u)
    row = _latest_report()
    if not row:
        return jsonify({"ok": True, "report": None}), 200
    return jsonify({"ok": True, "report": row.to_dict()}), 200
