from datetime import datetime
import json

from tryon.extensions import db


class ReconciliationReport(db.Model):
    __tablename__ = "reconciliation_reports"

    id = db.Column(db.Integer, primary_key=True)
    wallet_count = db.Column(db.Integer, nullable=False, default=0)
    drift_count = db.Column(db.Integer, nullable=False, default=0)
    summary_json = db.Column(db.Text, nullable=True)
    # Null when produced by the scheduled job or the ops script.
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def summary(self) -> dict:
        if not self.summary_json:
            return {}
        try:
            parsed = json.loads(self.summary_json)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_dict(self):
        return {
            "id": int(self.id),
            "wallet_count": int(self.wallet_count or 0),
            "drift_count": int(self.drift_count or 0),
            "drift_items": self.summary().get("drift_items") or [],
            "created_by": int(self.created_by) if self.created_by is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
