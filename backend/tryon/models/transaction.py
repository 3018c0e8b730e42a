from datetime import datetime

from tryon.extensions import db


class Transaction(db.Model):
    """Ledger entry. Rows are inserted once and never updated."""

    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("provider", "provider_id", name="uq_transaction_provider_ref"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    # Signed: credits positive, debits negative.
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)

    provider = db.Column(db.String(32), nullable=False, default="WALLET")
    provider_id = db.Column(db.String(160), nullable=True)
    status = db.Column(db.String(24), nullable=False, default="COMPLETED")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    order = db.relationship("Order", back_populates="transactions")

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "order_id": int(self.order_id) if self.order_id is not None else None,
            "amount": float(self.amount or 0),
            "type": self.type or "",
            "provider": self.provider or "",
            "provider_id": self.provider_id or "",
            "status": self.status or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
