from datetime import datetime

from tryon.extensions import db


class OrderTransition(db.Model):
    __tablename__ = "order_transitions"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    # "order" or "delivery"
    subject = db.Column(db.String(16), nullable=False, default="order")
    from_status = db.Column(db.String(32), nullable=False, default="")
    to_status = db.Column(db.String(32), nullable=False)
    actor_user_id = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(240), nullable=True)
    request_id = db.Column(db.String(80), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "subject": self.subject or "order",
            "from_status": self.from_status or "",
            "to_status": self.to_status or "",
            "actor_user_id": int(self.actor_user_id) if self.actor_user_id is not None else None,
            "reason": self.reason or "",
            "request_id": self.request_id or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
