from datetime import datetime

from tryon.extensions import db


class Rating(db.Model):
    __tablename__ = "ratings"
    __table_args__ = (
        db.UniqueConstraint("order_id", "giver_id", "receiver_id", name="uq_ratings_order_giver_receiver"),
        db.CheckConstraint("score >= 1 AND score <= 5", name="ck_ratings_score_range"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    giver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    score = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "giver_id": int(self.giver_id),
            "receiver_id": int(self.receiver_id),
            "score": int(self.score),
            "comment": self.comment or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
