from datetime import datetime

from tryon.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    # Listing owner. Listings live outside this service, so this is copied in at creation.
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    listing_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default="CREATED", index=True)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    delivery = db.relationship("Delivery", back_populates="order", uselist=False)
    transactions = db.relationship(
        "Transaction",
        back_populates="order",
        order_by="Transaction.id",
        lazy="select",
    )

    def to_dict(self, *, include_delivery: bool = True) -> dict:
        payload = {
            "id": int(self.id),
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id) if self.seller_id is not None else None,
            "listing_id": int(self.listing_id),
            "status": self.status or "CREATED",
            "total_amount": float(self.total_amount or 0),
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_delivery:
            payload["delivery"] = self.delivery.to_dict() if self.delivery is not None else None
        return payload
