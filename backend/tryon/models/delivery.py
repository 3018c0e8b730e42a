from datetime import datetime

from tryon.extensions import db


class Delivery(db.Model):
    __tablename__ = "deliveries"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)

    status = db.Column(db.String(32), nullable=False, default="PENDING_PICKUP", index=True)
    assigned_to_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    pickup_address_id = db.Column(db.Integer, nullable=True)
    delivery_address_id = db.Column(db.Integer, nullable=True)

    # Handoff codes are stored as keyed digests, never plaintext.
    pickup_otp_hash = db.Column(db.String(128), nullable=True)
    pickup_otp_attempts = db.Column(db.Integer, nullable=False, default=0)
    pickup_otp_expires_at = db.Column(db.DateTime, nullable=True)
    delivery_otp_hash = db.Column(db.String(128), nullable=True)
    delivery_otp_attempts = db.Column(db.Integer, nullable=False, default=0)
    delivery_otp_expires_at = db.Column(db.DateTime, nullable=True)

    picked_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = db.relationship("Order", back_populates="delivery")
    photos = db.relationship(
        "DeliveryPhoto",
        back_populates="delivery",
        order_by="DeliveryPhoto.id",
        cascade="all, delete-orphan",
    )

    def photo_urls(self, kind: str) -> list[str]:
        return [p.url for p in (self.photos or []) if (p.kind or "") == kind]

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "status": self.status or "PENDING_PICKUP",
            "assigned_to_id": int(self.assigned_to_id) if self.assigned_to_id is not None else None,
            "pickup_address_id": self.pickup_address_id,
            "delivery_address_id": self.delivery_address_id,
            "pickup_otp_pending": bool(self.pickup_otp_hash),
            "delivery_otp_pending": bool(self.delivery_otp_hash),
            "picked_at": self.picked_at.isoformat() if self.picked_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "pickup_photos": self.photo_urls("pickup"),
            "delivery_photos": self.photo_urls("delivery"),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class DeliveryPhoto(db.Model):
    __tablename__ = "delivery_photos"

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False, index=True)
    kind = db.Column(db.String(16), nullable=False)
    url = db.Column(db.String(1024), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    delivery = db.relationship("Delivery", back_populates="photos")

    def to_dict(self):
        return {
            "id": int(self.id),
            "delivery_id": int(self.delivery_id),
            "kind": self.kind or "",
            "url": self.url or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
