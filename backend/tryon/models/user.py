from datetime import datetime

from tryon.extensions import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)

    # buyer | seller | delivery | admin
    role = db.Column(db.String(32), nullable=False, default="buyer")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @property
    def normalized_role(self) -> str:
        return (self.role or "buyer").strip().lower()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.normalized_role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
