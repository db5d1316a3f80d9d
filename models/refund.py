from datetime import datetime
from models.db import db

class Refund(db.Model):
    __tablename__ = "refunds"

    id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.id"), nullable=False, index=True)
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # "<appointment>:<policy>:series", one row per logical refund
    dedupe_key = db.Column(db.String(160), nullable=False, unique=True, index=True)
    policy = db.Column(db.String(10), nullable=False)  # full, half, none

    from_balance = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    from_stripe = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    money_refund = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    currency = db.Column(db.String(10), nullable=False, default="AED")

    stripe_refund_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="PROCESSED")  # PROCESSED, FAILED

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        from_balance = float(self.from_balance or 0)
        from_stripe = float(self.from_stripe or 0)
        return {
            "id": self.id,
            "appointment_id": self.appointment_id,
            "dedupe_key": self.dedupe_key,
            "policy": self.policy,
            "from_balance": from_balance,
            "from_stripe": from_stripe,
            "money_refund": float(self.money_refund or 0),
            "session_units_refunded": from_balance + from_stripe,
            "currency": self.currency,
            "stripe_refund_id": self.stripe_refund_id,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
