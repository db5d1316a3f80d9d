from datetime import datetime
from decimal import Decimal
from models.db import db

class Balance(db.Model):
    """Prepaid session units a patient can spend instead of paying by card."""
    __tablename__ = "balances"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    units = db.Column(db.Numeric(8, 2), nullable=False, default=0)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    entries = db.relationship(
        "BalanceEntry", backref="balance", order_by="BalanceEntry.created_at"
    )

    def credit(self, units, reason=None, appointment_id=None, admin_id=None):
        units = Decimal(units)
        self.units = Decimal(self.units or 0) + units
        entry = BalanceEntry(
            action="added", units=units, reason=reason, appointment_id=appointment_id, admin_id=admin_id
        )
        self.entries.append(entry)
        return entry

class BalanceEntry(db.Model):
    __tablename__ = "balance_entries"

    id = db.Column(db.Integer, primary_key=True)
    balance_id = db.Column(db.Integer, db.ForeignKey("balances.id"), nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False)  # added, removed, used
    units = db.Column(db.Numeric(8, 2), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.id"), nullable=True, index=True)
    admin_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
