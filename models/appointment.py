from datetime import datetime
from decimal import Decimal
from models.db import db

from billing.sessions import (
    PAYMENT_NOT_PAID,
    PAYMENT_PAID,
    STATUS_COMPLETED,
    count_completed,
    normalize_sessions,
)

class Appointment(db.Model):
    __tablename__ = "appointments"

    id = db.Column(db.Integer, primary_key=True)

    patient_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    therapist_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    plan = db.Column(db.String(80), nullable=True)

    # first session; later sessions live in `recurring`
    main_date = db.Column(db.DateTime, nullable=False, index=True)
    main_session_status = db.Column(db.String(20), nullable=False, default="in_progress")
    main_payout_percent = db.Column(db.Numeric(4, 2), nullable=True)

    # list of {date, status, payment, price?, payout_percent?}; old rows may hold bare date strings
    recurring = db.Column(db.JSON, nullable=False, default=list)

    total_sessions = db.Column(db.Integer, nullable=False, default=1)
    completed_sessions = db.Column(db.Integer, nullable=False, default=0)

    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)  # all sessions, major units
    currency = db.Column(db.String(10), nullable=False, default="AED")

    status = db.Column(db.String(40), nullable=False, default="unpaid", index=True)
    # unpaid, pending, confirmed, completed, cancelled, no_show

    payment_status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    # pending, completed, refunded, failed
    payout_status = db.Column(db.String(20), nullable=False, default="unpaid")
    # unpaid, pending_payout, paid (main session only)

    is_stripe_verified = db.Column(db.Boolean, default=False, nullable=False)
    is_balance = db.Column(db.Boolean, default=False, nullable=False)
    checkout_session_id = db.Column(db.String(255), nullable=True, index=True)
    payment_intent_id = db.Column(db.String(255), nullable=True, index=True)

    # payment breakdown in session units
    payment_method = db.Column(db.String(20), nullable=True)  # balance, stripe, mixed
    sessions_paid_with_balance = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    sessions_paid_with_stripe = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    refunded_units_from_balance = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    refunded_units_from_stripe = db.Column(db.Numeric(8, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    def sessions(self):
        return normalize_sessions(
            self.id,
            self.main_date,
            self.recurring,
            self.price,
            self.total_sessions,
            main_status=self.main_session_status,
            main_payment=PAYMENT_PAID if self.payout_status == "paid" else PAYMENT_NOT_PAID,
            main_payout_percent=self.main_payout_percent,
        )

    def count_completed_sessions(self) -> int:
        # legacy bare-string sessions count as delivered even before the column is synced
        return min(count_completed(self.sessions()), self.total_sessions or 1)

    def sync_completed_sessions(self):
        """Recount completed sessions and settle the appointment status."""
        self.completed_sessions = self.count_completed_sessions()
        if self.status == "cancelled":
            return
        if self.completed_sessions >= self.total_sessions:
            self.status = STATUS_COMPLETED
        elif self.status == STATUS_COMPLETED:
            self.status = "confirmed"

    def payment_view(self) -> dict:
        """Plain snapshot of the payment flags, safe to hand to worker threads."""
        return {
            "id": self.id,
            "is_balance": self.is_balance,
            "is_stripe_verified": self.is_stripe_verified,
            "checkout_session_id": self.checkout_session_id,
            "payment_intent_id": self.payment_intent_id,
            "payment_status": self.payment_status,
        }

    @property
    def unit_price(self) -> Decimal:
        return Decimal(self.price or 0) / (self.total_sessions or 1)
