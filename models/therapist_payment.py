from collections import defaultdict
from datetime import datetime
from models.db import db

class TherapistPayment(db.Model):
    """A recorded payout to a therapist for a batch of sessions."""
    __tablename__ = "therapist_payments"

    id = db.Column(db.Integer, primary_key=True)
    therapist_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    recorded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="AED")

    # "<appointment_id>-<index>" ids, index 0 = main session
    session_ids = db.Column(db.JSON, nullable=False, default=list)
    appointment_ids = db.Column(db.JSON, nullable=False, default=list)

    method = db.Column(db.String(20), nullable=False, default="manual")
    transaction_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="PAID")  # PAID, FAILED

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @classmethod
    def paid_ids_by_appointment(cls, therapist_id) -> dict:
        """Paid session ids keyed by appointment id, from one query per therapist."""
        paid = defaultdict(set)
        rows = cls.query.filter_by(therapist_id=therapist_id, status="PAID").all()
        for row in rows:
            for session_id in row.session_ids or []:
                appointment_id, _, _ = str(session_id).rpartition("-")
                paid[appointment_id].add(session_id)
        return paid

    @classmethod
    def paid_session_ids(cls, appointment_id, therapist_id) -> set:
        return cls.paid_ids_by_appointment(therapist_id).get(str(appointment_id), set())
