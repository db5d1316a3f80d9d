from flask import Blueprint, request, jsonify, current_app, g

from billing.payouts import payout_percent_for_level, session_share
from billing.sessions import (
    SESSION_STATUSES,
    STATUS_COMPLETED,
    PAYMENT_PAID,
    has_legacy_entries,
    set_session_status,
    upgrade_recurring,
)
from billing.verification import SOURCE_STRIPE, verify_appointment_payment
from models import db
from models.appointment import Appointment
from models.therapist_payment import TherapistPayment
from models.user import User
from security.rbac import can_manage_sessions, can_view_appointment, login_required
from utils.audit import log_event

appointments_bp = Blueprint("appointments", __name__, url_prefix="/appointments")


def tier_percent(therapist_id):
    therapist = db.session.get(User, therapist_id) if therapist_id else None
    return payout_percent_for_level(
        therapist.level if therapist else 1,
        default=current_app.config.get("PAYOUT_PERCENT_DEFAULT", "0.50"),
        senior=current_app.config.get("PAYOUT_PERCENT_SENIOR", "0.57"),
    )


def upgrade_legacy_sessions(appt: Appointment, user_id=None) -> bool:
    """Persist the structured form once if the row still has legacy entries."""
    if not has_legacy_entries(appt.recurring):
        return False
    appt.recurring = upgrade_recurring(appt.recurring)
    appt.sync_completed_sessions()
    db.session.commit()
    log_event("SESSIONS_UPGRADED", user_id=user_id, entity="appointment", entity_id=appt.id)
    return True


@appointments_bp.get("/<int:appointment_id>/sessions")
@login_required
def list_sessions(appointment_id: int):
    appt = db.session.get(Appointment, appointment_id)
    if not can_view_appointment(g.user, appt):
        return jsonify(error="Appointment not found"), 404

    upgrade_legacy_sessions(appt, user_id=g.user.id)

    percent = tier_percent(appt.therapist_id)
    paid_ids = TherapistPayment.paid_session_ids(appt.id, appt.therapist_id)

    sessions = []
    for s in appt.sessions():
        row = s.to_dict()
        row["is_paid"] = s.payment == PAYMENT_PAID or s.id in paid_ids
        row["adjusted_price"] = float(session_share(s, percent))
        sessions.append(row)

    return jsonify(
        appointment_id=appt.id,
        total_sessions=appt.total_sessions,
        completed_sessions=appt.completed_sessions,
        total_price=float(appt.price),
        currency=appt.currency,
        payment_percentage=float(percent),
        sessions=sessions,
    ), 200


@appointments_bp.post("/<int:appointment_id>/sessions/<int:index>/status")
@login_required
def update_session_status(appointment_id: int, index: int):
    data = request.get_json(silent=True) or {}
    status = (data.get("status") or "").strip().lower()
    if status not in SESSION_STATUSES:
        return jsonify(error="Invalid session status", allowed=sorted(SESSION_STATUSES)), 400

    appt = db.session.get(Appointment, appointment_id)
    if not appt or not can_view_appointment(g.user, appt):
        return jsonify(error="Appointment not found"), 404
    if not can_manage_sessions(g.user, appt):
        return jsonify(error="Forbidden"), 403
    if index >= appt.total_sessions:
        return jsonify(error=f"Session with index {index} not found"), 404

    if index == 0:
        appt.main_session_status = status
        if status == STATUS_COMPLETED and appt.payout_status == "unpaid":
            appt.payout_status = "pending_payout"
    else:
        try:
            appt.recurring = set_session_status(appt.recurring, index, status)
        except IndexError:
            return jsonify(error=f"Session with index {index} not found"), 404

    appt.sync_completed_sessions()
    db.session.commit()

    log_event(
        "SESSION_STATUS_UPDATE",
        user_id=g.user.id,
        entity="appointment",
        entity_id=appt.id,
        metadata={"index": index, "status": status},
    )
    return jsonify(
        message="Session status updated",
        session=appt.sessions()[index].to_dict(),
        completed_sessions=appt.completed_sessions,
        appointment_status=appt.status,
    ), 200


@appointments_bp.get("/<int:appointment_id>/payment-status")
@login_required
def payment_status(appointment_id: int):
    appt = db.session.get(Appointment, appointment_id)
    if not can_view_appointment(g.user, appt):
        return jsonify(error="Appointment not found"), 404

    result = verify_appointment_payment(appt.payment_view())

    # a live lookup proved payment the webhook never recorded
    if result.is_paid and result.verification_source == SOURCE_STRIPE and not appt.is_stripe_verified:
        appt.is_stripe_verified = True
        appt.payment_status = "completed"
        db.session.commit()
        log_event("PAYMENT_VERIFIED_LIVE", user_id=g.user.id, entity="appointment", entity_id=appt.id)

    return jsonify(appointment_id=appt.id, **result.to_dict()), 200
