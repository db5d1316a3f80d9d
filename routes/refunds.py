import logging
from datetime import datetime, timezone

import stripe
from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy.exc import IntegrityError

from billing.money import to_decimal
from billing.refunds import (
    POLICIES,
    POLICY_FULL,
    POLICY_HALF,
    compute_refund,
    generate_dedupe_key,
    refund_view_from_appointment,
)
from billing.sessions import STATUS_IN_PROGRESS, parse_session_date
from billing.stripe_gateway import GatewayError, create_refund
from models import db
from models.appointment import Appointment
from models.balance import Balance
from models.refund import Refund
from security.rbac import can_cancel_appointment, is_staff, login_required
from utils.audit import log_event

logger = logging.getLogger(__name__)

refunds_bp = Blueprint("refunds", __name__)


def _credit_balance(user_id, units, appointment_id, policy):
    balance = Balance.query.filter_by(user_id=user_id).first()
    if not balance:
        balance = Balance(user_id=user_id, units=0)
        db.session.add(balance)
    balance.credit(
        units,
        reason=f"Appointment {appointment_id} cancelled ({policy} refund)",
        appointment_id=appointment_id,
    )
    return balance


def _patient_policy(appt: Appointment) -> str:
    """Late cancellations (inside the cutoff before the next session) get half back."""
    cutoff_hours = current_app.config.get("CANCEL_CUTOFF_HOURS", 24)
    now = datetime.utcnow()
    upcoming = []
    for s in appt.sessions():
        if s.status != STATUS_IN_PROGRESS:
            continue
        when = parse_session_date(s.date)
        if when is None:
            continue
        if when.tzinfo is not None:
            when = when.astimezone(timezone.utc).replace(tzinfo=None)
        if when >= now:
            upcoming.append(when)
    if upcoming and (min(upcoming) - now).total_seconds() < cutoff_hours * 3600:
        return POLICY_HALF
    return POLICY_FULL


@refunds_bp.post("/appointments/<int:appointment_id>/cancel")
@login_required
def cancel_appointment(appointment_id: int):
    data = request.get_json(silent=True) or {}
    if data.get("slot_id") is not None:
        return jsonify(error="Cancellation covers the whole series; slot_id is not supported"), 400

    appt = db.session.get(Appointment, appointment_id)
    if not can_cancel_appointment(g.user, appt):
        return jsonify(error="Appointment not found"), 404

    if is_staff(g.user):
        policy = (data.get("policy") or "full").strip().lower()
        if policy not in POLICIES:
            return jsonify(error="policy must be one of full, half, none"), 400
    else:
        policy = _patient_policy(appt)

    dedupe_key = generate_dedupe_key(appt.id, policy)
    existing = Refund.query.filter_by(dedupe_key=dedupe_key).first()
    if existing:
        return jsonify(message="Refund already processed", replayed=True, refund=existing.to_dict()), 200

    if appt.status == "cancelled":
        return jsonify(error="Appointment already cancelled"), 409

    try:
        result = compute_refund(
            refund_view_from_appointment(appt, completed_units=appt.count_completed_sessions()),
            policy,
            step=current_app.config.get("REFUND_STEP", "0.1"),
        )
    except ValueError as exc:
        return jsonify(error=str(exc)), 400

    if result.money_refund > 0 and not appt.payment_intent_id:
        return jsonify(error="No Stripe payment on file to refund"), 409

    refund = Refund(
        appointment_id=appt.id,
        requested_by=g.user.id,
        dedupe_key=dedupe_key,
        policy=policy,
        from_balance=result.from_balance,
        from_stripe=result.from_stripe,
        money_refund=result.money_refund,
        currency=appt.currency,
    )
    db.session.add(refund)
    try:
        # claims the dedupe key before any money moves
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        existing = Refund.query.filter_by(dedupe_key=dedupe_key).first()
        return jsonify(message="Refund already processed", replayed=True, refund=existing.to_dict()), 200

    appt.refunded_units_from_balance = to_decimal(appt.refunded_units_from_balance) + result.from_balance
    appt.refunded_units_from_stripe = to_decimal(appt.refunded_units_from_stripe) + result.from_stripe
    if result.from_balance > 0:
        _credit_balance(appt.patient_id, result.from_balance, appt.id, policy)

    appt.sync_completed_sessions()
    appt.status = "cancelled"
    appt.cancelled_at = datetime.utcnow()
    if result.session_units_refunded > 0:
        appt.payment_status = "refunded"

    if result.money_refund > 0:
        try:
            stripe_refund = create_refund(appt.payment_intent_id, result.money_refund, dedupe_key)
        except (stripe.StripeError, GatewayError) as exc:
            db.session.rollback()
            logger.error("stripe refund failed for appointment %s: %s", appt.id, exc)
            log_event(
                "REFUND_FAILED",
                user_id=g.user.id,
                entity="appointment",
                entity_id=appointment_id,
                metadata={"dedupe_key": dedupe_key, "error": str(exc)},
            )
            return jsonify(error="Payment provider refund failed"), 502
        refund.stripe_refund_id = stripe_refund["id"]

    db.session.commit()

    log_event(
        "REFUND_ISSUED",
        user_id=g.user.id,
        entity="refund",
        entity_id=refund.id,
        metadata={"appointment_id": appt.id, "dedupe_key": dedupe_key, **result.to_dict()},
    )
    return jsonify(message="Appointment cancelled", replayed=False, refund=refund.to_dict()), 201
