import logging

import stripe
from flask import Blueprint, request, jsonify, current_app

from models import db
from models.appointment import Appointment
from routes.appointments import upgrade_legacy_sessions
from utils.audit import log_event

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")

FAILURE_EVENTS = ("checkout.session.expired", "payment_intent.payment_failed")


def _find_appointment(obj):
    meta = obj.get("metadata") or {}
    appointment_id = meta.get("appointment_id")
    if appointment_id and str(appointment_id).isdigit():
        appt = db.session.get(Appointment, int(appointment_id))
        if appt:
            return appt

    object_id = obj.get("id")
    if obj.get("object") == "payment_intent":
        return Appointment.query.filter_by(payment_intent_id=object_id).first()
    return Appointment.query.filter_by(checkout_session_id=object_id).first()


def _mark_paid(appt: Appointment, session: dict):
    appt.is_stripe_verified = True
    appt.payment_status = "completed"
    appt.checkout_session_id = session.get("id") or appt.checkout_session_id
    payment_intent = session.get("payment_intent")
    if isinstance(payment_intent, str):
        appt.payment_intent_id = payment_intent
    if appt.status == "unpaid":
        appt.status = "pending"

    if not appt.payment_method:
        appt.payment_method = "stripe"
        appt.sessions_paid_with_stripe = appt.total_sessions


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not endpoint_secret:
        return jsonify(error="Webhook secret not configured"), 500

    try:
        event = stripe.Webhook.construct_event(
            request.data, request.headers.get("Stripe-Signature"), endpoint_secret
        )
    except (ValueError, stripe.SignatureVerificationError):
        return jsonify(error="Invalid webhook signature"), 400

    event_type = event["type"]
    obj = event["data"]["object"]

    if event_type == "checkout.session.completed":
        appt = _find_appointment(obj)
        if not appt:
            logger.warning("checkout session %s matches no appointment", obj.get("id"))
            return jsonify(received=True), 200
        if obj.get("payment_status") != "paid":
            # async payment methods settle later
            return jsonify(received=True), 200

        upgrade_legacy_sessions(appt)
        _mark_paid(appt, obj)
        db.session.commit()
        log_event(
            "PAYMENT_PAID",
            entity="appointment",
            entity_id=appt.id,
            metadata={"stripe_session_id": obj.get("id"), "event_id": event.get("id")},
        )

    elif event_type in FAILURE_EVENTS:
        appt = _find_appointment(obj)
        if appt and not appt.is_stripe_verified and not appt.is_balance:
            appt.payment_status = "failed"
            db.session.commit()
            log_event(
                "PAYMENT_FAILED",
                entity="appointment",
                entity_id=appt.id,
                metadata={"event_type": event_type, "event_id": event.get("id")},
            )

    return jsonify(received=True), 200
