from decimal import Decimal

from flask import Blueprint, request, jsonify, current_app, g

from billing.money import round_cents, to_decimal
from billing.payouts import NothingToPay, calculate_payout, mark_sessions_paid, set_payout_percent
from billing.verification import verify_appointment_payment, verify_many
from models import db
from models.appointment import Appointment
from models.therapist_payment import TherapistPayment
from models.user import User
from routes.appointments import tier_percent, upgrade_legacy_sessions
from security.rbac import ADMIN, THERAPIST, require_roles
from utils.audit import log_event

payments_bp = Blueprint("payments", __name__, url_prefix="/admin")

PAYABLE_PAYMENT_STATUSES = ("completed", "refunded")


@payments_bp.get("/payments/verified")
@require_roles(ADMIN)
def verified_payments():
    q = Appointment.query
    therapist_id = request.args.get("therapist_id", type=int)
    patient_id = request.args.get("patient_id", type=int)
    status = request.args.get("status")
    if therapist_id:
        q = q.filter_by(therapist_id=therapist_id)
    if patient_id:
        q = q.filter_by(patient_id=patient_id)
    if status:
        q = q.filter_by(status=status)

    rows = q.order_by(Appointment.created_at.desc()).limit(200).all()
    results = verify_many(
        [a.payment_view() for a in rows],
        max_workers=current_app.config.get("VERIFY_MAX_WORKERS", 8),
    )

    verified, unverified = [], []
    for appt, result in zip(rows, results):
        item = {
            "appointment_id": appt.id,
            "patient_id": appt.patient_id,
            "therapist_id": appt.therapist_id,
            "total_sessions": appt.total_sessions,
            "price": float(appt.price),
            **result.to_dict(),
        }
        (verified if result.is_paid else unverified).append(item)

    return jsonify(
        count=sum(item["total_sessions"] for item in verified),
        verified=verified,
        unverified=unverified,
        count_all=len(rows),
    ), 200


@payments_bp.put("/payments/payout-percent")
@require_roles(ADMIN)
def update_payout_percent():
    data = request.get_json(silent=True) or {}
    appointment_id = data.get("appointment_id")
    index = data.get("index")
    percent = data.get("percent")

    if not isinstance(index, int) or index < 0:
        return jsonify(error="index must be a non-negative integer"), 400
    if percent is not None:
        percent = to_decimal(percent, default=None)
        if percent is None or not (Decimal("0") <= percent <= Decimal("1")):
            return jsonify(error="percent must be between 0 and 1"), 400

    appt = db.session.get(Appointment, appointment_id) if appointment_id else None
    if not appt:
        return jsonify(error="Appointment not found"), 404
    if index >= appt.total_sessions:
        return jsonify(error=f"Session with index {index} not found"), 404

    if index == 0:
        appt.main_payout_percent = percent
    else:
        try:
            appt.recurring = set_payout_percent(appt.recurring, index, percent)
        except IndexError:
            return jsonify(error=f"Session with index {index} not found"), 404
    db.session.commit()

    log_event(
        "PAYOUT_PERCENT_UPDATE",
        user_id=g.user.id,
        entity="appointment",
        entity_id=appt.id,
        metadata={"index": index, "percent": percent},
    )
    return jsonify(message="Payout percent updated", session=appt.sessions()[index].to_dict()), 200


def _payable_appointments(therapist_id: int):
    """(appointment, Payout) pairs with something left to pay."""
    percent = tier_percent(therapist_id)
    # a cancellation refunds only undelivered units, completed sessions stay payable
    rows = (
        Appointment.query
        .filter_by(therapist_id=therapist_id)
        .filter(Appointment.payment_status.in_(PAYABLE_PAYMENT_STATUSES))
        .order_by(Appointment.main_date.asc())
        .all()
    )
    paid_ids = TherapistPayment.paid_ids_by_appointment(therapist_id)
    payable = []
    for appt in rows:
        try:
            payout = calculate_payout(appt.sessions(), percent, paid_ids.get(str(appt.id), ()))
        except NothingToPay:
            continue
        payable.append((appt, payout))
    return payable


def _load_therapist(therapist_id: int):
    therapist = db.session.get(User, therapist_id)
    if not therapist or not therapist.has_role(THERAPIST):
        return None
    return therapist


@payments_bp.get("/payments/payout/<int:therapist_id>")
@require_roles(ADMIN)
def payout_preview(therapist_id: int):
    therapist = _load_therapist(therapist_id)
    if not therapist:
        return jsonify(error="Therapist not found"), 404

    payable = _payable_appointments(therapist_id)
    total = round_cents(sum((p.amount for _, p in payable), Decimal("0")))
    return jsonify(
        therapist_id=therapist_id,
        level=therapist.level,
        payment_percentage=float(tier_percent(therapist_id)),
        amount=float(total),
        appointments=[{"appointment_id": a.id, **p.to_dict()} for a, p in payable],
    ), 200


@payments_bp.post("/payments/payout/<int:therapist_id>")
@require_roles(ADMIN)
def record_payout(therapist_id: int):
    data = request.get_json(silent=True) or {}
    therapist = _load_therapist(therapist_id)
    if not therapist:
        return jsonify(error="Therapist not found"), 404

    payable = []
    skipped = []
    for appt, payout in _payable_appointments(therapist_id):
        # never pay out on an appointment whose payment cannot be confirmed
        if verify_appointment_payment(appt.payment_view()).is_paid:
            payable.append((appt, payout))
        else:
            skipped.append(appt.id)

    if not payable:
        return jsonify(error="No payable sessions found", skipped_unverified=skipped), 400

    session_ids = []
    for appt, payout in payable:
        appt.recurring, main_paid = mark_sessions_paid(appt.id, appt.recurring, payout.session_ids)
        if main_paid:
            appt.payout_status = "paid"
        session_ids.extend(payout.session_ids)

    total = round_cents(sum((p.amount for _, p in payable), Decimal("0")))
    payment = TherapistPayment(
        therapist_id=therapist_id,
        recorded_by=g.user.id,
        amount=total,
        currency=current_app.config.get("DEFAULT_CURRENCY", "AED"),
        session_ids=session_ids,
        appointment_ids=[a.id for a, _ in payable],
        method=(data.get("method") or "manual").strip().lower(),
        transaction_id=data.get("transaction_id"),
    )
    db.session.add(payment)
    db.session.commit()

    log_event(
        "PAYOUT_RECORDED",
        user_id=g.user.id,
        entity="therapist_payment",
        entity_id=payment.id,
        metadata={"therapist_id": therapist_id, "amount": total, "sessions": len(session_ids)},
    )
    return jsonify(
        id=payment.id,
        amount=float(total),
        currency=payment.currency,
        session_ids=session_ids,
        skipped_unverified=skipped,
    ), 201


@payments_bp.post("/appointments/<int:appointment_id>/link-payment")
@require_roles(ADMIN)
def link_payment(appointment_id: int):
    data = request.get_json(silent=True) or {}
    checkout_session_id = (data.get("checkout_session_id") or "").strip() or None
    payment_intent_id = (data.get("payment_intent_id") or "").strip() or None

    if not checkout_session_id and not payment_intent_id:
        return jsonify(error="checkout_session_id or payment_intent_id required"), 400
    if checkout_session_id and not checkout_session_id.startswith("cs_"):
        return jsonify(error="checkout_session_id must start with cs_"), 400
    if payment_intent_id and not payment_intent_id.startswith(("pi_", "ch_", "in_", "sub_")):
        return jsonify(error="Unsupported payment reference"), 400

    appt = db.session.get(Appointment, appointment_id)
    if not appt:
        return jsonify(error="Appointment not found"), 404

    upgrade_legacy_sessions(appt, user_id=g.user.id)

    if checkout_session_id:
        appt.checkout_session_id = checkout_session_id
    if payment_intent_id:
        appt.payment_intent_id = payment_intent_id
    appt.is_stripe_verified = False

    result = verify_appointment_payment(appt.payment_view())
    if result.is_paid:
        appt.is_stripe_verified = True
        appt.payment_status = "completed"
        if not appt.payment_method:
            appt.payment_method = "stripe"
            appt.sessions_paid_with_stripe = appt.total_sessions
    db.session.commit()

    log_event(
        "PAYMENT_LINKED",
        user_id=g.user.id,
        entity="appointment",
        entity_id=appt.id,
        metadata={"checkout_session_id": checkout_session_id, "payment_intent_id": payment_intent_id},
    )
    return jsonify(appointment_id=appt.id, **result.to_dict()), 200
