"""Thin Stripe lookups used by payment verification and refunds.

Only translates Stripe objects into a plain payment status. Errors from
Stripe propagate; callers decide how to degrade.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import stripe

from billing.money import to_minor_units

logger = logging.getLogger(__name__)

PAID = "paid"

# subscription states that still mean the first invoice was collected
_LAPSED_SUBSCRIPTION_STATES = {"canceled", "incomplete_expired", "past_due", "unpaid"}


class GatewayError(Exception):
    pass


@dataclass
class GatewayStatus:
    payment_status: str = "none"
    subscription_status: str = "none"
    payment_intent_status: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PAID


def configure_stripe(app):
    stripe.api_key = app.config.get("STRIPE_SECRET_KEY")


def _require_key():
    if not stripe.api_key:
        raise GatewayError("Stripe secret key missing (STRIPE_SECRET_KEY)")


def _field(obj, name):
    if obj is None:
        return None
    return getattr(obj, name, None)


def _expanded(value, retrieve):
    """Expanded Stripe objects come back as objects, unexpanded as ids."""
    if value is None:
        return None
    if isinstance(value, str):
        return retrieve(value)
    return value


def _apply_payment_intent(result: GatewayStatus, pi, mirror_other: bool):
    status = _field(pi, "status")
    result.payment_intent_status = status
    if status == "succeeded":
        result.payment_status = PAID
    elif status == "requires_payment_method":
        result.payment_status = "failed"
        result.last_error = _field(_field(pi, "last_payment_error"), "message")
    elif status == "canceled":
        result.payment_status = "unpaid"
    elif mirror_other and status:
        result.payment_status = status

    charge = _field(pi, "latest_charge")
    if charge is not None and not isinstance(charge, str):
        if _field(charge, "paid") and _field(charge, "status") == "succeeded":
            result.payment_status = PAID


def _check_checkout_session(result: GatewayStatus, session_id: str):
    session = stripe.checkout.Session.retrieve(
        session_id, expand=["payment_intent", "payment_intent.latest_charge", "subscription"]
    )
    session_paid = _field(session, "payment_status") == PAID
    result.payment_status = _field(session, "payment_status") or "none"

    pi = _expanded(_field(session, "payment_intent"), stripe.PaymentIntent.retrieve)
    if pi is not None:
        _apply_payment_intent(result, pi, mirror_other=False)

    sub = _expanded(_field(session, "subscription"), stripe.Subscription.retrieve)
    if sub is not None:
        result.subscription_status = _field(sub, "status") or "none"
        # a paid first invoice keeps the appointment paid after the plan lapses
        if session_paid and (result.subscription_status == "active"
                             or result.subscription_status in _LAPSED_SUBSCRIPTION_STATES):
            result.payment_status = PAID


def _check_payment_reference(result: GatewayStatus, ref: str):
    if ref.startswith("pi_"):
        pi = stripe.PaymentIntent.retrieve(ref, expand=["latest_charge"])
        _apply_payment_intent(result, pi, mirror_other=True)

    elif ref.startswith("ch_"):
        charge = stripe.Charge.retrieve(ref)
        if _field(charge, "status") == "succeeded" and _field(charge, "paid"):
            result.payment_status = PAID
        else:
            result.payment_status = _field(charge, "status") or "none"
        pi_id = _field(charge, "payment_intent")
        if isinstance(pi_id, str):
            result.payment_intent_status = _field(stripe.PaymentIntent.retrieve(pi_id), "status")

    elif ref.startswith("in_"):
        invoice = stripe.Invoice.retrieve(ref)
        status = _field(invoice, "status")
        result.payment_status = PAID if status == PAID else (status or "none")
        sub_id = _field(invoice, "subscription")
        if isinstance(sub_id, str):
            result.subscription_status = _field(stripe.Subscription.retrieve(sub_id), "status") or "none"

    elif ref.startswith("sub_"):
        sub = stripe.Subscription.retrieve(ref)
        result.subscription_status = _field(sub, "status") or "none"
        if result.subscription_status in ("active", "trialing"):
            result.payment_status = PAID
        else:
            result.payment_status = "unpaid"

    else:
        raise GatewayError(f"Unsupported Stripe ID format: {ref}")


def lookup_payment_status(checkout_session_id=None, payment_intent_id=None) -> GatewayStatus:
    """Ask Stripe whether a checkout session / payment reference is paid.

    The checkout session wins when it proves payment; otherwise the
    payment reference (pi_/ch_/in_/sub_) is consulted. A failing checkout
    lookup falls back to the payment reference when there is one.
    """
    _require_key()
    result = GatewayStatus()

    if checkout_session_id:
        if not checkout_session_id.startswith("cs_"):
            if not payment_intent_id:
                raise GatewayError(f"Unsupported Stripe ID format: {checkout_session_id}")
        else:
            try:
                _check_checkout_session(result, checkout_session_id)
            except stripe.StripeError as exc:
                if not payment_intent_id:
                    raise
                logger.warning(
                    "checkout session %s lookup failed, trying %s: %s",
                    checkout_session_id, payment_intent_id, exc,
                )
            else:
                if result.is_paid or not payment_intent_id:
                    return result

    if payment_intent_id:
        _check_payment_reference(result, payment_intent_id)

    return result


def create_refund(payment_intent_id: str, amount: Decimal, idempotency_key: str):
    _require_key()
    refund = stripe.Refund.create(
        payment_intent=payment_intent_id,
        amount=to_minor_units(amount),
        idempotency_key=idempotency_key,
    )
    logger.info("stripe refund %s created for %s (%s)", refund["id"], payment_intent_id, amount)
    return refund
