"""Refund allocation over an appointment's payment breakdown.

Pure arithmetic: callers persist the ledger deltas and issue the Stripe
refund for ``money_refund``.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR

from billing.money import floor_cents, to_decimal

logger = logging.getLogger(__name__)

POLICY_FULL = "full"
POLICY_HALF = "half"
POLICY_NONE = "none"
POLICIES = (POLICY_FULL, POLICY_HALF, POLICY_NONE)

DEFAULT_STEP = Decimal("0.1")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class AppointmentPayment:
    sessions_paid_with_balance: Decimal
    sessions_paid_with_stripe: Decimal
    unit_price: Decimal
    currency: str = "AED"
    refunded_units_from_balance: Decimal = _ZERO
    refunded_units_from_stripe: Decimal = _ZERO
    method: str = "stripe"


@dataclass(frozen=True)
class AppointmentRefund:
    total_units: Decimal
    completed_units: Decimal
    payment: AppointmentPayment


@dataclass(frozen=True)
class RefundResult:
    from_balance: Decimal
    from_stripe: Decimal
    money_refund: Decimal
    session_units_refunded: Decimal

    def to_dict(self) -> dict:
        return {
            "from_balance": float(self.from_balance),
            "from_stripe": float(self.from_stripe),
            "money_refund": float(self.money_refund),
            "session_units_refunded": float(self.session_units_refunded),
        }


def _available(paid: Decimal, refunded: Decimal, source: str) -> Decimal:
    if refunded > paid:
        logger.warning(
            "refund ledger inconsistent for %s: %s units refunded of %s paid",
            source, refunded, paid,
        )
    return max(paid - refunded, _ZERO)


def quantize_units(units: Decimal, step: Decimal) -> Decimal:
    return (units / step).to_integral_value(rounding=ROUND_FLOOR) * step


def compute_refund(appointment: AppointmentRefund, policy: str, step=DEFAULT_STEP) -> RefundResult:
    step = to_decimal(step)
    if step <= 0:
        raise ValueError(f"refund step must be positive, got {step}")
    if policy not in POLICIES:
        raise ValueError(f"unknown refund policy {policy!r}")

    remaining = max(to_decimal(appointment.total_units) - to_decimal(appointment.completed_units), _ZERO)

    if policy == POLICY_FULL:
        desired = remaining
    elif policy == POLICY_HALF:
        desired = remaining * Decimal("0.5")
    else:
        desired = _ZERO
    desired = quantize_units(desired, step)

    payment = appointment.payment
    available_balance = _available(
        to_decimal(payment.sessions_paid_with_balance),
        to_decimal(payment.refunded_units_from_balance),
        "balance",
    )
    available_stripe = _available(
        to_decimal(payment.sessions_paid_with_stripe),
        to_decimal(payment.refunded_units_from_stripe),
        "stripe",
    )

    # balance credits are internal, exhaust them before refunding money
    from_balance = min(desired, available_balance)
    from_stripe = min(desired - from_balance, available_stripe)

    money = floor_cents(from_stripe * to_decimal(payment.unit_price))

    return RefundResult(
        from_balance=from_balance,
        from_stripe=from_stripe,
        money_refund=money,
        session_units_refunded=from_balance + from_stripe,
    )


def generate_dedupe_key(appointment_id, policy: str, slot_id=None) -> str:
    slot = "series" if slot_id is None or slot_id == "" else slot_id
    return f"{appointment_id}:{policy}:{slot}"


def refund_view_from_appointment(appointment, completed_units=None) -> AppointmentRefund:
    """Build the allocator input from a persisted appointment row.

    ``completed_units`` overrides the stored ``completed_sessions`` column,
    which lags behind rows whose legacy sessions were never recounted.
    """
    total = appointment.total_sessions or 1
    unit_price = to_decimal(appointment.price) / total
    if completed_units is None:
        completed_units = appointment.completed_sessions or 0
    return AppointmentRefund(
        total_units=to_decimal(total),
        completed_units=to_decimal(completed_units),
        payment=AppointmentPayment(
            sessions_paid_with_balance=to_decimal(appointment.sessions_paid_with_balance),
            sessions_paid_with_stripe=to_decimal(appointment.sessions_paid_with_stripe),
            unit_price=unit_price,
            currency=appointment.currency,
            refunded_units_from_balance=to_decimal(appointment.refunded_units_from_balance),
            refunded_units_from_stripe=to_decimal(appointment.refunded_units_from_stripe),
            method=appointment.payment_method or "stripe",
        ),
    )
