"""Single place that decides whether an appointment has been paid."""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass

from billing import stripe_gateway

logger = logging.getLogger(__name__)

SOURCE_BALANCE = "balance"
SOURCE_WEBHOOK = "webhook"
SOURCE_STRIPE = "stripe"
SOURCE_NONE = "none"

DEFAULT_MAX_WORKERS = 8


@dataclass(frozen=True)
class VerificationResult:
    is_paid: bool
    payment_status: str
    is_stripe_verified: bool
    is_balance: bool
    verification_source: str

    def to_dict(self) -> dict:
        return asdict(self)


def _read(appointment, name, default=None):
    if isinstance(appointment, dict):
        return appointment.get(name, default)
    return getattr(appointment, name, default)


def _unpaid(status: str, source: str = SOURCE_NONE) -> VerificationResult:
    return VerificationResult(
        is_paid=False,
        payment_status=status,
        is_stripe_verified=False,
        is_balance=False,
        verification_source=source,
    )


def verify_appointment_payment(appointment, lookup=None) -> VerificationResult:
    """Classify an appointment's payment, first matching rule wins.

    Balance flag, then a stored webhook confirmation, then a live gateway
    lookup. Gateway failures come back as an unpaid ``failed`` result and
    are never raised.
    """
    if lookup is None:
        lookup = stripe_gateway.lookup_payment_status

    is_balance = _read(appointment, "is_balance") is True
    is_stripe_verified = _read(appointment, "is_stripe_verified") is True

    if is_balance:
        if is_stripe_verified:
            logger.warning(
                "appointment %s is flagged both balance and stripe-verified, treating as balance",
                _read(appointment, "id"),
            )
        return VerificationResult(
            is_paid=True,
            payment_status="completed",
            is_stripe_verified=False,
            is_balance=True,
            verification_source=SOURCE_BALANCE,
        )

    if is_stripe_verified:
        return VerificationResult(
            is_paid=True,
            payment_status="completed",
            is_stripe_verified=True,
            is_balance=False,
            verification_source=SOURCE_WEBHOOK,
        )

    checkout_session_id = _read(appointment, "checkout_session_id")
    payment_intent_id = _read(appointment, "payment_intent_id")
    if checkout_session_id or payment_intent_id:
        try:
            gateway = lookup(checkout_session_id, payment_intent_id)
        except Exception:
            logger.exception("payment lookup failed for appointment %s", _read(appointment, "id"))
            return _unpaid("failed")

        if gateway.payment_status == stripe_gateway.PAID:
            return VerificationResult(
                is_paid=True,
                payment_status="completed",
                is_stripe_verified=True,
                is_balance=False,
                verification_source=SOURCE_STRIPE,
            )
        return _unpaid(gateway.payment_status, SOURCE_STRIPE)

    if _read(appointment, "payment_status") == "pending":
        return _unpaid("pending")

    return _unpaid("unpaid")


def verify_many(appointments, lookup=None, max_workers: int = DEFAULT_MAX_WORKERS) -> list[VerificationResult]:
    """Verify each appointment concurrently; results keep input order."""
    appointments = list(appointments)
    if not appointments:
        return []

    workers = max(1, min(max_workers, len(appointments)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(lambda appt: verify_appointment_payment(appt, lookup), appointments))
