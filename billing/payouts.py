"""Therapist payout amounts over normalized sessions."""
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from billing.money import round_cents, to_decimal
from billing.sessions import PAYMENT_PAID, STATUS_COMPLETED, upgrade_recurring

logger = logging.getLogger(__name__)

DEFAULT_PERCENT = Decimal("0.50")
SENIOR_PERCENT = Decimal("0.57")
SENIOR_LEVEL = 2


class NothingToPay(Exception):
    pass


@dataclass
class Payout:
    amount: Decimal = Decimal("0")
    session_ids: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"amount": float(self.amount), "session_ids": list(self.session_ids)}


def payout_percent_for_level(level, default=DEFAULT_PERCENT, senior=SENIOR_PERCENT) -> Decimal:
    return to_decimal(senior) if level == SENIOR_LEVEL else to_decimal(default)


def session_share(session, tier_percent: Decimal) -> Decimal:
    percent = session.payout_percent if session.payout_percent is not None else tier_percent
    return session.price * percent


def calculate_payout(sessions, tier_percent, paid_session_ids=()) -> Payout:
    """Sum the therapist share of completed sessions not yet paid out.

    Raises NothingToPay when no session qualifies.
    """
    tier_percent = to_decimal(tier_percent)
    already_paid = set(paid_session_ids)
    payout = Payout()
    total = Decimal("0")

    for session in sessions:
        if session.status != STATUS_COMPLETED:
            continue
        if session.payment == PAYMENT_PAID or session.id in already_paid:
            continue
        total += session_share(session, tier_percent)
        payout.session_ids.append(session.id)

    if not payout.session_ids:
        raise NothingToPay("No payable sessions found")

    payout.amount = round_cents(total)
    return payout


def _index_from_session_id(appointment_id, session_id: str):
    prefix = f"{appointment_id}-"
    if not session_id.startswith(prefix):
        return None
    tail = session_id[len(prefix):]
    return int(tail) if tail.isdigit() else None


def mark_sessions_paid(appointment_id, recurring, session_ids):
    """Return ``(new_recurring, main_paid)`` with the given sessions paid.

    ``recurring`` is upgraded to the structured form first. ``main_paid``
    is True when index 0 (the main session) was among ``session_ids``.
    """
    upgraded = upgrade_recurring(recurring)
    main_paid = False
    for session_id in session_ids:
        index = _index_from_session_id(appointment_id, session_id)
        if index is None:
            logger.warning("session id %s does not belong to appointment %s", session_id, appointment_id)
            continue
        if index == 0:
            main_paid = True
        elif index <= len(upgraded):
            upgraded[index - 1]["payment"] = PAYMENT_PAID
        else:
            logger.warning("session id %s is past the end of appointment %s", session_id, appointment_id)
    return upgraded, main_paid


def set_payout_percent(recurring, index: int, percent):
    """Structured ``recurring`` with one session's payout override set.

    ``percent`` None clears the override. Index 0 is not stored in
    ``recurring``; callers set the appointment's main override instead.
    """
    if index < 1:
        raise ValueError("main session override lives on the appointment")
    upgraded = upgrade_recurring(recurring)
    if index > len(upgraded):
        raise IndexError(f"no session at index {index}")
    row = upgraded[index - 1]
    if percent is None:
        row.pop("payout_percent", None)
    else:
        row["payout_percent"] = float(to_decimal(percent))
    return upgraded
