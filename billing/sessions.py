"""Normalization of an appointment's sessions.

An appointment stores its first session as ``main_date`` and every later
session in the ``recurring`` JSON list. Rows written before the structured
format existed hold bare date strings there, and some were serialised as
character-keyed dicts. Everything that enumerates, prices or pays sessions
goes through :func:`normalize_sessions` so those shapes never leak further.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from billing.money import round_cents, to_decimal

logger = logging.getLogger(__name__)

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_NO_SHOW = "no_show"
STATUS_NOT_SCHEDULED = "not_scheduled"

SESSION_STATUSES = {
    STATUS_IN_PROGRESS,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_NO_SHOW,
    STATUS_NOT_SCHEDULED,
}

PAYMENT_NOT_PAID = "not_paid"
PAYMENT_PAID = "paid"


@dataclass(frozen=True)
class SessionRecord:
    id: str
    index: int
    date: Optional[str]
    status: str
    payment: str
    price: Decimal
    price_override: bool = False
    payout_percent: Optional[Decimal] = None
    legacy: bool = False
    invalid: bool = False

    @property
    def is_main(self) -> bool:
        return self.index == 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "index": self.index,
            "date": self.date,
            "status": self.status,
            "payment": self.payment,
            "price": float(self.price),
            "payout_percent": float(self.payout_percent) if self.payout_percent is not None else None,
            "is_main": self.is_main,
            "legacy": self.legacy,
            "invalid": self.invalid,
        }

    def to_storage(self) -> dict:
        """Structured ``recurring`` entry as persisted on the appointment."""
        row = {"date": self.date, "status": self.status, "payment": self.payment}
        if self.price_override:
            row["price"] = float(self.price)
        if self.payout_percent is not None:
            row["payout_percent"] = float(self.payout_percent)
        return row


def format_datetime(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_session_date(value) -> Optional[datetime]:
    """Best-effort parse of a stored session date; None when unparseable."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    raw = value.strip()
    iso = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        pass

    # day-first, then month-first, like the old booking forms sent them
    for fmt in ("%d/%m/%Y", "%m/%d/%Y", "%d-%m-%Y", "%m-%d-%Y"):
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def normalize_date_string(value) -> Optional[str]:
    """Canonical ISO form with an explicit ``Z``; None if not a date."""
    if isinstance(value, datetime):
        return format_datetime(value)
    if not isinstance(value, str) or not value.strip():
        return None

    raw = value.strip()
    if raw.endswith("+00:00"):
        raw = raw[: -len("+00:00")] + "Z"
    elif not raw.endswith("Z") and not _has_utc_offset(raw) and "T" in raw:
        raw += "Z"

    parsed = parse_session_date(raw)
    if parsed is None:
        return None
    return format_datetime(parsed)


def _has_utc_offset(raw: str) -> bool:
    tail = raw[-6:]
    return len(tail) == 6 and tail[0] in "+-" and tail[3] == ":"


def _join_char_keys(entry: dict) -> Optional[str]:
    keys = sorted((k for k in entry if isinstance(k, str) and k.isdigit()), key=int)
    if not keys:
        return None
    return "".join(str(entry[k]) for k in keys)


def _decode_entry(entry):
    """Return ``(kind, fields)`` for one stored ``recurring`` entry.

    kind is ``"legacy"``, ``"structured"`` or ``"missing"``.
    """
    if isinstance(entry, datetime):
        entry = format_datetime(entry)

    if isinstance(entry, str):
        return "legacy", {"date": entry}

    if isinstance(entry, dict):
        if "date" in entry:
            return "structured", entry
        joined = _join_char_keys(entry)
        if joined is not None:
            fields = {"date": joined}
            for key in ("status", "payment", "price", "payout_percent"):
                if key in entry:
                    fields[key] = entry[key]
            return "legacy", fields

    return "missing", {}


def _build_record(appointment_id, index, entry, unit_price: Decimal) -> SessionRecord:
    kind, fields = _decode_entry(entry)

    if kind == "missing":
        return SessionRecord(
            id=f"{appointment_id}-{index}",
            index=index,
            date=None,
            status=STATUS_NOT_SCHEDULED,
            payment=PAYMENT_NOT_PAID,
            price=unit_price,
        )

    date = fields.get("date")
    if isinstance(date, datetime):
        date = format_datetime(date)

    if kind == "legacy":
        # a bare string is a session that already happened
        default_status = STATUS_COMPLETED
    else:
        default_status = STATUS_IN_PROGRESS

    override = fields.get("price")
    has_override = override is not None and to_decimal(override, default=None) is not None
    payout_percent = fields.get("payout_percent")

    return SessionRecord(
        id=f"{appointment_id}-{index}",
        index=index,
        date=date,
        status=fields.get("status") or default_status,
        payment=fields.get("payment") or PAYMENT_NOT_PAID,
        price=to_decimal(override) if has_override else unit_price,
        price_override=has_override,
        payout_percent=to_decimal(payout_percent, default=None) if payout_percent is not None else None,
        legacy=kind == "legacy",
        invalid=date is not None and parse_session_date(date) is None,
    )


def unit_price_for(total_price, total_sessions) -> Decimal:
    price = to_decimal(total_price)
    count = _session_count(total_sessions)
    return round_cents(price / count)


def _session_count(total_sessions) -> int:
    try:
        count = int(total_sessions)
    except (TypeError, ValueError):
        count = 0
    return count if count >= 1 else 1


def normalize_sessions(
    appointment_id,
    main_date,
    recurring,
    total_price,
    total_sessions,
    main_status: str = STATUS_IN_PROGRESS,
    main_payment: str = PAYMENT_NOT_PAID,
    main_payout_percent=None,
) -> list[SessionRecord]:
    """Return exactly ``total_sessions`` records, index 0 being ``main_date``.

    ``recurring`` may mix bare date strings, char-keyed dicts and
    structured dicts. Extra entries are clamped off and missing ones are
    padded with ``not_scheduled`` placeholders; both cases are logged.
    """
    count = _session_count(total_sessions)
    if not isinstance(total_sessions, int) or count != total_sessions:
        logger.warning(
            "appointment %s has invalid total_sessions=%r, using %d",
            appointment_id, total_sessions, count,
        )
    if total_price is None:
        logger.warning("appointment %s has no price, sessions priced at 0", appointment_id)

    unit_price = unit_price_for(total_price, count)
    entries = list(recurring or [])
    expected = count - 1

    if len(entries) > expected:
        logger.warning(
            "appointment %s has %d recurring entries for %d sessions, clamping",
            appointment_id, len(entries), count,
        )
        entries = entries[:expected]
    elif len(entries) < expected:
        logger.warning(
            "appointment %s has %d recurring entries for %d sessions, padding",
            appointment_id, len(entries), count,
        )
        entries = entries + [None] * (expected - len(entries))

    main_iso = format_datetime(main_date) if isinstance(main_date, datetime) else main_date
    main_percent = to_decimal(main_payout_percent, default=None) if main_payout_percent is not None else None

    sessions = [
        SessionRecord(
            id=f"{appointment_id}-0",
            index=0,
            date=main_iso,
            status=main_status or STATUS_IN_PROGRESS,
            payment=main_payment or PAYMENT_NOT_PAID,
            price=unit_price,
            payout_percent=main_percent,
            invalid=main_iso is not None and parse_session_date(main_iso) is None,
        )
    ]
    for offset, entry in enumerate(entries, start=1):
        sessions.append(_build_record(appointment_id, offset, entry, unit_price))
    return sessions


def has_legacy_entries(recurring) -> bool:
    return any(_decode_entry(entry)[0] == "legacy" for entry in (recurring or []))


def upgrade_recurring(recurring) -> list[dict]:
    """Structured storage form of ``recurring``, position for position.

    Unlike :func:`normalize_sessions` this keeps the list length as stored,
    so session indexes stay valid when it is written back.
    """
    return [
        _build_record("", index, entry, Decimal("0")).to_storage()
        for index, entry in enumerate(recurring or [], start=1)
    ]


def set_session_status(recurring, index: int, status: str) -> list[dict]:
    """Structured ``recurring`` with the session at overall ``index`` updated."""
    if status not in SESSION_STATUSES:
        raise ValueError(f"unknown session status {status!r}")
    if index < 1:
        raise ValueError("the main session status lives on the appointment")
    upgraded = upgrade_recurring(recurring)
    if index > len(upgraded):
        raise IndexError(f"no session at index {index}")
    upgraded[index - 1]["status"] = status
    return upgraded


def downgrade_recurring(recurring) -> list[Optional[str]]:
    """Bare date strings, for rolling the session migration back.

    Entries without a date come back as ``None`` so positions are kept.
    """
    dates = []
    for entry in recurring or []:
        _, fields = _decode_entry(entry)
        dates.append(fields.get("date") or None)
    return dates


def count_completed(sessions) -> int:
    return sum(1 for s in sessions if s.status == STATUS_COMPLETED)
