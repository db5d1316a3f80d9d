import stripe

from billing.stripe_gateway import GatewayStatus
from billing.verification import (
    SOURCE_BALANCE,
    SOURCE_NONE,
    SOURCE_STRIPE,
    SOURCE_WEBHOOK,
    verify_appointment_payment,
    verify_many,
)


def _appt(**fields):
    row = {
        "id": 1,
        "is_balance": False,
        "is_stripe_verified": False,
        "checkout_session_id": None,
        "payment_intent_id": None,
        "payment_status": "unpaid",
    }
    row.update(fields)
    return row


def _never_called(*args):
    raise AssertionError("gateway should not be consulted")


def test_balance_wins_over_stripe_flag(caplog):
    result = verify_appointment_payment(_appt(is_balance=True, is_stripe_verified=True), lookup=_never_called)

    assert result.is_paid
    assert result.is_balance
    assert not result.is_stripe_verified
    assert result.verification_source == SOURCE_BALANCE
    assert "treating as balance" in caplog.text


def test_webhook_confirmation_skips_lookup():
    result = verify_appointment_payment(
        _appt(is_stripe_verified=True, checkout_session_id="cs_1"), lookup=_never_called
    )

    assert result.is_paid
    assert result.payment_status == "completed"
    assert result.verification_source == SOURCE_WEBHOOK


def test_live_lookup_paid():
    seen = []

    def lookup(cs, pi):
        seen.append((cs, pi))
        return GatewayStatus(payment_status="paid")

    result = verify_appointment_payment(_appt(checkout_session_id="cs_1", payment_intent_id="pi_1"), lookup=lookup)

    assert seen == [("cs_1", "pi_1")]
    assert result.is_paid
    assert result.is_stripe_verified
    assert result.verification_source == SOURCE_STRIPE


def test_live_lookup_unpaid_mirrors_gateway_status():
    result = verify_appointment_payment(
        _appt(payment_intent_id="pi_1"),
        lookup=lambda cs, pi: GatewayStatus(payment_status="requires_action"),
    )

    assert not result.is_paid
    assert result.payment_status == "requires_action"
    assert result.verification_source == SOURCE_STRIPE


def test_gateway_error_degrades_to_failed():
    def lookup(cs, pi):
        raise stripe.APIConnectionError("network down")

    result = verify_appointment_payment(_appt(checkout_session_id="cs_1"), lookup=lookup)

    assert not result.is_paid
    assert result.payment_status == "failed"
    assert result.verification_source == SOURCE_NONE


def test_pending_and_unpaid_without_references():
    pending = verify_appointment_payment(_appt(payment_status="pending"), lookup=_never_called)
    unpaid = verify_appointment_payment(_appt(), lookup=_never_called)

    assert pending.payment_status == "pending"
    assert unpaid.payment_status == "unpaid"
    assert not pending.is_paid and not unpaid.is_paid
    assert unpaid.verification_source == SOURCE_NONE


def test_accepts_objects_as_well_as_dicts():
    class Row:
        id = 9
        is_balance = True
        is_stripe_verified = False

    assert verify_appointment_payment(Row(), lookup=_never_called).is_paid


def test_verify_many_keeps_order_and_isolates_failures():
    def lookup(cs, pi):
        if cs == "cs_3":
            raise RuntimeError("boom")
        return GatewayStatus(payment_status="paid" if cs in ("cs_1", "cs_4") else "unpaid")

    rows = [_appt(id=i, checkout_session_id=f"cs_{i}") for i in range(1, 6)]
    rows[1] = _appt(id=2, is_balance=True)

    results = verify_many(rows, lookup=lookup, max_workers=3)

    assert [r.is_paid for r in results] == [True, True, False, True, False]
    assert results[1].verification_source == SOURCE_BALANCE
    assert results[2].payment_status == "failed"
    assert results[2].verification_source == SOURCE_NONE
    assert results[4].payment_status == "unpaid"


def test_verify_many_empty():
    assert verify_many([], lookup=_never_called) == []
