from decimal import Decimal
from types import SimpleNamespace

import pytest

from billing.refunds import (
    POLICY_FULL,
    POLICY_HALF,
    POLICY_NONE,
    AppointmentPayment,
    AppointmentRefund,
    compute_refund,
    generate_dedupe_key,
    quantize_units,
    refund_view_from_appointment,
)


def _appointment(total, completed, balance, stripe_units, unit_price, refunded_balance=0, refunded_stripe=0):
    return AppointmentRefund(
        total_units=Decimal(total),
        completed_units=Decimal(completed),
        payment=AppointmentPayment(
            sessions_paid_with_balance=Decimal(balance),
            sessions_paid_with_stripe=Decimal(stripe_units),
            unit_price=Decimal(unit_price),
            refunded_units_from_balance=Decimal(refunded_balance),
            refunded_units_from_stripe=Decimal(refunded_stripe),
        ),
    )


def test_half_policy_refunds_half_of_remaining_stripe_units():
    result = compute_refund(_appointment(4, 1, 0, 4, 100), POLICY_HALF)

    assert result.from_balance == Decimal("0")
    assert result.from_stripe == Decimal("1.5")
    assert result.money_refund == Decimal("150.00")
    assert result.session_units_refunded == Decimal("1.5")


def test_balance_units_are_refunded_first():
    result = compute_refund(_appointment(3, 0, 2, 1, 100), POLICY_FULL)

    assert result.from_balance == Decimal("2")
    assert result.from_stripe == Decimal("1")
    assert result.money_refund == Decimal("100.00")


def test_money_is_truncated_to_cents():
    result = compute_refund(_appointment(3, 0, 0, 3, "33.333"), POLICY_FULL)

    assert result.money_refund == Decimal("99.99")


def test_fractional_units_price_exactly():
    result = compute_refund(_appointment(4, 1, 0, 4, 75), POLICY_HALF)

    assert result.from_stripe == Decimal("1.5")
    assert result.money_refund == Decimal("112.50")


def test_none_policy_refunds_nothing():
    result = compute_refund(_appointment(4, 0, 2, 2, 100), POLICY_NONE)

    assert result.session_units_refunded == 0
    assert result.money_refund == 0


def test_prior_refunds_reduce_what_is_available():
    result = compute_refund(_appointment(4, 0, 2, 2, 100, refunded_balance=2, refunded_stripe=1), POLICY_FULL)

    assert result.from_balance == 0
    assert result.from_stripe == Decimal("1")
    assert result.money_refund == Decimal("100.00")


def test_over_refunded_ledger_clamps_to_zero(caplog):
    result = compute_refund(_appointment(2, 0, 1, 1, 100, refunded_balance=3), POLICY_FULL)

    assert result.from_balance == 0
    assert result.from_stripe == Decimal("1")
    assert "refund ledger inconsistent" in caplog.text


def test_completed_beyond_total_refunds_nothing():
    result = compute_refund(_appointment(2, 3, 0, 2, 100), POLICY_FULL)

    assert result.session_units_refunded == 0


def test_units_quantized_down_to_step():
    result = compute_refund(_appointment(3, 0, 0, 3, 100), POLICY_HALF, step="1")

    assert result.from_stripe == Decimal("1")
    assert quantize_units(Decimal("1.55"), Decimal("0.1")) == Decimal("1.5")


@pytest.mark.parametrize("step", [0, "-0.1"])
def test_non_positive_step_rejected(step):
    with pytest.raises(ValueError):
        compute_refund(_appointment(2, 0, 0, 2, 100), POLICY_FULL, step=step)


def test_unknown_policy_rejected():
    with pytest.raises(ValueError):
        compute_refund(_appointment(2, 0, 0, 2, 100), "quarter")


def test_dedupe_key():
    assert generate_dedupe_key("abc123", "full") == "abc123:full:series"
    assert generate_dedupe_key("abc123", "half", "") == "abc123:half:series"
    assert generate_dedupe_key(7, "half", "7-2") == "7:half:7-2"


def test_refund_view_from_appointment_row():
    row = SimpleNamespace(
        total_sessions=4,
        completed_sessions=0,
        price=Decimal("360.00"),
        currency="AED",
        sessions_paid_with_balance=Decimal("0"),
        sessions_paid_with_stripe=Decimal("4"),
        refunded_units_from_balance=Decimal("0"),
        refunded_units_from_stripe=Decimal("0"),
        payment_method="stripe",
    )

    result = compute_refund(refund_view_from_appointment(row), POLICY_FULL)

    assert result.from_stripe == Decimal("4")
    assert result.money_refund == Decimal("360.00")
    assert result.to_dict()["money_refund"] == 360.0


def test_half_of_three_quantizes_to_one_and_a_half():
    result = compute_refund(_appointment(3, 0, 0, 3, 100), POLICY_HALF, step="0.1")

    assert result.session_units_refunded == Decimal("1.5")


def test_balance_first_with_plenty_of_stripe_units():
    result = compute_refund(_appointment(3, 0, 2, 5, 100), POLICY_FULL)

    assert (result.from_balance, result.from_stripe) == (Decimal("2"), Decimal("1"))


def test_truncation_at_cent_boundary():
    result = compute_refund(_appointment("1.25", 0, 0, 2, "90.007"), POLICY_FULL, step="0.01")

    assert result.from_stripe == Decimal("1.25")
    assert result.money_refund == Decimal("112.50")


def test_balance_only_series_refund():
    result = compute_refund(_appointment(4, 1, 4, 0, 90), POLICY_FULL)

    assert result.from_balance == Decimal("3")
    assert result.from_stripe == 0
    assert result.money_refund == 0
    assert result.session_units_refunded == Decimal("3")


def test_same_inputs_same_result():
    appointment = _appointment(5, 2, 1, 4, "72.5")

    assert compute_refund(appointment, POLICY_HALF) == compute_refund(appointment, POLICY_HALF)
