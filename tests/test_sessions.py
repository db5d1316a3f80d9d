from datetime import datetime
from decimal import Decimal

import pytest

from billing import sessions as s


MAIN = datetime(2024, 3, 1, 10, 0)


def test_legacy_string_entries_become_completed_sessions():
    records = s.normalize_sessions(
        "abc", MAIN, ["2024-03-08T10:00:00Z", "2024-03-15T10:00:00Z"], 300, 3
    )

    assert [r.id for r in records] == ["abc-0", "abc-1", "abc-2"]
    assert records[0].is_main
    assert records[0].date == "2024-03-01T10:00:00Z"
    assert records[0].status == s.STATUS_IN_PROGRESS
    assert [r.status for r in records[1:]] == [s.STATUS_COMPLETED, s.STATUS_COMPLETED]
    assert all(r.legacy for r in records[1:])
    assert all(r.price == Decimal("100.00") for r in records)
    assert all(r.payment == s.PAYMENT_NOT_PAID for r in records)


def test_structured_entries_keep_their_fields():
    recurring = [
        {"date": "2024-03-08T10:00:00Z", "status": "cancelled", "payment": "paid", "price": 80},
        {"date": "2024-03-15T10:00:00Z"},
    ]
    records = s.normalize_sessions(7, MAIN, recurring, 300, 3)

    assert records[1].status == s.STATUS_CANCELLED
    assert records[1].payment == s.PAYMENT_PAID
    assert records[1].price == Decimal("80")
    assert records[1].price_override
    assert records[2].status == s.STATUS_IN_PROGRESS
    assert not records[2].legacy


def test_char_keyed_entry_is_reassembled():
    date = "2024-03-08T10:00:00Z"
    broken = {str(i): ch for i, ch in enumerate(date)}
    broken["status"] = "no_show"

    records = s.normalize_sessions(1, MAIN, [broken], 200, 2)

    assert records[1].date == date
    assert records[1].status == s.STATUS_NO_SHOW
    assert records[1].legacy


def test_missing_entries_are_padded_as_not_scheduled(caplog):
    records = s.normalize_sessions(1, MAIN, ["2024-03-08T10:00:00Z"], 400, 4)

    assert len(records) == 4
    assert records[2].date is None
    assert records[2].status == s.STATUS_NOT_SCHEDULED
    assert records[3].id == "1-3"
    assert "padding" in caplog.text


def test_extra_entries_are_clamped(caplog):
    records = s.normalize_sessions(1, MAIN, ["2024-03-08", "2024-03-15", "2024-03-22"], 200, 2)

    assert len(records) == 2
    assert records[1].date == "2024-03-08"
    assert "clamping" in caplog.text


def test_unusable_entries_are_placeholders():
    records = s.normalize_sessions(1, MAIN, [None, 42, {"foo": "bar"}], 400, 4)

    assert [r.status for r in records[1:]] == [s.STATUS_NOT_SCHEDULED] * 3


def test_invalid_total_sessions_falls_back_to_one(caplog):
    records = s.normalize_sessions(1, MAIN, ["2024-03-08"], 100, 0)

    assert len(records) == 1
    assert records[0].price == Decimal("100.00")
    assert "invalid total_sessions" in caplog.text


def test_missing_price_prices_sessions_at_zero():
    records = s.normalize_sessions(1, MAIN, [], None, 1)

    assert records[0].price == Decimal("0.00")


def test_unit_price_rounds_half_even():
    assert s.unit_price_for(100, 3) == Decimal("33.33")
    assert s.unit_price_for("0.125", 1) == Decimal("0.12")
    assert s.unit_price_for("0.135", 1) == Decimal("0.14")


def test_unparseable_date_is_flagged_not_dropped():
    records = s.normalize_sessions(1, MAIN, ["next tuesday"], 200, 2)

    assert records[1].date == "next tuesday"
    assert records[1].invalid


def test_parse_session_date_formats():
    assert s.parse_session_date("2024-03-08T10:00:00Z").year == 2024
    assert s.parse_session_date("08/03/2024") == datetime(2024, 3, 8)
    assert s.parse_session_date("13-25-2024") is None
    assert s.parse_session_date("") is None


def test_normalize_date_string():
    assert s.normalize_date_string("2024-03-08T10:00:00+00:00") == "2024-03-08T10:00:00Z"
    assert s.normalize_date_string("2024-03-08T10:00:00") == "2024-03-08T10:00:00Z"
    assert s.normalize_date_string("2024-03-08T12:00:00+02:00") == "2024-03-08T10:00:00Z"
    assert s.normalize_date_string("garbage") is None


def test_upgrade_recurring_keeps_positions():
    recurring = ["2024-03-08T10:00:00Z", None, {"date": "2024-03-22T10:00:00Z", "status": "cancelled"}]

    upgraded = s.upgrade_recurring(recurring)

    assert len(upgraded) == 3
    assert upgraded[0] == {"date": "2024-03-08T10:00:00Z", "status": "completed", "payment": "not_paid"}
    assert upgraded[1]["status"] == s.STATUS_NOT_SCHEDULED
    assert upgraded[2]["status"] == "cancelled"
    assert "price" not in upgraded[2]
    assert s.has_legacy_entries(recurring)
    assert not s.has_legacy_entries(upgraded)


def test_downgrade_recurring_returns_dates():
    recurring = [{"date": "2024-03-08T10:00:00Z", "status": "completed"}, "2024-03-15", None]

    assert s.downgrade_recurring(recurring) == ["2024-03-08T10:00:00Z", "2024-03-15", None]


def test_set_session_status():
    updated = s.set_session_status(["2024-03-08", "2024-03-15"], 2, s.STATUS_NO_SHOW)

    assert updated[1]["status"] == s.STATUS_NO_SHOW
    assert updated[0]["status"] == s.STATUS_COMPLETED

    with pytest.raises(ValueError):
        s.set_session_status([], 1, "finished")
    with pytest.raises(ValueError):
        s.set_session_status(["2024-03-08"], 0, s.STATUS_COMPLETED)
    with pytest.raises(IndexError):
        s.set_session_status(["2024-03-08"], 2, s.STATUS_COMPLETED)


def test_count_completed():
    records = s.normalize_sessions(
        1, MAIN, ["2024-03-08", {"date": "2024-03-15", "status": "cancelled"}], 300, 3,
        main_status=s.STATUS_COMPLETED,
    )

    assert s.count_completed(records) == 2


def test_to_storage_only_writes_overrides():
    records = s.normalize_sessions(
        1, MAIN, [{"date": "2024-03-08", "price": 50, "payout_percent": 0.6}], 200, 2
    )

    assert records[1].to_storage() == {
        "date": "2024-03-08",
        "status": "in_progress",
        "payment": "not_paid",
        "price": 50.0,
        "payout_percent": 0.6,
    }
    assert records[1].to_dict()["is_main"] is False


def test_normalize_is_idempotent():
    recurring = ["2024-03-08", {"date": "2024-03-15", "status": "cancelled"}, None]

    first = s.normalize_sessions(3, MAIN, recurring, 400, 4)
    second = s.normalize_sessions(3, MAIN, recurring, 400, 4)

    assert first == second
    assert [r.to_dict() for r in first] == [r.to_dict() for r in second]


def test_default_prices_sum_to_total_within_a_cent_per_session():
    records = s.normalize_sessions(3, MAIN, [], 100, 7)

    total = sum(r.price for r in records)
    assert abs(total - Decimal("100")) <= Decimal("0.07")


def test_upgraded_sessions_normalize_the_same():
    recurring = ["2024-01-01T10:00:00Z"]

    before = s.normalize_sessions(3, MAIN, recurring, 200, 2)
    after = s.normalize_sessions(3, MAIN, s.upgrade_recurring(recurring), 200, 2)

    assert after[1].to_storage() == {"date": "2024-01-01T10:00:00Z", "status": "completed", "payment": "not_paid"}
    assert [r.status for r in before] == [r.status for r in after]


def test_zero_padded_char_keys_are_reassembled():
    date = "2024-03-08T10:00:00Z"
    broken = {f"{i:02d}": ch for i, ch in enumerate(date)}

    records = s.normalize_sessions(1, MAIN, [broken], 200, 2)

    assert records[1].date == date
    assert records[1].legacy


def test_placeholders_normalize_the_same_after_upgrade():
    recurring = [None]

    before = s.normalize_sessions(3, MAIN, recurring, 200, 2)
    after = s.normalize_sessions(3, MAIN, s.upgrade_recurring(recurring), 200, 2)

    assert [r.to_dict() for r in before] == [r.to_dict() for r in after]
    assert not before[1].invalid
