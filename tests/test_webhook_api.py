import pytest
import stripe

from models import db


def _post(client, monkeypatch, event):
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig, secret: event)
    return client.post("/webhooks/stripe", data=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})


def test_checkout_completed_marks_appointment_paid(client, make_appointment, monkeypatch):
    appt = make_appointment(status="unpaid", recurring=["2024-03-08T10:00:00Z"], total_sessions=2, price=200)
    event = {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_123",
            "object": "checkout.session",
            "payment_status": "paid",
            "payment_intent": "pi_123",
            "metadata": {"appointment_id": str(appt.id)},
        }},
    }

    resp = _post(client, monkeypatch, event)

    assert resp.status_code == 200
    db.session.refresh(appt)
    assert appt.is_stripe_verified
    assert appt.payment_status == "completed"
    assert appt.status == "pending"
    assert appt.checkout_session_id == "cs_123"
    assert appt.payment_intent_id == "pi_123"
    assert appt.payment_method == "stripe"
    assert appt.sessions_paid_with_stripe == 2
    assert appt.recurring[0]["status"] == "completed"


def test_unpaid_checkout_is_ignored(client, make_appointment, monkeypatch):
    appt = make_appointment(checkout_session_id="cs_async", status="unpaid")
    event = {
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_async", "object": "checkout.session", "payment_status": "unpaid"}},
    }

    assert _post(client, monkeypatch, event).status_code == 200
    db.session.refresh(appt)
    assert not appt.is_stripe_verified


def test_payment_failure_recorded(client, make_appointment, monkeypatch):
    appt = make_appointment(payment_intent_id="pi_fail")
    event = {
        "type": "payment_intent.payment_failed",
        "data": {"object": {"id": "pi_fail", "object": "payment_intent"}},
    }

    _post(client, monkeypatch, event)

    db.session.refresh(appt)
    assert appt.payment_status == "failed"


def test_failure_does_not_override_verified_payment(client, make_appointment, monkeypatch):
    appt = make_appointment(checkout_session_id="cs_done", is_stripe_verified=True, payment_status="completed")
    event = {
        "type": "checkout.session.expired",
        "data": {"object": {"id": "cs_done", "object": "checkout.session"}},
    }

    _post(client, monkeypatch, event)

    db.session.refresh(appt)
    assert appt.payment_status == "completed"


@pytest.mark.parametrize("error", [ValueError("bad payload"), stripe.SignatureVerificationError("bad sig", "t=1")])
def test_bad_signature(client, monkeypatch, error):
    def reject(payload, sig, secret):
        raise error

    monkeypatch.setattr(stripe.Webhook, "construct_event", reject)

    resp = client.post("/webhooks/stripe", data=b"{}", headers={"Stripe-Signature": "nope"})

    assert resp.status_code == 400


def test_missing_secret(app, client):
    app.config["STRIPE_WEBHOOK_SECRET"] = None

    assert client.post("/webhooks/stripe", data=b"{}").status_code == 500
