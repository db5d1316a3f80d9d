from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.appointment import Appointment
from models.user import Role, User
from security.csrf import CSRF_COOKIE, CSRF_HEADER
from security.password import hash_password
from security.rbac import ADMIN, PATIENT, THERAPIST

PASSWORD = "correct horse battery"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        Role.ensure_defaults()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(*role_names, level=1):
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            password_hash=hash_password(PASSWORD),
            full_name=f"User {counter['n']}",
            level=level,
        )
        for name in role_names:
            user.grant(name)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def patient(make_user):
    return make_user(PATIENT)


@pytest.fixture
def therapist(make_user):
    return make_user(THERAPIST)


@pytest.fixture
def admin(make_user):
    return make_user(ADMIN)


@pytest.fixture
def login(client):
    """Sign a user in and return the headers a state-changing call needs."""

    def _login(user):
        resp = client.post("/auth/login", json={"email": user.email, "password": PASSWORD})
        assert resp.status_code == 200
        return {CSRF_HEADER: client.get_cookie(CSRF_COOKIE).value}

    return _login


@pytest.fixture
def make_appointment(app, patient, therapist):
    def _make(**fields):
        values = {
            "patient_id": patient.id,
            "therapist_id": therapist.id,
            "main_date": datetime.utcnow() + timedelta(days=7),
            "recurring": [],
            "total_sessions": 1,
            "price": Decimal("100.00"),
            "status": "confirmed",
        }
        values.update(fields)
        appt = Appointment(**values)
        db.session.add(appt)
        db.session.commit()
        return appt

    return _make
