from functools import wraps
from flask import g, jsonify

PATIENT = "PATIENT"
THERAPIST = "THERAPIST"
ADMIN = "ADMIN"
SUPER_ADMIN = "SUPER_ADMIN"

def _current_user():
    return getattr(g, "user", None)

def is_staff(user) -> bool:
    return user is not None and user.has_role(ADMIN, SUPER_ADMIN)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if _current_user() is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper

def require_roles(*role_names: str):
    """
    Usage: @require_roles(ADMIN)
    SUPER_ADMIN passes every check.
    """
    def decorator(fn):
        @wraps(fn)
        @login_required
        def wrapper(*args, **kwargs):
            if not _current_user().has_role(SUPER_ADMIN, *role_names):
                return jsonify(error="Forbidden"), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator

# Appointment access: the patient, the assigned therapist, or staff.

def can_view_appointment(user, appointment) -> bool:
    if user is None or appointment is None:
        return False
    if is_staff(user):
        return True
    return user.id in (appointment.patient_id, appointment.therapist_id)

def can_cancel_appointment(user, appointment) -> bool:
    if user is None or appointment is None:
        return False
    return is_staff(user) or appointment.patient_id == user.id

def can_manage_sessions(user, appointment) -> bool:
    if is_staff(user):
        return True
    return user is not None and user.has_role(THERAPIST) and appointment.therapist_id == user.id
