from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.user import User
from security.csrf import issue_csrf_token
from security.password import hash_password, needs_rehash, verify_password
from security.rbac import login_required
from security.session import create_session, revoke_all_sessions, revoke_current_session
from utils.audit import log_event

# Accounts are provisioned by the booking service; this API only signs them in.
auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _cookie_name():
    return current_app.config.get("AUTH_COOKIE_NAME", "teletherapy_session")


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = User.normalize_email(data.get("email"))
    password = data.get("password") or ""

    user = User.by_email(email)
    if not user or not verify_password(password, user.password_hash):
        log_event("LOGIN_FAIL", user_id=user.id if user else None, metadata={"email": email})
        return jsonify(error="Invalid credentials"), 401

    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)
        db.session.commit()

    # one live session per user
    revoked_count = revoke_all_sessions(user.id)
    raw_token = create_session(user.id)

    resp = jsonify(message="Login OK", roles=user.role_names)
    resp.set_cookie(
        _cookie_name(),
        raw_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60),
        path="/",
    )
    issue_csrf_token(resp)

    log_event("LOGIN_SUCCESS", user_id=user.id, metadata={"revoked_sessions": revoked_count})
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        full_name=g.user.full_name,
        roles=g.user.role_names,
        level=g.user.level,
    ), 200


@auth_bp.post("/logout")
@login_required
def logout():
    revoke_current_session()
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(_cookie_name(), path="/")
    return resp, 200
