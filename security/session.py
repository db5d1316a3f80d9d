import hashlib
import secrets
from datetime import datetime, timedelta
from flask import request, current_app, g

from models import db
from models.login_session import LoginSession
from models.user import User

def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

def _cookie_token():
    return request.cookies.get(current_app.config.get("AUTH_COOKIE_NAME", "teletherapy_session"))

def create_session(user_id: int) -> str:
    """Sign the user in and return the raw token for the cookie."""
    raw_token = secrets.token_urlsafe(32)
    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60)

    db.session.add(LoginSession(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        expires_at=datetime.utcnow() + timedelta(seconds=lifetime),
        ip=request.headers.get("X-Forwarded-For", request.remote_addr),
        user_agent=(request.headers.get("User-Agent") or "")[:255],
    ))
    db.session.commit()
    return raw_token

def get_session_from_request():
    raw_token = _cookie_token()
    if not raw_token:
        return None

    sess = LoginSession.find_active(_hash_token(raw_token))
    now = datetime.utcnow()
    if not sess or not sess.is_live(now, current_app.config.get("IDLE_TIMEOUT_SECONDS", 30 * 60)):
        return None

    sess.last_seen_at = now
    db.session.commit()
    return sess

def load_current_user():
    """before_request hook: sets ``g.user`` (None when signed out)."""
    sess = get_session_from_request()
    g.session = sess
    g.user = db.session.get(User, sess.user_id) if sess else None

def revoke_current_session() -> bool:
    raw_token = _cookie_token()
    if not raw_token:
        return False
    sess = LoginSession.query.filter_by(token_hash=_hash_token(raw_token)).first()
    if not sess:
        return False
    sess.revoked = True
    db.session.commit()
    return True

def revoke_all_sessions(user_id: int) -> int:
    count = LoginSession.revoke_for_user(user_id)
    db.session.commit()
    return count
