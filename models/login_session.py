from datetime import datetime, timedelta
from models.db import db

class LoginSession(db.Model):
    """Cookie-backed sign-in. Unrelated to therapy sessions."""
    __tablename__ = "auth_sessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # sha256 of the cookie value; the raw token never touches the database
    token_hash = db.Column(db.String(128), unique=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    last_seen_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=False)

    revoked = db.Column(db.Boolean, default=False, nullable=False)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)

    @classmethod
    def find_active(cls, token_hash: str):
        return cls.query.filter_by(token_hash=token_hash, revoked=False).first()

    def is_live(self, now: datetime, idle_seconds: int) -> bool:
        if self.expires_at <= now:
            return False
        last_seen = self.last_seen_at or self.created_at
        return last_seen + timedelta(seconds=idle_seconds) > now

    @classmethod
    def revoke_for_user(cls, user_id: int) -> int:
        rows = cls.query.filter_by(user_id=user_id, revoked=False).all()
        for row in rows:
            row.revoked = True
        return len(rows)
