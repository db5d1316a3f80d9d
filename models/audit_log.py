import json
from datetime import datetime
from models.db import db

class AuditLog(db.Model):
    """Append-only trail of payment, refund and payout decisions."""
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True)  # null for webhook and CLI events
    action = db.Column(db.String(80), nullable=False, index=True)
    entity = db.Column(db.String(80), nullable=True)
    entity_id = db.Column(db.String(80), nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @classmethod
    def record(cls, action, user_id=None, entity=None, entity_id=None, ip=None, metadata=None):
        # Decimal amounts and datetimes are stored as their str() form
        return cls(
            action=action,
            user_id=user_id,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            ip=ip,
            metadata_json=json.dumps(metadata, default=str) if metadata else None,
        )

    @property
    def details(self) -> dict:
        return json.loads(self.metadata_json) if self.metadata_json else {}
