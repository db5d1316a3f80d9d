import logging
from flask import has_request_context, request
from models import db
from models.audit_log import AuditLog

logger = logging.getLogger("audit")

def _request_ip():
    if not has_request_context():
        return None
    return request.headers.get("X-Forwarded-For", request.remote_addr)

def log_event(action: str, user_id=None, entity=None, entity_id=None, metadata=None):
    """Persist an audit row and mirror it to the ``audit`` logger.

    Commits the current session, so call it after the change it describes
    has been committed or rolled back.
    """
    db.session.add(
        AuditLog.record(action, user_id=user_id, entity=entity, entity_id=entity_id,
                        ip=_request_ip(), metadata=metadata)
    )
    db.session.commit()
    logger.info("%s user=%s %s=%s %s", action, user_id, entity, entity_id, metadata or "")
