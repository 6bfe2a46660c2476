"""
Append-only audit log. Entries are added and listed; nothing here updates or
deletes a row.
"""
import logging
from typing import Optional, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import StoreUnavailable
from models import AuditLog

logger = logging.getLogger("medsecure.audit")


def add_audit_log(db: Session, user_id: Optional[str], action: str, details: Optional[dict] = None) -> AuditLog:
    entry = AuditLog(user_id=user_id, action=action, details=details or {})
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreUnavailable() from e
    return entry


def record_audit(db: Session, user_id: Optional[str], action: str, details: Optional[dict] = None) -> Optional[AuditLog]:
    """
    Fire-and-forget variant: a failed audit write is logged and swallowed so it
    never turns the triggering operation into a failure.
    """
    try:
        return add_audit_log(db, user_id, action, details)
    except StoreUnavailable:
        logger.exception("audit write failed for action %r", action)
        return None


def list_audit_logs(db: Session, user_id: Optional[str] = None, limit: int = 50) -> List[AuditLog]:
    q = db.query(AuditLog)
    if user_id is not None:
        q = q.filter_by(user_id=user_id)
    try:
        return q.order_by(AuditLog.timestamp.desc()).limit(limit).all()
    except SQLAlchemyError as e:
        raise StoreUnavailable() from e
