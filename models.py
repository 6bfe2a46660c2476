import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, Enum, JSON, Text, Index, text
from sqlalchemy.orm import relationship
from db import Base

ROLES = ("user", "authorized", "admin")
REQUEST_STATUSES = ("pending", "approved", "rejected")


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=_new_id)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    role = Column(Enum(*ROLES, name="role"), nullable=False, default="user")
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    requests = relationship(
        "AuthorizationRequest",
        back_populates="requester",
        foreign_keys="AuthorizationRequest.user_id",
    )


class AuthorizationRequest(Base):
    """
    A user's request to be upgraded to the 'authorized' role.
    pending -> approved | rejected; both terminal.
    """
    __tablename__ = "authorization_requests"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    # Denormalised so the admin queue renders without a join
    user_name = Column(String, nullable=False)
    user_email = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    reason = Column(Text, nullable=False, default="")
    status = Column(Enum(*REQUEST_STATUSES, name="request_status"), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    decided_by = Column(String(32), ForeignKey("users.id"), nullable=True)

    requester = relationship("User", back_populates="requests", foreign_keys=[user_id])

    __table_args__ = (
        Index("ix_authorization_requests_created_at", "created_at"),
        # at most one pending request per user, enforced by the store
        Index(
            "uq_authorization_requests_one_pending",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )


class AuditLog(Base):
    """
    Append-only trail of sensitive actions. Rows are never updated or deleted.
    """
    __tablename__ = "audit_logs"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(String(32), nullable=True, index=True)
    action = Column(String, nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
