"""
Access gate: role checks in front of the envelope codec, audit emission after
successful transforms, and the role / authorization-request workflows.

Every function takes an explicit ``Session`` and the acting ``User``; there is
no ambient "current user".
"""
import logging
from typing import List, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import envelope
from audit import record_audit
from errors import AccessDenied, NotFound, RequestAlreadyDecided, DuplicateRequest, StoreUnavailable
from models import User, AuthorizationRequest, ROLES, utcnow

logger = logging.getLogger("medsecure.gate")

CODEC_ROLES = frozenset({"authorized", "admin"})
DECISIONS = ("approved", "rejected")

# operation -> (audit action template, details "action" tag)
TRANSFORM_AUDIT = {
    "encrypt": ("File encrypted: {name}", "file_encryption"),
    "decrypt": ("File decrypted: {name}", "file_decryption"),
}


def can_invoke(role: str) -> bool:
    return role in CODEC_ROLES


def require_codec_access(user: User) -> None:
    if user is None or not can_invoke(user.role):
        raise AccessDenied()


def require_admin(user: User) -> None:
    if user is None or user.role != "admin":
        raise AccessDenied("Only administrators can perform this action.")


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreUnavailable() from e


# ---------- codec ----------
def after_success(db: Session, user: User, operation: str, metadata: envelope.FileMetadata) -> None:
    template, tag = TRANSFORM_AUDIT[operation]
    logger.info("%s by %s: %s (%d bytes)", operation, user.id, metadata.originalName, metadata.size)
    record_audit(db, user.id, template.format(name=metadata.originalName), {
        "originalFileName": metadata.originalName,
        "fileSize": metadata.size,
        "action": tag,
    })


def encrypt_file(db: Session, user: User, data: bytes, file_name: str, mime_type: str = "") -> Tuple[str, envelope.FileMetadata]:
    require_codec_access(user)
    sealed, metadata = envelope.encode_with_metadata(data, file_name, mime_type)
    after_success(db, user, "encrypt", metadata)
    return sealed, metadata


def decrypt_file(db: Session, user: User, sealed: str) -> envelope.DecodedFile:
    require_codec_access(user)
    decoded = envelope.decode(sealed)
    after_success(db, user, "decrypt", decoded.metadata)
    return decoded


# ---------- roles ----------
def list_users(db: Session, actor: User) -> List[User]:
    require_admin(actor)
    try:
        return db.query(User).order_by(User.created_at).all()
    except SQLAlchemyError as e:
        raise StoreUnavailable() from e


def set_role(db: Session, actor: User, target_id: str, new_role: str) -> User:
    require_admin(actor)
    if new_role not in ROLES:
        raise ValueError(f"role must be one of {', '.join(ROLES)}")
    target = db.get(User, target_id)
    if target is None:
        raise NotFound("User not found")
    target.role = new_role
    _commit(db)
    logger.info("role of %s set to %s by %s", target.id, new_role, actor.id)
    record_audit(db, actor.id, f"Role updated for {target.name} to {new_role}", {
        "userId": target.id,
        "newRole": new_role,
        "updatedBy": "admin",
    })
    return target


# ---------- authorization requests ----------
def _pending_request(db: Session, user_id: str):
    return db.query(AuthorizationRequest).filter_by(user_id=user_id, status="pending").first()


def submit_request(db: Session, user: User, description: str, reason: str) -> AuthorizationRequest:
    if user.role != "user":
        raise AccessDenied("Your account already has access to protected features.")
    if _pending_request(db, user.id) is not None:
        raise DuplicateRequest()
    req = AuthorizationRequest(
        user_id=user.id,
        user_name=user.name,
        user_email=user.email,
        description=description,
        reason=reason,
        status="pending",
    )
    db.add(req)
    try:
        db.commit()
    except IntegrityError as e:
        # a concurrent submission won the one-pending-per-user index
        db.rollback()
        raise DuplicateRequest() from e
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreUnavailable() from e
    record_audit(db, user.id, f"Authorization request submitted by {user.name}", {
        "requestId": req.id,
        "action": "request_submitted",
    })
    return req


def list_requests(db: Session, actor: User) -> List[AuthorizationRequest]:
    require_admin(actor)
    try:
        return db.query(AuthorizationRequest).order_by(AuthorizationRequest.created_at.desc()).all()
    except SQLAlchemyError as e:
        raise StoreUnavailable() from e


def list_my_requests(db: Session, user: User) -> List[AuthorizationRequest]:
    try:
        return (
            db.query(AuthorizationRequest)
            .filter_by(user_id=user.id)
            .order_by(AuthorizationRequest.created_at.desc())
            .all()
        )
    except SQLAlchemyError as e:
        raise StoreUnavailable() from e


def decide_request(db: Session, actor: User, request_id: str, decision: str) -> AuthorizationRequest:
    """
    Move a pending request to approved or rejected. The status change is a
    conditional UPDATE on status='pending', so of two concurrent decisions only
    one takes effect; the other gets RequestAlreadyDecided. Approval upgrades
    the requester to 'authorized' in the same transaction.
    """
    require_admin(actor)
    if decision not in DECISIONS:
        raise ValueError("decision must be 'approved' or 'rejected'")
    req = db.get(AuthorizationRequest, request_id)
    if req is None:
        raise NotFound("Authorization request not found")
    requester_id, requester_name = req.user_id, req.user_name

    try:
        updated = (
            db.query(AuthorizationRequest)
            .filter_by(id=request_id, status="pending")
            .update({"status": decision, "decided_at": utcnow(), "decided_by": actor.id},
                    synchronize_session=False)
        )
        if updated == 0:
            db.rollback()
            raise RequestAlreadyDecided()
        if decision == "approved":
            # never downgrade someone promoted in the meantime
            db.query(User).filter_by(id=requester_id, role="user").update(
                {"role": "authorized"}, synchronize_session=False
            )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreUnavailable() from e
    db.expire_all()
    logger.info("request %s %s by %s", request_id, decision, actor.id)

    if decision == "approved":
        record_audit(db, actor.id, f"Access granted to {requester_name} - upgraded to authorized", {
            "userId": requester_id,
            "requestId": request_id,
            "action": "role_upgrade",
        })
    else:
        record_audit(db, actor.id, f"Authorization request rejected for {requester_name}", {
            "userId": requester_id,
            "requestId": request_id,
            "action": "request_rejected",
        })
    return db.get(AuthorizationRequest, request_id)
