import time
import logging

import jwt
from passlib.hash import argon2
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from audit import record_audit
from config import JWT_SECRET, JWT_ALG, ACCESS_TOKEN_TTL_MIN
from errors import EmailTaken, InvalidCredentials, StoreUnavailable
from models import User

logger = logging.getLogger("medsecure.auth")


# ---------- tokens ----------
def jwt_issue(user_id: str) -> str:
    now = int(time.time())
    payload = {"sub": user_id, "iat": now, "exp": now + ACCESS_TOKEN_TTL_MIN * 60}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def jwt_verify(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.PyJWTError:
        raise InvalidCredentials("Invalid or expired token")


def user_from_token(db: Session, token: str) -> User:
    # role is read from the store on every call, never from the token
    payload = jwt_verify(token)
    uid = payload.get("sub")
    user = db.get(User, uid) if uid else None
    if user is None:
        raise InvalidCredentials("Unknown user")
    return user


# ---------- account lifecycle ----------
def signup(db: Session, email: str, password: str, name: str) -> User:
    email = email.strip().lower()
    if db.query(User).filter_by(email=email).first():
        raise EmailTaken()
    user = User(email=email, name=name.strip(), role="user", password_hash=argon2.hash(password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise EmailTaken()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreUnavailable() from e
    record_audit(db, user.id, f"New user registered: {user.name}", {"email": user.email})
    return user


def login(db: Session, email: str, password: str) -> User:
    user = db.query(User).filter_by(email=email.strip().lower()).first()
    if not user or not argon2.verify(password, user.password_hash):
        logger.warning("failed login for %s", email)
        raise InvalidCredentials()
    record_audit(db, user.id, f"User logged in: {user.name}", {"email": user.email})
    return user


def logout(db: Session, user: User) -> None:
    # tokens are stateless; the client discards its copy
    record_audit(db, user.id, f"User logged out: {user.name or 'Unknown'}", {"email": user.email})
