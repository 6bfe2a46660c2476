import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, List, Literal, Dict, Any
from urllib.parse import quote

from fastapi import FastAPI, Depends, HTTPException, UploadFile, File, Query, Request, Response
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import analysis
import auth
import gate
from audit import list_audit_logs
from config import ENVELOPE_SUFFIX, MAX_UPLOAD_BYTES, configure_logging
from db import SessionLocal, engine, Base
from errors import MedSecureError, NotThisPlatform, StoreUnavailable
from models import User

logger = logging.getLogger("medsecure.app")

# =========================
# Dependencies
# =========================
auth_bearer = HTTPBearer()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user(creds: HTTPAuthorizationCredentials = Depends(auth_bearer), db: Session = Depends(get_db)) -> User:
    return auth.user_from_token(db, creds.credentials)


def read_upload(file: UploadFile) -> bytes:
    blob = file.file.read(MAX_UPLOAD_BYTES + 1)
    if len(blob) > MAX_UPLOAD_BYTES:
        raise HTTPException(413, f"File exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit")
    return blob


def attachment(filename: str) -> Dict[str, str]:
    return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}


# =========================
# Schemas
# =========================
class SignupIn(BaseModel):
    email: str
    password: str
    name: str


class LoginIn(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeOut(BaseModel):
    id: str
    email: str
    name: str
    role: str
    can_use_codec: bool


class UserOut(BaseModel):
    id: str
    email: str
    name: str
    role: str


class RoleIn(BaseModel):
    role: Literal["user", "authorized", "admin"]


class RequestIn(BaseModel):
    description: str
    reason: str


class RequestOut(BaseModel):
    id: str
    user_id: str
    user_name: str
    user_email: str
    description: str
    reason: str
    status: str
    created_at: Optional[datetime]
    decided_at: Optional[datetime] = None


class DecisionIn(BaseModel):
    decision: Literal["approved", "rejected"]


class DecryptedOut(BaseModel):
    originalName: str
    mimeType: str
    size: int
    encryptedAt: str
    fileData: str


class AuditOut(BaseModel):
    id: str
    user_id: Optional[str]
    action: str
    details: Dict[str, Any]
    timestamp: Optional[datetime]


def user_out(u: User) -> UserOut:
    return UserOut(id=u.id, email=u.email, name=u.name, role=u.role)


def request_out(r) -> RequestOut:
    return RequestOut(
        id=r.id, user_id=r.user_id, user_name=r.user_name, user_email=r.user_email,
        description=r.description, reason=r.reason, status=r.status,
        created_at=r.created_at, decided_at=r.decided_at,
    )


# =========================
# FastAPI app
# =========================
@asynccontextmanager
async def lifespan(app):
    configure_logging()
    Base.metadata.create_all(engine)
    yield


app = FastAPI(title="MedSecure (role-gated .medsecure file encryption)", lifespan=lifespan)


@app.exception_handler(MedSecureError)
async def _medsecure_error(request: Request, exc: MedSecureError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(SQLAlchemyError)
async def _store_error(request: Request, exc: SQLAlchemyError):
    logger.exception("store failure on %s %s", request.method, request.url.path)
    err = StoreUnavailable()
    return JSONResponse(status_code=err.status_code, content={"detail": err.message})


# -------- Signup / Login / Logout --------
@app.post("/signup", response_model=TokenOut)
def signup(body: SignupIn, db: Session = Depends(get_db)):
    user = auth.signup(db, body.email, body.password, body.name)
    return TokenOut(access_token=auth.jwt_issue(user.id))


@app.post("/login", response_model=TokenOut)
def login(body: LoginIn, db: Session = Depends(get_db)):
    user = auth.login(db, body.email, body.password)
    return TokenOut(access_token=auth.jwt_issue(user.id))


@app.post("/logout")
def logout(me: User = Depends(current_user), db: Session = Depends(get_db)):
    auth.logout(db, me)
    return {"ok": True, "message": "Client should discard the token locally."}


@app.get("/me", response_model=MeOut)
def whoami(me: User = Depends(current_user)):
    return MeOut(id=me.id, email=me.email, name=me.name, role=me.role, can_use_codec=gate.can_invoke(me.role))


# -------- Files --------
@app.post("/files/encrypt")
def encrypt_file(
    file: UploadFile = File(...),
    me: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    gate.require_codec_access(me)
    blob = read_upload(file)
    name = file.filename or "file"
    sealed, _ = gate.encrypt_file(db, me, blob, name, file.content_type or "")
    return Response(
        content=sealed.encode("utf-8"),
        media_type="application/octet-stream",
        headers=attachment(name + ENVELOPE_SUFFIX),
    )


@app.post("/files/decrypt")
def decrypt_file(
    file: UploadFile = File(...),
    download: bool = Query(False),
    me: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    gate.require_codec_access(me)
    try:
        sealed = read_upload(file).decode("utf-8")
    except UnicodeDecodeError:
        raise NotThisPlatform()
    decoded = gate.decrypt_file(db, me, sealed)
    if download:
        return Response(
            content=decoded.content(),
            media_type=decoded.mime_type or "application/octet-stream",
            headers=attachment(decoded.original_name or "decrypted"),
        )
    return DecryptedOut(
        originalName=decoded.original_name,
        mimeType=decoded.mime_type,
        size=decoded.size,
        encryptedAt=decoded.metadata.encryptedAt,
        fileData=decoded.file_data,
    )


# -------- Analysis --------
@app.post("/analysis", response_model=analysis.AnalysisResult)
def analyze(
    file: UploadFile = File(...),
    me: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    gate.require_codec_access(me)
    blob = read_upload(file)
    return analysis.analyze_file(db, me, file.filename or "file", blob, file.content_type or "")


# -------- Authorization requests --------
@app.post("/requests", response_model=RequestOut)
def submit_request(body: RequestIn, me: User = Depends(current_user), db: Session = Depends(get_db)):
    return request_out(gate.submit_request(db, me, body.description, body.reason))


@app.get("/requests/mine", response_model=List[RequestOut])
def my_requests(me: User = Depends(current_user), db: Session = Depends(get_db)):
    return [request_out(r) for r in gate.list_my_requests(db, me)]


# -------- Admin --------
@app.get("/admin/users", response_model=List[UserOut])
def admin_users(me: User = Depends(current_user), db: Session = Depends(get_db)):
    return [user_out(u) for u in gate.list_users(db, me)]


@app.patch("/admin/users/{user_id}/role", response_model=UserOut)
def admin_set_role(user_id: str, body: RoleIn, me: User = Depends(current_user), db: Session = Depends(get_db)):
    return user_out(gate.set_role(db, me, user_id, body.role))


@app.get("/admin/requests", response_model=List[RequestOut])
def admin_requests(me: User = Depends(current_user), db: Session = Depends(get_db)):
    return [request_out(r) for r in gate.list_requests(db, me)]


@app.post("/admin/requests/{request_id}/decision", response_model=RequestOut)
def admin_decide(request_id: str, body: DecisionIn, me: User = Depends(current_user), db: Session = Depends(get_db)):
    return request_out(gate.decide_request(db, me, request_id, body.decision))


# -------- Audit log --------
@app.get("/audit-logs", response_model=List[AuditOut])
def audit_logs(
    limit: int = Query(50, ge=1, le=500),
    me: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    """Admins see every entry; everyone else sees only their own."""
    scope = None if me.role == "admin" else me.id
    return [
        AuditOut(id=e.id, user_id=e.user_id, action=e.action, details=e.details or {}, timestamp=e.timestamp)
        for e in list_audit_logs(db, user_id=scope, limit=limit)
    ]
