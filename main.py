import sys
import getpass
import mimetypes
from pathlib import Path

import requests
from sqlalchemy.orm import Session

import auth
import gate
from audit import list_audit_logs
from config import DB_PATH, ENVELOPE_SUFFIX, configure_logging
from db import SessionLocal, engine, Base
from errors import MedSecureError
from models import User

# ---------- basic io ----------
def input_safe(prompt: str) -> str:
    return input(prompt)

def input_password(prompt: str) -> str:
    return getpass.getpass(prompt)


def fetch_bytes_from_link(link: str) -> bytes:
    p = Path(link)
    if p.exists() and p.is_file():
        return p.read_bytes()
    if link.lower().startswith("http://") or link.lower().startswith("https://"):
        resp = requests.get(link, timeout=30)
        resp.raise_for_status()
        return resp.content
    raise FileNotFoundError(f"Not a file or URL: {link}")

def mime_from_link(link: str) -> str:
    mt, _ = mimetypes.guess_type(link)
    return mt or ""

def safe_output_path(out_dir: Path, name: str) -> Path:
    # never let a name from inside an envelope escape the output directory
    base = Path(name).name or "decrypted"
    target = out_dir / base
    i = 1
    while target.exists():
        target = out_dir / f"{Path(base).stem} ({i}){Path(base).suffix}"
        i += 1
    return target

# ---------- actions ----------
def encrypt_action(db: Session, me: User):
    link = input_safe("File path or URL to encrypt: ").strip()
    try:
        blob = fetch_bytes_from_link(link)
    except (OSError, requests.RequestException) as e:
        print(f"Error: {e}")
        return
    name = Path(link).name or "file"
    sealed, meta = gate.encrypt_file(db, me, blob, name, mime_from_link(link))
    out = Path(input_safe(f"Save as [{name}{ENVELOPE_SUFFIX}]: ").strip() or f"{name}{ENVELOPE_SUFFIX}")
    out.write_text(sealed, encoding="utf-8")
    print(f"File encrypted successfully ({meta.size} bytes). Only this platform can decrypt it.")
    print(f"Written to: {out.resolve()}")

def decrypt_action(db: Session, me: User):
    path = Path(input_safe("Encrypted .medsecure file: ").strip())
    try:
        sealed = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error: {e}")
        return
    decoded = gate.decrypt_file(db, me, sealed)
    print("File decrypted successfully!")
    print(f"  Original name: {decoded.original_name}")
    print(f"  File type    : {decoded.mime_type or 'Unknown'}")
    print(f"  Size         : {decoded.size / 1024 / 1024:.2f} MB")
    out_dir = Path(input_safe("Output directory [.]: ").strip() or ".")
    out_dir.mkdir(parents=True, exist_ok=True)
    target = safe_output_path(out_dir, decoded.original_name)
    target.write_bytes(decoded.content())
    print(f"Written to: {target.resolve()}")

def request_action(db: Session, me: User):
    description = input_safe("Describe the access you need: ").strip()
    reason = input_safe("Reason: ").strip()
    req = gate.submit_request(db, me, description, reason)
    print(f"Request {req.id} submitted; an administrator will review it.")

def show_my_requests(db: Session, me: User):
    reqs = gate.list_my_requests(db, me)
    if not reqs:
        print("No requests yet.")
    for r in reqs:
        print(f"[{r.status}] {r.id} {r.created_at:%Y-%m-%d} {r.description}")

def show_audit(db: Session, me: User):
    scope = None if me.role == "admin" else me.id
    for e in list_audit_logs(db, user_id=scope, limit=20):
        print(f"{e.timestamp:%Y-%m-%d %H:%M} {e.action}")

def admin_users_action(db: Session, me: User):
    users = gate.list_users(db, me)
    for u in users:
        print(f"{u.id} {u.email:<30} {u.name:<20} {u.role}")
    uid = input_safe("User id to change (blank=back): ").strip()
    if not uid:
        return
    role = input_safe("New role [user/authorized/admin]: ").strip().lower()
    try:
        target = gate.set_role(db, me, uid, role)
    except ValueError as e:
        print(f"Error: {e}")
        return
    print(f"Role updated for {target.name} to {target.role}.")

def admin_requests_action(db: Session, me: User):
    reqs = gate.list_requests(db, me)
    pending = [r for r in reqs if r.status == "pending"]
    for r in reqs:
        print(f"[{r.status}] {r.id} {r.user_name} <{r.user_email}>: {r.description} ({r.reason})")
    if not pending:
        print("No pending requests.")
        return
    rid = input_safe("Request id to decide (blank=back): ").strip()
    if not rid:
        return
    choice = input_safe("Approve or reject? [a/r]: ").strip().lower()
    decision = {"a": "approved", "r": "rejected"}.get(choice)
    if decision is None:
        print("Invalid choice.")
        return
    req = gate.decide_request(db, me, rid, decision)
    print(f"Request {req.id} {req.status}.")

# ---------- session ----------
def user_session(db: Session, me: User):
    print(f"\nWelcome, {me.name} ({me.role})")
    while True:
        db.refresh(me)  # pick up role changes made elsewhere
        menu = []
        if gate.can_invoke(me.role):
            menu += [("Encrypt a file", encrypt_action), ("Decrypt a .medsecure file", decrypt_action)]
        else:
            menu += [("Request authorization upgrade", request_action)]
        menu += [("My authorization requests", show_my_requests), ("Audit log", show_audit)]
        if me.role == "admin":
            menu += [("Manage user roles", admin_users_action), ("Review authorization requests", admin_requests_action)]

        for i, (label, _) in enumerate(menu, start=1):
            print(f"{i}) {label}")
        print(f"{len(menu) + 1}) Logout")
        choice = input_safe("Choose: ").strip()

        if choice == str(len(menu) + 1):
            auth.logout(db, me)
            print("Logged out.")
            return
        if not choice.isdigit() or not 1 <= int(choice) <= len(menu):
            print("Invalid choice.")
            continue
        try:
            menu[int(choice) - 1][1](db, me)
        except MedSecureError as e:
            print(f"Error: {e.message}")

# ---------- main ----------
def main():
    configure_logging()
    Base.metadata.create_all(engine)
    print("=== MedSecure CLI ===")
    print(f"Database: {DB_PATH.resolve()}")
    while True:
        print("\n1) Login")
        print("2) Create account")
        print("3) Exit")
        cmd = input_safe("Choose: ").strip()

        if cmd == "1":
            with SessionLocal() as db:
                email = input_safe("email: ").strip()
                pw = input_password("password: ").strip()
                try:
                    me = auth.login(db, email, pw)
                except MedSecureError as e:
                    print(e.message)
                    continue
                user_session(db, me)

        elif cmd == "2":
            with SessionLocal() as db:
                name = input_safe("Full name: ").strip()
                email = input_safe("email: ").strip()
                pw = input_password("Choose a password: ").strip()
                if not name or not email or not pw:
                    print("Name, email and password are required.")
                    continue
                try:
                    auth.signup(db, email, pw, name)
                except MedSecureError as e:
                    print(e.message)
                    continue
                print("Account created. Request authorization to use file encryption.")

        elif cmd == "3":
            print("Goodbye."); sys.exit(0)
        else:
            print("Invalid choice.")

if __name__ == "__main__":
    main()
