import argparse

from db import engine, Base, SessionLocal
from models import User, AuthorizationRequest, AuditLog
from audit import add_audit_log
from config import DB_URL, BOOTSTRAP_ADMIN


def promote_admin(email: str) -> bool:
    """Give an existing account the admin role; admin is not reachable any other way."""
    with SessionLocal() as db:
        user = db.query(User).filter_by(email=email.strip().lower()).first()
        if not user:
            return False
        user.role = "admin"
        db.commit()
        add_audit_log(db, None, f"Role updated for {user.name} to admin", {
            "userId": user.id,
            "newRole": "admin",
            "updatedBy": "bootstrap",
        })
        return True


def main():
    ap = argparse.ArgumentParser(description="Create MedSecure tables and optionally bootstrap an admin")
    ap.add_argument("--promote-admin", default=BOOTSTRAP_ADMIN, help="Email of an existing account to make admin")
    args = ap.parse_args()

    print(f"Initializing database at: {DB_URL}")
    Base.metadata.create_all(engine)
    print(f"Tables created: {User.__tablename__}, {AuthorizationRequest.__tablename__}, {AuditLog.__tablename__}")

    if args.promote_admin:
        if promote_admin(args.promote_admin):
            print(f"{args.promote_admin} is now an admin.")
        else:
            print(f"No account with email {args.promote_admin}; sign up first, then rerun.")

if __name__ == "__main__":
    main()
