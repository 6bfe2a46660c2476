import pytest
from sqlalchemy.exc import IntegrityError

import audit
import envelope
import gate
from config import MAGIC
from errors import (
    AccessDenied, NotFound, RequestAlreadyDecided, DuplicateRequest, NotThisPlatform, MalformedPayload,
    SignatureMismatch, StoreUnavailable,
)
from models import AuditLog, AuthorizationRequest


def single_audit(db, prefix):
    # the single entry whose action starts with prefix
    matches = [e for e in db.query(AuditLog).all() if e.action.startswith(prefix)]
    assert len(matches) == 1, [e.action for e in matches]
    return matches[0]


@pytest.mark.parametrize("role,allowed", [
    ("user", False),
    ("authorized", True),
    ("admin", True),
    ("", False),
    (None, False),
    ("Admin", False),
])
def test_can_invoke(role, allowed):
    assert gate.can_invoke(role) is allowed


class TestCodecGate:
    def test_user_role_never_reaches_codec(self, db, plain_user, audit_count, monkeypatch):
        def boom(*a, **kw):
            raise AssertionError("codec must not run")
        monkeypatch.setattr(envelope, "encode_with_metadata", boom)
        monkeypatch.setattr(envelope, "decode", boom)
        with pytest.raises(AccessDenied):
            gate.encrypt_file(db, plain_user, b"x", "x.txt")
        with pytest.raises(AccessDenied):
            gate.decrypt_file(db, plain_user, "anything")
        assert audit_count() == 0

    def test_encrypt_emits_one_audit_entry(self, db, authorized_user, audit_count):
        sealed, meta = gate.encrypt_file(db, authorized_user, b"12345", "labs.csv", "text/csv")
        assert sealed.startswith(envelope.PREFIX)
        assert audit_count() == 1
        entry = single_audit(db, "File encrypted")
        assert entry.user_id == authorized_user.id
        assert entry.action == "File encrypted: labs.csv"
        assert entry.details == {"originalFileName": "labs.csv", "fileSize": 5, "action": "file_encryption"}

    def test_decrypt_emits_one_audit_entry(self, db, admin, audit_count):
        sealed = envelope.encode(b"abc", "xray.png", "image/png")
        decoded = gate.decrypt_file(db, admin, sealed)
        assert decoded.content() == b"abc"
        assert audit_count() == 1
        entry = single_audit(db, "File decrypted")
        assert entry.action == "File decrypted: xray.png"
        assert entry.details["action"] == "file_decryption"
        assert entry.details["fileSize"] == 3

    def test_failed_decrypt_emits_nothing(self, db, authorized_user, audit_count):
        with pytest.raises(NotThisPlatform):
            gate.decrypt_file(db, authorized_user, "hello world")
        forged = envelope.seal_payload(envelope.serialize_payload(
            {"originalName": "a", "mimeType": "", "size": 0, "encryptedAt": "", "signature": "OTHER"}, ""))
        with pytest.raises(SignatureMismatch):
            gate.decrypt_file(db, authorized_user, forged)
        assert audit_count() == 0

    def test_bad_file_data_emits_nothing(self, db, authorized_user, audit_count):
        bad = envelope.seal_payload(envelope.serialize_payload(
            {"originalName": "a.png", "mimeType": "", "size": 3, "encryptedAt": "", "signature": MAGIC}, "***"))
        with pytest.raises(MalformedPayload):
            gate.decrypt_file(db, authorized_user, bad)
        assert audit_count() == 0

    def test_audit_failure_does_not_fail_transform(self, db, authorized_user, monkeypatch, caplog):
        def unavailable(*a, **kw):
            raise StoreUnavailable()
        monkeypatch.setattr(audit, "add_audit_log", unavailable)
        sealed = envelope.encode(b"payload", "p.bin")
        decoded = gate.decrypt_file(db, authorized_user, sealed)
        assert decoded.content() == b"payload"
        assert "audit write failed" in caplog.text


class TestRoles:
    def test_admin_sets_role(self, db, admin, plain_user, audit_count):
        updated = gate.set_role(db, admin, plain_user.id, "authorized")
        assert updated.role == "authorized"
        assert audit_count() == 1
        entry = single_audit(db, "Role updated")
        assert entry.action == "Role updated for Pat to authorized"
        assert entry.details == {"userId": plain_user.id, "newRole": "authorized", "updatedBy": "admin"}

    def test_admin_can_grant_admin(self, db, admin, plain_user):
        assert gate.set_role(db, admin, plain_user.id, "admin").role == "admin"

    @pytest.mark.parametrize("who", ["plain_user", "authorized_user"])
    def test_non_admin_cannot_set_roles(self, request, db, plain_user, who):
        actor = request.getfixturevalue(who)
        with pytest.raises(AccessDenied):
            gate.set_role(db, actor, plain_user.id, "admin")

    def test_unknown_user(self, db, admin):
        with pytest.raises(NotFound):
            gate.set_role(db, admin, "missing", "user")

    def test_invalid_role(self, db, admin, plain_user):
        with pytest.raises(ValueError):
            gate.set_role(db, admin, plain_user.id, "superuser")

    def test_list_users_is_admin_only(self, db, admin, plain_user):
        assert {u.email for u in gate.list_users(db, admin)} == {admin.email, plain_user.email}
        with pytest.raises(AccessDenied):
            gate.list_users(db, plain_user)


class TestRequestLifecycle:
    def test_new_request_is_pending(self, db, plain_user, audit_count):
        req = gate.submit_request(db, plain_user, "Decrypt lab files", "Attending physician")
        assert req.status == "pending"
        assert req.user_name == "Pat"
        assert req.user_email == "pat@example.org"
        assert audit_count() == 1

    def test_only_one_pending_request(self, db, plain_user):
        gate.submit_request(db, plain_user, "a", "b")
        with pytest.raises(DuplicateRequest):
            gate.submit_request(db, plain_user, "again", "please")

    def test_concurrent_submissions_leave_one_pending(self, db, plain_user, monkeypatch):
        # both callers passed the pending check before either committed
        monkeypatch.setattr(gate, "_pending_request", lambda db, user_id: None)
        gate.submit_request(db, plain_user, "a", "b")
        with pytest.raises(DuplicateRequest):
            gate.submit_request(db, plain_user, "again", "please")
        assert db.query(AuthorizationRequest).filter_by(user_id=plain_user.id, status="pending").count() == 1
        single_audit(db, "Authorization request submitted")

    def test_store_rejects_second_pending_row(self, db, plain_user):
        for _ in range(2):
            db.add(AuthorizationRequest(user_id=plain_user.id, user_name="Pat", user_email="pat@example.org",
                                        description="a", reason="b", status="pending"))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_authorized_users_cannot_request(self, db, authorized_user):
        with pytest.raises(AccessDenied):
            gate.submit_request(db, authorized_user, "a", "b")

    def test_approve_upgrades_requester(self, db, admin, plain_user, audit_count):
        req = gate.submit_request(db, plain_user, "a", "b")
        before = audit_count()
        decided = gate.decide_request(db, admin, req.id, "approved")
        assert decided.status == "approved"
        assert decided.decided_by == admin.id
        assert decided.decided_at is not None
        db.refresh(plain_user)
        assert plain_user.role == "authorized"
        assert audit_count() == before + 1
        entry = single_audit(db, "Access granted")
        assert entry.action == "Access granted to Pat - upgraded to authorized"
        assert entry.details == {"userId": plain_user.id, "requestId": req.id, "action": "role_upgrade"}

    def test_reject_leaves_role(self, db, admin, plain_user, audit_count):
        req = gate.submit_request(db, plain_user, "a", "b")
        before = audit_count()
        decided = gate.decide_request(db, admin, req.id, "rejected")
        assert decided.status == "rejected"
        db.refresh(plain_user)
        assert plain_user.role == "user"
        assert audit_count() == before + 1
        assert single_audit(db, "Authorization request rejected").details["action"] == "request_rejected"

    def test_second_decision_is_refused(self, db, admin, plain_user, audit_count):
        req = gate.submit_request(db, plain_user, "a", "b")
        gate.decide_request(db, admin, req.id, "rejected")
        count = audit_count()
        with pytest.raises(RequestAlreadyDecided):
            gate.decide_request(db, admin, req.id, "approved")
        db.refresh(plain_user)
        assert plain_user.role == "user"
        assert db.get(AuthorizationRequest, req.id).status == "rejected"
        assert audit_count() == count

    def test_reapproval_applies_no_second_role_change(self, db, admin, plain_user):
        req = gate.submit_request(db, plain_user, "a", "b")
        gate.decide_request(db, admin, req.id, "approved")
        gate.set_role(db, admin, plain_user.id, "user")
        with pytest.raises(RequestAlreadyDecided):
            gate.decide_request(db, admin, req.id, "approved")
        db.refresh(plain_user)
        assert plain_user.role == "user"

    def test_approval_never_downgrades(self, db, admin, plain_user):
        req = gate.submit_request(db, plain_user, "a", "b")
        gate.set_role(db, admin, plain_user.id, "admin")
        gate.decide_request(db, admin, req.id, "approved")
        db.refresh(plain_user)
        assert plain_user.role == "admin"

    def test_non_admin_cannot_decide(self, db, authorized_user, plain_user):
        req = gate.submit_request(db, plain_user, "a", "b")
        with pytest.raises(AccessDenied):
            gate.decide_request(db, authorized_user, req.id, "approved")
        assert db.get(AuthorizationRequest, req.id).status == "pending"

    def test_unknown_request(self, db, admin):
        with pytest.raises(NotFound):
            gate.decide_request(db, admin, "nope", "approved")

    def test_invalid_decision(self, db, admin, plain_user):
        req = gate.submit_request(db, plain_user, "a", "b")
        with pytest.raises(ValueError):
            gate.decide_request(db, admin, req.id, "pending")

    def test_new_request_allowed_after_rejection(self, db, admin, plain_user):
        first = gate.submit_request(db, plain_user, "a", "b")
        gate.decide_request(db, admin, first.id, "rejected")
        second = gate.submit_request(db, plain_user, "c", "d")
        assert second.id != first.id
        assert [r.id for r in gate.list_my_requests(db, plain_user)][0] == second.id

    def test_list_requests_newest_first(self, db, admin, plain_user, make_user):
        other = make_user("lee@example.org")
        first = gate.submit_request(db, plain_user, "a", "b")
        second = gate.submit_request(db, other, "c", "d")
        assert [r.id for r in gate.list_requests(db, admin)] == [second.id, first.id]
        with pytest.raises(AccessDenied):
            gate.list_requests(db, plain_user)
