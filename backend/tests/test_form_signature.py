import hashlib
from datetime import date, datetime

import pytest

from portal.core.exceptions import SignatureError, SignatureNotFound
from portal.models.audit import AuditLog
from portal.models.signature import FormSignature
from portal.services.form_signature import (
    binding_hash,
    create_signature,
    device_fingerprint,
    format_signed_at,
    hash_form_data,
    signature_hash,
    verify_signature,
)

FORM = {"firstName": "Jane", "lastName": "Doe", "ssnLast4": "1234", "allowances": 2}
SIGNED_AT = datetime(2025, 1, 15, 14, 0, 5, 123456)


def _sign(db, worker, **overrides):
    params = dict(
        form_id="fw4",
        form_type="w4",
        user_id=worker.id,
        signature_role="employee",
        signature_data="Jane Doe",
        signature_type="typed",
        form_data=FORM,
        ip_address="10.0.0.5",
        user_agent="KioskBrowser/1.0",
        session_id="session-abc",
        signed_at=SIGNED_AT,
    )
    params.update(overrides)
    return create_signature(db, **params)


class TestHashes:
    def test_form_hash_is_compact_json(self):
        expected = hashlib.sha256(
            '{"firstName":"Jane","lastName":"Doe","ssnLast4":"1234","allowances":2}'.encode()
        ).hexdigest()
        assert hash_form_data(FORM) == expected

    def test_form_hash_depends_on_key_order(self):
        reordered = {"lastName": "Doe", "firstName": "Jane", "ssnLast4": "1234", "allowances": 2}
        assert hash_form_data(reordered) != hash_form_data(FORM)

    def test_signed_at_has_millisecond_precision(self):
        assert format_signed_at(SIGNED_AT) == "2025-01-15T14:00:05.123Z"

    def test_signature_and_binding_formulas(self):
        sig = signature_hash("Jane Doe", SIGNED_AT, 7, "10.0.0.5")
        assert sig == hashlib.sha256(
            b"Jane Doe-2025-01-15T14:00:05.123Z-7-10.0.0.5"
        ).hexdigest()
        bind = binding_hash("f" * 64, sig, SIGNED_AT, 7, "10.0.0.5", "s1")
        assert bind == hashlib.sha256(
            f"{'f' * 64}-{sig}-2025-01-15T14:00:05.123Z-7-10.0.0.5-s1".encode()
        ).hexdigest()

    def test_device_fingerprint_uses_calendar_day(self):
        assert device_fingerprint("UA", "1.2.3.4", date(2025, 1, 15)) == hashlib.sha256(
            b"UA-1.2.3.4-Wed Jan 15 2025"
        ).hexdigest()


class TestCreateSignature:
    def test_persists_binding_and_audit(self, db, worker):
        signature = _sign(db, worker)

        assert signature.id is not None
        assert signature.signed_at == datetime(2025, 1, 15, 14, 0, 5, 123000)
        assert signature.form_data_hash == hash_form_data(FORM)
        assert signature.is_valid is True
        assert signature.verification_attempts == 0

        audit = db.query(AuditLog).filter(AuditLog.action == "signed").one()
        assert audit.user_id == worker.id
        assert audit.resource_id == "fw4"
        assert audit.details["signature_id"] == signature.id

    def test_employer_fields(self, db, worker):
        signature = _sign(
            db, worker,
            form_id="i9",
            form_type="i9",
            signature_role="employer",
            signature_type="drawn",
            signature_data="data:image/png;base64,AAAA",
            employer_title="HR Lead",
            documents_examined=[{"list": "A", "document": "Passport"}],
            examination_date=date(2025, 1, 14),
        )
        assert signature.employer_title == "HR Lead"
        assert signature.documents_examined[0]["document"] == "Passport"

    @pytest.mark.parametrize("overrides", [
        {"signature_role": "witness"},
        {"signature_type": "stamped"},
        {"form_id": ""},
        {"signature_data": ""},
    ])
    def test_rejects_bad_input(self, db, worker, overrides):
        with pytest.raises(SignatureError):
            _sign(db, worker, **overrides)
        assert db.query(FormSignature).count() == 0


class TestVerifySignature:
    def test_intact_form(self, db, worker):
        signature = _sign(db, worker)

        result = verify_signature(db, signature.id, dict(FORM))

        assert result["valid"] is True
        assert result["details"]["verification_attempts"] == 1
        db.refresh(signature)
        assert signature.last_verified_at is not None

    def test_modified_form(self, db, worker):
        signature = _sign(db, worker)

        result = verify_signature(db, signature.id, {**FORM, "allowances": 5})

        assert result["valid"] is False
        assert "modified" in result["message"]
        db.refresh(signature)
        assert signature.is_valid is False
        audit = db.query(AuditLog).filter(AuditLog.action == "verified").one()
        assert audit.success is False

    def test_tampered_record(self, db, worker):
        signature = _sign(db, worker)
        signature.signature_data = "Someone Else"
        db.commit()

        result = verify_signature(db, signature.id, FORM)

        assert result["valid"] is False
        assert "binding" in result["message"]

    def test_attempts_accumulate(self, db, worker):
        signature = _sign(db, worker)
        verify_signature(db, signature.id, FORM)
        result = verify_signature(db, signature.id, FORM)
        assert result["details"]["verification_attempts"] == 2

    def test_unknown_signature(self, db):
        with pytest.raises(SignatureNotFound):
            verify_signature(db, 404, FORM)
