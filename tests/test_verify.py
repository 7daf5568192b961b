import dataclasses

import pytest

from docauth.agreement import accept_agreement, create_agreement
from docauth.authority import build_authority
from docauth.core import b64url_decode, b64url_encode, canonical_json_bytes
from docauth.lifecycle import create_certificate, update_field
from docauth.quote import build_quote
from docauth.sicar import Certificate, DeviceRecord, LifecycleStage, Role
from docauth.tokens import (
    build_agreement_token,
    build_resume_payload,
    build_sicar_token,
    create_resume_token,
    decode_token,
    encode_token,
)
from docauth.verify import (
    REASON_MISMATCH,
    REASON_PARAMETERS,
    STATUS_INVALID,
    STATUS_VERIFIED,
    parse_verify_url,
    resume_from_token,
    verify_token,
    verify_url,
)


def _tamper(token, **changes):
    payload = decode_token(token)
    payload.update(changes)
    return encode_token(payload)


class TestVerifyToken:

    def test_quote_verifies(self, a2_quote):
        result = verify_token("QUOTE", create_resume_token(a2_quote))
        assert result.status == STATUS_VERIFIED
        assert result.verified
        assert result.computed_hash == a2_quote.quote_hash
        assert result.document.pricing.total == 5590

    def test_agreement_verifies(self, a2_quote):
        context = accept_agreement(create_agreement(a2_quote), "Ada Lovelace", "2025-03-04")
        result = verify_token("AGREEMENT", build_agreement_token(context))
        assert result.verified
        assert result.expected_hash == context.acceptance.agreement_hash

    def test_unaccepted_agreement_verifies(self, a2_quote):
        assert verify_token("AGREEMENT", build_agreement_token(create_agreement(a2_quote))).verified

    def test_sicar_verifies(self):
        cert = update_field(create_certificate(), "customer_name", "Ada", Role.CUSTOMER).certificate
        assert verify_token("SICAR", build_sicar_token(cert)).verified

    def test_certificate_with_blank_device_fields_verifies(self):
        devices = (
            DeviceRecord(id="d-1", system_name="Hub", manufacturer=None, model=None),
            DeviceRecord(id="d-2", system_name="Hub", model="H-1", serial_number=None),
        )
        cert = Certificate(lifecycle_stage=LifecycleStage.INSTALLATION, devices=devices)
        assert verify_token("SICAR", build_sicar_token(cert)).verified

    @pytest.mark.parametrize("doc", ["QUOTE", "AGREEMENT", "SICAR"])
    def test_deeply_nested_token_is_invalid(self, doc):
        token = b64url_encode(b"{\"a\":" * 50000 + b"1" + b"}" * 50000)
        result = verify_token(doc, token)
        assert result.status == STATUS_INVALID
        assert result.reason.startswith("Invalid ")

    @pytest.mark.parametrize("doc,token", [(None, "abc"), ("QUOTE", ""), ("INVOICE", "abc"), ("quote", None)])
    def test_missing_parameters(self, doc, token):
        result = verify_token(doc, token)
        assert result.status == STATUS_INVALID
        assert result.reason == REASON_PARAMETERS

    @pytest.mark.parametrize(
        "doc,reason",
        [
            ("QUOTE", "Invalid quote token."),
            ("AGREEMENT", "Invalid agreement token."),
            ("SICAR", "Invalid SICAR token."),
        ],
    )
    def test_garbage_tokens(self, doc, reason):
        result = verify_token(doc, "%%%garbage")
        assert result.reason == reason

    def test_wrong_document_type(self, a2_quote):
        result = verify_token("SICAR", create_resume_token(a2_quote))
        assert result.reason == "Invalid SICAR token."

    def test_tampered_quote_mismatch(self, a2_quote):
        token = _tamper(create_resume_token(a2_quote), customer_name="Mallory")
        result = verify_token("QUOTE", token)
        assert result.reason == REASON_MISMATCH
        assert result.expected_hash == a2_quote.quote_hash
        assert result.computed_hash != a2_quote.quote_hash

    def test_tampered_add_ons_mismatch(self, a2_quote):
        token = _tamper(create_resume_token(a2_quote), add_on_keys=["gentle-checkin"])
        assert verify_token("QUOTE", token).reason == REASON_MISMATCH

    def test_unknown_tier_is_invalid_token(self, a2_quote):
        token = _tamper(create_resume_token(a2_quote), tier_key="Z9")
        assert verify_token("QUOTE", token).reason == "Invalid quote token."

    def test_tampered_agreement_acceptance(self, a2_quote):
        context = accept_agreement(create_agreement(a2_quote), "Ada Lovelace", "2025-03-04")
        payload = decode_token(build_agreement_token(context))
        payload["acceptance"]["full_name"] = "Mallory"
        assert verify_token("AGREEMENT", encode_token(payload)).reason == REASON_MISMATCH

    def test_tampered_certificate(self):
        cert = create_certificate()
        payload = decode_token(build_sicar_token(cert))
        payload["certificate"]["immutable"] = True
        assert verify_token("SICAR", encode_token(payload)).reason == REASON_MISMATCH

    def test_result_dict(self, a2_quote):
        d = verify_token("QUOTE", create_resume_token(a2_quote)).to_dict()
        assert d["status"] == "verified"
        assert d["doc_type"] == "QUOTE"
        assert "reason" not in d


class TestVerifyUrl:

    def test_authority_verification_url_verifies(self, a2_quote):
        meta = build_authority(a2_quote)
        assert verify_url(meta.verification_url).verified

    def test_agreement_url(self, a2_quote):
        meta = build_authority(create_agreement(a2_quote))
        assert verify_url(meta.verification_url).verified

    def test_parse(self):
        assert parse_verify_url("https://x.test/verify?doc=SICAR&t=abc") == ("SICAR", "abc")
        assert parse_verify_url("https://x.test/verify") == (None, None)

    def test_missing_doc(self):
        assert verify_url("https://x.test/verify?t=abc").reason == REASON_PARAMETERS


class TestResume:

    def test_missing(self):
        assert resume_from_token(None).status == "missing"

    def test_invalid(self):
        assert resume_from_token("nope!").status == "invalid"

    def test_unknown_tier_invalid(self, a2_quote):
        payload = build_resume_payload(a2_quote)
        payload["tier_key"] = "Z9"
        assert resume_from_token(encode_token(payload)).status == "invalid"

    @pytest.mark.parametrize(
        "step,expected_step,path",
        [
            (None, "agreement", "/agreementReview"),
            ("payment", "payment", "/payment"),
            ("schedule", "schedule", "/schedule"),
            ("teleport", "agreement", "/agreementReview"),
        ],
    )
    def test_restored(self, a2_quote, step, expected_step, path):
        outcome = resume_from_token(create_resume_token(a2_quote), step)
        assert outcome.status == "restored"
        assert outcome.step == expected_step
        assert outcome.path == path
        assert outcome.quote.quote_hash == a2_quote.quote_hash


class TestEndToEnd:

    def test_a2_with_two_add_ons(self):
        first = build_quote("A2", ["gentle-checkin", "door-awareness"], generated_at="2025-03-01T08:00:00Z")
        second = build_quote("A2", ["door-awareness", "gentle-checkin"], generated_at="2025-03-01T08:00:00Z")
        assert first.pricing.total == 5590
        assert first.reference == "KAEC-A2-20250301"
        assert first.quote_hash == second.quote_hash

        meta = build_authority(first)
        assert meta.reference == "KAEC-A2-20250301"
        assert verify_url(meta.verification_url).verified

    def test_token_bytes_are_canonical_json(self, a2_quote):
        token = create_resume_token(a2_quote)
        assert b64url_decode(token) == canonical_json_bytes(build_resume_payload(a2_quote))
        assert token == b64url_encode(canonical_json_bytes(build_resume_payload(a2_quote)))

    def test_agreement_token_with_foreign_hash_mismatches(self, a2_quote):
        context = create_agreement(a2_quote)
        token = build_agreement_token(context, "f" * 64)
        assert verify_token("AGREEMENT", token).reason == REASON_MISMATCH

    def test_changed_document_version_breaks_old_quote(self, a2_quote):
        token = create_resume_token(dataclasses.replace(a2_quote, quote_doc_version="v0.9"))
        assert verify_token("QUOTE", token).reason == REASON_MISMATCH
