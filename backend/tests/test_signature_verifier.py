"""
Signature validity is computed from evidence, never from the stored `signed` flag alone.
"""
import pytest
import sys
from pathlib import Path
from datetime import datetime, timedelta, timezone

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from models import Signature, SignerRole
from services import signature_verifier as sv
from services.signature_verifier import verify_as_signer, verify_for_session, verify_signature

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
DEAL_ID = "deal-1"
BRAND_EMAIL = "legal@glowlabs.in"
CREATOR_EMAIL = "asha@example.com"


def _record(**overrides):
    record = {
        "signature_id": "sig-1",
        "deal_id": DEAL_ID,
        "signer_role": "brand",
        "signer_name": "Rohan Mehta",
        "signer_email": BRAND_EMAIL,
        "signed": True,
        "signed_at": (NOW - timedelta(minutes=5)).isoformat(),
        "otp_verified": True,
        "otp_verified_at": (NOW - timedelta(minutes=6)).isoformat(),
        "ip_address": "49.36.10.2",
        "user_agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Safari/604.1",
    }
    record.update(overrides)
    return record


def test_complete_record_is_valid():
    check = verify_signature(_record(), DEAL_ID, BRAND_EMAIL, now=NOW)
    assert check.valid
    assert check.reason is None


def test_signature_model_is_accepted():
    signature = Signature(
        deal_id=DEAL_ID,
        signer_role=SignerRole.BRAND,
        signer_name="Rohan Mehta",
        signer_email=BRAND_EMAIL,
        signed_at=NOW - timedelta(minutes=1),
        otp_verified=True,
        otp_verified_at=NOW - timedelta(minutes=2),
        ip_address="49.36.10.2",
        user_agent="Mozilla/5.0",
    )
    assert verify_signature(signature, DEAL_ID, BRAND_EMAIL, now=NOW).valid


@pytest.mark.parametrize(
    "overrides,reason",
    [
        ({"signed": False}, sv.NOT_SIGNED),
        ({"signed": "true"}, sv.NOT_SIGNED),
        ({"signed_at": None}, sv.INVALID_SIGNED_AT),
        ({"signed_at": "yesterday"}, sv.INVALID_SIGNED_AT),
        ({"signed_at": "2019-06-01T00:00:00+00:00"}, sv.SIGNED_AT_TOO_OLD),
        ({"signed_at": (NOW + timedelta(minutes=10)).isoformat()}, sv.SIGNED_AT_IN_FUTURE),
        ({"signer_email": ""}, sv.NO_SIGNER_EMAIL),
        ({"signer_email": "someone@else.com"}, sv.EMAIL_MISMATCH),
        ({"deal_id": "deal-2"}, sv.DEAL_MISMATCH),
        ({"otp_verified": False}, sv.OTP_NOT_VERIFIED),
        ({"otp_verified_at": None}, sv.INVALID_OTP_VERIFIED_AT),
        ({"otp_verified_at": "not-a-date"}, sv.INVALID_OTP_VERIFIED_AT),
        ({"ip_address": None}, sv.MISSING_DEVICE_EVIDENCE),
        ({"user_agent": "  "}, sv.MISSING_DEVICE_EVIDENCE),
    ],
)
def test_breaking_any_check_invalidates(overrides, reason):
    check = verify_signature(_record(**overrides), DEAL_ID, BRAND_EMAIL, now=NOW)
    assert not check.valid
    assert check.reason == reason


def test_missing_record():
    assert verify_signature(None, DEAL_ID, BRAND_EMAIL, now=NOW).reason == sv.NO_SIGNATURE


@pytest.mark.parametrize("email", [None, "", "   "])
def test_missing_session_email_invalidates(email):
    check = verify_signature(_record(), DEAL_ID, email, now=NOW)
    assert check.reason == sv.NO_CURRENT_USER


def test_small_clock_skew_tolerated():
    check = verify_signature(_record(signed_at=(NOW + timedelta(seconds=30)).isoformat()), DEAL_ID, BRAND_EMAIL, now=NOW)
    assert check.valid


def test_epoch_itself_is_too_old():
    check = verify_signature(_record(signed_at="2020-01-01T00:00:00+00:00"), DEAL_ID, BRAND_EMAIL, now=NOW)
    assert check.reason == sv.SIGNED_AT_TOO_OLD


def test_email_comparison_ignores_case():
    assert verify_signature(_record(), DEAL_ID, "Legal@GlowLabs.IN", now=NOW).valid


def test_naive_timestamps_read_as_utc():
    check = verify_signature(_record(signed_at="2026-10-19T11:59:00"), DEAL_ID, BRAND_EMAIL, now=NOW)
    assert check.valid


def test_to_dict():
    assert verify_signature(_record(signed=False), DEAL_ID, BRAND_EMAIL, now=NOW).to_dict() == {
        "valid": False,
        "reason": sv.NOT_SIGNED,
    }


def test_verify_as_signer_uses_record_email():
    assert verify_as_signer(_record(), DEAL_ID, now=NOW).valid
    assert verify_as_signer(_record(signer_email=None), DEAL_ID, now=NOW).reason == sv.NO_CURRENT_USER


def test_session_view_checks_counterparty_against_its_own_signer():
    signatures = {
        "creator": _record(signer_role="creator", signer_email=CREATOR_EMAIL, signature_id="sig-2"),
        "brand": _record(),
    }
    results = verify_for_session(signatures, DEAL_ID, BRAND_EMAIL, now=NOW)
    assert results["creator"].valid
    assert results["brand"].valid


def test_session_view_without_email_marks_everything_invalid():
    results = verify_for_session({"creator": _record(), "brand": None}, DEAL_ID, None, now=NOW)
    assert {r.reason for r in results.values()} == {sv.NO_CURRENT_USER}


def test_session_view_reports_missing_signature():
    results = verify_for_session({"creator": None, "brand": _record()}, DEAL_ID, CREATOR_EMAIL, now=NOW)
    assert results["creator"].reason == sv.NO_SIGNATURE
    assert results["brand"].valid
