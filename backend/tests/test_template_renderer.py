"""
Agreement rendering: deterministic text and SHA256, jurisdiction line, signature evidence blocks.
"""
import sys
from pathlib import Path
from datetime import datetime, timedelta, timezone

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from services.contract_variables import derive_contract_variables
from services.template_renderer import (
    AGREEMENT_TITLE,
    agreement_renderer,
    compute_sha256,
    format_execution_timestamp,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _variables(**deal_overrides):
    deal = {
        "deal_amount": 15000,
        "deliverables": [{"platform": "Instagram", "contentType": "Reel", "quantity": 1}],
        "due_date": (NOW + timedelta(days=10)).isoformat(),
    }
    deal.update(deal_overrides)
    return derive_contract_variables(
        deal,
        {"name": "Glow Labs Pvt Ltd", "address": "Plot 4, Andheri East, Mumbai, Maharashtra 400069", "email": "legal@glowlabs.in"},
        {"name": "Asha Verma", "address": "12 MG Road, Pune, Maharashtra 411001", "email": "asha@example.com"},
        now=NOW,
    )


def test_agreement_carries_terms():
    text = agreement_renderer.render(_variables())
    assert text.startswith(AGREEMENT_TITLE)
    assert "19 October 2026" in text
    assert "• Total Fee: ₹15,000 (Rupees Fifteen Thousand Only)" in text
    assert "One Instagram Reel" in text
    assert "Jurisdiction: Courts of Pune, India" in text
    assert "giving 7 days' written notice" in text
    assert "No exclusivity period applies." in text
    assert "12. Entire Agreement" in text


def test_exclusivity_details_listed():
    text = agreement_renderer.render(
        _variables(exclusivity_enabled=True, exclusivity_category="Skincare", exclusivity_duration="60 days")
    )
    assert "• Category: Skincare\n• Duration: 60 days" in text


def test_unsigned_parties_show_pending():
    text = agreement_renderer.render(_variables())
    assert text.count("Status: Pending signature") == 2
    assert "IP Address:" not in text


def test_signature_evidence_rendered():
    signed_at = datetime(2026, 10, 19, 10, 15, 10, tzinfo=timezone.utc)
    signatures = {
        "brand": {
            "otp_verified_at": signed_at - timedelta(minutes=1),
            "signed_at": signed_at,
            "ip_address": "49.36.10.2",
            "user_agent": "Mozilla/5.0 Chrome/126.0",
        }
    }
    text = agreement_renderer.render(_variables(), signatures)
    assert "OTP Verified: 19 October 2026, 03:44:10 pm IST" in text
    assert "IP Address: 49.36.10.2" in text
    assert "Device: Mozilla/5.0 Chrome/126.0" in text
    assert "Executed At: 19 October 2026, 03:45:10 pm IST" in text
    assert text.count("Status: Pending signature") == 1


def test_render_is_deterministic():
    first = agreement_renderer.render(_variables())
    second = agreement_renderer.render(_variables())
    assert first == second
    assert compute_sha256(first) == compute_sha256(second.encode("utf-8"))
    assert len(compute_sha256(first)) == 64


def test_hash_changes_with_amount():
    assert compute_sha256(agreement_renderer.render(_variables())) != compute_sha256(
        agreement_renderer.render(_variables(deal_amount=15001))
    )


def test_execution_timestamp_formats():
    assert format_execution_timestamp(None) is None
    assert format_execution_timestamp("2026-10-19T00:00:00Z") == "19 October 2026, 05:30:00 am IST"
    assert format_execution_timestamp("whenever") == "whenever"
