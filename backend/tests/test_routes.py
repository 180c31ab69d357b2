"""
HTTP surface: auth, party checks and error-to-status mapping for deals, OTP and signing routes.
Services are patched; these tests only exercise the FastAPI layer.
"""
import pytest
import sys
from pathlib import Path
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from auth import create_access_token
from services.errors import (
    DealDeletionRefusedError,
    FormattingInvariantError,
    InvalidTransitionError,
    OTPError,
    SignatureConflictError,
    ValidationError,
)

CREATOR_EMAIL = "asha@example.com"
BRAND_EMAIL = "legal@glowlabs.in"
DEAL = {
    "deal_id": "deal-1",
    "creator_id": "user-1",
    "creator_email": CREATOR_EMAIL,
    "brand_email": BRAND_EMAIL,
    "brand_response_status": "accepted",
}


def _headers(email, user_id=None):
    claims = {"email": email}
    if user_id:
        claims["user_id"] = user_id
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


CREATOR = _headers(CREATOR_EMAIL, "user-1")
BRAND = _headers(BRAND_EMAIL)
STRANGER = _headers("someone@else.com")


@pytest.fixture
def deal_lookup():
    with patch("services.deal_service.get_deal", new_callable=AsyncMock, return_value=dict(DEAL)) as get_deal:
        yield get_deal


def test_health(client):
    assert client.get("/api/health").json()["status"] == "healthy"


def test_requires_token(client):
    assert client.get("/api/deals/deal-1/status").status_code == 401
    assert client.get("/api/deals/deal-1/status", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_stranger_is_forbidden(client, deal_lookup):
    assert client.get("/api/deals/deal-1/status", headers=STRANGER).status_code == 403


def test_unknown_deal_is_404(client):
    from services.errors import DealNotFoundError

    with patch("services.deal_service.get_deal", new_callable=AsyncMock, side_effect=DealNotFoundError("x")):
        assert client.get("/api/deals/deal-1/status", headers=CREATOR).status_code == 404


def test_status_for_brand(client, deal_lookup):
    overview = {"deal_id": "deal-1", "contract_status": "Accepted", "signatures": {}}
    with patch("services.deal_service.get_deal_overview", new_callable=AsyncMock, return_value=overview) as get_overview:
        response = client.get("/api/deals/deal-1/status", headers=BRAND)
    assert response.status_code == 200
    assert response.json()["contract_status"] == "Accepted"
    get_overview.assert_called_once_with("deal-1", BRAND_EMAIL)


def test_create_deal_defaults_creator_email(client):
    with patch("services.deal_service.create_deal", new_callable=AsyncMock, return_value={"deal_id": "d"}) as create:
        response = client.post(
            "/api/deals",
            json={"creator_id": "user-1", "brand_name": "Glow Labs Pvt Ltd", "deal_amount": 15000},
            headers=CREATOR,
        )
    assert response.status_code == 201
    assert create.call_args[0][0].creator_email == CREATOR_EMAIL


def test_create_deal_ignores_lifecycle_fields(client):
    with patch("services.deal_service.create_deal", new_callable=AsyncMock, return_value={"deal_id": "d"}) as create:
        response = client.post(
            "/api/deals",
            json={
                "creator_id": "user-1",
                "brand_name": "Glow Labs Pvt Ltd",
                "deal_amount": 15000,
                "brand_response_status": "accepted_verified",
                "deal_execution_status": "signed",
                "signed_contract_url": "https://files.example.com/signed.pdf",
                "contract_version": 7,
                "deleting_at": "2026-10-19T00:00:00Z",
            },
            headers=CREATOR,
        )
    assert response.status_code == 201
    deal = create.call_args[0][0]
    assert deal.brand_response_status.value == "pending"
    assert deal.deal_execution_status is None
    assert deal.signed_contract_url is None
    assert deal.contract_version is None
    assert deal.deleting_at is None


def test_create_deal_rejects_negative_amount(client):
    response = client.post(
        "/api/deals",
        json={"creator_id": "user-1", "brand_name": "Glow Labs", "deal_amount": -1},
        headers=CREATOR,
    )
    assert response.status_code == 422
    assert "request_id" in response.json()


def test_only_brand_can_respond(client, deal_lookup):
    response = client.post("/api/deals/deal-1/brand-response", json={"status": "accepted"}, headers=CREATOR)
    assert response.status_code == 403


def test_invalid_brand_response_is_409(client, deal_lookup):
    with patch(
        "services.deal_service.record_brand_response",
        new_callable=AsyncMock,
        side_effect=InvalidTransitionError("Cannot move brand response from accepted_verified to rejected"),
    ):
        response = client.post("/api/deals/deal-1/brand-response", json={"status": "rejected"}, headers=BRAND)
    assert response.status_code == 409


def test_brand_response_cannot_claim_verified_acceptance(client, deal_lookup):
    with patch("services.deal_service.database.get_db") as get_db:
        response = client.post(
            "/api/deals/deal-1/brand-response", json={"status": "accepted_verified"}, headers=BRAND
        )
    assert response.status_code == 409
    get_db.assert_not_called()


def test_generate_contract_lists_missing_fields(client, deal_lookup):
    missing = ["Brand legal name", "Creator address (must include city and state)"]
    with patch("services.deal_service.generate_contract", new_callable=AsyncMock, side_effect=ValidationError(missing)):
        response = client.post("/api/deals/deal-1/contract", headers=CREATOR)
    assert response.status_code == 422
    assert response.json()["detail"]["missing_fields"] == missing


def test_generate_contract_before_acceptance_is_409(client, deal_lookup):
    with patch("services.deal_service.generate_contract", new_callable=AsyncMock, side_effect=InvalidTransitionError("not accepted")):
        response = client.post("/api/deals/deal-1/contract", headers=CREATOR)
    assert response.status_code == 409


def test_formatting_failure_is_500(client, deal_lookup):
    with patch("services.deal_service.generate_contract", new_callable=AsyncMock, side_effect=FormattingInvariantError("no symbol")):
        response = client.post("/api/deals/deal-1/contract", headers=CREATOR)
    assert response.status_code == 500


def test_generate_contract_success(client, deal_lookup):
    record = {"version": 1, "content_hash": "ab" * 32, "variables": {"jurisdiction_city": "Pune"}, "content": "..."}
    with patch("services.deal_service.generate_contract", new_callable=AsyncMock, return_value=record):
        response = client.post("/api/deals/deal-1/contract", headers=CREATOR)
    assert response.status_code == 200
    assert response.json()["version"] == 1


def test_brand_cannot_generate(client, deal_lookup):
    assert client.post("/api/deals/deal-1/contract", headers=BRAND).status_code == 403


def test_delete_refused_is_409(client, deal_lookup):
    with patch("services.deal_service.delete_deal", new_callable=AsyncMock, side_effect=DealDeletionRefusedError("signed")):
        response = client.delete("/api/deals/deal-1", headers=CREATOR)
    assert response.status_code == 409


def test_otp_send_only_for_role_holder(client, deal_lookup):
    response = client.post("/api/deals/deal-1/otp/send", json={"role": "brand"}, headers=CREATOR)
    assert response.status_code == 403


def test_otp_send_rate_limited_is_429(client, deal_lookup):
    with patch("routes.otp.issue_otp", new_callable=AsyncMock, side_effect=OTPError(OTPError.RATE_LIMITED)):
        response = client.post("/api/deals/deal-1/otp/send", json={"role": "brand"}, headers=BRAND)
    assert response.status_code == 429
    assert response.json()["detail"]["reason"] == "rate_limited"


def test_otp_send_never_returns_code(client, deal_lookup):
    expires = datetime(2026, 10, 19, 12, 10, tzinfo=timezone.utc)
    with patch("routes.otp.issue_otp", new_callable=AsyncMock, return_value={"expires_at": expires, "delivered": True}):
        response = client.post("/api/deals/deal-1/otp/send", json={"role": "creator"}, headers=CREATOR)
    assert response.status_code == 200
    body = response.json()
    assert body["expires_at"] == expires.isoformat()
    assert "code" not in body


@pytest.mark.parametrize("reason", ["expired", "mismatch", "no_active_challenge", "too_many_attempts"])
def test_otp_verify_failures_are_400(client, deal_lookup, reason):
    with patch("routes.otp.verify_otp", new_callable=AsyncMock, side_effect=OTPError(reason)):
        response = client.post("/api/deals/deal-1/otp/verify", json={"role": "brand", "code": "123456"}, headers=BRAND)
    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == reason


def test_otp_verify_idempotent_success(client, deal_lookup):
    verified_at = datetime(2026, 10, 19, 12, 1, tzinfo=timezone.utc)
    with patch(
        "routes.otp.verify_otp",
        new_callable=AsyncMock,
        return_value={"verified": True, "already_verified": True, "verified_at": verified_at},
    ):
        response = client.post("/api/deals/deal-1/otp/verify", json={"role": "brand", "code": "123456"}, headers=BRAND)
    assert response.status_code == 200
    assert response.json() == {"status": "verified", "already_verified": True, "verified_at": verified_at.isoformat()}


def test_sign_passes_request_evidence(client, deal_lookup):
    signed_at = datetime(2026, 10, 19, 12, 2, tzinfo=timezone.utc)
    with patch(
        "routes.esign.sign_contract",
        new_callable=AsyncMock,
        return_value={"signature_id": "sig-1", "signer_role": "brand", "signed_at": signed_at},
    ) as sign:
        response = client.post(
            "/api/deals/deal-1/sign",
            json={"role": "brand", "signer_name": "Rohan Mehta"},
            headers={**BRAND, "X-Forwarded-For": "49.36.10.2, 10.0.0.1", "User-Agent": "Mozilla/5.0 Chrome/126.0"},
        )
    assert response.status_code == 201
    assert response.json()["signature_id"] == "sig-1"
    kwargs = sign.call_args.kwargs
    assert kwargs["signer_email"] == BRAND_EMAIL
    assert kwargs["ip_address"] == "49.36.10.2"
    assert kwargs["user_agent"] == "Mozilla/5.0 Chrome/126.0"


def test_second_signature_is_409(client, deal_lookup):
    with patch("routes.esign.sign_contract", new_callable=AsyncMock, side_effect=SignatureConflictError("already signed")):
        response = client.post("/api/deals/deal-1/sign", json={"role": "brand", "signer_name": "Rohan"}, headers=BRAND)
    assert response.status_code == 409


def test_audit_trail_for_party(client, deal_lookup):
    entries = [{"action": "contract_generated", "actor_email": "a***@example.com"}]
    with patch("routes.deals.get_audit_logs_for_deal", new_callable=AsyncMock, return_value=entries) as get_logs:
        response = client.get("/api/deals/deal-1/audit?limit=10", headers=BRAND)
    assert response.status_code == 200
    assert response.json()["entries"] == entries
    get_logs.assert_called_once_with("deal-1", limit=10)


def test_audit_trail_hidden_from_strangers(client, deal_lookup):
    assert client.get("/api/deals/deal-1/audit", headers=STRANGER).status_code == 403


def test_correlation_id_echoed(client):
    response = client.get("/api/health", headers={"X-Correlation-ID": "cid-42"})
    assert response.headers["X-Correlation-ID"] == "cid-42"
    assert client.get("/api/health").headers["X-Correlation-ID"]


def test_token_requires_email_claim():
    with pytest.raises(ValueError):
        create_access_token({"user_id": "user-1"})
