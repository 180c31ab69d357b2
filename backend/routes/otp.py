"""
Signing OTP API: POST /api/deals/{deal_id}/otp/send and POST /api/deals/{deal_id}/otp/verify.
The caller must be the deal's registered party for the requested role.
"""
from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field
import logging

from middleware import get_correlation_id, require_auth
from models import SignerRole
from routes.deals import load_deal_for_party
from services.email_service import recipient_for_role
from services.errors import OTPError
from services.otp_service import issue_otp, verify_otp

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/deals", tags=["otp"])


class OtpSendBody(BaseModel):
    role: SignerRole


class OtpVerifyBody(BaseModel):
    role: SignerRole
    code: str = Field(..., min_length=1, max_length=12)


def _ensure_role_holder(deal: dict, role: SignerRole, user: dict):
    registered = (recipient_for_role(role, deal) or "").strip().lower()
    if not registered or registered != (user.get("email") or "").strip().lower():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Only the deal's {role.value} can request this code"
        )


@router.post("/{deal_id}/otp/send")
async def otp_send_endpoint(request: Request, deal_id: str, data: OtpSendBody):
    """Issue a fresh code for (deal, role); any previous code stops working."""
    user = await require_auth(request)
    deal = await load_deal_for_party(deal_id, user)
    _ensure_role_holder(deal, data.role, user)

    try:
        result = await issue_otp(
            deal_id,
            data.role,
            deal,
            correlation_id=get_correlation_id(request),
            actor_email=user["email"],
        )
    except OTPError as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"reason": e.reason, "message": str(e)},
        )
    return {
        "ok": True,
        "message": "A verification code was sent to your registered email.",
        "expires_at": result["expires_at"].isoformat(),
    }


@router.post("/{deal_id}/otp/verify")
async def otp_verify_endpoint(request: Request, deal_id: str, data: OtpVerifyBody):
    """
    Verify a code. 200 {"status": "verified", "already_verified": bool};
    400 {"reason": ...} on expired / mismatch / no active challenge / too many attempts.
    """
    user = await require_auth(request)
    deal = await load_deal_for_party(deal_id, user)
    _ensure_role_holder(deal, data.role, user)

    try:
        result = await verify_otp(
            deal_id,
            data.role,
            data.code,
            correlation_id=get_correlation_id(request),
            actor_email=user["email"],
        )
    except OTPError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": e.reason, "message": "Invalid or expired code"},
        )
    return {
        "status": "verified",
        "already_verified": result["already_verified"],
        "verified_at": result["verified_at"].isoformat() if result["verified_at"] else None,
    }
