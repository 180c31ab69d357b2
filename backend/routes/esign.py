"""
E-sign routes: create the caller's signature after OTP verification, list signature validity.
"""
from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field
import logging

from middleware import get_correlation_id, get_request_ip, require_auth
from models import SignerRole
from routes.deals import load_deal_for_party
from services.contract_signing_service import get_signatures, sign_contract
from services.errors import (
    DealNotFoundError,
    InvalidTransitionError,
    SignatureConflictError,
    UnauthorizedSignerError,
    ValidationError,
)
from services.signature_verifier import verify_for_session

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/deals", tags=["esign"])


class SignBody(BaseModel):
    role: SignerRole
    signer_name: str = Field(..., min_length=2, max_length=200)


@router.post("/{deal_id}/sign", status_code=status.HTTP_201_CREATED)
async def sign(request: Request, deal_id: str, data: SignBody):
    user = await require_auth(request)
    await load_deal_for_party(deal_id, user)

    try:
        signature = await sign_contract(
            deal_id,
            data.role,
            signer_name=data.signer_name,
            signer_email=user["email"],
            ip_address=get_request_ip(request),
            user_agent=request.headers.get("user-agent"),
            correlation_id=get_correlation_id(request),
        )
    except DealNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")
    except UnauthorizedSignerError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "missing_fields": e.missing_fields},
        )
    except (SignatureConflictError, InvalidTransitionError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return {
        "signature_id": signature["signature_id"],
        "signer_role": signature["signer_role"],
        "signed_at": signature["signed_at"].isoformat(),
    }


@router.get("/{deal_id}/signatures")
async def list_signatures(request: Request, deal_id: str):
    """Both roles with the verifier's verdict for the calling user."""
    user = await require_auth(request)
    await load_deal_for_party(deal_id, user)

    signatures = await get_signatures(deal_id)
    checks = verify_for_session(signatures, deal_id, user["email"])
    return {
        "deal_id": deal_id,
        "signatures": {
            role: {
                "signer_name": sig.get("signer_name") if sig else None,
                "signed": bool(sig and sig.get("signed")),
                "signed_at": sig.get("signed_at") if sig else None,
                "otp_verified": bool(sig and sig.get("otp_verified")),
                **checks[role].to_dict(),
            }
            for role, sig in signatures.items()
        },
    }
