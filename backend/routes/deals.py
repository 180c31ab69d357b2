"""
Deal routes: creation, status badge, brand response, contract generation, completion, audit trail and deletion.
"""
from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
import logging

from middleware import require_auth
from models import BrandResponseStatus, Deal, DealCreate
from services import deal_service
from services.errors import (
    DealDeletionRefusedError,
    DealNotFoundError,
    FormattingInvariantError,
    InvalidTransitionError,
    ValidationError,
)
from utils.audit import get_audit_logs_for_deal

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/deals", tags=["deals"])


class BrandResponseBody(BaseModel):
    status: BrandResponseStatus
    message: Optional[str] = Field(default=None, max_length=2000)


def _email(user: dict) -> str:
    return (user.get("email") or "").strip().lower()


def _is_creator(deal: Dict[str, Any], user: dict) -> bool:
    if user.get("user_id") and user.get("user_id") == deal.get("creator_id"):
        return True
    return bool(_email(user)) and _email(user) == (deal.get("creator_email") or "").strip().lower()


def _is_brand(deal: Dict[str, Any], user: dict) -> bool:
    return bool(_email(user)) and _email(user) == (deal.get("brand_email") or "").strip().lower()


async def load_deal_for_party(deal_id: str, user: dict) -> Dict[str, Any]:
    """Fetch the deal; 404 if unknown, 403 unless the user is its creator or brand."""
    try:
        deal = await deal_service.get_deal(deal_id)
    except DealNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")
    if not (_is_creator(deal, user) or _is_brand(deal, user)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a party to this deal")
    return deal


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_deal(request: Request, data: DealCreate):
    """Creator records a new deal. It always starts pending with no execution status."""
    user = await require_auth(request)
    if not data.creator_email:
        data.creator_email = user["email"]
    if not _is_creator(data.model_dump(), user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Deals can only be created by their creator")
    deal = Deal(**data.model_dump())
    return await deal_service.create_deal(deal, actor_email=user["email"])


@router.get("/{deal_id}/status")
async def get_deal_status(request: Request, deal_id: str):
    """Derived contract status and per-role signature validity for the caller."""
    user = await require_auth(request)
    await load_deal_for_party(deal_id, user)
    return await deal_service.get_deal_overview(deal_id, user["email"])


@router.post("/{deal_id}/brand-response")
async def post_brand_response(request: Request, deal_id: str, data: BrandResponseBody):
    user = await require_auth(request)
    deal = await load_deal_for_party(deal_id, user)
    if not _is_brand(deal, user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the brand can respond to this deal")

    try:
        return await deal_service.record_brand_response(
            deal_id, data.status, actor_email=user["email"], message=data.message
        )
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.post("/{deal_id}/contract")
async def generate_contract(request: Request, deal_id: str):
    """Generate a new contract version. 422 lists the fields that must be completed first."""
    user = await require_auth(request)
    deal = await load_deal_for_party(deal_id, user)
    if not _is_creator(deal, user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the creator can generate the contract")

    try:
        record = await deal_service.generate_contract(deal_id, actor_email=user["email"])
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "missing_fields": e.missing_fields},
        )
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except FormattingInvariantError as e:
        logger.error(f"Contract formatting invariant failed for deal {deal_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Contract could not be generated: amount formatting failed verification"
        )

    return {
        "deal_id": deal_id,
        "version": record["version"],
        "content_hash": record["content_hash"],
        "variables": record["variables"],
        "content": record["content"],
    }


@router.get("/{deal_id}/contract")
async def get_contract(request: Request, deal_id: str, version: Optional[int] = None):
    user = await require_auth(request)
    await load_deal_for_party(deal_id, user)
    record = await deal_service.get_contract_version(deal_id, version)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contract not generated yet")
    return record


@router.post("/{deal_id}/complete")
async def complete_deal(request: Request, deal_id: str):
    user = await require_auth(request)
    deal = await load_deal_for_party(deal_id, user)
    if not _is_creator(deal, user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the creator can complete the deal")
    try:
        return await deal_service.mark_deal_completed(deal_id, actor_email=user["email"])
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/{deal_id}/audit")
async def get_deal_audit(request: Request, deal_id: str, limit: int = Query(default=50, ge=1, le=200)):
    user = await require_auth(request)
    await load_deal_for_party(deal_id, user)
    return {"deal_id": deal_id, "entries": await get_audit_logs_for_deal(deal_id, limit=limit)}


@router.delete("/{deal_id}")
async def delete_deal(request: Request, deal_id: str):
    user = await require_auth(request)
    deal = await load_deal_for_party(deal_id, user)
    if not _is_creator(deal, user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the creator can delete the deal")
    try:
        await deal_service.delete_deal(deal_id, actor_email=user["email"])
    except DealDeletionRefusedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except DealNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")
    return {"deleted": True, "deal_id": deal_id}
