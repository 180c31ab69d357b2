"""
Deal Service - persistence-facing operations over a single deal.

Every write that depends on a status reads the deal immediately before and then updates with the
previously read value in the filter (compare-and-set), so a concurrent change makes the write miss
instead of clobbering it.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pymongo.errors import DuplicateKeyError

from database import database
from models import AuditAction, BrandResponseStatus, Deal, DealExecutionStatus, PartyInfo
from services.contract_signing_service import get_signatures
from services.contract_variables import (
    derive_contract_variables,
    ensure_contract_fields_complete,
    validate_contract_variables,
)
from services.deal_status import (
    apply_brand_response,
    complete_execution,
    derive_contract_status,
    ensure_deal_deletable,
    is_contract_ready,
    normalize_brand_response_status,
    normalize_execution_status,
)
from services.errors import (
    DealDeletionRefusedError,
    DealNotFoundError,
    FormattingInvariantError,
    InvalidTransitionError,
    ValidationError,
)
from services.signature_verifier import verify_for_session
from services.template_renderer import agreement_renderer, compute_sha256
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

MAX_VERSION_INSERT_ATTEMPTS = 3


async def get_deal(deal_id: str) -> Dict[str, Any]:
    db = database.get_db()
    deal = await db.deals.find_one({"deal_id": deal_id}, {"_id": 0})
    if not deal:
        raise DealNotFoundError(f"Deal not found: {deal_id}")
    return deal


async def create_deal(deal: Deal, actor_email: Optional[str] = None) -> Dict[str, Any]:
    db = database.get_db()
    doc = deal.model_dump(mode="json")
    doc["created_at"] = deal.created_at
    doc["updated_at"] = deal.updated_at
    await db.deals.insert_one(doc)
    doc.pop("_id", None)
    await create_audit_log(
        action=AuditAction.DEAL_CREATED,
        deal_id=deal.deal_id,
        actor_email=actor_email,
        metadata={"brand_name": deal.brand_name, "deal_amount": deal.deal_amount},
    )
    return doc


def _brand_info(deal: Dict[str, Any]) -> PartyInfo:
    return PartyInfo(name=deal.get("brand_name"), address=deal.get("brand_address"), email=deal.get("brand_email"))


def _creator_info(deal: Dict[str, Any]) -> PartyInfo:
    return PartyInfo(name=deal.get("creator_name"), address=deal.get("creator_address"), email=deal.get("creator_email"))


# ============================================================================
# Status
# ============================================================================

async def get_deal_overview(deal_id: str, current_user_email: Optional[str]) -> Dict[str, Any]:
    """Derived contract status plus per-role signature validity for the viewing user."""
    deal = await get_deal(deal_id)
    signatures = await get_signatures(deal_id)
    checks = verify_for_session(signatures, deal_id, current_user_email)
    execution = normalize_execution_status(deal.get("deal_execution_status"))

    return {
        "deal_id": deal_id,
        "contract_status": derive_contract_status(deal).value,
        "brand_response_status": normalize_brand_response_status(deal.get("brand_response_status")).value,
        "deal_execution_status": execution.value if execution else None,
        "contract_version": deal.get("contract_version"),
        "signatures": {
            role: {
                "signed": bool(signature and signature.get("signed")),
                "signed_at": signature.get("signed_at") if signature else None,
                **checks[role].to_dict(),
            }
            for role, signature in signatures.items()
        },
    }


async def record_brand_response(
    deal_id: str,
    requested: BrandResponseStatus,
    actor_email: Optional[str] = None,
    message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Apply a brand response through the state machine. Re-sending the current state is a no-op.

    accepted_verified cannot be requested here; only an OTP-verified brand signature reaches it.
    """
    requested = normalize_brand_response_status(requested)
    if requested == BrandResponseStatus.ACCEPTED_VERIFIED:
        raise InvalidTransitionError(
            "accepted_verified is reached only by the brand signing with a verified OTP"
        )

    deal = await get_deal(deal_id)
    stored = deal.get("brand_response_status")
    current = normalize_brand_response_status(stored)
    new_status = apply_brand_response(current, requested)

    if new_status == current and stored == current.value:
        logger.info(f"Brand response for deal {deal_id} unchanged ({current.value})")
        return {"deal_id": deal_id, "brand_response_status": current.value, "changed": False}

    now = datetime.now(timezone.utc)
    update = {"brand_response_status": new_status.value, "brand_response_at": now, "updated_at": now}
    if message is not None:
        update["brand_response_message"] = message

    db = database.get_db()
    result = await db.deals.update_one(
        {"deal_id": deal_id, "brand_response_status": stored},
        {"$set": update},
    )
    if result.modified_count == 0:
        raise InvalidTransitionError(f"Brand response for deal {deal_id} changed concurrently; reload and retry")

    await create_audit_log(
        action=AuditAction.BRAND_RESPONSE_UPDATED,
        deal_id=deal_id,
        actor_email=actor_email,
        before_state={"brand_response_status": stored},
        after_state={"brand_response_status": new_status.value},
    )
    logger.info(f"Deal {deal_id} brand response {current.value} -> {new_status.value}")
    return {"deal_id": deal_id, "brand_response_status": new_status.value, "changed": True}


async def mark_deal_completed(deal_id: str, actor_email: Optional[str] = None) -> Dict[str, Any]:
    deal = await get_deal(deal_id)
    stored = deal.get("deal_execution_status")
    new_status = complete_execution(stored)
    if normalize_execution_status(stored) == DealExecutionStatus.COMPLETED:
        return {"deal_id": deal_id, "deal_execution_status": new_status.value, "changed": False}

    db = database.get_db()
    result = await db.deals.update_one(
        {"deal_id": deal_id, "deal_execution_status": stored},
        {"$set": {"deal_execution_status": new_status.value, "updated_at": datetime.now(timezone.utc)}},
    )
    if result.modified_count == 0:
        raise InvalidTransitionError(f"Execution status for deal {deal_id} changed concurrently")

    await create_audit_log(
        action=AuditAction.EXECUTION_STATUS_ADVANCED,
        deal_id=deal_id,
        actor_email=actor_email,
        before_state={"deal_execution_status": stored},
        after_state={"deal_execution_status": new_status.value},
    )
    return {"deal_id": deal_id, "deal_execution_status": new_status.value, "changed": True}


# ============================================================================
# Contract generation
# ============================================================================

async def _next_version(deal_id: str) -> int:
    db = database.get_db()
    latest = await db.contract_versions.find_one(
        {"deal_id": deal_id},
        {"_id": 0, "version": 1},
        sort=[("version", -1)],
    )
    return (latest or {}).get("version", 0) + 1


async def generate_contract(
    deal_id: str,
    actor_email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Validate party fields, derive the variables snapshot, render the agreement and store it as a
    new immutable contract version.

    Raises:
        DealNotFoundError
        InvalidTransitionError: the brand has not accepted the deal.
        ValidationError: missing/placeholder party fields, bad amount, unresolved jurisdiction.
        FormattingInvariantError: the amount could not be formatted verifiably.
    """
    deal = await get_deal(deal_id)
    if not is_contract_ready(deal):
        raise InvalidTransitionError(
            f"Contract for deal {deal_id} can only be generated after the brand accepts "
            f"(brand_response_status={deal.get('brand_response_status')})"
        )

    brand_info = _brand_info(deal)
    creator_info = _creator_info(deal)
    try:
        ensure_contract_fields_complete(brand_info, creator_info)
        variables = derive_contract_variables(deal, brand_info, creator_info, now=now)
        validate_contract_variables(variables)
    except (ValidationError, FormattingInvariantError) as e:
        await create_audit_log(
            action=AuditAction.CONTRACT_GENERATION_FAILED,
            deal_id=deal_id,
            actor_email=actor_email,
            metadata={
                "error": type(e).__name__,
                "missing_fields": getattr(e, "missing_fields", None),
            },
        )
        logger.warning(f"Contract generation failed for deal {deal_id}: {e}")
        raise

    signatures = await get_signatures(deal_id)
    content = agreement_renderer.render(variables, {role: sig for role, sig in signatures.items() if sig})
    content_hash = compute_sha256(content)

    db = database.get_db()
    record = None
    for _ in range(MAX_VERSION_INSERT_ATTEMPTS):
        version = await _next_version(deal_id)
        record = {
            "deal_id": deal_id,
            "version": version,
            "variables": variables.model_dump(),
            "content": content,
            "content_type": agreement_renderer.content_type,
            "content_hash": content_hash,
            "created_at": datetime.now(timezone.utc),
            "created_by": actor_email,
        }
        try:
            await db.contract_versions.insert_one(record)
            break
        except DuplicateKeyError:
            logger.info(f"Contract version {version} for deal {deal_id} taken, retrying")
            record = None
    if record is None:
        raise InvalidTransitionError(f"Could not allocate a contract version for deal {deal_id}")
    record.pop("_id", None)

    await db.deals.update_one(
        {"deal_id": deal_id},
        {"$set": {"contract_version": record["version"], "updated_at": datetime.now(timezone.utc)}},
    )
    await create_audit_log(
        action=AuditAction.CONTRACT_GENERATED,
        deal_id=deal_id,
        actor_email=actor_email,
        metadata={"version": record["version"], "content_hash": content_hash},
    )
    logger.info(f"Generated contract v{record['version']} for deal {deal_id}: {content_hash[:8]}")
    return record


async def get_contract_version(deal_id: str, version: Optional[int] = None) -> Optional[Dict[str, Any]]:
    db = database.get_db()
    if version is None:
        return await db.contract_versions.find_one({"deal_id": deal_id}, {"_id": 0}, sort=[("version", -1)])
    return await db.contract_versions.find_one({"deal_id": deal_id, "version": version}, {"_id": 0})


# ============================================================================
# Deletion
# ============================================================================

async def _refuse_deletion(deal_id: str, reason: str, actor_email: Optional[str]) -> None:
    await create_audit_log(
        action=AuditAction.DEAL_DELETE_REFUSED,
        deal_id=deal_id,
        actor_email=actor_email,
        metadata={"reason": reason},
    )
    logger.warning(f"Refused to delete deal {deal_id}: {reason}")


async def delete_deal(deal_id: str, actor_email: Optional[str] = None) -> None:
    """
    Hard delete, refused once anyone has signed or the contract is executed.

    The deal is first claimed with a `deleting_at` tombstone (compare-and-set), which sign_contract
    refuses. Signatures are counted again after the claim; any signed row releases the claim and
    refuses. Signature rows themselves are never deleted.
    """
    deal = await get_deal(deal_id)
    signatures = await get_signatures(deal_id)
    try:
        ensure_deal_deletable(deal, [s for s in signatures.values() if s])
    except DealDeletionRefusedError as e:
        await _refuse_deletion(deal_id, str(e), actor_email)
        raise

    db = database.get_db()
    claimed_at = datetime.now(timezone.utc)
    claim = await db.deals.update_one(
        {
            "deal_id": deal_id,
            "deleting_at": None,
            "deal_execution_status": deal.get("deal_execution_status"),
        },
        {"$set": {"deleting_at": claimed_at}},
    )
    if claim.modified_count == 0:
        reason = f"Deal {deal_id} changed or is already being deleted"
        await _refuse_deletion(deal_id, reason, actor_email)
        raise DealDeletionRefusedError(reason)

    signed_count = await db.contract_signatures.count_documents({"deal_id": deal_id, "signed": True})
    if signed_count:
        await db.deals.update_one(
            {"deal_id": deal_id, "deleting_at": claimed_at},
            {"$set": {"deleting_at": None}},
        )
        reason = f"Deal {deal_id} was signed while deletion was pending and cannot be deleted"
        await _refuse_deletion(deal_id, reason, actor_email)
        raise DealDeletionRefusedError(reason)

    result = await db.deals.delete_one({"deal_id": deal_id, "deleting_at": claimed_at})
    if result.deleted_count == 0:
        raise DealNotFoundError(f"Deal not found: {deal_id}")
    await db.otp_challenges.delete_many({"deal_id": deal_id})
    await db.contract_versions.delete_many({"deal_id": deal_id})

    await create_audit_log(
        action=AuditAction.DEAL_DELETED,
        deal_id=deal_id,
        actor_email=actor_email,
        before_state={"brand_name": deal.get("brand_name"), "deal_amount": deal.get("deal_amount")},
    )
    logger.info(f"Deleted deal {deal_id}")
