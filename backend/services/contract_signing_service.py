"""
Contract signing: turns a verified OTP challenge into a create-once signature record.

- The signer must be the deal's registered email for the role and must hold a verified, unspent challenge.
- Signatures are unique per (deal_id, signer_role). A second insert loses with SignatureConflictError;
  a valid signature is never overwritten. An existing record that fails verification (e.g. a legacy row
  without device evidence) is moved to contract_signature_history before the new one is written.
- Brand signing is the OTP-verified acceptance (brand_response_status -> accepted_verified).
- deal_execution_status advances to "signed" once both signatures verify against their own signers.
"""
import re
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from pymongo.errors import DuplicateKeyError

from database import database
from models import AuditAction, DealExecutionStatus, Signature, SignerRole
from services.deal_status import advance_to_verified_acceptance, next_execution_status, normalize_execution_status
from services.email_service import recipient_for_role
from services.errors import DealNotFoundError, SignatureConflictError, UnauthorizedSignerError, ValidationError
from services.otp_service import get_verified_challenge, mark_challenge_used
from services.signature_verifier import verify_as_signer
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

_MOBILE_RE = re.compile(r"mobile|android|iphone", re.IGNORECASE)
_TABLET_RE = re.compile(r"tablet|ipad", re.IGNORECASE)


def get_device_info(user_agent: str) -> Dict[str, Any]:
    """Coarse device type and browser from a User-Agent string."""
    ua = user_agent or ""
    if _TABLET_RE.search(ua):
        device_type = "tablet"
    elif _MOBILE_RE.search(ua):
        device_type = "mobile"
    else:
        device_type = "desktop"

    if re.search(r"edge|edg/", ua, re.IGNORECASE):
        browser = "Edge"
    elif re.search(r"chrome", ua, re.IGNORECASE):
        browser = "Chrome"
    elif re.search(r"firefox", ua, re.IGNORECASE):
        browser = "Firefox"
    elif re.search(r"safari", ua, re.IGNORECASE):
        browser = "Safari"
    else:
        browser = "Unknown"

    return {
        "user_agent": ua,
        "type": device_type,
        "browser": browser,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def get_client_ip(headers: Mapping[str, str], remote_addr: Optional[str] = None) -> Optional[str]:
    """First X-Forwarded-For hop, else X-Real-IP, else the socket peer."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return remote_addr


async def get_signatures(deal_id: str) -> Dict[str, Optional[Dict[str, Any]]]:
    """Current signature row per role (None when the role has not signed)."""
    db = database.get_db()
    result: Dict[str, Optional[Dict[str, Any]]] = {role.value: None for role in SignerRole}
    cursor = db.contract_signatures.find({"deal_id": deal_id}, {"_id": 0})
    for doc in await cursor.to_list(length=10):
        role = doc.get("signer_role")
        if role in result:
            result[role] = doc
    return result


async def _supersede(existing: Dict[str, Any], reason: str) -> None:
    db = database.get_db()
    history = dict(existing)
    history.pop("_id", None)
    history["superseded_at"] = datetime.now(timezone.utc)
    history["superseded_reason"] = reason
    await db.contract_signature_history.insert_one(history)
    await db.contract_signatures.delete_one(
        {"deal_id": existing["deal_id"], "signer_role": existing["signer_role"], "signature_id": existing.get("signature_id")}
    )
    await create_audit_log(
        action=AuditAction.SIGNATURE_SUPERSEDED,
        deal_id=existing["deal_id"],
        signer_role=SignerRole(existing["signer_role"]),
        metadata={"signature_id": existing.get("signature_id"), "reason": reason},
    )
    logger.warning(f"Superseded invalid signature deal={existing['deal_id']} role={existing['signer_role']} reason={reason}")


async def sign_contract(
    deal_id: str,
    role: SignerRole,
    signer_name: str,
    signer_email: str,
    ip_address: Optional[str],
    user_agent: Optional[str],
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Record a signature for the authenticated signer.

    Raises:
        DealNotFoundError: unknown deal.
        UnauthorizedSignerError: signer_email is not the deal's registered email for the role.
        ValidationError: signer name, IP address or user agent missing.
        SignatureConflictError: no verified OTP, the deal is being deleted, or the role already holds a valid signature.
        InvalidTransitionError: brand signing on a deal whose response cannot become accepted_verified.
    """
    correlation_id = correlation_id or ""
    role = SignerRole(role)
    db = database.get_db()

    deal = await db.deals.find_one({"deal_id": deal_id}, {"_id": 0})
    if not deal:
        raise DealNotFoundError(f"Deal not found: {deal_id}")
    if deal.get("deleting_at"):
        raise SignatureConflictError(f"Deal {deal_id} is being deleted and cannot be signed")

    registered = recipient_for_role(role, deal)
    if not registered or not signer_email or registered.strip().lower() != signer_email.strip().lower():
        raise UnauthorizedSignerError(f"Authenticated user is not the registered {role.value} for this deal")

    missing = [
        name for name, value in (("signer_name", signer_name), ("ip_address", ip_address), ("user_agent", user_agent))
        if not (value or "").strip()
    ]
    if missing:
        raise ValidationError(missing)

    # Fails before anything is written if the brand response can no longer be accepted
    new_response_status = advance_to_verified_acceptance(deal.get("brand_response_status")) if role == SignerRole.BRAND else None

    challenge = await get_verified_challenge(deal_id, role)
    if not challenge:
        raise SignatureConflictError(f"No verified OTP for {role.value} on deal {deal_id}")

    existing = await db.contract_signatures.find_one({"deal_id": deal_id, "signer_role": role.value}, {"_id": 0})
    if existing:
        check = verify_as_signer(existing, deal_id)
        if check.valid:
            raise SignatureConflictError(f"Contract has already been signed by the {role.value}")
        await _supersede(existing, check.reason)

    signature = Signature(
        deal_id=deal_id,
        signer_role=role,
        signer_name=signer_name.strip(),
        signer_email=signer_email.strip(),
        otp_verified=True,
        otp_verified_at=challenge["verified_at"],
        ip_address=ip_address.strip(),
        user_agent=user_agent.strip(),
        device_info=get_device_info(user_agent),
        contract_version=deal.get("contract_version"),
    )
    doc = signature.model_dump()
    doc["signer_role"] = role.value

    try:
        await db.contract_signatures.insert_one(doc)
    except DuplicateKeyError:
        logger.warning(f"[{correlation_id}] sign race lost deal={deal_id} role={role.value}")
        raise SignatureConflictError(f"Contract has already been signed by the {role.value}")
    doc.pop("_id", None)

    if not await mark_challenge_used(deal_id, role, signature.signature_id):
        logger.warning(f"[{correlation_id}] OTP challenge already marked used deal={deal_id} role={role.value}")

    if new_response_status is not None:
        now = datetime.now(timezone.utc)
        result = await db.deals.update_one(
            {"deal_id": deal_id, "brand_response_status": deal.get("brand_response_status")},
            {"$set": {"brand_response_status": new_response_status.value, "brand_response_at": now, "updated_at": now}},
        )
        if result.modified_count == 0:
            logger.warning(f"[{correlation_id}] brand_response_status changed concurrently deal={deal_id}")

    await create_audit_log(
        action=AuditAction.CONTRACT_SIGNED,
        deal_id=deal_id,
        actor_email=signer_email,
        signer_role=role,
        metadata={"signature_id": signature.signature_id, "contract_version": signature.contract_version},
        ip_address=ip_address,
    )
    logger.info(f"[{correlation_id}] contract signed deal={deal_id} role={role.value}")

    await refresh_execution_status(deal_id)
    return doc


async def refresh_execution_status(deal_id: str) -> Optional[DealExecutionStatus]:
    """Advance deal_execution_status to signed when both signatures verify. Never moves backwards."""
    db = database.get_db()
    deal = await db.deals.find_one({"deal_id": deal_id}, {"_id": 0, "deal_execution_status": 1})
    if not deal:
        raise DealNotFoundError(f"Deal not found: {deal_id}")

    current = normalize_execution_status(deal.get("deal_execution_status"))
    signatures = await get_signatures(deal_id)
    creator_check = verify_as_signer(signatures[SignerRole.CREATOR.value], deal_id)
    brand_check = verify_as_signer(signatures[SignerRole.BRAND.value], deal_id)

    new_status = next_execution_status(current, creator_check.valid, brand_check.valid)
    if new_status is None or new_status == current:
        return current

    result = await db.deals.update_one(
        {"deal_id": deal_id, "deal_execution_status": deal.get("deal_execution_status")},
        {"$set": {"deal_execution_status": new_status.value, "updated_at": datetime.now(timezone.utc)}},
    )
    if result.modified_count:
        await create_audit_log(
            action=AuditAction.EXECUTION_STATUS_ADVANCED,
            deal_id=deal_id,
            before_state={"deal_execution_status": deal.get("deal_execution_status")},
            after_state={"deal_execution_status": new_status.value},
        )
        logger.info(f"Deal {deal_id} execution status -> {new_status.value}")
    return new_status
