"""
Signing OTP flow: one active challenge per (deal_id, signer_role), delivered by email, verified in DB.
- OTP stored as SHA-256 hash: sha256(code + ":" + OTP_PEPPER). Never store or log the raw OTP.
- Issuing upserts the (deal_id, signer_role) document, so the previous code stops validating at once.
- TTL 10 min default; after OTP_MAX_ATTEMPTS wrong codes the challenge is locked until re-issued.
- Rate limit: OTP_SEND_MAX_PER_WINDOW sends per OTP_SEND_WINDOW_MINUTES per (deal, role).
- A correct code verifies once. Re-verifying the consumed code is an idempotent success that
  changes nothing and never re-arms the challenge.
"""
import asyncio
import hashlib
import logging
import os
import secrets
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, Optional

from pymongo import ReturnDocument

from database import database
from models import AuditAction, OTPChallenge, SignerRole
from services.email_service import NotificationError, email_service
from services.errors import OTPError
from utils.audit import create_audit_log
from utils.rate_limiter import rate_limiter

logger = logging.getLogger(__name__)

OTP_PEPPER = (os.getenv("OTP_PEPPER") or "").strip()
OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", "600"))
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
OTP_SEND_MAX_PER_WINDOW = int(os.getenv("OTP_SEND_MAX_PER_WINDOW", "5"))
OTP_SEND_WINDOW_MINUTES = int(os.getenv("OTP_SEND_WINDOW_MINUTES", "10"))
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "10"))

OTP_LENGTH = 6


def _code_hash(raw_otp: str) -> str:
    """sha256(code + ":" + OTP_PEPPER)."""
    if not OTP_PEPPER:
        raise ValueError("OTP_PEPPER must be set")
    return hashlib.sha256((raw_otp + ":" + OTP_PEPPER).encode()).hexdigest()


def _generate_otp() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(OTP_LENGTH))


def _parse_dt(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (ValueError, TypeError):
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _rate_limit_key(deal_id: str, role: SignerRole) -> str:
    return f"otp_send:{deal_id}:{role.value}"


async def issue_otp(
    deal_id: str,
    role: SignerRole,
    deal: Dict[str, Any],
    correlation_id: Optional[str] = None,
    actor_email: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create or replace the challenge for (deal_id, role) and email the code to the role's address.

    Returns {"expires_at", "delivered"}. A delivery failure or timeout is logged and reported as
    delivered=False; the challenge itself stays valid.
    Raises OTPError(rate_limited) when the send limit is hit.
    """
    correlation_id = correlation_id or ""
    role = SignerRole(role)

    allowed, message = await rate_limiter.check_rate_limit(
        _rate_limit_key(deal_id, role),
        max_attempts=OTP_SEND_MAX_PER_WINDOW,
        window_minutes=OTP_SEND_WINDOW_MINUTES,
    )
    if not allowed:
        await create_audit_log(
            action=AuditAction.OTP_RATE_LIMITED,
            deal_id=deal_id,
            actor_email=actor_email,
            signer_role=role,
            metadata={"window_minutes": OTP_SEND_WINDOW_MINUTES},
        )
        logger.info(f"[{correlation_id}] otp_send rate_limited deal={deal_id} role={role.value}")
        raise OTPError(OTPError.RATE_LIMITED, message)

    raw_code = _generate_otp()
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=OTP_TTL_SECONDS)
    challenge = OTPChallenge(
        deal_id=deal_id,
        signer_role=role,
        code_hash=_code_hash(raw_code),
        created_at=now,
        expires_at=expires_at,
    )
    doc = challenge.model_dump()
    doc["signer_role"] = role.value
    db = database.get_db()
    # Single write replaces the prior challenge
    await db.otp_challenges.update_one(
        {"deal_id": deal_id, "signer_role": role.value},
        {"$set": doc},
        upsert=True,
    )
    await create_audit_log(
        action=AuditAction.OTP_ISSUED,
        deal_id=deal_id,
        actor_email=actor_email,
        signer_role=role,
        metadata={"expires_at": expires_at.isoformat()},
    )

    delivered = False
    try:
        await asyncio.wait_for(
            email_service.send(role, raw_code, deal, ttl_minutes=max(1, OTP_TTL_SECONDS // 60)),
            timeout=NOTIFICATION_TIMEOUT_SECONDS,
        )
        delivered = True
        logger.info(f"[{correlation_id}] otp_send success deal={deal_id} role={role.value}")
    except asyncio.TimeoutError:
        logger.warning(f"[{correlation_id}] otp_send timeout deal={deal_id} role={role.value}")
    except NotificationError as e:
        logger.warning(f"[{correlation_id}] otp_send failed deal={deal_id} role={role.value} error={e}")

    return {"expires_at": expires_at, "delivered": delivered}


async def _reject(
    reason: str,
    deal_id: str,
    role: SignerRole,
    correlation_id: str,
    actor_email: Optional[str],
    attempts: Optional[int] = None,
):
    metadata = {"reason": reason}
    if attempts is not None:
        metadata["attempt_count"] = attempts
    await create_audit_log(
        action=AuditAction.OTP_VERIFY_FAILED,
        deal_id=deal_id,
        actor_email=actor_email,
        signer_role=role,
        metadata=metadata,
    )
    logger.info(f"[{correlation_id}] otp_verify {reason} deal={deal_id} role={role.value}")
    raise OTPError(reason)


async def verify_otp(
    deal_id: str,
    role: SignerRole,
    code: str,
    correlation_id: Optional[str] = None,
    actor_email: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Verify a code for (deal_id, role).

    Returns {"verified": True, "already_verified": bool, "verified_at": datetime}.
    Raises OTPError with reason no_active_challenge / expired / mismatch / too_many_attempts.
    A wrong code only increments the attempt counter; nothing else on the challenge changes.
    """
    correlation_id = correlation_id or ""
    role = SignerRole(role)
    code = (code or "").strip()

    db = database.get_db()
    now = datetime.now(timezone.utc)
    doc = await db.otp_challenges.find_one(
        {"deal_id": deal_id, "signer_role": role.value},
        {"_id": 0},
    )
    if not doc:
        await _reject(OTPError.NO_ACTIVE_CHALLENGE, deal_id, role, correlation_id, actor_email)

    well_formed = len(code) == OTP_LENGTH and code.isdigit()
    expected_hash = _code_hash(code) if well_formed else None

    if doc.get("verified_at"):
        if expected_hash and doc.get("code_hash") == expected_hash:
            logger.info(f"[{correlation_id}] otp_verify already_verified deal={deal_id} role={role.value}")
            return {"verified": True, "already_verified": True, "verified_at": _parse_dt(doc["verified_at"])}
        await _reject(OTPError.NO_ACTIVE_CHALLENGE, deal_id, role, correlation_id, actor_email)

    attempts = doc.get("attempts", 0)
    if attempts >= OTP_MAX_ATTEMPTS:
        await _reject(OTPError.TOO_MANY_ATTEMPTS, deal_id, role, correlation_id, actor_email, attempts)

    expires_at = _parse_dt(doc.get("expires_at"))
    if not expires_at or expires_at <= now:
        await _reject(OTPError.EXPIRED, deal_id, role, correlation_id, actor_email)

    if not expected_hash or doc.get("code_hash") != expected_hash:
        await db.otp_challenges.update_one(
            {"deal_id": deal_id, "signer_role": role.value, "verified_at": None},
            {"$inc": {"attempts": 1}},
        )
        await _reject(OTPError.MISMATCH, deal_id, role, correlation_id, actor_email, attempts + 1)

    # Consume exactly once: only the still-unverified challenge holding this hash matches
    updated = await db.otp_challenges.find_one_and_update(
        {
            "deal_id": deal_id,
            "signer_role": role.value,
            "code_hash": expected_hash,
            "verified_at": None,
        },
        {"$set": {"verified_at": now}},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        current = await db.otp_challenges.find_one(
            {"deal_id": deal_id, "signer_role": role.value},
            {"_id": 0},
        )
        if current and current.get("verified_at") and current.get("code_hash") == expected_hash:
            return {"verified": True, "already_verified": True, "verified_at": _parse_dt(current["verified_at"])}
        await _reject(OTPError.NO_ACTIVE_CHALLENGE, deal_id, role, correlation_id, actor_email)

    await create_audit_log(
        action=AuditAction.OTP_VERIFY_SUCCESS,
        deal_id=deal_id,
        actor_email=actor_email,
        signer_role=role,
    )
    logger.info(f"[{correlation_id}] otp_verify success deal={deal_id} role={role.value}")
    return {"verified": True, "already_verified": False, "verified_at": now}


async def get_verified_challenge(deal_id: str, role: SignerRole) -> Optional[Dict[str, Any]]:
    """Verified challenge that has not yet been spent on a signature, within OTP_TTL_SECONDS of verification."""
    role = SignerRole(role)
    db = database.get_db()
    doc = await db.otp_challenges.find_one(
        {"deal_id": deal_id, "signer_role": role.value},
        {"_id": 0},
    )
    if not doc or not doc.get("verified_at") or doc.get("used_for_signature_id"):
        return None
    verified_at = _parse_dt(doc.get("verified_at"))
    if verified_at is None or datetime.now(timezone.utc) - verified_at > timedelta(seconds=OTP_TTL_SECONDS):
        logger.info(f"Verified OTP for deal={deal_id} role={role.value} is stale; a new code is required to sign")
        return None
    return doc


async def mark_challenge_used(deal_id: str, role: SignerRole, signature_id: str) -> bool:
    role = SignerRole(role)
    db = database.get_db()
    result = await db.otp_challenges.update_one(
        {
            "deal_id": deal_id,
            "signer_role": role.value,
            "verified_at": {"$ne": None},
            "used_for_signature_id": None,
        },
        {"$set": {"used_for_signature_id": signature_id}},
    )
    return result.modified_count > 0
