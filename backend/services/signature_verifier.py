"""
Signature Validity Verifier.

The stored `signed` flag is advisory. A signature counts as signed only when every check below passes
against the live session:

1. signed_at parses, is strictly after 2020-01-01 and at most SIGNATURE_CLOCK_SKEW_SECONDS in the future
2. signer_email equals the authenticated user's email (case-insensitive); both must be present
3. deal_id matches the deal being viewed
4. otp_verified is true and otp_verified_at parses
5. ip_address and user_agent are both present

Invalid is a normal steady state (e.g. before OTP verification), so the result is a SignatureCheck,
never an exception. The current user's email is always passed in explicitly.
"""
import os
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Union

from models import Signature

logger = logging.getLogger(__name__)

SIGNATURE_EPOCH = datetime(2020, 1, 1, tzinfo=timezone.utc)
SIGNATURE_CLOCK_SKEW_SECONDS = int(os.getenv("SIGNATURE_CLOCK_SKEW_SECONDS", "60"))

# Reasons
NO_SIGNATURE = "no_signature"
NOT_SIGNED = "not_signed"
INVALID_SIGNED_AT = "invalid_signed_at"
SIGNED_AT_TOO_OLD = "signed_at_before_epoch"
SIGNED_AT_IN_FUTURE = "signed_at_in_future"
NO_CURRENT_USER = "no_current_user_email"
NO_SIGNER_EMAIL = "no_signer_email"
EMAIL_MISMATCH = "signer_email_mismatch"
DEAL_MISMATCH = "deal_id_mismatch"
OTP_NOT_VERIFIED = "otp_not_verified"
INVALID_OTP_VERIFIED_AT = "invalid_otp_verified_at"
MISSING_DEVICE_EVIDENCE = "missing_ip_or_user_agent"


@dataclass(frozen=True)
class SignatureCheck:
    valid: bool
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "reason": self.reason}


VALID = SignatureCheck(valid=True)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _present(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _check_signed_at(signed_at: Any, now: datetime) -> Optional[str]:
    dt = _parse_timestamp(signed_at)
    if dt is None:
        return INVALID_SIGNED_AT
    if dt <= SIGNATURE_EPOCH:
        return SIGNED_AT_TOO_OLD
    if dt > now + timedelta(seconds=SIGNATURE_CLOCK_SKEW_SECONDS):
        return SIGNED_AT_IN_FUTURE
    return None


def _check_signer(signer_email: Any, current_user_email: Optional[str]) -> Optional[str]:
    if not _present(current_user_email):
        return NO_CURRENT_USER
    if not _present(signer_email):
        return NO_SIGNER_EMAIL
    if signer_email.strip().lower() != current_user_email.strip().lower():
        return EMAIL_MISMATCH
    return None


def verify_signature(
    signature: Union[Signature, Mapping[str, Any], None],
    deal_id: str,
    current_user_email: Optional[str],
    now: Optional[datetime] = None,
) -> SignatureCheck:
    """Decide whether a stored signature record is valid proof of signing for this session."""
    if signature is None:
        return SignatureCheck(False, NO_SIGNATURE)
    record = signature.model_dump() if isinstance(signature, Signature) else dict(signature)
    now = now or datetime.now(timezone.utc)

    if record.get("signed") is not True:
        return SignatureCheck(False, NOT_SIGNED)

    reason = _check_signed_at(record.get("signed_at"), now)
    if reason:
        return SignatureCheck(False, reason)

    reason = _check_signer(record.get("signer_email"), current_user_email)
    if reason:
        return SignatureCheck(False, reason)

    if not deal_id or str(record.get("deal_id") or "") != str(deal_id):
        return SignatureCheck(False, DEAL_MISMATCH)

    if record.get("otp_verified") is not True:
        return SignatureCheck(False, OTP_NOT_VERIFIED)
    if _parse_timestamp(record.get("otp_verified_at")) is None:
        return SignatureCheck(False, INVALID_OTP_VERIFIED_AT)

    if not (_present(record.get("ip_address")) and _present(record.get("user_agent"))):
        return SignatureCheck(False, MISSING_DEVICE_EVIDENCE)

    return VALID


def verify_as_signer(
    signature: Union[Signature, Mapping[str, Any], None],
    deal_id: str,
    now: Optional[datetime] = None,
) -> SignatureCheck:
    """
    Check a record against its own signer's identity. Used for execution gating, where the
    authenticated session belongs to only one of the two parties.
    """
    if signature is None:
        return SignatureCheck(False, NO_SIGNATURE)
    record = signature.model_dump() if isinstance(signature, Signature) else signature
    return verify_signature(record, deal_id, record.get("signer_email"), now=now)


def verify_for_session(
    signatures: Mapping[str, Any],
    deal_id: str,
    current_user_email: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, SignatureCheck]:
    """
    Per-role result for the viewing user. The caller's own role is checked against their
    session email; the counterparty's record is checked against its own signer.
    """
    if not _present(current_user_email):
        return {role: SignatureCheck(False, NO_CURRENT_USER) for role in signatures}
    results = {}
    for role, signature in signatures.items():
        own = signature is not None and _check_signer(
            (signature.signer_email if isinstance(signature, Signature) else signature.get("signer_email")),
            current_user_email,
        ) is None
        if own:
            results[role] = verify_signature(signature, deal_id, current_user_email, now=now)
        else:
            results[role] = verify_as_signer(signature, deal_id, now=now)
        if not results[role].valid:
            logger.debug(f"Signature for deal {deal_id} role {role} not valid: {results[role].reason}")
    return results
