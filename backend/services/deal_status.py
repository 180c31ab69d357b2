"""
Deal Status State Machine.

Two independent axes are tracked on a deal:
- brand_response_status: pending -> {negotiating, accepted, rejected}, negotiating -> {accepted, rejected},
  rejected -> negotiating (brand reopens talks), accepted -> accepted_verified (OTP-verified brand signing).
  accepted_verified is terminal-positive.
- deal_execution_status: None -> signed (both signatures valid) -> completed.

Stored values may carry legacy tags ("approved", "SIGNED_BY_BRAND", "declined", ...). They are mapped to the
canonical enums at the boundary; everything below normalize_* only sees canonical values.

derive_contract_status() is a pure function of the stored fields and is what the UI badge renders.
"""
import logging
from typing import Any, Iterable, Mapping, Optional

from models import BrandResponseStatus, ContractStatus, DealExecutionStatus
from services.errors import DealDeletionRefusedError, InvalidTransitionError

logger = logging.getLogger(__name__)

LEGACY_BRAND_RESPONSE_ALIASES = {
    "": BrandResponseStatus.PENDING,
    "sent": BrandResponseStatus.PENDING,
    "draft": BrandResponseStatus.PENDING,
    "awaiting_response": BrandResponseStatus.PENDING,
    "counter": BrandResponseStatus.NEGOTIATING,
    "counter_offer": BrandResponseStatus.NEGOTIATING,
    "negotiation_requested": BrandResponseStatus.NEGOTIATING,
    "approved": BrandResponseStatus.ACCEPTED,
    "accept": BrandResponseStatus.ACCEPTED,
    "verified": BrandResponseStatus.ACCEPTED_VERIFIED,
    "signed_by_brand": BrandResponseStatus.ACCEPTED_VERIFIED,
    "fully_executed": BrandResponseStatus.ACCEPTED_VERIFIED,
    "declined": BrandResponseStatus.REJECTED,
    "reject": BrandResponseStatus.REJECTED,
}

LEGACY_EXECUTION_ALIASES = {
    "fully_executed": DealExecutionStatus.SIGNED,
    "executed": DealExecutionStatus.SIGNED,
    "complete": DealExecutionStatus.COMPLETED,
    "done": DealExecutionStatus.COMPLETED,
}

LEGACY_SENT_TAGS = {"sent", "sent to brand", "awaiting response"}

ALLOWED_TRANSITIONS = {
    BrandResponseStatus.PENDING: {
        BrandResponseStatus.NEGOTIATING,
        BrandResponseStatus.ACCEPTED,
        BrandResponseStatus.REJECTED,
    },
    BrandResponseStatus.NEGOTIATING: {
        BrandResponseStatus.ACCEPTED,
        BrandResponseStatus.REJECTED,
    },
    BrandResponseStatus.ACCEPTED: {
        BrandResponseStatus.ACCEPTED_VERIFIED,
    },
    BrandResponseStatus.REJECTED: {
        BrandResponseStatus.NEGOTIATING,
    },
    BrandResponseStatus.ACCEPTED_VERIFIED: set(),
}

# Response states that permit contract generation
CONTRACT_READY_STATUSES = {BrandResponseStatus.ACCEPTED, BrandResponseStatus.ACCEPTED_VERIFIED}


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def normalize_brand_response_status(value: Any) -> BrandResponseStatus:
    """Map a stored (possibly legacy) brand response tag to the canonical enum."""
    raw = _enum_value(value)
    if raw is None:
        return BrandResponseStatus.PENDING
    key = str(raw).strip().lower()
    try:
        return BrandResponseStatus(key)
    except ValueError:
        pass
    if key in LEGACY_BRAND_RESPONSE_ALIASES:
        return LEGACY_BRAND_RESPONSE_ALIASES[key]
    logger.warning(f"Unknown brand_response_status {raw!r}, treating as pending")
    return BrandResponseStatus.PENDING


def normalize_execution_status(value: Any) -> Optional[DealExecutionStatus]:
    raw = _enum_value(value)
    if raw is None or str(raw).strip() == "":
        return None
    key = str(raw).strip().lower()
    try:
        return DealExecutionStatus(key)
    except ValueError:
        pass
    if key in LEGACY_EXECUTION_ALIASES:
        return LEGACY_EXECUTION_ALIASES[key]
    logger.warning(f"Unknown deal_execution_status {raw!r}, ignoring")
    return None


# ============================================================================
# Brand response transitions
# ============================================================================

def can_transition(current: Any, target: Any) -> bool:
    current_status = normalize_brand_response_status(current)
    target_status = normalize_brand_response_status(target)
    return current_status == target_status or target_status in ALLOWED_TRANSITIONS[current_status]


def apply_brand_response(current: Any, requested: Any) -> BrandResponseStatus:
    """
    Return the new brand response status.

    Re-applying the current state is a no-op (returns it unchanged). Anything outside
    ALLOWED_TRANSITIONS raises InvalidTransitionError; accepted_verified never moves.
    """
    current_status = normalize_brand_response_status(current)
    target_status = normalize_brand_response_status(requested)
    if current_status == target_status:
        return current_status
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransitionError(
            f"Cannot move brand response from {current_status.value} to {target_status.value}"
        )
    return target_status


def advance_to_verified_acceptance(current: Any) -> BrandResponseStatus:
    """
    OTP-verified brand signing. An open offer (pending/negotiating) is accepted implicitly on the way,
    so the recorded path is always ... -> accepted -> accepted_verified.
    """
    status = normalize_brand_response_status(current)
    if status in (BrandResponseStatus.PENDING, BrandResponseStatus.NEGOTIATING):
        status = apply_brand_response(status, BrandResponseStatus.ACCEPTED)
    return apply_brand_response(status, BrandResponseStatus.ACCEPTED_VERIFIED)


def is_contract_ready(deal: Mapping[str, Any]) -> bool:
    return normalize_brand_response_status(deal.get("brand_response_status")) in CONTRACT_READY_STATUSES


# ============================================================================
# Execution status
# ============================================================================

def next_execution_status(current: Any, creator_valid: bool, brand_valid: bool) -> Optional[DealExecutionStatus]:
    """Execution only ever moves forward: None -> signed once BOTH signatures are valid."""
    status = normalize_execution_status(current)
    if status is not None:
        return status
    if creator_valid and brand_valid:
        return DealExecutionStatus.SIGNED
    return None


def complete_execution(current: Any) -> DealExecutionStatus:
    status = normalize_execution_status(current)
    if status == DealExecutionStatus.COMPLETED:
        return status
    if status != DealExecutionStatus.SIGNED:
        raise InvalidTransitionError("A deal can only be completed after both parties have signed")
    return DealExecutionStatus.COMPLETED


# ============================================================================
# Derived contract status
# ============================================================================

def derive_contract_status(deal: Mapping[str, Any]) -> ContractStatus:
    """
    Priority: execution (completed > signed) > accepted_verified > accepted > legacy "sent"
    > negotiating > rejected > Details Submitted.
    """
    execution = normalize_execution_status(deal.get("deal_execution_status"))
    if execution == DealExecutionStatus.COMPLETED:
        return ContractStatus.COMPLETED
    if execution == DealExecutionStatus.SIGNED:
        return ContractStatus.SIGNED

    response = normalize_brand_response_status(deal.get("brand_response_status"))
    if response == BrandResponseStatus.ACCEPTED_VERIFIED:
        return ContractStatus.ACCEPTED_VERIFIED
    if response == BrandResponseStatus.ACCEPTED:
        return ContractStatus.ACCEPTED

    legacy_status = str(deal.get("status") or "").strip().lower()
    if legacy_status in LEGACY_SENT_TAGS:
        return ContractStatus.SENT
    if response == BrandResponseStatus.NEGOTIATING or legacy_status == "negotiating":
        return ContractStatus.NEGOTIATING
    if response == BrandResponseStatus.REJECTED:
        return ContractStatus.REJECTED
    return ContractStatus.DETAILS_SUBMITTED


# ============================================================================
# Deletion guard
# ============================================================================

def ensure_deal_deletable(deal: Mapping[str, Any], signatures: Iterable[Mapping[str, Any]] = ()) -> None:
    """A deal with any signature, or a signed/completed contract, is never hard-deleted."""
    execution = normalize_execution_status(deal.get("deal_execution_status"))
    if execution is not None:
        raise DealDeletionRefusedError(
            f"Deal {deal.get('deal_id')} has a {execution.value} contract and cannot be deleted"
        )
    if deal.get("signed_contract_url"):
        raise DealDeletionRefusedError(f"Deal {deal.get('deal_id')} has a signed contract and cannot be deleted")
    signed_roles = [s.get("signer_role") for s in signatures if s.get("signed")]
    if signed_roles:
        raise DealDeletionRefusedError(
            f"Deal {deal.get('deal_id')} has been signed by {', '.join(map(str, signed_roles))} and cannot be deleted"
        )
