"""
Brand response transitions, execution progression, derived contract status and the deletion guard.
"""
import pytest
import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from models import BrandResponseStatus, ContractStatus, DealExecutionStatus
from services.deal_status import (
    advance_to_verified_acceptance,
    apply_brand_response,
    can_transition,
    complete_execution,
    derive_contract_status,
    ensure_deal_deletable,
    is_contract_ready,
    next_execution_status,
    normalize_brand_response_status,
    normalize_execution_status,
)
from services.errors import DealDeletionRefusedError, InvalidTransitionError


@pytest.mark.parametrize(
    "current,target",
    [
        ("pending", "negotiating"),
        ("pending", "accepted"),
        ("pending", "rejected"),
        ("negotiating", "accepted"),
        ("negotiating", "rejected"),
        ("accepted", "accepted_verified"),
        ("rejected", "negotiating"),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)
    assert apply_brand_response(current, target) == BrandResponseStatus(target)


@pytest.mark.parametrize(
    "current,target",
    [
        ("accepted_verified", "pending"),
        ("accepted_verified", "rejected"),
        ("accepted", "pending"),
        ("accepted", "rejected"),
        ("rejected", "accepted"),
        ("pending", "accepted_verified"),
        ("negotiating", "pending"),
    ],
)
def test_disallowed_transitions_raise(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransitionError):
        apply_brand_response(current, target)


@pytest.mark.parametrize("status", list(BrandResponseStatus))
def test_reapplying_current_state_is_noop(status):
    assert apply_brand_response(status, status) == status


def test_accept_then_verify_never_shows_details_submitted():
    deal = {"brand_response_status": "pending", "status": "sent"}
    assert derive_contract_status(deal) == ContractStatus.SENT

    deal["brand_response_status"] = apply_brand_response(deal["brand_response_status"], "accepted").value
    assert derive_contract_status(deal) == ContractStatus.ACCEPTED

    # no-op update keeps the badge
    deal["brand_response_status"] = apply_brand_response(deal["brand_response_status"], "accepted").value
    assert derive_contract_status(deal) == ContractStatus.ACCEPTED

    deal["brand_response_status"] = advance_to_verified_acceptance(deal["brand_response_status"]).value
    assert derive_contract_status(deal) == ContractStatus.ACCEPTED_VERIFIED


@pytest.mark.parametrize(
    "deal,expected",
    [
        ({"deal_execution_status": "completed", "brand_response_status": "accepted_verified"}, ContractStatus.COMPLETED),
        ({"deal_execution_status": "signed", "brand_response_status": "rejected"}, ContractStatus.SIGNED),
        ({"brand_response_status": "accepted_verified", "status": "sent"}, ContractStatus.ACCEPTED_VERIFIED),
        ({"brand_response_status": "accepted", "status": "sent"}, ContractStatus.ACCEPTED),
        ({"brand_response_status": "negotiating", "status": "sent"}, ContractStatus.SENT),
        ({"brand_response_status": "negotiating"}, ContractStatus.NEGOTIATING),
        ({"brand_response_status": "pending", "status": "negotiating"}, ContractStatus.NEGOTIATING),
        ({"brand_response_status": "rejected"}, ContractStatus.REJECTED),
        ({"brand_response_status": "pending"}, ContractStatus.DETAILS_SUBMITTED),
        ({}, ContractStatus.DETAILS_SUBMITTED),
    ],
)
def test_derived_status_priority(deal, expected):
    assert derive_contract_status(deal) == expected


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("approved", BrandResponseStatus.ACCEPTED),
        ("SIGNED_BY_BRAND", BrandResponseStatus.ACCEPTED_VERIFIED),
        ("fully_executed", BrandResponseStatus.ACCEPTED_VERIFIED),
        ("declined", BrandResponseStatus.REJECTED),
        ("counter", BrandResponseStatus.NEGOTIATING),
        ("sent", BrandResponseStatus.PENDING),
        (None, BrandResponseStatus.PENDING),
        ("  Accepted ", BrandResponseStatus.ACCEPTED),
        ("something-new", BrandResponseStatus.PENDING),
        (BrandResponseStatus.REJECTED, BrandResponseStatus.REJECTED),
    ],
)
def test_legacy_brand_response_tags(raw, expected):
    assert normalize_brand_response_status(raw) == expected


def test_legacy_execution_tags():
    assert normalize_execution_status("FULLY_EXECUTED") == DealExecutionStatus.SIGNED
    assert normalize_execution_status("done") == DealExecutionStatus.COMPLETED
    assert normalize_execution_status("") is None
    assert normalize_execution_status("weird") is None


def test_contract_ready_only_after_acceptance():
    assert is_contract_ready({"brand_response_status": "accepted"})
    assert is_contract_ready({"brand_response_status": "approved"})
    assert is_contract_ready({"brand_response_status": "accepted_verified"})
    assert not is_contract_ready({"brand_response_status": "negotiating"})
    assert not is_contract_ready({})


@pytest.mark.parametrize("current", ["pending", "negotiating", "accepted"])
def test_verified_acceptance_from_open_states(current):
    assert advance_to_verified_acceptance(current) == BrandResponseStatus.ACCEPTED_VERIFIED


def test_verified_acceptance_refused_after_rejection():
    with pytest.raises(InvalidTransitionError):
        advance_to_verified_acceptance("rejected")


def test_verified_acceptance_is_idempotent():
    assert advance_to_verified_acceptance("accepted_verified") == BrandResponseStatus.ACCEPTED_VERIFIED


# ----------------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------------

def test_execution_needs_both_signatures():
    assert next_execution_status(None, True, False) is None
    assert next_execution_status(None, False, True) is None
    assert next_execution_status(None, True, True) == DealExecutionStatus.SIGNED


def test_execution_never_regresses():
    assert next_execution_status("signed", False, False) == DealExecutionStatus.SIGNED
    assert next_execution_status("completed", True, True) == DealExecutionStatus.COMPLETED


def test_complete_execution():
    assert complete_execution("signed") == DealExecutionStatus.COMPLETED
    assert complete_execution("completed") == DealExecutionStatus.COMPLETED
    with pytest.raises(InvalidTransitionError):
        complete_execution(None)


# ----------------------------------------------------------------------------
# Deletion guard
# ----------------------------------------------------------------------------

def test_unsigned_deal_is_deletable():
    ensure_deal_deletable({"deal_id": "d1"}, [{"signer_role": "creator", "signed": False}])


@pytest.mark.parametrize(
    "deal,signatures",
    [
        ({"deal_id": "d1", "deal_execution_status": "signed"}, []),
        ({"deal_id": "d1", "deal_execution_status": "completed"}, []),
        ({"deal_id": "d1", "signed_contract_url": "https://files/contract.pdf"}, []),
        ({"deal_id": "d1"}, [{"signer_role": "brand", "signed": True}]),
    ],
)
def test_signed_deal_is_never_deleted(deal, signatures):
    with pytest.raises(DealDeletionRefusedError):
        ensure_deal_deletable(deal, signatures)
