from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any, List, Union
from datetime import datetime, timezone
from enum import Enum
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class BrandResponseStatus(str, Enum):
    """Negotiation stage. Canonical values only; legacy tags are mapped in services.deal_status."""
    PENDING = "pending"
    NEGOTIATING = "negotiating"
    ACCEPTED = "accepted"
    ACCEPTED_VERIFIED = "accepted_verified"  # OTP-verified acceptance, terminal-positive
    REJECTED = "rejected"

class DealExecutionStatus(str, Enum):
    SIGNED = "signed"  # both signatures valid
    COMPLETED = "completed"

class SignerRole(str, Enum):
    CREATOR = "creator"
    BRAND = "brand"

class ContractStatus(str, Enum):
    """Human-readable contract status rendered by the UI badge."""
    COMPLETED = "Completed"
    SIGNED = "Signed"
    ACCEPTED_VERIFIED = "Accepted & Verified"
    ACCEPTED = "Accepted"
    SENT = "Sent"
    NEGOTIATING = "Negotiating"
    REJECTED = "Rejected"
    DETAILS_SUBMITTED = "Details Submitted"

class UsageType(str, Enum):
    EXCLUSIVE = "Exclusive"
    NON_EXCLUSIVE = "Non-exclusive"

class AuditAction(str, Enum):
    # Deal lifecycle
    DEAL_CREATED = "DEAL_CREATED"
    BRAND_RESPONSE_UPDATED = "BRAND_RESPONSE_UPDATED"
    DEAL_DELETE_REFUSED = "DEAL_DELETE_REFUSED"
    DEAL_DELETED = "DEAL_DELETED"

    # Contract
    CONTRACT_GENERATED = "CONTRACT_GENERATED"
    CONTRACT_GENERATION_FAILED = "CONTRACT_GENERATION_FAILED"

    # OTP
    OTP_ISSUED = "OTP_ISSUED"
    OTP_RATE_LIMITED = "OTP_RATE_LIMITED"
    OTP_VERIFY_SUCCESS = "OTP_VERIFY_SUCCESS"
    OTP_VERIFY_FAILED = "OTP_VERIFY_FAILED"

    # Signing
    CONTRACT_SIGNED = "CONTRACT_SIGNED"
    SIGNATURE_SUPERSEDED = "SIGNATURE_SUPERSEDED"
    EXECUTION_STATUS_ADVANCED = "EXECUTION_STATUS_ADVANCED"

# ============================================================================
# CORE MODELS
# ============================================================================

class StructuredDeliverable(BaseModel):
    """Deliverable captured by the structured deal form."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    platform: Optional[str] = None
    content_type: Optional[str] = Field(default=None, alias="contentType")
    quantity: Optional[int] = None
    duration: Optional[int] = None  # seconds

class PartyInfo(BaseModel):
    """Name/address/email of one contracting party, as captured (may contain placeholders)."""
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None

class DealCreate(BaseModel):
    """Fields a creator supplies when recording a deal. Lifecycle state is never client-set."""
    model_config = ConfigDict(extra="ignore")

    creator_id: str
    brand_name: str
    brand_email: Optional[str] = None
    brand_address: Optional[str] = None
    creator_name: Optional[str] = None
    creator_email: Optional[str] = None
    creator_address: Optional[str] = None
    deal_amount: float = Field(default=0, ge=0, allow_inf_nan=False)
    deliverables: Union[str, List[Union[StructuredDeliverable, str]], None] = None
    due_date: Optional[str] = None
    payment_expected_date: Optional[str] = None

    # Terms captured by the deal form
    payment_method: Optional[str] = None
    platform: Optional[str] = None
    usage_type: Optional[UsageType] = None
    usage_platforms: List[str] = Field(default_factory=list)
    usage_duration: Optional[str] = None
    paid_ads_allowed: bool = False
    whitelisting_allowed: bool = False
    exclusivity_enabled: bool = False
    exclusivity_category: Optional[str] = None
    exclusivity_duration: Optional[str] = None
    termination_notice_days: Optional[int] = None
    jurisdiction_city: Optional[str] = None

class Deal(DealCreate):
    deal_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: Optional[str] = None  # free-form legacy tag
    brand_response_status: BrandResponseStatus = BrandResponseStatus.PENDING
    deal_execution_status: Optional[DealExecutionStatus] = None
    contract_file_url: Optional[str] = None
    signed_contract_url: Optional[str] = None
    contract_version: Optional[int] = None
    deleting_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

class ContractVariables(BaseModel):
    """Immutable snapshot consumed by the document renderer. Re-generation builds a new one."""
    model_config = ConfigDict(frozen=True)

    contract_date: str
    brand_name: str
    brand_address: str = ""
    brand_email: str = ""
    creator_name: str
    creator_address: str = ""
    creator_email: str = ""
    deliverables_list: str
    delivery_deadline: str
    deal_amount: float
    deal_amount_formatted: str
    payment_method: str
    payment_timeline: str
    usage_type: str
    usage_platforms: str
    usage_duration: str
    paid_ads_allowed: str
    whitelisting_allowed: str
    exclusivity_clause: str
    exclusivity_category: Optional[str] = None
    exclusivity_duration: Optional[str] = None
    termination_notice_days: int
    jurisdiction_city: str

class Signature(BaseModel):
    """One row per (deal_id, signer_role). Create-once; re-sign supersedes with a new row."""
    model_config = ConfigDict(extra="ignore")

    signature_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    deal_id: str
    signer_role: SignerRole
    signer_name: str
    signer_email: str
    signed: bool = True
    signed_at: datetime = Field(default_factory=_utcnow)
    otp_verified: bool = False
    otp_verified_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[Dict[str, Any]] = None
    contract_version: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)

class OTPChallenge(BaseModel):
    """Single active challenge per (deal_id, signer_role). Only the code hash is stored."""
    model_config = ConfigDict(extra="ignore")

    deal_id: str
    signer_role: SignerRole
    code_hash: str
    expires_at: datetime
    attempts: int = 0
    verified_at: Optional[datetime] = None
    used_for_signature_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_email: Optional[str] = None
    deal_id: Optional[str] = None
    signer_role: Optional[SignerRole] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
