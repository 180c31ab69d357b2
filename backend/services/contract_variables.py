"""
Contract Variable Derivation.

Turns a loosely-typed deal record (as stored, including legacy shapes) plus brand/creator party
info into an immutable ContractVariables snapshot for the renderer. All values come from the deal
record; nothing is invented. Failures raise ValidationError / FormattingInvariantError, never a
silent default that would change the legal meaning of the agreement.

Companion: validate_required_contract_fields() rejects placeholder party data before generation.
"""
import json
import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from models import ContractVariables, PartyInfo, StructuredDeliverable
from services.currency_formatter import coerce_amount, format_inr_amount
from services.deliverable_normalizer import (
    format_deliverables,
    is_structured_item,
    normalize_platforms,
    parse_deadline,
    NO_DELIVERABLES_TEXT,
)
from services.errors import ValidationError
from services.jurisdiction import derive_jurisdiction

logger = logging.getLogger(__name__)

ALLOWED_NOTICE_DAYS = (7, 15, 30)
DEFAULT_NOTICE_DAYS = 7
DEFAULT_PAYMENT_METHOD = "Bank Transfer"
DEFAULT_PAYMENT_TIMELINE = "Within 7 days of content delivery"
DEFAULT_USAGE_TYPE = "Non-exclusive"
DEFAULT_USAGE_DURATION = "6 months"
DEFAULT_EXCLUSIVITY_CATEGORY = "Same category"
DEFAULT_EXCLUSIVITY_DURATION = "30 days"
NO_EXCLUSIVITY_CLAUSE = "No exclusivity period applies."
DEADLINE_FALLBACK_TEXT = "As mutually agreed"

PLACEHOLDER_NAMES = {
    "", "brand", "brand name", "creator", "creator name", "notice", "name",
    "not specified", "n/a", "na", "none", "null", "unknown", "test", "tbd",
}
PLACEHOLDER_VALUES = {"", "not specified", "n/a", "na", "none", "null", "unknown", "tbd"}

_LOCATION_KEYWORDS_RE = re.compile(
    r"\b(city|state|nagar|colony|sector|road|street|area|district|pincode|pin|noida|delhi|mumbai|"
    r"bangalore|pune|hyderabad|chennai|kolkata|patna|bihar|up|uttar|rajasthan|gujarat|maharashtra|"
    r"karnataka|tamil|west|bengal|odisha|assam|punjab|haryana|himachal|uttarakhand|jammu|kashmir|goa|"
    r"kerala|telangana|andhra|madhya|pradesh|gaur|block|phase|extension|layout|village|town|taluk|tehsil)\b",
    re.IGNORECASE,
)
_ADDRESS_WORDS_RE = re.compile(r"\b(flat|house|apartment|building|plot|no\.?|number)\b", re.IGNORECASE)


# -----------------------------------------------------------------------------
# Field completeness
# -----------------------------------------------------------------------------

def _as_party(info: Union[PartyInfo, Dict[str, Any], None]) -> PartyInfo:
    if isinstance(info, PartyInfo):
        return info
    return PartyInfo.model_validate(info or {})


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def is_plausible_email(email: str) -> bool:
    return bool(email) and email.lower() not in PLACEHOLDER_VALUES and "@" in email and "." in email


def has_location_info(address: str) -> bool:
    """Permissive on format: comma OR length >= 5 OR location keyword OR house/flat marker."""
    return (
        "," in address
        or len(address) >= 5
        or bool(_LOCATION_KEYWORDS_RE.search(address))
        or bool(re.search(r"\d+", address))
        or bool(_ADDRESS_WORDS_RE.search(address))
    )


def _address_problem(address: str, label: str) -> Optional[str]:
    if address.lower() in PLACEHOLDER_VALUES:
        return f"{label} (full address required)"
    if len(address) < 3 or not has_location_info(address):
        return f"{label} (must include city and state)"
    return None


def validate_required_contract_fields(
    brand_info: Union[PartyInfo, Dict[str, Any], None],
    creator_info: Union[PartyInfo, Dict[str, Any], None],
) -> List[str]:
    """Return the list of missing/placeholder party fields. Empty list means generation may proceed."""
    brand = _as_party(brand_info)
    creator = _as_party(creator_info)
    missing: List[str] = []

    brand_name = _clean(brand.name)
    if brand_name.lower() in PLACEHOLDER_NAMES:
        missing.append("Brand legal name")

    problem = _address_problem(_clean(brand.address), "Brand registered address")
    if problem:
        missing.append(problem)

    if not is_plausible_email(_clean(brand.email)):
        missing.append("Brand email")

    creator_name = _clean(creator.name)
    if creator_name.lower() in PLACEHOLDER_NAMES or len(creator_name) < 2:
        missing.append("Creator full name")

    creator_address = _clean(creator.address)
    if not creator_address:
        logger.warning("Creator address is empty at contract field validation")
    problem = _address_problem(creator_address, "Creator address")
    if problem:
        missing.append(problem)

    if not is_plausible_email(_clean(creator.email)):
        missing.append("Creator email")

    return missing


def ensure_contract_fields_complete(brand_info, creator_info) -> None:
    missing = validate_required_contract_fields(brand_info, creator_info)
    if missing:
        raise ValidationError(missing)


# -----------------------------------------------------------------------------
# Deal record -> terms
# -----------------------------------------------------------------------------

@dataclass
class DealTerms:
    """Terms parsed out of a stored deal record, before formatting."""
    deal_amount: Any
    deliverables: List[Union[StructuredDeliverable, str]]
    delivery_deadline: Any = None
    payment_method: str = DEFAULT_PAYMENT_METHOD
    payment_timeline: str = DEFAULT_PAYMENT_TIMELINE
    usage_type: str = DEFAULT_USAGE_TYPE
    usage_platforms: List[str] = field(default_factory=list)
    usage_duration: str = DEFAULT_USAGE_DURATION
    paid_ads: bool = False
    whitelisting: bool = False
    exclusivity_enabled: bool = False
    exclusivity_category: Optional[str] = None
    exclusivity_duration: Optional[str] = None
    termination_notice_days: Any = None
    jurisdiction_city: Optional[str] = None


def parse_deliverables(raw: Any) -> List[Union[StructuredDeliverable, str]]:
    """Accept a JSON string, a plain string, or a list of strings/structured objects."""
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return [raw]
        raw = parsed if isinstance(parsed, list) else [raw]
    if isinstance(raw, (dict, StructuredDeliverable)):
        raw = [raw]
    items: List[Union[StructuredDeliverable, str]] = []
    for item in raw:
        if is_structured_item(item):
            items.append(item if isinstance(item, StructuredDeliverable) else StructuredDeliverable.model_validate(item))
        elif isinstance(item, str) and item.strip():
            items.append(item)
    return items


def format_contract_date(value: Any) -> Optional[str]:
    """en-IN long date: 19 October 2026."""
    dt = parse_deadline(value)
    if dt is None:
        return None
    return f"{dt.day} {dt.strftime('%B %Y')}"


def clamp_notice_days(value: Any) -> int:
    try:
        days = int(value)
    except (TypeError, ValueError):
        return DEFAULT_NOTICE_DAYS
    return days if days in ALLOWED_NOTICE_DAYS else DEFAULT_NOTICE_DAYS


def build_deal_terms(deal: Dict[str, Any]) -> DealTerms:
    platform = deal.get("platform")
    raw_platforms = [platform] if platform else (deal.get("usage_platforms") or [])

    timeline = DEFAULT_PAYMENT_TIMELINE
    expected = format_contract_date(deal.get("payment_expected_date"))
    if expected:
        timeline = f"{DEFAULT_PAYMENT_TIMELINE} (expected by {expected})"

    usage_type = deal.get("usage_type")
    if hasattr(usage_type, "value"):
        usage_type = usage_type.value

    return DealTerms(
        deal_amount=deal.get("deal_amount"),
        deliverables=parse_deliverables(deal.get("deliverables")),
        delivery_deadline=deal.get("due_date"),
        payment_method=deal.get("payment_method") or DEFAULT_PAYMENT_METHOD,
        payment_timeline=timeline,
        usage_type=usage_type or DEFAULT_USAGE_TYPE,
        usage_platforms=normalize_platforms(raw_platforms),
        usage_duration=deal.get("usage_duration") or DEFAULT_USAGE_DURATION,
        paid_ads=deal.get("paid_ads_allowed") is True,
        whitelisting=deal.get("whitelisting_allowed") is True,
        exclusivity_enabled=deal.get("exclusivity_enabled") is True,
        exclusivity_category=deal.get("exclusivity_category"),
        exclusivity_duration=deal.get("exclusivity_duration"),
        termination_notice_days=deal.get("termination_notice_days"),
        jurisdiction_city=deal.get("jurisdiction_city"),
    )


# -----------------------------------------------------------------------------
# Derivation
# -----------------------------------------------------------------------------

def derive_contract_variables(
    deal: Union[Dict[str, Any], DealTerms],
    brand_info: Union[PartyInfo, Dict[str, Any], None],
    creator_info: Union[PartyInfo, Dict[str, Any], None],
    now: Optional[datetime] = None,
) -> ContractVariables:
    """
    Compose normalizer, formatter and jurisdiction resolver into one ContractVariables snapshot.

    Raises:
        ValidationError: deal_amount negative, NaN or non-numeric.
        FormattingInvariantError: the formatted amount fails its currency invariants.
    """
    terms = deal if isinstance(deal, DealTerms) else build_deal_terms(deal)
    brand = _as_party(brand_info)
    creator = _as_party(creator_info)
    now = now or datetime.now(timezone.utc)

    amount = coerce_amount(terms.deal_amount)
    amount_formatted = format_inr_amount(amount)

    deliverables_list = format_deliverables(terms.deliverables, terms.delivery_deadline, now=now)
    delivery_deadline = format_contract_date(terms.delivery_deadline) or DEADLINE_FALLBACK_TEXT

    exclusivity_category = None
    exclusivity_duration = None
    exclusivity_clause = NO_EXCLUSIVITY_CLAUSE
    if terms.exclusivity_enabled:
        exclusivity_category = terms.exclusivity_category or DEFAULT_EXCLUSIVITY_CATEGORY
        exclusivity_duration = terms.exclusivity_duration or DEFAULT_EXCLUSIVITY_DURATION
        exclusivity_clause = (
            f"The Creator agrees to exclusivity in the {exclusivity_category} category for a period of "
            f"{exclusivity_duration} from the date of content delivery."
        )

    jurisdiction_city = derive_jurisdiction(
        explicit_jurisdiction=terms.jurisdiction_city,
        creator_address=creator.address,
        brand_address=brand.address,
    )

    variables = ContractVariables(
        contract_date=format_contract_date(now),
        brand_name=_clean(brand.name),
        brand_address=_clean(brand.address),
        brand_email=_clean(brand.email),
        creator_name=_clean(creator.name),
        creator_address=_clean(creator.address),
        creator_email=_clean(creator.email),
        deliverables_list=deliverables_list,
        delivery_deadline=delivery_deadline,
        deal_amount=float(amount),
        deal_amount_formatted=amount_formatted,
        payment_method=terms.payment_method,
        payment_timeline=terms.payment_timeline,
        usage_type=terms.usage_type,
        usage_platforms=", ".join(normalize_platforms(terms.usage_platforms)),
        usage_duration=terms.usage_duration,
        paid_ads_allowed="Yes" if terms.paid_ads else "No",
        whitelisting_allowed="Yes" if terms.whitelisting else "No",
        exclusivity_clause=exclusivity_clause,
        exclusivity_category=exclusivity_category,
        exclusivity_duration=exclusivity_duration,
        termination_notice_days=clamp_notice_days(terms.termination_notice_days),
        jurisdiction_city=jurisdiction_city,
    )
    logger.info(
        f"Derived contract variables: amount={variables.deal_amount_formatted} "
        f"jurisdiction={variables.jurisdiction_city or '<unresolved>'} platforms={variables.usage_platforms}"
    )
    return variables


def validate_contract_variables(variables: ContractVariables) -> None:
    """Downstream completeness check run before rendering."""
    missing = []
    if not variables.jurisdiction_city.strip():
        missing.append("Jurisdiction city (party address must include city and state)")
    if not variables.brand_name or not variables.creator_name:
        missing.append("Party names")
    if variables.deliverables_list == NO_DELIVERABLES_TEXT:
        logger.info("Contract generated without itemised deliverables")
    if missing:
        raise ValidationError(missing)
