"""
Governing-law city derived from the parties' addresses.

Precedence (first match wins):
1. explicit jurisdiction that is non-empty, not "Delhi", not "Not specified" -> verbatim
2. city from the creator's address
3. city from the brand's address
4. explicit "Delhi" -> "Delhi"
5. "" (generation then fails validation; never a silent default)
"""
import re
import logging
from typing import Optional

logger = logging.getLogger(__name__)

MAJOR_CITIES = [
    "Mumbai", "Delhi", "Bangalore", "Kolkata", "Chennai", "Hyderabad",
    "Pune", "Ahmedabad", "Jaipur", "Surat", "Lucknow", "Kanpur",
    "Nagpur", "Indore", "Thane", "Bhopal", "Visakhapatnam", "Patna",
    "Vadodara", "Ghaziabad", "Ludhiana", "Agra", "Nashik", "Faridabad",
    "Meerut", "Rajkot", "Varanasi", "Srinagar", "Amritsar", "Chandigarh",
]

_CITY_PATTERNS = [(city, re.compile(rf"\b{re.escape(city)}\b", re.IGNORECASE)) for city in MAJOR_CITIES]
# ", <city>, <state>, <6-digit PIN>"
_CITY_STATE_PIN_RE = re.compile(r",\s*([^,]+?),\s*([^,]+?),\s*\d{6}")
# "<city>, <state>"
_CITY_STATE_RE = re.compile(r"^([^,]+?),\s*([^,]+)$")

_UNSPECIFIED = {"", "not specified", "n/a", "na"}


def _is_unspecified(value: Optional[str]) -> bool:
    return value is None or value.strip().lower() in _UNSPECIFIED


def extract_city_from_address(address: Optional[str]) -> Optional[str]:
    if _is_unspecified(address):
        return None
    addr = address.strip()

    for city, pattern in _CITY_PATTERNS:
        if pattern.search(addr):
            return city

    match = _CITY_STATE_PIN_RE.search(addr)
    if match and match.group(1).strip():
        return match.group(1).strip()

    match = _CITY_STATE_RE.match(addr)
    if match and len(match.group(1).strip()) > 2:
        return match.group(1).strip()

    return None


def derive_jurisdiction(
    explicit_jurisdiction: Optional[str] = None,
    creator_address: Optional[str] = None,
    brand_address: Optional[str] = None,
) -> str:
    explicit = (explicit_jurisdiction or "").strip()
    if explicit and explicit.lower() != "delhi" and explicit.lower() != "not specified":
        return explicit

    creator_city = extract_city_from_address(creator_address)
    if creator_city:
        return creator_city

    brand_city = extract_city_from_address(brand_address)
    if brand_city:
        return brand_city

    if explicit.lower() == "delhi":
        return "Delhi"

    logger.warning("Jurisdiction could not be derived from explicit value or party addresses")
    return ""
