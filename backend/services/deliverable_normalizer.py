"""
Deliverable and platform normalization for contract text.

Deliverables arrive either as structured form items ({platform, contentType, quantity, duration})
or as legacy free text ("2 insta reels"). Both render through the same sentence:

    • One Instagram Reel of minimum 15 seconds, published on the Creator's Instagram account,
      within 10 days of agreement execution.

Usage-rights platforms are a closed set. Unknown values and "Other" are dropped so the agreement
never licenses content on an unnamed platform.
"""
import math
import logging
from datetime import datetime, date, timezone
from typing import Any, Iterable, List, Optional, Union

from models import StructuredDeliverable

logger = logging.getLogger(__name__)

VALID_PLATFORMS = ("Instagram", "YouTube", "Website", "Paid Ads")
DEFAULT_PLATFORM = "Instagram"
DEFAULT_CONTENT_TYPE = "Content"
DEFAULT_DELIVERY_DAYS = 7
DEFAULT_VIDEO_DURATION_SECONDS = 15
NO_DELIVERABLES_TEXT = "As per agreement"

QUANTITY_WORDS = {1: "One", 2: "Two", 3: "Three", 4: "Four", 5: "Five"}


def quantity_to_word(quantity: Optional[int]) -> str:
    """1-5 render as words, anything larger as digits. Missing/zero counts as one."""
    if not quantity or quantity < 1:
        quantity = 1
    return QUANTITY_WORDS.get(quantity, str(quantity))


def parse_deadline(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
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


def days_until_deadline(deadline: Any, now: Optional[datetime] = None) -> int:
    """ceil(deadline - now) in days; DEFAULT_DELIVERY_DAYS when absent, unparsable or not in the future."""
    deadline_dt = parse_deadline(deadline)
    if deadline_dt is None:
        return DEFAULT_DELIVERY_DAYS
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    diff_days = math.ceil((deadline_dt - now).total_seconds() / 86400)
    if diff_days <= 0:
        return DEFAULT_DELIVERY_DAYS
    return diff_days


def _deliverable_sentence(quantity_word: str, platform: str, content_type: str, duration: str, days: int) -> str:
    return (
        f"• {quantity_word} {platform} {content_type}{duration}, "
        f"published on the Creator's {platform} account, "
        f"within {days} days of agreement execution."
    )


def _format_structured(item: StructuredDeliverable, days: int) -> str:
    platform = (item.platform or "").strip() or DEFAULT_PLATFORM
    content_type = (item.content_type or "").strip() or DEFAULT_CONTENT_TYPE
    duration = f" of minimum {item.duration} seconds" if item.duration else ""
    return _deliverable_sentence(quantity_to_word(item.quantity), platform, content_type, duration, days)


def _format_free_text(text: str, days: int) -> str:
    lower = text.lower().strip()
    platform = DEFAULT_PLATFORM
    content_type = DEFAULT_CONTENT_TYPE
    duration = ""

    if "reel" in lower or "video" in lower:
        content_type = "Reel"
        duration = f" of minimum {DEFAULT_VIDEO_DURATION_SECONDS} seconds"
        if "instagram" not in lower and "insta" not in lower and ("youtube" in lower or "yt" in lower):
            platform = "YouTube"
            content_type = "Video"
    elif "story" in lower or "stories" in lower:
        content_type = "Story"
    elif "post" in lower or "carousel" in lower:
        content_type = "Post"
    elif "youtube" in lower:
        platform = "YouTube"
        content_type = "Video"

    if "2" in lower or "two" in lower:
        quantity_word = "Two"
    elif "3" in lower or "three" in lower:
        quantity_word = "Three"
    else:
        quantity_word = "One"

    return _deliverable_sentence(quantity_word, platform, content_type, duration, days)


def is_structured_item(item: Any) -> bool:
    if isinstance(item, StructuredDeliverable):
        return True
    return isinstance(item, dict) and any(k in item for k in ("platform", "contentType", "content_type"))


def format_deliverables(
    deliverables: Union[str, Iterable[Any], None],
    deadline: Any = None,
    now: Optional[datetime] = None,
) -> str:
    """Render deliverables as bullet sentences separated by blank lines."""
    if deliverables is None or deliverables == "" or deliverables == []:
        return NO_DELIVERABLES_TEXT
    items = [deliverables] if isinstance(deliverables, (str, dict, StructuredDeliverable)) else list(deliverables)
    if not items:
        return NO_DELIVERABLES_TEXT

    days = days_until_deadline(deadline, now=now)
    lines = []
    for item in items:
        if is_structured_item(item):
            structured = item if isinstance(item, StructuredDeliverable) else StructuredDeliverable.model_validate(item)
            lines.append(_format_structured(structured, days))
        elif isinstance(item, str) and item.strip():
            lines.append(_format_free_text(item, days))
        else:
            logger.warning(f"Skipping unrecognised deliverable entry of type {type(item).__name__}")
    if not lines:
        return NO_DELIVERABLES_TEXT
    return "\n\n".join(lines)


def _map_platform(value: str) -> Optional[str]:
    lower = value.strip().lower()
    if not lower or lower == "other":
        return None
    if "instagram" in lower or "insta" in lower:
        return "Instagram"
    if "youtube" in lower or "yt" in lower:
        return "YouTube"
    if "website" in lower or "web" in lower:
        return "Website"
    if "paid" in lower or "ads" in lower:
        return "Paid Ads"
    for platform in VALID_PLATFORMS:
        if platform.lower() == lower:
            return platform
    return None


def normalize_platforms(platforms: Union[str, Iterable[Any], None]) -> List[str]:
    """Map to the closed platform set, drop Other/unknown, de-duplicate, never return empty."""
    if not platforms:
        raw: List[Any] = []
    elif isinstance(platforms, str):
        raw = [platforms]
    else:
        raw = list(platforms)

    normalized: List[str] = []
    for value in raw:
        if not isinstance(value, str):
            continue
        mapped = _map_platform(value)
        if mapped and mapped not in normalized:
            normalized.append(mapped)
    return normalized or [DEFAULT_PLATFORM]
