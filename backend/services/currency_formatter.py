"""
Indian Rupee formatting for contract text.

format_inr_amount(15000) -> "₹15,000 (Rupees Fifteen Thousand Only)"

Guarantees on every returned string:
- exactly one ₹ in canonical form (U+20B9); the known corruption U+00B9 is rewritten to it;
- stray superscript digits are stripped; "Rs." / "INR" aliases are rewritten to ₹;
- a "(Rupees ... Only)" words suffix is present.
If any guarantee still fails after repair, FormattingInvariantError is raised. A contract must
never carry an unverifiable monetary figure.
"""
import math
import re
import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

from services.errors import FormattingInvariantError, ValidationError

logger = logging.getLogger(__name__)

RUPEE_SYMBOL = "₹"
CORRUPTED_RUPEE = "¹"
SUPERSCRIPT_DIGITS = "²³⁰⁴⁵⁶⁷⁸⁹"

_SUPERSCRIPT_RE = re.compile(f"[{SUPERSCRIPT_DIGITS}]")
_ALIAS_RE = re.compile(r"\b(?:Rs\.?|INR)(?![A-Za-z])\s*", re.IGNORECASE)
_DUPLICATE_SYMBOL_RE = re.compile(f"{RUPEE_SYMBOL}(?:\\s*{RUPEE_SYMBOL})+")
_WORDS_SUFFIX_RE = re.compile(r"\(Rupees [A-Za-z ]+ Only\)")

_ONES = [
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine",
    "Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
    "Seventeen", "Eighteen", "Nineteen",
]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]


def coerce_amount(amount: Any) -> Decimal:
    """Return the amount as a Decimal rounded to paise. Raises ValidationError if not a non-negative finite number."""
    if isinstance(amount, bool) or amount is None:
        raise ValidationError(["deal_amount"], f"Invalid deal amount: {amount!r}")
    if isinstance(amount, float) and not math.isfinite(amount):
        raise ValidationError(["deal_amount"], f"Invalid deal amount: {amount!r}")
    try:
        value = Decimal(str(amount).strip().replace(",", "")) if isinstance(amount, str) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(["deal_amount"], f"Invalid deal amount: {amount!r}")
    if not value.is_finite() or value < 0:
        raise ValidationError(["deal_amount"], f"Invalid deal amount: {amount!r}. Amount must be a non-negative number.")
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _below_thousand(n: int) -> str:
    if n == 0:
        return ""
    if n < 20:
        return _ONES[n]
    if n < 100:
        return _TENS[n // 10] + (f" {_ONES[n % 10]}" if n % 10 else "")
    rest = _below_thousand(n % 100)
    return f"{_ONES[n // 100]} Hundred" + (f" {rest}" if rest else "")


def number_to_words(n: int) -> str:
    """Indian numbering system: Thousand, Lakh, Crore."""
    if n == 0:
        return "Zero"
    parts = []
    crore, n = divmod(n, 10_000_000)
    if crore:
        parts.append(f"{number_to_words(crore)} Crore")
    lakh, n = divmod(n, 100_000)
    if lakh:
        parts.append(f"{_below_thousand(lakh)} Lakh")
    thousand, n = divmod(n, 1000)
    if thousand:
        parts.append(f"{_below_thousand(thousand)} Thousand")
    if n:
        parts.append(_below_thousand(n))
    return " ".join(parts)


def group_indian_digits(n: int) -> str:
    """12345678 -> 1,23,45,678"""
    digits = str(n)
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_inr_simple(amount: Any) -> str:
    """₹15,000 (or ₹1,500.50 when paise are present)."""
    value = coerce_amount(amount)
    rupees = int(value)
    paise = int((value - rupees) * 100)
    numeric = group_indian_digits(rupees)
    if paise:
        numeric = f"{numeric}.{paise:02d}"
    return f"{RUPEE_SYMBOL}{numeric}"


def amount_in_words(amount: Any) -> str:
    value = coerce_amount(amount)
    rupees = int(value)
    paise = int((value - rupees) * 100)
    words = number_to_words(rupees)
    if paise:
        words = f"{words} and {number_to_words(paise)} Paise"
    return words


def repair_currency_text(text: str) -> str:
    """Rewrite corrupted/aliased currency markers to the canonical ₹ and strip superscript noise."""
    repaired = text.replace(CORRUPTED_RUPEE, RUPEE_SYMBOL)
    repaired = _SUPERSCRIPT_RE.sub("", repaired)
    repaired = _ALIAS_RE.sub(RUPEE_SYMBOL, repaired)
    repaired = _DUPLICATE_SYMBOL_RE.sub(RUPEE_SYMBOL, repaired)
    if RUPEE_SYMBOL not in repaired:
        repaired = re.sub(r"(\d[\d,]*)", f"{RUPEE_SYMBOL}\\1", repaired, count=1)
    return repaired


def assert_currency_invariants(text: str) -> None:
    symbol_count = text.count(RUPEE_SYMBOL)
    if symbol_count != 1:
        raise FormattingInvariantError(
            f"Currency symbol validation failed: expected exactly one {RUPEE_SYMBOL}, found {symbol_count} in {text!r}"
        )
    if CORRUPTED_RUPEE in text:
        raise FormattingInvariantError(f"Corrupted currency symbol present in {text!r}")
    if not _WORDS_SUFFIX_RE.search(text):
        raise FormattingInvariantError(f"Currency formatting incomplete: missing words in {text!r}")


def format_inr_amount(amount: Any) -> str:
    """
    Format a deal amount for contract text, e.g. "₹11,000 (Rupees Eleven Thousand Only)".
    Raises ValidationError for negative/NaN/non-numeric input and FormattingInvariantError
    if the output cannot be verified.
    """
    value = coerce_amount(amount)
    words = amount_in_words(value)
    if not words.strip():
        raise FormattingInvariantError(f"Failed to convert amount ({value}) to words")
    if (value == 0) != (words == "Zero"):
        raise FormattingInvariantError(f"Amount {value} does not match words {words!r}")

    formatted = repair_currency_text(f"{format_inr_simple(value)} (Rupees {words} Only)")
    assert_currency_invariants(formatted)
    logger.debug(f"Formatted amount {value} -> {formatted}")
    return formatted
