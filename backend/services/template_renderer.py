"""
Agreement Renderer - turns a ContractVariables snapshot into agreement text.

The renderer is a pure function of its inputs: the same variables and signature evidence always
produce the same text, so the SHA256 of the output can be stored with each contract version for
tamper detection.

Other output formats (DOCX/PDF) plug in behind the DocumentRenderer interface.
"""
import hashlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Union

from models import ContractVariables, Signature, SignerRole

logger = logging.getLogger(__name__)

AGREEMENT_TITLE = "CREATOR–BRAND COLLABORATION AGREEMENT (v2)"
SECTION_BREAK = "⸻"
# Execution timestamps are shown in Indian Standard Time (no DST)
IST = timezone(timedelta(hours=5, minutes=30), "IST")

SignatureEvidence = Union[Signature, Mapping[str, Any]]


def compute_sha256(content: Union[str, bytes]) -> str:
    """Compute SHA256 hash of content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def format_execution_timestamp(value: Any) -> Optional[str]:
    """19 October 2026, 03:45:10 pm IST"""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if not isinstance(value, datetime):
        return str(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    local = value.astimezone(IST)
    return f"{local.day} {local.strftime('%B %Y, %I:%M:%S %p').replace('AM', 'am').replace('PM', 'pm')} IST"


class DocumentRenderer(ABC):
    """Renders an agreement from contract variables and optional signature evidence."""

    content_type = "text/plain"

    @abstractmethod
    def render(
        self,
        variables: ContractVariables,
        signatures: Optional[Dict[str, SignatureEvidence]] = None,
    ) -> str:
        ...


class PlainTextAgreementRenderer(DocumentRenderer):
    """Plain-text collaboration agreement (v2 wording)."""

    content_type = "text/plain; charset=utf-8"

    def render(
        self,
        variables: ContractVariables,
        signatures: Optional[Dict[str, SignatureEvidence]] = None,
    ) -> str:
        signatures = signatures or {}
        sections = [
            self._render_parties(variables),
            self._render_terms(variables),
            self._render_execution(variables, signatures),
            self._render_disclaimer(),
        ]
        text = f"\n\n{SECTION_BREAK}\n\n".join(sections)
        logger.debug(f"Rendered agreement for {variables.brand_name} / {variables.creator_name} ({len(text)} chars)")
        return text

    # ------------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------------

    def _render_parties(self, v: ContractVariables) -> str:
        return f"""{AGREEMENT_TITLE}

This Agreement is made on:

{v.contract_date}

BETWEEN

Brand:

Name: {v.brand_name}
Registered Address: {v.brand_address}
Email: {v.brand_email}

AND

Creator:

Name: {v.creator_name}
Address: {v.creator_address}
Email: {v.creator_email}

Collectively referred to as the "Parties"."""

    def _render_terms(self, v: ContractVariables) -> str:
        exclusivity_details = ""
        if v.exclusivity_category and v.exclusivity_duration:
            exclusivity_details = f"\n\n• Category: {v.exclusivity_category}\n• Duration: {v.exclusivity_duration}"

        clauses = [
            f"""1. Scope of Work

The Creator agrees to deliver the following content ("Deliverables"):

{v.deliverables_list}

Content shall be delivered on or before {v.delivery_deadline}, unless otherwise mutually agreed in writing.""",
            f"""2. Compensation & Payment Terms

• Total Fee: {v.deal_amount_formatted}
• Payment Method: {v.payment_method}
• Payment Timeline: {v.payment_timeline}

Late Payment Protection

If payment is delayed beyond 7 days from the due date, the Brand shall be liable to pay interest at 18% per annum, calculated daily until settlement.

The Creator reserves the right to initiate legal recovery proceedings for unpaid dues.""",
            """3. Intellectual Property Ownership

• The Creator retains full ownership of all original content created.

• No ownership transfer is implied unless expressly stated.""",
            f"""4. Usage Rights (License)

The Creator grants the Brand a {v.usage_type} license to use the content under the following conditions:

• Platforms: {v.usage_platforms}

• Duration: {v.usage_duration}

• Geography: India (unless otherwise specified in writing)

• Paid Advertising: {v.paid_ads_allowed}

• Whitelisting: {v.whitelisting_allowed}

Any usage beyond the above requires written consent and may attract additional fees.""",
            f"""5. Exclusivity

{v.exclusivity_clause}{exclusivity_details}""",
            """6. Compliance & Disclosures

The Creator shall comply with:

• ASCI Advertising Guidelines

• Platform-specific disclosure requirements (#ad / #sponsored)""",
            f"""7. Termination

Either Party may terminate this Agreement by giving {v.termination_notice_days} days' written notice.

If terminated after partial performance:

• Completed or in-progress work shall be paid on a pro-rata basis.
• Creator shall be paid proportionally for work completed.""",
            """8. Confidentiality

Both Parties agree to keep confidential all commercial and non-public information shared during the collaboration.""",
            """9. Limitation of Liability

Neither Party shall be liable for indirect, incidental, or consequential damages.

The Brand indemnifies the Creator against misuse or misrepresentation of content beyond agreed usage.""",
            """10. Force Majeure

Neither Party shall be liable for any failure or delay in performance under this Agreement due to circumstances beyond their reasonable control, including but not limited to: platform outages, illness, government restrictions, natural disasters, or other events that make performance impracticable. The affected Party shall notify the other Party promptly and use reasonable efforts to resume performance.""",
            f"""11. Dispute Resolution & Jurisdiction

• Governing Law: Indian Contract Act, 1872
• Jurisdiction: Courts of {v.jurisdiction_city}, India""",
            """12. Entire Agreement

This Agreement constitutes the entire understanding between the Parties and supersedes all prior communications.""",
        ]
        return f"\n\n{SECTION_BREAK}\n\n".join(clauses)

    def _render_execution(self, v: ContractVariables, signatures: Dict[str, SignatureEvidence]) -> str:
        brand_block = self._render_signer_block(
            "BRAND", v.brand_name, v.brand_email, signatures.get(SignerRole.BRAND.value)
        )
        creator_block = self._render_signer_block(
            "CREATOR", v.creator_name, v.creator_email, signatures.get(SignerRole.CREATOR.value)
        )
        return f"""DIGITAL ACCEPTANCE & EXECUTION

This Agreement has been executed electronically by both Parties through OTP verification and click-to-accept confirmation. Under the Information Technology Act, 2000 (IT Act, 2000), electronic signatures are legally valid and binding. No physical or handwritten signature is required.

The Parties acknowledge that:
• This Agreement is executed electronically and constitutes a valid legal signature under Section 3A of the IT Act, 2000.
• OTP verification and click-to-accept confirmation constitute valid electronic authentication.
• No physical signature is required for this Agreement to be legally binding.

{brand_block}

{creator_block}"""

    def _render_signer_block(
        self, heading: str, name: str, email: str, signature: Optional[SignatureEvidence]
    ) -> str:
        lines = [heading, f"Name: {name}", f"Email: {email}"]
        if isinstance(signature, Signature):
            signature = signature.model_dump()
        signature = signature or {}

        verified_at = format_execution_timestamp(signature.get("otp_verified_at"))
        lines.append(f"OTP Verified: {verified_at}" if verified_at else "Status: Pending signature")
        if signature.get("ip_address"):
            lines.append(f"IP Address: {signature['ip_address']}")
        if signature.get("user_agent"):
            lines.append(f"Device: {signature['user_agent']}")
        signed_at = format_execution_timestamp(signature.get("signed_at"))
        if signed_at:
            lines.append(f"Executed At: {signed_at}")
        return "\n".join(lines)

    def _render_disclaimer(self) -> str:
        return """DISCLAIMER

This agreement was generated by the contract engine based on information provided by the Parties. The platform is not a party to this agreement and does not provide legal representation.

The Parties are advised to independently review this agreement before execution."""


# Global instance
agreement_renderer = PlainTextAgreementRenderer()
