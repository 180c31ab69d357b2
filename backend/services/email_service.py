from postmarker.core import PostmarkClient
from models import SignerRole
from utils.audit import mask_email
import asyncio
import os
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

# Email sender configuration
# Verified sender in Postmark
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", "contracts@creatorarmour.com")
OTP_EMAIL_TAG = "contract-otp"


class NotificationError(Exception):
    pass


def recipient_for_role(role: SignerRole, deal: Dict[str, Any]) -> Optional[str]:
    """Registered email for the signer role on this deal."""
    if role == SignerRole.BRAND:
        return deal.get("brand_email")
    return deal.get("creator_email")


class EmailService:
    """Notification channel for signing codes. Delivery is independent of verification."""

    def __init__(self, server_token: Optional[str] = None):
        postmark_token = server_token or os.getenv("POSTMARK_SERVER_TOKEN")
        if not postmark_token:
            logger.warning("POSTMARK_SERVER_TOKEN not set - emails will be logged but not sent")
            self.client = None
        else:
            self.client = PostmarkClient(server_token=postmark_token)
            logger.info("Postmark email client initialized")

    async def send(self, role: SignerRole, code: str, deal: Dict[str, Any], ttl_minutes: int = 10) -> Optional[str]:
        """
        Deliver a signing code to the role's registered email.

        Returns the Postmark MessageID, or None in dev mode. Raises NotificationError when the
        deal has no address for the role or the provider rejects the message.
        """
        recipient = recipient_for_role(role, deal)
        if not recipient:
            raise NotificationError(f"No {role.value} email on deal {deal.get('deal_id')}")

        if not self.client:
            # Dev mode - never log the code itself
            logger.info(f"[DEV MODE] OTP email logged (not sent) to {mask_email(recipient)} role={role.value}")
            return None

        subject = f"{code} is your verification code"
        try:
            response = await asyncio.to_thread(
                self.client.emails.send,
                From=DEFAULT_SENDER,
                To=recipient,
                Subject=subject,
                HtmlBody=self._build_html_body(code, deal, ttl_minutes),
                TextBody=self._build_text_body(code, deal, ttl_minutes),
                Tag=OTP_EMAIL_TAG,
            )
        except Exception as e:
            logger.error(f"Failed to send OTP email to {mask_email(recipient)}: {e}")
            raise NotificationError(str(e)) from e

        logger.info(f"OTP email sent to {mask_email(recipient)}: {response['MessageID']}")
        return response["MessageID"]

    def _build_text_body(self, code: str, deal: Dict[str, Any], ttl_minutes: int) -> str:
        brand = deal.get("brand_name") or "the brand"
        return (
            f"Your verification code is {code}.\n\n"
            f"Enter this code to verify your identity and sign the collaboration agreement with {brand}.\n"
            f"The code expires in {ttl_minutes} minutes.\n\n"
            "Never share this code with anyone. If you didn't request this code, please ignore this email."
        )

    def _build_html_body(self, code: str, deal: Dict[str, Any], ttl_minutes: int) -> str:
        brand = deal.get("brand_name") or "the brand"
        return f"""
        <html>
        <body style="font-family: Arial, sans-serif; color: #1f2937; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h2 style="margin-top: 0;">Your Verification Code</h2>
            <p>Enter this code to verify your identity and sign the collaboration agreement with {brand}.</p>
            <div style="font-size: 32px; font-weight: bold; letter-spacing: 8px; font-family: 'Courier New', monospace; margin: 24px 0;">
                {code}
            </div>
            <p style="font-size: 12px; color: #6b7280;">Expires in {ttl_minutes} minutes.</p>
            <p style="font-size: 12px; color: #6b7280;">Never share this code with anyone. If you didn't request this code, please ignore this email.</p>
        </body>
        </html>
        """


email_service = EmailService()
