"""
Error taxonomy for the deal & contract lifecycle.

- ValidationError: bad or missing input; always carries the missing field list.
- FormattingInvariantError: currency symbol/words missing after all repairs. Fatal to generation.
- OTPError: recoverable; the caller may request a new code.
- Signature invalidity is NOT an exception (see services.signature_verifier.SignatureCheck).
"""
from typing import List, Optional


class ValidationError(Exception):
    def __init__(self, missing_fields: List[str], message: Optional[str] = None):
        self.missing_fields = list(missing_fields)
        super().__init__(message or f"Missing or invalid fields: {', '.join(self.missing_fields)}")


class FormattingInvariantError(Exception):
    pass


class OTPError(Exception):
    NO_ACTIVE_CHALLENGE = "no_active_challenge"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    RATE_LIMITED = "rate_limited"

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"OTP rejected: {reason}")


class InvalidTransitionError(Exception):
    pass


class SignatureConflictError(Exception):
    """Signature cannot be created: already signed, or no verified OTP for this signer."""
    pass


class UnauthorizedSignerError(Exception):
    pass


class DealNotFoundError(Exception):
    pass


class DealDeletionRefusedError(Exception):
    pass
