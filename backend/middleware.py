from fastapi import Request, HTTPException, status
from typing import Optional
import logging
import uuid
from auth import decode_access_token
from services.contract_signing_service import get_client_ip

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


async def get_current_user(request: Request) -> Optional[dict]:
    """Claims from the Bearer token, or None."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return decode_access_token(auth_header.split(" ", 1)[1].strip())


async def require_auth(request: Request) -> dict:
    """Authenticated caller with an email claim, else 401."""
    user = await get_current_user(request)
    if not user or not (user.get("email") or "").strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user


def get_request_ip(request: Request) -> Optional[str]:
    """Client IP for signing evidence: first X-Forwarded-For hop, else the socket peer."""
    return get_client_ip(request.headers, request.client.host if request.client else None)


def get_correlation_id(request: Request) -> str:
    """Set by correlation_id_middleware; falls back to the inbound header outside the app stack."""
    return getattr(request.state, "correlation_id", None) or (request.headers.get(CORRELATION_HEADER) or "").strip()


async def correlation_id_middleware(request: Request, call_next):
    """Tag each request with the caller's X-Correlation-ID (or a fresh one) and echo it back."""
    correlation_id = (request.headers.get(CORRELATION_HEADER) or "").strip()[:64] or uuid.uuid4().hex
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response
