"""
Bearer session tokens. Every authorization decision downstream keys off the `email` claim
(plus `user_id` for the creator), so tokens without an email are never issued.
"""
from jose import ExpiredSignatureError, JWTError, jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
import logging
import os

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRATION_HOURS = int(os.getenv("JWT_EXPIRATION_HOURS", "24"))


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token for `data`; the email claim is stored trimmed and lower-cased."""
    email = (data.get("email") or "").strip().lower()
    if not email:
        raise ValueError("Access tokens must carry an email claim")

    claims = dict(data, email=email)
    issued_at = datetime.now(timezone.utc)
    claims["iat"] = issued_at
    claims["exp"] = issued_at + (expires_delta or timedelta(hours=JWT_EXPIRATION_HOURS))
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Claims of a valid token, or None when expired, tampered with or malformed."""
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        logger.info("Rejected expired access token")
    except JWTError as e:
        logger.debug(f"Rejected access token: {e}")
    return None
