"""Rate limiting for OTP sends, keyed per (deal, signer role)"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)

class RateLimiter:
    def __init__(self):
        # In-memory, per process
        self.attempts = {}

    async def check_rate_limit(
        self,
        key: str,
        max_attempts: int,
        window_minutes: int
    ) -> tuple[bool, Optional[str]]:
        """
        Check if rate limit is exceeded; records the attempt when allowed.

        Returns:
            (allowed: bool, error_message: Optional[str])
        """
        now = datetime.now(timezone.utc)
        window = timedelta(minutes=window_minutes)
        self._prune(now, window)

        recent = [ts for ts in self.attempts.get(key, []) if now - ts < window]

        if len(recent) >= max_attempts:
            self.attempts[key] = recent
            wait_seconds = int((min(recent) + window - now).total_seconds())
            logger.info(f"Rate limit hit for {key}: {len(recent)} attempts in {window_minutes} min")
            return False, f"Rate limit exceeded. Try again in {wait_seconds} seconds"

        recent.append(now)
        self.attempts[key] = recent
        return True, None

    def _prune(self, now: datetime, window: timedelta):
        """Drop keys whose attempts have all left the window."""
        stale = [key for key, stamps in self.attempts.items() if not stamps or now - max(stamps) >= window]
        for key in stale:
            del self.attempts[key]

    def reset(self, key: Optional[str] = None):
        if key is None:
            self.attempts.clear()
        else:
            self.attempts.pop(key, None)

rate_limiter = RateLimiter()
