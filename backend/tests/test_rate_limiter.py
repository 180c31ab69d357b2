"""
In-memory send limiter used for OTP issuance.
"""
import pytest
import sys
from pathlib import Path
from datetime import datetime, timedelta, timezone

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from utils.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_limit_is_per_key():
    limiter = RateLimiter()
    assert (await limiter.check_rate_limit("otp_send:d1:brand", max_attempts=2, window_minutes=10))[0]
    assert (await limiter.check_rate_limit("otp_send:d1:brand", max_attempts=2, window_minutes=10))[0]

    allowed, message = await limiter.check_rate_limit("otp_send:d1:brand", max_attempts=2, window_minutes=10)
    assert allowed is False
    assert message.startswith("Rate limit exceeded")

    assert (await limiter.check_rate_limit("otp_send:d1:creator", max_attempts=2, window_minutes=10))[0]


@pytest.mark.asyncio
async def test_reset_clears_key():
    limiter = RateLimiter()
    await limiter.check_rate_limit("k", max_attempts=1, window_minutes=10)
    assert not (await limiter.check_rate_limit("k", max_attempts=1, window_minutes=10))[0]

    limiter.reset("k")
    assert (await limiter.check_rate_limit("k", max_attempts=1, window_minutes=10))[0]

    limiter.reset()
    assert limiter.attempts == {}


@pytest.mark.asyncio
async def test_expired_keys_are_dropped():
    limiter = RateLimiter()
    limiter.attempts["otp_send:old:brand"] = [datetime.now(timezone.utc) - timedelta(minutes=11)]
    limiter.attempts["otp_send:empty:brand"] = []

    assert (await limiter.check_rate_limit("otp_send:d1:brand", max_attempts=2, window_minutes=10))[0]

    assert set(limiter.attempts) == {"otp_send:d1:brand"}
