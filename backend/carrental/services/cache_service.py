"""
Redis-backed short-lived key store.

What we keep here:
  - One-time login codes, key pattern: "otp:login:{email}"

Why Redis and not a module-level dict:
  - Every code is written with SETEX, so Redis evicts it when the TTL runs
    out; nothing grows without bound inside the process
  - Several API instances behind a load balancer see the same codes

Codes are single-use: a successful verification deletes the key, and a
failed attempt leaves it in place until it expires.
"""

import secrets
from typing import Optional

import redis.asyncio as redis
from fastapi import HTTPException, status

from carrental.core.config import get_settings
from carrental.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            # Test connection
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None


def _make_otp_key(purpose: str, email: str) -> str:
    return f"otp:{purpose}:{email.lower()}"


class OtpStore:
    """One-time codes with TTL eviction."""

    def __init__(self, client, ttl_seconds: int, length: int = 6):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.length = length

    def _generate(self) -> str:
        return "".join(secrets.choice("0123456789") for _ in range(self.length))

    async def issue(self, email: str, purpose: str = "login") -> str:
        code = self._generate()
        key = _make_otp_key(purpose, email)
        await self.client.setex(key, self.ttl_seconds, code)
        logger.info("otp_issued", key=key, ttl=self.ttl_seconds)
        return code

    async def consume(self, email: str, code: str, purpose: str = "login") -> bool:
        key = _make_otp_key(purpose, email)
        stored = await self.client.get(key)
        if stored is None:
            logger.info("otp_missing_or_expired", key=key)
            return False
        if not secrets.compare_digest(stored, code):
            logger.info("otp_mismatch", key=key)
            return False
        await self.client.delete(key)
        logger.info("otp_consumed", key=key)
        return True


async def get_otp_store() -> OtpStore:
    """FastAPI dependency. OTP login is unavailable without Redis."""
    client = await get_redis()
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="One-time codes are temporarily unavailable",
        )
    return OtpStore(client, settings.OTP_TTL_SECONDS, settings.OTP_LENGTH)


async def get_cache_stats() -> dict:
    """Get Redis statistics for the health endpoint."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        keyspace = await client.info("keyspace")
        return {
            "status": "connected",
            "hits": info.get("keyspace_hits", 0),
            "misses": info.get("keyspace_misses", 0),
            "expired_keys": info.get("expired_keys", 0),
            "keys": keyspace,
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
