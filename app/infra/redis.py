"""
Redis Connection Management

Redis connection singleton with graceful degradation, plus the short-lived
per-slot lock taken around the booking commit. Everything here fails open:
a Redis outage must never block a booking.
"""

import logging
import secrets
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError, RedisError

from app.config import settings

# Logger
logger = logging.getLogger(__name__)

# App prefix for namespacing (allows multiple apps/versions on same Redis)
APP_PREFIX = "booking:v1:"

# Compare-and-delete so a lock is only released by its holder
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisClient:
    """
    Manages Redis connection as a singleton.

    Features:
    - Connection pooling
    - Automatic retries
    - Timeouts
    - Graceful failure handling
    """

    _client: Optional[Redis] = None
    _connected: bool = False

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Redis client or None if connection fails
        """
        if cls._client is not None and cls._connected:
            return cls._client

        try:
            # Retry configuration: 3 retries with exponential backoff
            retry = Retry(ExponentialBackoff(), retries=3)

            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                retry_on_timeout=True,
                retry=retry,
            )

            # Test connection
            await cls._client.ping()
            cls._connected = True
            logger.info("Redis connection established successfully")
            return cls._client

        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            cls._connected = False
            cls._client = None
            return None
        except Exception as e:
            logger.error(f"Unexpected error connecting to Redis: {e}")
            cls._connected = False
            cls._client = None
            return None

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.close()
                logger.info("Redis connection closed")
            except Exception as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                cls._client = None
                cls._connected = False

    @classmethod
    def is_connected(cls) -> bool:
        """Check if Redis is connected."""
        return cls._connected


async def get_redis() -> Optional[Redis]:
    """
    FastAPI dependency that provides Redis client.

    Returns None if Redis is unavailable.

    Usage:
        @app.get("/example")
        async def example(redis: Optional[Redis] = Depends(get_redis)):
            if redis is None:
                # Handle degraded mode
                pass
    """
    return await RedisClient.get_client()


class SlotLockStore:
    """
    Short-lived mutual exclusion per calendar slot.

    Key: booking:v1:slotlock:{tenant_id}:{calendar_id}:{start_iso}

    Taken with SET NX PX around the commit re-check and event creation so
    two customers confirming the same slot cannot both pass the re-check.

    IMPORTANT: Fails OPEN - if Redis is unavailable the lock is reported
    as acquired and the commit relies on the re-check alone.
    """

    LOCK_PREFIX = f"{APP_PREFIX}slotlock:"

    def __init__(self, redis_client: Optional[Redis]):
        self.redis = redis_client
        self.ttl_ms = settings.booking_slot_lock_ttl_seconds * 1000

    def _key(self, tenant_id: str, calendar_id: str, start_iso: str) -> str:
        """Generate lock key with namespace."""
        return f"{self.LOCK_PREFIX}{tenant_id}:{calendar_id}:{start_iso}"

    async def acquire(self, tenant_id: str, calendar_id: str, start_iso: str) -> Optional[str]:
        """
        Try to take the lock for one slot.

        FAILS OPEN: If Redis is unavailable, returns a token as if acquired.

        Args:
            tenant_id: Tenant identifier
            calendar_id: Calendar identifier
            start_iso: Slot start (ISO-8601)

        Returns:
            Holder token, or None when another commit holds the lock
        """
        token = secrets.token_hex(8)

        if self.redis is None:
            logger.warning(f"Redis unavailable - slot lock bypassed for {tenant_id} {start_iso}")
            return token

        try:
            key = self._key(tenant_id, calendar_id, start_iso)
            acquired = await self.redis.set(key, token, nx=True, px=self.ttl_ms)
            if not acquired:
                logger.info(f"Slot lock held by another commit: {key}")
                return None
            return token

        except RedisError as e:
            logger.error(f"Slot lock failed for {tenant_id} {start_iso}: {e} - proceeding unlocked")
            return token

    async def release(self, tenant_id: str, calendar_id: str, start_iso: str, token: str) -> bool:
        """
        Release a lock taken by ``acquire``.

        Returns:
            True if this holder's lock was deleted
        """
        if self.redis is None:
            return False

        try:
            key = self._key(tenant_id, calendar_id, start_iso)
            released = await self.redis.eval(_RELEASE_SCRIPT, 1, key, token)
            return bool(released)
        except RedisError as e:
            # Expires on its own after ttl
            logger.error(f"Failed to release slot lock for {tenant_id} {start_iso}: {e}")
            return False


async def get_slot_lock_store() -> SlotLockStore:
    """
    Get SlotLockStore instance.

    Returns SlotLockStore even if Redis unavailable (fails open).
    """
    client = await get_redis()
    return SlotLockStore(client)


async def check_redis_health() -> bool:
    """
    Check Redis connectivity for health checks.

    Returns:
        True if Redis is accessible and responding, False otherwise
    """
    try:
        client = await get_redis()
        if client is None:
            return False

        await client.ping()
        return True

    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return False
