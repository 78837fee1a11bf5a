"""Redis-backed booking conversation state per thread."""

import json
import logging
from typing import Optional

from redis.exceptions import RedisError

from app.config import settings
from app.core.scheduling.state import ConversationContext
from app.infra.redis import APP_PREFIX, get_redis

logger = logging.getLogger(__name__)

# State key prefix (extends existing APP_PREFIX)
STATE_PREFIX = f"{APP_PREFIX}booking:state:"


class BookingStateStore:
    """
    Conversation context store.

    Key pattern: booking:v1:booking:state:{tenant_id}:{channel}:{contact}

    Gracefully handles Redis unavailability with in-memory fallback.
    """

    def __init__(self, ttl: Optional[int] = None):
        """Initialize store.

        Args:
            ttl: Seconds a thread's state survives without activity
        """
        self._ttl = ttl or settings.booking_state_ttl
        self._in_memory_fallback: dict[str, str] = {}

    def _key(self, tenant_id: str, channel: str, contact: str) -> str:
        """Generate Redis key."""
        return f"{STATE_PREFIX}{tenant_id}:{channel}:{contact}"

    async def load(self, tenant_id: str, channel: str, contact: str) -> ConversationContext:
        """
        Load a thread's context.

        Missing or unreadable data yields a fresh idle context.

        Args:
            tenant_id: Tenant identifier
            channel: Conversation channel
            contact: Channel contact id

        Returns:
            ConversationContext
        """
        key = self._key(tenant_id, channel, contact)
        raw: Optional[str] = None

        redis = await get_redis()
        if redis:
            try:
                raw = await redis.get(key)
            except RedisError as e:
                logger.warning(f"Redis read failed for {key}, using in-memory fallback: {e}")
                raw = self._in_memory_fallback.get(key)
        else:
            raw = self._in_memory_fallback.get(key)

        if not raw:
            return ConversationContext()

        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Unreadable booking state at {key}, starting fresh: {e}")
            return ConversationContext()

        return ConversationContext.from_dict(data)

    async def save(
        self,
        tenant_id: str,
        channel: str,
        contact: str,
        context: ConversationContext,
    ) -> bool:
        """
        Persist a thread's context and refresh its TTL.

        Returns:
            True if written to Redis, False if kept in memory only
        """
        key = self._key(tenant_id, channel, contact)
        payload = json.dumps(context.to_dict())

        redis = await get_redis()
        if redis:
            try:
                await redis.setex(key, self._ttl, payload)
                logger.debug(f"Booking state saved: {key} step={context.booking.step.value}")
                return True
            except RedisError as e:
                logger.warning(f"Redis write failed for {key}, using in-memory fallback: {e}")

        self._in_memory_fallback[key] = payload
        return False

    async def clear(self, tenant_id: str, channel: str, contact: str) -> None:
        """Forget a thread's context."""
        key = self._key(tenant_id, channel, contact)
        self._in_memory_fallback.pop(key, None)

        redis = await get_redis()
        if redis:
            try:
                await redis.delete(key)
            except RedisError as e:
                logger.warning(f"Redis delete failed for {key}: {e}")


# Singleton
_store: Optional[BookingStateStore] = None


def get_booking_state_store() -> BookingStateStore:
    """Get singleton BookingStateStore."""
    global _store
    if _store is None:
        _store = BookingStateStore()
    return _store
