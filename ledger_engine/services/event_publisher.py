"""
Ledger Engine - Event Publisher

Redis Streams publisher for ledger events. Publishing happens after the
ledger transaction commits and is best-effort: a failure is logged and
reported to the caller, never raised into it.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import redis.asyncio as redis

from ledger_engine.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


# Event types
JOURNAL_ENTRY_CREATED = "journal_entries.created"
JOURNAL_ENTRY_POSTED = "journal_entries.posted"
JOURNAL_ENTRY_VOIDED = "journal_entries.voided"
FISCAL_PERIOD_CLOSED = "fiscal_periods.closed"
FISCAL_PERIOD_REOPENED = "fiscal_periods.reopened"
FISCAL_YEAR_CLOSED = "fiscal_years.closed"
FISCAL_YEAR_UPDATED = "fiscal_years.updated"

EVENT_VERSION = 1


def build_envelope(event_type: str, tenant_id: uuid.UUID, data: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap an event payload with its type, version, tenant and timestamp."""
    return {
        "event_type": event_type,
        "version": EVENT_VERSION,
        "tenant_id": str(tenant_id),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


class EventPublisher:
    """Interface for ledger event sinks."""
    
    async def publish(self, event_type: str, tenant_id: uuid.UUID, data: Dict[str, Any]) -> bool:
        raise NotImplementedError
    
    async def close(self) -> None:
        return None


class NullEventPublisher(EventPublisher):
    """Publisher used when the event bus is disabled."""
    
    async def publish(self, event_type: str, tenant_id: uuid.UUID, data: Dict[str, Any]) -> bool:
        logger.debug(f"Event bus disabled, dropping {event_type}")
        return True


class RedisEventPublisher(EventPublisher):
    """
    Appends events to Redis streams named ``{prefix}.{event_type}``.

    Streams keep events until consumers acknowledge them, which gives
    at-least-once delivery to consumer groups. Streams are trimmed to an
    approximate maximum length.
    """
    
    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: Optional[str] = None,
        maxlen: Optional[int] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url or settings.redis_url
        self.prefix = prefix or settings.event_stream_prefix
        self.maxlen = maxlen or settings.event_stream_maxlen
        self._client = client
    
    async def get_client(self) -> redis.Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client
    
    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
    
    def stream_name(self, event_type: str) -> str:
        return f"{self.prefix}.{event_type}"
    
    async def publish(self, event_type: str, tenant_id: uuid.UUID, data: Dict[str, Any]) -> bool:
        envelope = build_envelope(event_type, tenant_id, data)
        stream = self.stream_name(event_type)
        try:
            client = await self.get_client()
            await client.xadd(
                stream,
                {"event_type": event_type, "payload": json.dumps(envelope, default=str)},
                maxlen=self.maxlen,
                approximate=True,
            )
            logger.debug(f"Published {event_type} to {stream}")
            return True
        except Exception as e:
            logger.warning(f"Event publish failed for {stream}: {e}")
            return False


_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> EventPublisher:
    """Process-wide publisher chosen from settings."""
    global _publisher
    if _publisher is None:
        if settings.event_bus_enabled:
            _publisher = RedisEventPublisher()
        else:
            _publisher = NullEventPublisher()
    return _publisher


async def close_event_publisher() -> None:
    global _publisher
    if _publisher is not None:
        await _publisher.close()
        _publisher = None


async def emit_event(
    publisher: EventPublisher,
    event_type: str,
    tenant_id: uuid.UUID,
    data: Dict[str, Any],
) -> bool:
    """
    Publish an event for an already committed change.

    Errors from the publisher are logged and swallowed: the ledger change
    stands whether or not the event went out.
    """
    try:
        delivered = await publisher.publish(event_type, tenant_id, data)
    except Exception as e:
        logger.warning(f"Event {event_type} not delivered: {e}")
        return False
    if not delivered:
        logger.warning(f"Event {event_type} not delivered")
    return delivered
