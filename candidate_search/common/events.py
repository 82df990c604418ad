"""Event system for candidate ingestion and embedding notifications.

This module defines a compact eventing contract using Redis pub/sub.
Producers publish JSON payloads on namespaced channels derived from
``EventType``; consumers subscribe and register Python callbacks.

Key concepts
- ``EventType`` stable identifiers are versioned (``.v1`` suffix)
- ``EventPublisher`` composes channel names as ``{prefix}:{event_type}``
- ``EventSubscriber`` manages a map of event handlers and message dispatch

Ingestion (spreadsheet import, manual edits) publishes
``candidates.ingested.v1``; the embedding worker turns each one into an
embedding job.
"""

import asyncio
import json
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis_async
import structlog

logger = structlog.get_logger("events")

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class EventType(Enum):
    """Event types for candidate search."""
    CANDIDATE_INGESTED = "candidates.ingested.v1"
    EMBEDDING_GENERATED = "embeddings.generated.v1"
    EMBEDDING_DROPPED = "embeddings.dropped.v1"


def _now_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class BaseEvent:
    """Base event class.

    Child events set their ``event_type`` in ``__post_init__`` and extend the
    payload with any additional fields relevant to the domain.
    """
    timestamp: int
    event_type: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict())


@dataclass
class CandidateIngestedEvent(BaseEvent):
    """Emitted when a candidate record is created or its text changes."""
    entity_id: str
    profile_text: str
    body_text: str = ""
    source: str = "ingestion"

    def __post_init__(self):
        self.event_type = EventType.CANDIDATE_INGESTED.value
        if not self.timestamp:
            self.timestamp = _now_millis()


@dataclass
class EmbeddingGeneratedEvent(BaseEvent):
    """Emitted when a vector was written for a candidate."""
    entity_id: str
    model_name: str
    dimension: int

    def __post_init__(self):
        self.event_type = EventType.EMBEDDING_GENERATED.value
        if not self.timestamp:
            self.timestamp = _now_millis()


@dataclass
class EmbeddingDroppedEvent(BaseEvent):
    """Emitted when a job exhausted its retries or could not be embedded."""
    entity_id: str
    retry_count: int
    reason: str

    def __post_init__(self):
        self.event_type = EventType.EMBEDDING_DROPPED.value
        if not self.timestamp:
            self.timestamp = _now_millis()


class EventPublisher:
    """Publishes events to Redis.

    Notes
    - Failures are retried with exponential backoff, then logged and re‑raised.
    - Messages are serialized as JSON to keep consumers language‑agnostic.
    """

    def __init__(
        self,
        redis_url: str,
        channel_prefix: str = "cs_events",
        max_retries: int = 3,
        base_delay: float = 0.5
    ):
        self.redis_client = redis_async.from_url(redis_url)
        self.channel_prefix = channel_prefix
        self.max_retries = max_retries
        self.base_delay = base_delay

    async def publish(self, event: BaseEvent) -> None:
        """Publish an event with retry logic.

        The channel is derived from the event's type to allow subscribers to
        filter efficiently without payload inspection.
        """
        channel = f"{self.channel_prefix}:{event.event_type}"
        message = event.to_json()

        for attempt in range(self.max_retries):
            try:
                await self.redis_client.publish(channel, message)
                logger.debug("Event published", event_type=event.event_type, channel=channel)
                return
            except Exception as e:
                if attempt == self.max_retries - 1:
                    logger.error(
                        "Failed to publish event after all retries",
                        event_type=event.event_type,
                        error=str(e)
                    )
                    raise

                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    "Event publish failed, retrying",
                    event_type=event.event_type,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(e)
                )
                await asyncio.sleep(delay)

    async def publish_candidate_ingested(
        self,
        entity_id: str,
        profile_text: str,
        body_text: str = "",
        source: str = "ingestion"
    ) -> None:
        """Publish candidate ingested event."""
        await self.publish(CandidateIngestedEvent(
            timestamp=_now_millis(),
            event_type=EventType.CANDIDATE_INGESTED.value,
            entity_id=entity_id,
            profile_text=profile_text,
            body_text=body_text,
            source=source
        ))

    async def publish_embedding_generated(self, entity_id: str, model_name: str, dimension: int) -> None:
        """Publish embedding generated event."""
        await self.publish(EmbeddingGeneratedEvent(
            timestamp=_now_millis(),
            event_type=EventType.EMBEDDING_GENERATED.value,
            entity_id=entity_id,
            model_name=model_name,
            dimension=dimension
        ))

    async def publish_embedding_dropped(self, entity_id: str, retry_count: int, reason: str) -> None:
        """Publish embedding dropped event."""
        await self.publish(EmbeddingDroppedEvent(
            timestamp=_now_millis(),
            event_type=EventType.EMBEDDING_DROPPED.value,
            entity_id=entity_id,
            retry_count=retry_count,
            reason=reason
        ))

    async def close(self) -> None:
        """Close the Redis client used by the publisher."""
        await self.redis_client.aclose()


class EventSubscriber:
    """Subscribes to events from Redis.

    Maintains a mapping of ``event_type -> List[async callables]``. When a
    message arrives, ``handle_message`` decodes JSON and awaits each
    registered handler with the raw dictionary payload.
    """

    def __init__(self, redis_url: str, channel_prefix: str = "cs_events"):
        self.redis_client = redis_async.from_url(redis_url, decode_responses=False)
        self.channel_prefix = channel_prefix
        self.handlers: Dict[str, List[EventHandler]] = {}

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe to an event type."""
        self.handlers.setdefault(event_type.value, []).append(handler)
        logger.info(
            "Subscribed to event",
            event_type=event_type.value,
            handler=getattr(handler, "__name__", repr(handler))
        )

    async def start_listening(self) -> None:
        """Listen for events until cancelled.

        Transient errors inside the loop are logged and the loop continues.
        """
        pubsub = self.redis_client.pubsub()

        try:
            channels = [f"{self.channel_prefix}:{event_type}" for event_type in self.handlers]
            if not channels:
                logger.warning("No event handlers registered; listener idle")
                return
            await pubsub.subscribe(*channels)

            logger.info("Started listening for events", channels=channels)

            while True:
                try:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=1.0
                    )
                    if message and message.get("type") == "message":
                        await self.handle_message(message)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("Error in event listener loop", error=str(e))
                    await asyncio.sleep(1.0)

        except asyncio.CancelledError:
            logger.info("Event listener cancelled")
            raise
        finally:
            try:
                await pubsub.aclose()
                logger.info("Event listener stopped")
            except Exception as e:
                logger.warning("Error closing pubsub", error=str(e))

    async def handle_message(self, message: Dict[str, Any]) -> None:
        """Handle incoming event message.

        Dispatch errors from individual handlers are logged and do not prevent
        other handlers from executing.
        """
        channel_raw = message.get('channel')
        data_raw = message.get('data')

        if isinstance(channel_raw, (bytes, bytearray)):
            channel = channel_raw.decode('utf-8')
        else:
            channel = str(channel_raw)

        try:
            if isinstance(data_raw, (bytes, bytearray)):
                payload = json.loads(data_raw.decode('utf-8'))
            else:
                payload = json.loads(data_raw)
        except (TypeError, ValueError) as e:
            logger.error("Malformed event payload", channel=channel, error=str(e))
            return

        event_type = channel.split(':')[-1]
        handlers = self.handlers.get(event_type)
        if not handlers:
            logger.warning("No handlers for event type", event_type=event_type)
            return

        for handler in handlers:
            try:
                await handler(payload)
            except Exception as e:
                logger.error(
                    "Error handling event",
                    event_type=event_type,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e)
                )

    async def close(self) -> None:
        """Close the Redis client used by the subscriber."""
        try:
            await self.redis_client.aclose()
        except Exception as e:
            logger.warning("Error closing redis client", error=str(e))


def create_event_publisher(redis_url: str, channel_prefix: Optional[str] = None) -> EventPublisher:
    """Create an event publisher."""
    if channel_prefix:
        return EventPublisher(redis_url, channel_prefix=channel_prefix)
    return EventPublisher(redis_url)


def create_event_subscriber(redis_url: str) -> EventSubscriber:
    """Create an event subscriber."""
    return EventSubscriber(redis_url)
