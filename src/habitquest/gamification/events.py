"""In-process event channel for gamification state changes.

Services record events on their unit of work; the unit of work hands them to
the channel only after the database commit succeeds. Listeners run in attach
order, may be plain callables or coroutines, and can never break the caller:
their exceptions are logged and swallowed.
"""

from __future__ import annotations

import inspect
import json
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class EventType(str, Enum):
    XP_GAINED = "XP_GAINED"
    LEVEL_UP = "LEVEL_UP"
    BADGE_EARNED = "BADGE_EARNED"
    BADGE_PROGRESS = "BADGE_PROGRESS"
    CHALLENGE_JOINED = "CHALLENGE_JOINED"
    CHALLENGE_COMPLETED = "CHALLENGE_COMPLETED"


@dataclass(frozen=True)
class GamificationEvent:
    type: EventType
    user_id: int
    data: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "user_id": self.user_id,
            "data": self.data,
            "occurred_at": self.occurred_at.isoformat(),
        }


EventListener = Callable[[GamificationEvent], Awaitable[None] | None]


class EventChannel:
    """Ordered list of listeners notified synchronously of committed events."""

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def attach(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that detaches it again."""
        self._listeners.append(listener)

        def _detach() -> None:
            self.detach(listener)

        return _detach

    def detach(self, listener: EventListener) -> bool:
        """Remove a listener. Returns False if it was not attached."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    async def publish(self, event: GamificationEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning(
                    "event_listener_failed",
                    event_type=event.type.value,
                    user_id=event.user_id,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    exc_info=True,
                )

    async def publish_all(self, events: Iterable[GamificationEvent]) -> None:
        for event in events:
            await self.publish(event)


class RedisEventForwarder:
    """Listener that republishes each event as JSON on ``<prefix><event type>``."""

    def __init__(self, redis: Any, prefix: str = "pubsub:") -> None:
        self._redis = redis
        self._prefix = prefix

    def channel_for(self, event: GamificationEvent) -> str:
        return f"{self._prefix}{event.type.value.lower()}"

    async def __call__(self, event: GamificationEvent) -> None:
        try:
            await self._redis.publish(self.channel_for(event), json.dumps(event.to_dict()))
        except Exception:
            logger.warning("redis_event_forward_failed", event_type=event.type.value, exc_info=True)
