"""
In-process pub/sub for push-delivered action sources.

Ingress endpoints (e.g. the Discord relay) publish raw provider payloads on
a topic; push lifecycles subscribe to the topics their detector declares.
Handlers run concurrently, so a slow subscriber never delays the others; one
failing handler is logged and does not prevent delivery to the rest.
"""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from area_engine.core.logging import get_logger

log = get_logger(__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    topic: str
    id: int


class EventHub:
    def __init__(self) -> None:
        self._handlers: dict[str, dict[int, EventHandler]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, topic: str, handler: EventHandler) -> Subscription:
        sub = Subscription(topic=topic, id=next(self._ids))
        self._handlers.setdefault(topic, {})[sub.id] = handler
        log.debug("event_hub_subscribed", topic=topic, subscription=sub.id)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        handlers = self._handlers.get(sub.topic)
        if not handlers:
            return
        handlers.pop(sub.id, None)
        if not handlers:
            del self._handlers[sub.topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self._handlers.get(topic, {}))

    async def publish(self, topic: str, payload: dict[str, Any]) -> int:
        """Deliver *payload* to every current subscriber; return how many ran cleanly."""
        # Snapshot: handlers may unsubscribe while we iterate.
        handlers = list(self._handlers.get(topic, {}).items())
        results = await asyncio.gather(
            *(handler(payload) for _, handler in handlers),
            return_exceptions=True,
        )
        delivered = 0
        for (sub_id, _), result in zip(handlers, results):
            if isinstance(result, Exception):
                log.error(
                    "event_handler_error",
                    topic=topic,
                    subscription=sub_id,
                    error=str(result),
                )
            else:
                delivered += 1
        return delivered
