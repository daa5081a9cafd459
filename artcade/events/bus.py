"""Event Bus — lifecycle notifications from the store and the evolution engine.

Topics are fixed (see ``TOPICS``): the store announces stored patterns
and tracked usage, the evolution engine announces the start, each
generation and the end of a run. Subscriptions take fnmatch patterns,
so "evolution.*" follows a run generation by generation and "*"
receives everything. A failing handler is logged and never reaches the
emitter.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

from artcade.types import new_id

logger = logging.getLogger(__name__)

TOPICS = (
    "pattern.stored",
    "usage.tracked",
    "evolution.started",
    "evolution.generation_completed",
    "evolution.completed",
)

Handler = Callable[["Event"], Awaitable[None]]


class Event(BaseModel):
    id: str = Field(default_factory=new_id)
    topic: str
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class EventBus:
    def __init__(self, history_limit: int = 500) -> None:
        self._handlers: list[tuple[str, Handler]] = []
        self._history: deque[Event] = deque(maxlen=history_limit)

    def subscribe(self, pattern: str, handler: Handler) -> None:
        if not fnmatch.filter(TOPICS, pattern):
            raise ValueError(f"Pattern {pattern!r} matches no event topic")
        self._handlers.append((pattern, handler))

    def unsubscribe(self, pattern: str, handler: Handler) -> None:
        if (pattern, handler) in self._handlers:
            self._handlers.remove((pattern, handler))

    async def emit(self, topic: str, data: dict | None = None, source: str = "") -> Event:
        """Record the event and await every matching handler."""
        if topic not in TOPICS:
            raise ValueError(f"Unknown event topic {topic!r}")
        event = Event(topic=topic, data=data or {}, source=source)
        self._history.append(event)

        matching = [h for p, h in self._handlers if fnmatch.fnmatchcase(topic, p)]
        results = await asyncio.gather(*(h(event) for h in matching), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Event handler for %s failed: %s", topic, result)
        return event

    def history(self, topic_filter: str = "*", limit: int = 50) -> list[Event]:
        """Most recent events first, optionally filtered by topic pattern."""
        events = [e for e in self._history if fnmatch.fnmatchcase(e.topic, topic_filter)]
        return events[::-1][:limit]

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
