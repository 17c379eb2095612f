"""History-changed notifications.

Simple pub/sub for the UI layer: every mutation of a scenario's history
publishes one HistoryChanged event to every open subscription. Subscribers
consume events as an async iterator (push model, no polling). Each
subscription keeps at most `maxsize` events; a subscriber that falls behind
loses the oldest ones first. Every event carries the full history, so the
newest one is always enough to redraw.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict

from tutor_chat.models import BaseMessage, Message

logger = logging.getLogger(__name__)


class HistoryChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    scenario_id: str
    messages: tuple[Message, ...]
    generation: int


class Subscription:
    """Async iterator over published events. Call close() to stop."""

    def __init__(self, bus: EventBus, maxsize: int) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[HistoryChanged | None] = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, event: HistoryChanged) -> None:
        if not self._closed:
            self._make_room()
            self._queue.put_nowait(event)

    def _make_room(self) -> None:
        if self._queue.full():
            dropped = self._queue.get_nowait()
            logger.debug(
                "subscriber behind, dropping event scenario=%s",
                dropped.scenario_id if dropped is not None else None,
            )

    def drain(self) -> list[HistoryChanged]:
        """Return every event queued so far without waiting."""
        events: list[HistoryChanged] = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self)
        self._make_room()
        self._queue.put_nowait(None)  # wakes a pending __anext__

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> HistoryChanged:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    def __init__(self, maxsize: int = 256) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._maxsize = maxsize
        self._subscriptions: list[Subscription] = []

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self._maxsize)
        self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(
        self, scenario_id: str, messages: Sequence[BaseMessage], generation: int
    ) -> None:
        event = HistoryChanged(
            scenario_id=scenario_id, messages=tuple(messages), generation=generation
        )
        logger.debug(
            "history changed scenario=%s messages=%d subscribers=%d",
            scenario_id, len(event.messages), len(self._subscriptions),
        )
        for subscription in list(self._subscriptions):
            subscription._push(event)
