from __future__ import annotations

import asyncio
import logging

from common.schemas import TranscriptEvent

logger = logging.getLogger(__name__)


class Subscription:
    """Receives events published after subscribe(); iterate until unsubscribed."""

    def __init__(self, bus: "TranscriptBus", max_pending: int) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[TranscriptEvent | None] = asyncio.Queue(maxsize=max_pending)
        self.active = True

    def deliver(self, event: TranscriptEvent) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            logger.warning("Subscriber buffer full, dropped oldest event")
        self._queue.put_nowait(event)

    async def get(self) -> TranscriptEvent | None:
        """Next event, or None once unsubscribed."""
        if not self.active and self._queue.empty():
            return None
        return await self._queue.get()

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._bus._remove(self)
        # Wake a pending get() so iteration ends.
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> TranscriptEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class TranscriptBus:
    def __init__(self, max_pending: int = 100) -> None:
        self.max_pending = max_pending
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self.max_pending)
        self._subscribers.append(sub)
        return sub

    def publish(self, event: TranscriptEvent) -> None:
        for sub in list(self._subscribers):
            sub.deliver(event)

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
