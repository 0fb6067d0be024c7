from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator

from .constants import DEFAULT_SUBSCRIBER_QUEUE

LOGGER = logging.getLogger(__name__)

_SEND_ERROR_LOG_INTERVAL_S: float = 10.0
"""Minimum interval between logged send-error warnings to avoid log spam."""


class SubscriberClosedError(ConnectionError):
    """The subscriber's stream has ended; the write cannot be delivered."""


class SubscriberBackpressureError(ConnectionError):
    """The subscriber stopped reading and its frame queue is full."""


class StreamSubscriber:
    """One open event-stream connection as seen by the broadcaster.

    Frames are queued without blocking; the HTTP response drains them via
    :meth:`frames`.  Once closed, every :meth:`send` fails.
    """

    __slots__ = ("peer", "connected_at", "_queue", "_closed")

    def __init__(self, peer: str = "unknown", max_pending: int = DEFAULT_SUBSCRIBER_QUEUE) -> None:
        self.peer = peer
        self.connected_at = time.time()
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=max(1, max_pending))
        self._closed = False

    def __repr__(self) -> str:
        return f"StreamSubscriber(peer={self.peer!r}, closed={self._closed})"

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, text: str) -> None:
        if self._closed:
            raise SubscriberClosedError(f"stream to {self.peer} is closed")
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            raise SubscriberBackpressureError(
                f"stream to {self.peer} has {self._queue.qsize()} unread frames"
            ) from None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Pending frames are dropped so the end-of-stream marker always fits.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[str]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame


class SubscriberRegistry:
    """Live set of stream subscribers; dead ones are pruned while broadcasting."""

    def __init__(self) -> None:
        self._subscribers: dict[int, StreamSubscriber] = {}
        self._lock = asyncio.Lock()
        self._last_send_error_log_ts = 0.0
        self._send_error_log_interval_s = _SEND_ERROR_LOG_INTERVAL_S

    def __len__(self) -> int:
        return len(self._subscribers)

    def count(self) -> int:
        return len(self._subscribers)

    def peers(self) -> list[str]:
        return [sub.peer for sub in self._subscribers.values()]

    async def add(self, subscriber: StreamSubscriber) -> None:
        async with self._lock:
            self._subscribers[id(subscriber)] = subscriber
        LOGGER.info("Stream subscriber connected: %s (%d live)", subscriber.peer, len(self))

    async def remove(self, subscriber: StreamSubscriber) -> None:
        async with self._lock:
            self._subscribers.pop(id(subscriber), None)

    async def _snapshot(self) -> list[StreamSubscriber]:
        async with self._lock:
            return list(self._subscribers.values())

    async def broadcast(self, payload: str) -> int:
        """Write *payload* to every subscriber; drop each one whose write fails.

        Returns the number of subscribers that accepted the payload.
        """
        subs = await self._snapshot()
        if not subs:
            return 0
        dead: list[StreamSubscriber] = []
        for sub in subs:
            try:
                sub.send(payload)
            except Exception:
                dead.append(sub)
                now = time.monotonic()
                if (now - self._last_send_error_log_ts) >= self._send_error_log_interval_s:
                    self._last_send_error_log_ts = now
                    LOGGER.warning(
                        "Stream write to %s failed; subscriber will be removed.",
                        sub.peer,
                        exc_info=True,
                    )
        for sub in dead:
            sub.close()
            await self.remove(sub)
        if dead:
            LOGGER.info("Dropped %d dead subscriber(s); %d live", len(dead), len(self))
        return len(subs) - len(dead)

    async def clear(self) -> None:
        async with self._lock:
            subs = list(self._subscribers.values())
            self._subscribers.clear()
        for sub in subs:
            sub.close()
        if subs:
            LOGGER.info("Closed %d stream subscriber(s)", len(subs))
