"""Catch-all GET endpoint serving the measurement event stream."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from ..constants import SSE_MEDIA_TYPE, STREAM_HEADERS
from ..subscribers import StreamSubscriber

if TYPE_CHECKING:
    from ..app import RuntimeState

LOGGER = logging.getLogger(__name__)


def _peer_label(request: Request) -> str:
    client = request.client
    if client is None:
        return "unknown"
    return f"{client.host}:{client.port}"


async def _stream_frames(request: Request, subscriber: StreamSubscriber) -> AsyncIterator[str]:
    try:
        async for frame in subscriber.frames():
            if await request.is_disconnected():
                break
            yield frame
    finally:
        # The registry notices on its next write and drops the subscriber.
        subscriber.close()
        LOGGER.debug("Stream to %s ended", subscriber.peer)


def create_stream_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/{path:path}", include_in_schema=False)
    async def stream(request: Request, path: str) -> StreamingResponse:
        scheduler = state.scheduler
        if not scheduler.running:
            raise HTTPException(status_code=503, detail="Stream is not running")
        subscriber = StreamSubscriber(
            peer=_peer_label(request),
            max_pending=state.config.stream.subscriber_queue,
        )
        registry = scheduler.registry
        await registry.add(subscriber)
        # stop() may have cleared the registry while add() waited for its lock.
        if not scheduler.running:
            await registry.remove(subscriber)
            subscriber.close()
            raise HTTPException(status_code=503, detail="Stream is not running")
        return StreamingResponse(
            _stream_frames(request, subscriber),
            headers=dict(STREAM_HEADERS),
            media_type=SSE_MEDIA_TYPE,
        )

    return router
