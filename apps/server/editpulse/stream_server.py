"""Embedded uvicorn server hosting the event-stream app.

The service owns the process lifecycle, so the server is started and
stopped programmatically and never installs its own signal handlers.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import uvicorn

from .constants import DEFAULT_GRACEFUL_SHUTDOWN_S

if TYPE_CHECKING:
    from fastapi import FastAPI

LOGGER = logging.getLogger(__name__)

_STARTUP_POLL_S = 0.01


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the host process."""

    def install_signal_handlers(self) -> None:
        return None

    @contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class StreamServer:
    """Serve *app* on ``host:port`` until :meth:`stop` is awaited.

    Port 0 binds an ephemeral port; :attr:`bound_port` reports the real one.
    ``start``/``stop`` are idempotent and the server can be started again
    after a stop.
    """

    def __init__(
        self,
        app: FastAPI,
        *,
        host: str,
        port: int,
        graceful_timeout_s: float = DEFAULT_GRACEFUL_SHUTDOWN_S,
    ) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._graceful_timeout_s = graceful_timeout_s
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task | None = None
        self._bound_port: int | None = None

    @property
    def running(self) -> bool:
        return self._task is not None

    @property
    def bound_port(self) -> int | None:
        return self._bound_port

    def _bind(self) -> socket.socket:
        # Binding here, not inside uvicorn, turns "address in use" into a
        # plain OSError for the caller instead of a SystemExit.
        sock = socket.create_server((self.host, self.port))
        sock.setblocking(False)
        return sock

    async def start(self) -> None:
        if self._task is not None:
            LOGGER.debug("Stream server already running on port %s", self._bound_port)
            return
        sock = self._bind()
        self._bound_port = int(sock.getsockname()[1])
        config = uvicorn.Config(
            self.app,
            lifespan="off",
            log_config=None,
            access_log=False,
            timeout_graceful_shutdown=max(1, int(round(self._graceful_timeout_s))),
        )
        server = _EmbeddedServer(config)
        task = asyncio.create_task(server.serve(sockets=[sock]), name="stream-server")
        while not server.started:
            if task.done():
                sock.close()
                self._bound_port = None
                # Re-raises the startup failure, if any.
                await task
                raise RuntimeError("Stream server exited during startup")
            await asyncio.sleep(_STARTUP_POLL_S)
        self._server = server
        self._task = task
        LOGGER.info("Stream server listening on %s:%d", self.host, self._bound_port)

    async def stop(self) -> None:
        if self._task is None or self._server is None:
            return
        server, task = self._server, self._task
        self._server = None
        self._task = None
        server.should_exit = True
        try:
            await task
        except Exception:
            LOGGER.warning("Stream server did not shut down cleanly", exc_info=True)
        LOGGER.info("Stream server on port %s stopped", self._bound_port)
        self._bound_port = None
