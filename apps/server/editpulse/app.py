"""Runtime wiring: config -> ledger/classifier -> scheduler -> stream server.

Boundary note for maintainers:
- Keep this module focused on orchestration, not scoring details.
- Score math belongs in `activity.py` / `hazard.py`.
- HTTP schemas belong in `api_models.py`.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from fastapi import FastAPI

from . import __version__
from .activity import ActivityLedger
from .collaborators import DiagnosticsBoard, HookRegistry
from .config import AppConfig, load_config
from .hazard import HazardClassifier
from .routes import create_router
from .scheduler import BroadcastScheduler
from .stream_server import StreamServer

LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "EDITPULSE_CONFIG"


@dataclass(slots=True)
class RuntimeState:
    config: AppConfig
    hooks: HookRegistry
    diagnostics: DiagnosticsBoard
    scheduler: BroadcastScheduler

    @property
    def stream_server(self) -> StreamServer | None:
        server = self.scheduler.server
        return server if isinstance(server, StreamServer) else None


def create_app(runtime: RuntimeState) -> FastAPI:
    # Every GET outside /api belongs to the event stream, including /docs.
    app = FastAPI(
        title="editpulse",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.runtime = runtime
    app.include_router(create_router(runtime))
    return app


def create_service(
    config_path: Path | None = None,
    *,
    config: AppConfig | None = None,
) -> RuntimeState:
    """Build a stopped service from *config* (or the YAML at *config_path*).

    Configuration errors surface here, before anything is started.
    """
    config = config or load_config(config_path)
    hooks = HookRegistry()
    diagnostics = DiagnosticsBoard()
    ledger = ActivityLedger(
        weights=config.activity.tracked_weights(),
        decay_factors=config.activity.tracked_decay(),
    )
    classifier = HazardClassifier(config.hazard.levels, default=config.hazard.default)
    scheduler = BroadcastScheduler(
        ledger=ledger,
        classifier=classifier,
        hooks=config.activity.hooks,
        interval_s=config.stream.interval_seconds,
        registrar=hooks,
        diagnostics=diagnostics,
    )
    runtime = RuntimeState(
        config=config,
        hooks=hooks,
        diagnostics=diagnostics,
        scheduler=scheduler,
    )
    scheduler.bind_server(
        StreamServer(
            create_app(runtime),
            host=config.server.host,
            port=config.server.port,
            graceful_timeout_s=config.stream.graceful_shutdown_s,
        )
    )
    return runtime


@asynccontextmanager
async def service_lifespan(runtime: RuntimeState) -> AsyncIterator[RuntimeState]:
    """Run the service for the duration of the ``async with`` block."""
    await runtime.scheduler.start()
    try:
        yield runtime
    finally:
        await runtime.scheduler.stop()


def _install_exit_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler.
            LOGGER.debug("Cannot install handler for %s", sig, exc_info=True)


async def serve(
    config_path: Path | None = None,
    *,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run until SIGINT/SIGTERM (or *stop_event*), then stop gracefully."""
    runtime = create_service(config_path)
    stop_event = stop_event or asyncio.Event()
    _install_exit_handlers(stop_event)
    async with service_lifespan(runtime):
        await stop_event.wait()
        LOGGER.info("Shutdown requested")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the editpulse metrics stream")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Root log level",
    )
    args = parser.parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config_path = args.config
    if config_path is None and os.getenv(CONFIG_ENV_VAR):
        config_path = Path(os.environ[CONFIG_ENV_VAR])
    asyncio.run(serve(config_path))


if __name__ == "__main__":
    main()
