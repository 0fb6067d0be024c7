"""Endpoints an out-of-process editor uses to feed the service."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter

from ..api_models import DiagnosticsRequest, DiagnosticsResponse, HookFiredResponse

if TYPE_CHECKING:
    from ..app import RuntimeState

LOGGER = logging.getLogger(__name__)


def create_ingest_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.post("/api/hooks/{hook_name}", response_model=HookFiredResponse)
    async def fire_hook(hook_name: str) -> HookFiredResponse:
        fired = await asyncio.to_thread(state.hooks.run_hooks, hook_name)
        if fired == 0:
            LOGGER.debug("Hook %r fired with no registered callbacks", hook_name)
        return {"hook": hook_name, "fired": fired}

    @router.put("/api/diagnostics", response_model=DiagnosticsResponse)
    async def publish_diagnostics(req: DiagnosticsRequest) -> DiagnosticsResponse:
        return {"count": state.diagnostics.publish(req.severities)}

    return router
