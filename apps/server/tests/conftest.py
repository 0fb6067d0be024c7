"""Shared test helpers for the editpulse test suite."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any

import yaml

from editpulse.activity import ActivityLedger
from editpulse.collaborators import DiagnosticsBoard, HookRegistry
from editpulse.hazard import HazardClassifier, HazardLevel
from editpulse.scheduler import BroadcastScheduler

SAVE_ONLY_HOOKS = {"save": "after-save"}


async def async_wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.02) -> bool:
    """Poll *predicate* until it returns truthy, or *timeout_s* expires."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step_s)
    return False


def write_config(path: Path, payload: dict[str, Any]) -> Path:
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def make_ledger(
    weights: dict[str, float] | None = None,
    decay: dict[str, float] | None = None,
) -> ActivityLedger:
    return ActivityLedger(
        weights=weights or {"save": 2.0},
        decay_factors=decay or {"save": 0.9},
    )


def make_classifier() -> HazardClassifier:
    return HazardClassifier(
        (
            HazardLevel("error", 1.0),
            HazardLevel("warning", 0.5),
            HazardLevel("info", 0.1),
        )
    )


def make_scheduler(
    *,
    ledger: ActivityLedger | None = None,
    hooks: dict[str, str] | None = None,
    registrar: HookRegistry | None = None,
    diagnostics: Any = None,
    server: Any = None,
    interval_s: int = 5,
) -> BroadcastScheduler:
    """Headless scheduler over a save-only ledger unless told otherwise."""
    return BroadcastScheduler(
        ledger=ledger or make_ledger(),
        classifier=make_classifier(),
        hooks=hooks or dict(SAVE_ONLY_HOOKS),
        interval_s=interval_s,
        registrar=registrar if registrar is not None else HookRegistry(),
        diagnostics=diagnostics if diagnostics is not None else DiagnosticsBoard(),
        server=server,
    )
