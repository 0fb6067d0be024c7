"""Interfaces of the editor-side collaborators and in-process adapters.

The scheduler depends only on the two protocols below.  ``HookRegistry``
and ``DiagnosticsBoard`` are the adapters used when the editor lives in
another process and reaches the service over HTTP (see ``routes/ingest``).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any, Protocol, runtime_checkable

LOGGER = logging.getLogger(__name__)

HookCallback = Callable[[], None]


@runtime_checkable
class DiagnosticsSource(Protocol):
    def current_severities(self) -> Iterable[Any]:
        """Severity labels of the diagnostics on the active document."""
        ...


@runtime_checkable
class EventHookRegistrar(Protocol):
    def add_hook(self, hook_name: str, callback: HookCallback) -> None: ...

    def remove_hook(self, hook_name: str, callback: HookCallback) -> None: ...


class HookRegistry:
    """Named hook lists; ``run_hooks`` invokes every callback on a hook."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[HookCallback]] = {}
        self._lock = threading.Lock()

    def add_hook(self, hook_name: str, callback: HookCallback) -> None:
        with self._lock:
            callbacks = self._hooks.setdefault(hook_name, [])
            if callback not in callbacks:
                callbacks.append(callback)

    def remove_hook(self, hook_name: str, callback: HookCallback) -> None:
        with self._lock:
            callbacks = self._hooks.get(hook_name)
            if not callbacks or callback not in callbacks:
                return
            callbacks.remove(callback)
            if not callbacks:
                del self._hooks[hook_name]

    def hook_names(self) -> list[str]:
        with self._lock:
            return sorted(self._hooks)

    def callbacks(self, hook_name: str) -> list[HookCallback]:
        with self._lock:
            return list(self._hooks.get(hook_name, ()))

    def run_hooks(self, hook_name: str) -> int:
        """Invoke the callbacks of *hook_name*; return how many ran cleanly.

        A failing callback is logged and does not stop the others.
        """
        fired = 0
        for callback in self.callbacks(hook_name):
            try:
                callback()
            except Exception:
                LOGGER.warning("Hook callback on %r failed", hook_name, exc_info=True)
                continue
            fired += 1
        return fired


class DiagnosticsBoard:
    """Latest diagnostic severities pushed by the editor."""

    def __init__(self, severities: Iterable[Any] = ()) -> None:
        self._severities: tuple[Any, ...] = tuple(severities)
        self._lock = threading.Lock()

    def publish(self, severities: Iterable[Any]) -> int:
        snapshot = tuple(severities)
        with self._lock:
            self._severities = snapshot
        return len(snapshot)

    def current_severities(self) -> list[Any]:
        with self._lock:
            return list(self._severities)
