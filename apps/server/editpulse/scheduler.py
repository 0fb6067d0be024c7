"""Periodic measure-and-broadcast cycle.

Each tick: fresh diagnostics snapshot → hazard, ledger → activity,
assemble a :class:`Measurement`, push its frame to every subscriber, and
only then decay the ledger, so a frame always reflects the events counted
since the previous decay.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING, Any, Protocol

from .measurement import Measurement
from .subscribers import SubscriberRegistry

if TYPE_CHECKING:
    from .activity import ActivityLedger
    from .collaborators import DiagnosticsSource, EventHookRegistrar, HookCallback
    from .hazard import HazardClassifier

LOGGER = logging.getLogger(__name__)

_MAX_CONSECUTIVE_FAILURES = 10
"""After this many failed ticks in a row the timer backs off."""

_FAILURE_BACKOFF_INTERVALS = 5
"""Backoff length, in tick intervals."""


class SchedulerState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class StreamServerLike(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class BroadcastScheduler:
    """Owns the ledger, classifier and subscriber registry of one session.

    ``start``/``stop``/``restart`` are the service control operations.  A
    scheduler without a bound server runs headless: ticks still happen and
    subscribers added to :attr:`registry` still receive frames.
    """

    def __init__(
        self,
        *,
        ledger: ActivityLedger,
        classifier: HazardClassifier,
        hooks: dict[str, str],
        interval_s: int,
        registrar: EventHookRegistrar | None = None,
        diagnostics: DiagnosticsSource | None = None,
        server: StreamServerLike | None = None,
    ) -> None:
        unknown = [kind for kind in hooks if kind not in ledger.kinds]
        if unknown:
            raise ValueError(f"Hooks reference event kinds the ledger does not track: {unknown}")
        if interval_s < 1:
            raise ValueError(f"interval_s must be ≥1, got {interval_s!r}")
        self.ledger = ledger
        self.classifier = classifier
        self.registry = SubscriberRegistry()
        self._hooks = dict(hooks)
        self._interval_s = int(interval_s)
        self._registrar = registrar
        self._diagnostics = diagnostics
        self._server = server
        self._state = SchedulerState.STOPPED
        self._tick_lock = asyncio.Lock()
        self._timer_task: asyncio.Task | None = None
        self._installed: dict[str, HookCallback] = {}
        self._tick_count = 0
        self._tick_failures = 0
        self._last_measurement: Measurement | None = None

    # -- State --------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @property
    def interval_s(self) -> int:
        return self._interval_s

    @property
    def server(self) -> StreamServerLike | None:
        return self._server

    def bind_server(self, server: StreamServerLike) -> None:
        if self.running:
            raise RuntimeError("Cannot bind a stream server while running")
        self._server = server

    def status(self) -> dict[str, Any]:
        last = self._last_measurement
        return {
            "state": self._state.value,
            "subscribers": self.registry.count(),
            "ticks": self._tick_count,
            "tick_failures": self._tick_failures,
            "counters": self.ledger.counters(),
            "last_measurement": last.to_payload() if last is not None else None,
        }

    # -- Hooks --------------------------------------------------------------

    def _make_hook(self, kind: str) -> HookCallback:
        ledger = self.ledger

        def _on_event() -> None:
            ledger.record(kind)

        return _on_event

    def _install_hooks(self) -> None:
        self._installed = {kind: self._make_hook(kind) for kind in self._hooks}
        if self._registrar is None:
            return
        for kind, callback in self._installed.items():
            self._registrar.add_hook(self._hooks[kind], callback)
            LOGGER.debug("Installed %r hook on %r", kind, self._hooks[kind])

    def _remove_hooks(self) -> None:
        installed, self._installed = self._installed, {}
        if self._registrar is None:
            return
        for kind, callback in installed.items():
            try:
                self._registrar.remove_hook(self._hooks[kind], callback)
            except Exception:
                LOGGER.warning("Failed to remove %r hook", kind, exc_info=True)

    def hook_callback(self, kind: str) -> HookCallback | None:
        """The callback currently installed for *kind*, if running."""
        return self._installed.get(kind)

    # -- Control operations -------------------------------------------------

    async def start(self) -> None:
        if self.running:
            LOGGER.info("Broadcast scheduler already running; start ignored")
            return
        self.ledger.reset()
        self.registry = SubscriberRegistry()
        self._last_measurement = None
        self._install_hooks()
        if self._server is not None:
            try:
                await self._server.start()
            except BaseException:
                self._remove_hooks()
                raise
        self._state = SchedulerState.RUNNING
        self._timer_task = asyncio.create_task(self._run_timer(), name="broadcast-timer")
        LOGGER.info(
            "Broadcast scheduler started: interval=%ds kinds=%s",
            self._interval_s,
            ",".join(self.ledger.kinds),
        )

    async def stop(self) -> None:
        if not self.running:
            LOGGER.debug("Broadcast scheduler already stopped; stop ignored")
            return
        self._state = SchedulerState.STOPPED
        # Let an in-flight tick finish; no new tick can pass the state check.
        async with self._tick_lock:
            timer, self._timer_task = self._timer_task, None
        if timer is not None:
            timer.cancel()
            await asyncio.gather(timer, return_exceptions=True)
        self._remove_hooks()
        # Open streams hold the server's graceful shutdown, so close them first.
        await self.registry.clear()
        if self._server is not None:
            await self._server.stop()
        # The stream route refuses new peers once stopped; drop any that raced in.
        await self.registry.clear()
        LOGGER.info("Broadcast scheduler stopped after %d tick(s)", self._tick_count)

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    # -- Tick ---------------------------------------------------------------

    def _measure(self, counters: dict[str, float]) -> Measurement:
        hazard = self.classifier.classify_source(self._diagnostics)
        activity = self.ledger.compute_score(counters)
        return Measurement(activity=activity, hazard=hazard, time=self._interval_s)

    async def tick(self) -> Measurement | None:
        """Run one measure → broadcast → decay step; ``None`` when stopped.

        Only the counters the frame reported are decayed; events recorded by
        hooks while the frame was being pushed reach the next frame in full.
        """
        if not self.running:
            return None
        async with self._tick_lock:
            if not self.running:
                return None
            counters = self.ledger.counters()
            measurement = self._measure(counters)
            delivered = await self.registry.broadcast(measurement.encode_frame())
            self.ledger.decay(counters)
            self._tick_count += 1
            self._last_measurement = measurement
        LOGGER.debug(
            "Tick %d: activity=%.3f hazard=%.3f delivered=%d",
            self._tick_count,
            measurement.activity,
            measurement.hazard,
            delivered,
        )
        return measurement

    async def _run_timer(self) -> None:
        interval = float(self._interval_s)
        consecutive_failures = 0
        loop = asyncio.get_running_loop()
        next_at = loop.time() + interval
        while self.running:
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            next_at += interval
            try:
                await self.tick()
                consecutive_failures = 0
            except Exception:
                consecutive_failures += 1
                self._tick_failures += 1
                if consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
                    LOGGER.error(
                        "Broadcast tick failed %d consecutive times; backing off.",
                        consecutive_failures,
                        exc_info=True,
                    )
                    await asyncio.sleep(interval * _FAILURE_BACKOFF_INTERVALS)
                    next_at = loop.time() + interval
                    consecutive_failures = 0
                else:
                    LOGGER.warning("Broadcast tick failed; will retry.", exc_info=True)
            # A tick that overran the interval is not followed by a burst.
            if next_at < loop.time():
                next_at = loop.time() + interval
