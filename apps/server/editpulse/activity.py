"""Per-kind decaying activity counters.

Each tracked event kind owns a non-negative counter.  Hooks bump the
counter by one per event; every broadcast tick reads a bounded score and
then multiplies each counter by its decay factor.  The score of a kind is
``1 - 1/(1 + counter/divisor)``, a saturating term, and the sum over
kinds is clamped to 1.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping


class UnknownEventKindError(KeyError):
    """Raised when recording an event kind the ledger does not track."""


def kind_term(counter: float, divisor: float) -> float:
    """Saturating contribution of one kind: 0 at rest, → 1 as *counter* grows."""
    return 1.0 - 1.0 / (1.0 + counter / divisor)


class ActivityLedger:
    """Thread-safe mapping of event kind → decaying counter.

    Parameters
    ----------
    weights:
        Event kind → divisor (> 0); the counter value at which the kind
        contributes 0.5 to the score.
    decay_factors:
        Event kind → multiplicative factor in [0, 1] applied on every
        :meth:`decay`.
    """

    __slots__ = ("_weights", "_decay", "_counters", "_lock")

    def __init__(
        self,
        weights: Mapping[str, float],
        decay_factors: Mapping[str, float],
    ) -> None:
        if set(weights) != set(decay_factors):
            raise ValueError(
                "weights and decay_factors must cover the same event kinds: "
                f"{sorted(weights)} != {sorted(decay_factors)}"
            )
        for kind, divisor in weights.items():
            if divisor <= 0:
                raise ValueError(f"weight divisor for {kind!r} must be > 0, got {divisor!r}")
        for kind, factor in decay_factors.items():
            if not 0.0 <= factor <= 1.0:
                raise ValueError(f"decay factor for {kind!r} must be within [0, 1], got {factor!r}")
        self._weights = dict(weights)
        self._decay = dict(decay_factors)
        self._counters: dict[str, float] = dict.fromkeys(self._weights, 0.0)
        self._lock = threading.Lock()

    @property
    def kinds(self) -> tuple[str, ...]:
        return tuple(self._weights)

    def record(self, kind: str) -> None:
        """Count one occurrence of *kind*."""
        with self._lock:
            if kind not in self._counters:
                raise UnknownEventKindError(kind)
            self._counters[kind] += 1.0

    def compute_score(self, counters: Mapping[str, float] | None = None) -> float:
        """Bounded score of the live counters, or of a :meth:`counters` snapshot."""
        with self._lock:
            source = self._counters if counters is None else counters
            total = sum(
                kind_term(source[kind], divisor) for kind, divisor in self._weights.items()
            )
        return min(1.0, total)

    def decay(self, baseline: Mapping[str, float] | None = None) -> None:
        """Multiply every counter by its decay factor.

        With a *baseline* snapshot only the snapshotted part decays.  Events
        recorded after the snapshot carry over in full, so the next score
        still counts them.
        """
        with self._lock:
            for kind, factor in self._decay.items():
                current = self._counters[kind]
                if baseline is None:
                    self._counters[kind] = max(0.0, current * factor)
                    continue
                base = min(baseline.get(kind, 0.0), current)
                self._counters[kind] = max(0.0, base * factor) + (current - base)

    def counters(self) -> dict[str, float]:
        with self._lock:
            return dict(self._counters)

    def reset(self) -> None:
        with self._lock:
            for kind in self._counters:
                self._counters[kind] = 0.0
