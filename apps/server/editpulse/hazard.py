"""Severity → hazard score mapping.

The table is a priority list, not a weighting: the first (most severe)
label present in a diagnostic snapshot decides the score, so one error
outweighs any number of warnings.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Hashable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .constants import DEFAULT_HAZARD

if TYPE_CHECKING:
    from .collaborators import DiagnosticsSource

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HazardLevel:
    label: Hashable
    score: float


def _label_key(label: Any) -> Any:
    return label.value if isinstance(label, Enum) else label


def parse_hazard_levels(raw: Any) -> tuple[HazardLevel, ...]:
    """Validate a hazard table given as ``[[label, score], ...]`` or
    ``[{"label": ..., "score": ...}, ...]`` (most severe first).

    Raises ``ValueError`` for an empty table, duplicate labels or
    non-numeric/non-finite scores.
    """
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence) or not raw:
        raise ValueError("expected a non-empty list of (label, score) entries")
    levels: list[HazardLevel] = []
    seen: set[Any] = set()
    for index, entry in enumerate(raw):
        if isinstance(entry, dict):
            if "label" not in entry or "score" not in entry:
                raise ValueError(f"entry {index} must have 'label' and 'score' keys")
            label, score = entry["label"], entry["score"]
        elif isinstance(entry, Sequence) and not isinstance(entry, (str, bytes)) and len(entry) == 2:
            label, score = entry
        else:
            raise ValueError(f"entry {index} must be a (label, score) pair, got {entry!r}")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            raise ValueError(f"entry {index} score must be a number, got {score!r}")
        if not math.isfinite(score):
            raise ValueError(f"entry {index} score must be finite, got {score!r}")
        key = _label_key(label)
        if key in seen:
            raise ValueError(f"duplicate severity label {label!r}")
        seen.add(key)
        levels.append(HazardLevel(label=key, score=float(score)))
    return tuple(levels)


def classify_severities(
    levels: Sequence[HazardLevel],
    severities: Iterable[Any],
    default: float = DEFAULT_HAZARD,
) -> float:
    """Return the score of the most severe level whose label is present."""
    present = [_label_key(s) for s in severities]
    for level in levels:
        if level.label in present:
            return level.score
    return default


class HazardClassifier:
    """Bind a hazard table and default to :func:`classify_severities`."""

    __slots__ = ("_levels", "_default")

    def __init__(
        self,
        levels: Sequence[HazardLevel],
        default: float = DEFAULT_HAZARD,
    ) -> None:
        if not levels:
            raise ValueError("HazardClassifier needs at least one level")
        self._levels = tuple(levels)
        self._default = float(default)

    @property
    def levels(self) -> tuple[HazardLevel, ...]:
        return self._levels

    @property
    def default(self) -> float:
        return self._default

    def classify(self, severities: Iterable[Any]) -> float:
        return classify_severities(self._levels, severities, self._default)

    def classify_source(self, source: DiagnosticsSource | None) -> float:
        """Fetch a fresh snapshot from *source* and classify it.

        A missing or failing source degrades to the default score; the
        broadcast tick must never abort because of diagnostics.
        """
        if source is None:
            return self._default
        try:
            severities = list(source.current_severities())
        except Exception:
            LOGGER.warning(
                "Diagnostics source failed; reporting default hazard %.3f.",
                self._default,
                exc_info=True,
            )
            return self._default
        return self.classify(severities)
