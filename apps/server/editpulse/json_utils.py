"""JSON sanitisation shared by the stream framing and the health route."""

from __future__ import annotations

import json
import logging
import math
from typing import Any

__all__ = [
    "compact_json_dumps",
    "sanitize_for_json",
]

LOGGER = logging.getLogger(__name__)


def sanitize_for_json(obj: Any) -> tuple[Any, bool]:
    """Recursively replace non-finite floats (NaN, Inf, -Inf) with ``None``.

    Returns the sanitised object and a boolean flag indicating whether any
    non-finite value was encountered.
    """
    found_non_finite = False

    def _walk(v: Any) -> Any:
        nonlocal found_non_finite
        if isinstance(v, float):
            if math.isfinite(v):
                return v
            found_non_finite = True
            return None
        if isinstance(v, dict):
            return {k: _walk(val) for k, val in v.items()}
        if isinstance(v, (list, tuple)):
            return [_walk(item) for item in v]
        return v

    cleaned = _walk(obj)
    return cleaned, found_non_finite


def compact_json_dumps(value: Any) -> str:
    """Sanitise *value* and serialise it without whitespace.

    Non-finite floats become ``null`` and a warning is logged, so the
    output is always strict JSON.
    """
    cleaned, had_non_finite = sanitize_for_json(value)
    if had_non_finite:
        LOGGER.warning("JSON payload contained NaN/Inf values; replaced with null.")
    return json.dumps(cleaned, separators=(",", ":"), allow_nan=False)
