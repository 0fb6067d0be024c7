"""Shared defaults and protocol constants, single source of truth.

Every literal that appears in more than one module should live here
so that a change only needs to happen in one place.
"""

from __future__ import annotations

from typing import Final

# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------
DEFAULT_HOST: Final[str] = "127.0.0.1"
"""Loopback by default: subscribers are local visualisers."""

DEFAULT_PORT: Final[int] = 44100
"""Listening port of the stream server."""

# ---------------------------------------------------------------------------
# Cadence
# ---------------------------------------------------------------------------
DEFAULT_INTERVAL_S: Final[int] = 5
"""Seconds between broadcast ticks.  Also reported as ``time`` in every frame."""

# ---------------------------------------------------------------------------
# Stream framing
# ---------------------------------------------------------------------------
SSE_MEDIA_TYPE: Final[str] = "text/event-stream"

STREAM_HEADERS: Final[dict[str, str]] = {
    "Access-Control-Allow-Origin": "*",
    "Content-Type": SSE_MEDIA_TYPE,
    "Connection": "keep-alive",
    "Cache-Control": "no-cache",
    "Transfer-Encoding": "chunked",
}
"""Response headers announcing an open-ended event stream."""

DEFAULT_SUBSCRIBER_QUEUE: Final[int] = 32
"""Frames buffered per subscriber before a write counts as failed."""

DEFAULT_GRACEFUL_SHUTDOWN_S: Final[float] = 5.0
"""Upper bound on waiting for open connections when the server stops."""

# ---------------------------------------------------------------------------
# Activity model
# ---------------------------------------------------------------------------
DEFAULT_EVENT_HOOKS: Final[dict[str, str]] = {
    "text": "after-change",
    "file": "find-file",
    "save": "after-save",
}
"""Tracked event kinds and the editor hook each one listens on."""

DEFAULT_DECAY_FACTORS: Final[dict[str, float]] = {
    "text": 0.5,
    "file": 0.8,
    "save": 0.9,
}

DEFAULT_WEIGHT_DIVISORS: Final[dict[str, float]] = {
    "text": 50.0,
    "file": 1.0,
    "save": 2.0,
}
"""Counter value at which a kind contributes half of its saturating term."""

# ---------------------------------------------------------------------------
# Hazard model
# ---------------------------------------------------------------------------
DEFAULT_HAZARD_LEVELS: Final[tuple[tuple[str, float], ...]] = (
    ("error", 1.0),
    ("warning", 0.5),
    ("info", 0.1),
)
"""Severity label → hazard score, most severe first."""

DEFAULT_HAZARD: Final[float] = 0.0
"""Hazard reported when no configured severity is present."""
