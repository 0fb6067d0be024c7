from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .json_utils import compact_json_dumps


@dataclass(frozen=True, slots=True)
class Measurement:
    """One tick's snapshot; ``time`` is the reporting interval in seconds."""

    activity: float
    hazard: float
    time: int

    def to_payload(self) -> dict[str, Any]:
        return {"activity": self.activity, "hazard": self.hazard, "time": self.time}

    def encode_frame(self) -> str:
        """Render as one event-stream frame: ``data: <json>\\n\\n``."""
        return encode_event_frame(self.to_payload())


def encode_event_frame(payload: dict[str, Any]) -> str:
    return f"data: {compact_json_dumps(payload)}\n\n"
