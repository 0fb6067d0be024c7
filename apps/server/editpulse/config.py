from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .constants import (
    DEFAULT_DECAY_FACTORS,
    DEFAULT_EVENT_HOOKS,
    DEFAULT_GRACEFUL_SHUTDOWN_S,
    DEFAULT_HAZARD,
    DEFAULT_HAZARD_LEVELS,
    DEFAULT_HOST,
    DEFAULT_INTERVAL_S,
    DEFAULT_PORT,
    DEFAULT_SUBSCRIBER_QUEUE,
    DEFAULT_WEIGHT_DIVISORS,
)
from .hazard import HazardLevel, parse_hazard_levels

SERVER_DIR = Path(__file__).resolve().parents[1]
"""Root of the ``apps/server/`` package tree."""

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "server": {"host": DEFAULT_HOST, "port": DEFAULT_PORT},
    "stream": {
        "interval_seconds": DEFAULT_INTERVAL_S,
        "subscriber_queue": DEFAULT_SUBSCRIBER_QUEUE,
        "graceful_shutdown_s": DEFAULT_GRACEFUL_SHUTDOWN_S,
    },
    "activity": {
        "hooks": dict(DEFAULT_EVENT_HOOKS),
        "decay": dict(DEFAULT_DECAY_FACTORS),
        "weights": dict(DEFAULT_WEIGHT_DIVISORS),
    },
    "hazard": {
        "levels": [[label, score] for label, score in DEFAULT_HAZARD_LEVELS],
        "default": DEFAULT_HAZARD,
    },
}


class ConfigError(ValueError):
    """Raised at startup when the configuration cannot be used."""


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _as_float(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{where} must be a number, got {value!r}")
    result = float(value)
    if not math.isfinite(result):
        raise ConfigError(f"{where} must be finite, got {value!r}")
    return result


def _as_int(value: Any, where: str) -> int:
    # Fractional values are rejected rather than truncated.
    if isinstance(value, bool):
        raise ConfigError(f"{where} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ConfigError(f"{where} must be an integer, got {value!r}")


@dataclass(slots=True)
class ServerConfig:
    host: str
    port: int

    def __post_init__(self) -> None:
        # 0 asks the OS for an ephemeral port.
        if not isinstance(self.port, int) or not (0 <= self.port <= 65535):
            raise ConfigError(f"server.port must be 0–65535, got {self.port!r}")
        if not self.host:
            raise ConfigError("server.host must not be empty")


@dataclass(slots=True)
class StreamConfig:
    interval_seconds: int
    subscriber_queue: int
    graceful_shutdown_s: float

    def __post_init__(self) -> None:
        if not isinstance(self.interval_seconds, int) or self.interval_seconds < 1:
            raise ConfigError(
                "stream.interval_seconds must be a positive integer, "
                f"got {self.interval_seconds!r}"
            )
        if not isinstance(self.subscriber_queue, int) or self.subscriber_queue < 1:
            raise ConfigError(
                f"stream.subscriber_queue must be ≥1, got {self.subscriber_queue!r}"
            )
        if self.graceful_shutdown_s < 0:
            LOGGER.warning(
                "stream.graceful_shutdown_s=%s is negative; using %s",
                self.graceful_shutdown_s,
                DEFAULT_GRACEFUL_SHUTDOWN_S,
            )
            object.__setattr__(self, "graceful_shutdown_s", DEFAULT_GRACEFUL_SHUTDOWN_S)


@dataclass(slots=True)
class ActivityConfig:
    """Tracked event kinds with their hook, decay factor and weight divisor."""

    hooks: dict[str, str]
    decay: dict[str, float]
    weights: dict[str, float]

    def __post_init__(self) -> None:
        if not self.hooks:
            raise ConfigError("activity.hooks must track at least one event kind")
        for kind, hook_name in self.hooks.items():
            if not isinstance(hook_name, str) or not hook_name:
                raise ConfigError(f"activity.hooks.{kind} must name a hook, got {hook_name!r}")
            if kind not in self.decay:
                raise ConfigError(
                    f"activity.hooks references unknown event kind {kind!r}: no decay factor"
                )
            if kind not in self.weights:
                raise ConfigError(
                    f"activity.hooks references unknown event kind {kind!r}: no weight divisor"
                )
        for kind, factor in self.decay.items():
            if not 0.0 <= factor <= 1.0:
                raise ConfigError(f"activity.decay.{kind} must be within [0, 1], got {factor!r}")
        for kind, divisor in self.weights.items():
            if divisor <= 0:
                raise ConfigError(f"activity.weights.{kind} must be > 0, got {divisor!r}")

    @property
    def kinds(self) -> tuple[str, ...]:
        return tuple(self.hooks)

    def tracked_decay(self) -> dict[str, float]:
        return {kind: self.decay[kind] for kind in self.hooks}

    def tracked_weights(self) -> dict[str, float]:
        return {kind: self.weights[kind] for kind in self.hooks}


@dataclass(slots=True)
class HazardConfig:
    levels: tuple[HazardLevel, ...]
    default: float


@dataclass(slots=True)
class AppConfig:
    server: ServerConfig
    stream: StreamConfig
    activity: ActivityConfig
    hazard: HazardConfig
    config_path: Path


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a YAML object at the top level.")
        return data


def _parse_activity(raw: dict[str, Any]) -> ActivityConfig:
    hooks_raw = raw.get("hooks") or {}
    decay_raw = raw.get("decay") or {}
    weights_raw = raw.get("weights") or {}
    for name, section in (("hooks", hooks_raw), ("decay", decay_raw), ("weights", weights_raw)):
        if not isinstance(section, dict):
            raise ConfigError(f"activity.{name} must be a mapping, got {section!r}")
    # A null hook disables a default kind.
    hooks = {
        str(kind): hook.strip() if isinstance(hook, str) else hook
        for kind, hook in hooks_raw.items()
        if hook is not None
    }
    return ActivityConfig(
        hooks=hooks,
        decay={str(k): _as_float(v, f"activity.decay.{k}") for k, v in decay_raw.items()},
        weights={str(k): _as_float(v, f"activity.weights.{k}") for k, v in weights_raw.items()},
    )


def _parse_hazard(raw: dict[str, Any]) -> HazardConfig:
    try:
        levels = parse_hazard_levels(raw.get("levels"))
    except ValueError as exc:
        raise ConfigError(f"hazard.levels is malformed: {exc}") from None
    return HazardConfig(
        levels=levels,
        default=_as_float(raw.get("default", DEFAULT_HAZARD), "hazard.default"),
    )


def load_config(config_path: Path | None = None) -> AppConfig:
    path = config_path or (SERVER_DIR / "config.yaml")
    path = path.resolve()
    override = _read_config_file(path)
    merged = _deep_merge(DEFAULT_CONFIG, override)

    for section in DEFAULT_CONFIG:
        if not isinstance(merged[section], dict):
            raise ConfigError(f"{section} must be a mapping, got {merged[section]!r}")
    server_port = _as_int(merged["server"]["port"], "server.port")
    interval_seconds = _as_int(merged["stream"]["interval_seconds"], "stream.interval_seconds")
    subscriber_queue = _as_int(merged["stream"]["subscriber_queue"], "stream.subscriber_queue")

    app_config = AppConfig(
        server=ServerConfig(
            host=str(merged["server"]["host"]),
            port=server_port,
        ),
        stream=StreamConfig(
            interval_seconds=interval_seconds,
            subscriber_queue=subscriber_queue,
            graceful_shutdown_s=_as_float(
                merged["stream"].get("graceful_shutdown_s", DEFAULT_GRACEFUL_SHUTDOWN_S),
                "stream.graceful_shutdown_s",
            ),
        ),
        activity=_parse_activity(merged["activity"]),
        hazard=_parse_hazard(merged["hazard"]),
        config_path=path,
    )
    LOGGER.info(
        "Loaded config=%s port=%d interval=%ds kinds=%s",
        app_config.config_path,
        app_config.server.port,
        app_config.stream.interval_seconds,
        ",".join(app_config.activity.kinds),
    )
    return app_config
