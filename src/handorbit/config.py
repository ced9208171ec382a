"""Configuration for the control pipeline.

Every tuned constant lives here as a named field so it can be overridden
independently. Configs load from / save to YAML:

    config = load_config("handorbit.yml")
    save_config(config, "handorbit.yml")
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigError(ValueError):
    """Raised when a configuration value is out of range."""


@dataclass
class InterpreterConfig:
    throttle_interval: float = 0.1  # seconds between accepted inference results
    position_window: int = 8
    ratio_window: int = 5
    finger_window: int = 5  # index / thumb histories
    open_above: float = 1.6
    close_below: float = 1.2
    pinch_distance: float = 0.05
    extension_ratio: float = 1.1
    pull_threshold: float = 0.02
    max_missed_frames: int = 5

    def validate(self):
        if self.throttle_interval < 0:
            raise ConfigError("throttle_interval must be >= 0")
        for name in ("position_window", "ratio_window", "finger_window"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1")
        if self.open_above <= self.close_below:
            raise ConfigError(
                f"open_above ({self.open_above}) must be greater than "
                f"close_below ({self.close_below})"
            )
        if self.max_missed_frames < 0:
            raise ConfigError("max_missed_frames must be >= 0")


@dataclass
class AggregatorConfig:
    viewport_width: Optional[float] = None
    viewport_height: Optional[float] = None

    def validate(self):
        for name in ("viewport_width", "viewport_height"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigError(f"{name} must be positive")


@dataclass
class ControllerConfig:
    max_dt: float = 0.1
    base_spin: float = 0.002
    release_epsilon: float = 0.0001
    drag_sensitivity: float = 0.005
    wheel_sensitivity: float = 0.02
    pinch_sensitivity: float = 0.15
    min_zoom: float = 12.0
    max_zoom: float = 55.0
    initial_zoom: float = 32.0
    hand_rotation_factor: float = math.pi * 1.2
    hand_follow_rate: float = 6.0
    inertia_decay_rate: float = 0.5
    input_smoothing_rate: float = 4.0
    camera_follow_rate: float = 4.0
    parallax_x: float = 4.0
    parallax_y: float = 2.0
    lateral_zoom: float = 2.0

    def validate(self):
        if self.max_dt <= 0:
            raise ConfigError("max_dt must be positive")
        if self.min_zoom > self.max_zoom:
            raise ConfigError(
                f"min_zoom ({self.min_zoom}) exceeds max_zoom ({self.max_zoom})"
            )
        if not self.min_zoom <= self.initial_zoom <= self.max_zoom:
            raise ConfigError("initial_zoom must lie within [min_zoom, max_zoom]")


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8765
    camera_index: int = 0
    enable_camera: bool = True
    tick_rate: float = 60.0

    def validate(self):
        if self.tick_rate <= 0:
            raise ConfigError("tick_rate must be positive")


@dataclass
class HandorbitConfig:
    interpreter: InterpreterConfig = field(default_factory=InterpreterConfig)
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def validate(self) -> HandorbitConfig:
        self.interpreter.validate()
        self.aggregator.validate()
        self.controller.validate()
        self.server.validate()
        return self

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> HandorbitConfig:
        data = data or {}
        config = cls(
            interpreter=_build(InterpreterConfig, data.get("interpreter")),
            aggregator=_build(AggregatorConfig, data.get("aggregator")),
            controller=_build(ControllerConfig, data.get("controller")),
            server=_build(ServerConfig, data.get("server")),
        )
        return config.validate()


def _build(cls, section: Optional[dict[str, Any]]):
    if not section:
        return cls()
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in section.items() if k in known})


def load_config(path: str | Path) -> HandorbitConfig:
    """Load a config from a YAML file. Unknown keys are ignored."""
    with open(path) as f:
        data = yaml.safe_load(f)

    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return HandorbitConfig.from_dict(data or {})


def save_config(config: HandorbitConfig, path: str | Path):
    """Write a config to a YAML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
