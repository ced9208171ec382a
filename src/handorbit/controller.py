"""Orientation controller — integrate InputTargets into a smooth object/camera trajectory.

Three exclusive control modes:

- IDLE: auto-spin plus decaying inertia from the last drag or hand release
- DRAGGING: pointer drag rotates the object directly
- HAND_GRAB: the hand's horizontal position steers the rotation

Mode changes go through explicit transition functions checked against a
fixed table, and each one sets up the velocity / offset the new mode needs
so rotation never jumps.

Usage:
    controller = OrientationController()
    # Every render frame:
    state = controller.tick(target, dt)
    scene.rotation.y = state.rotation_y
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

import numpy as np

from handorbit.config import ControllerConfig
from handorbit.inputs import InputTarget
from handorbit.smoothing import all_finite, clamp, lerp

logger = logging.getLogger("handorbit.controller")


class ControlMode(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    HAND_GRAB = "hand_grab"


_TRANSITIONS = {
    (ControlMode.IDLE, ControlMode.HAND_GRAB),
    (ControlMode.DRAGGING, ControlMode.HAND_GRAB),
    (ControlMode.HAND_GRAB, ControlMode.IDLE),
    (ControlMode.IDLE, ControlMode.DRAGGING),
    (ControlMode.DRAGGING, ControlMode.IDLE),
}


class InvalidTransition(RuntimeError):
    """A mode change that the state machine does not allow."""


@dataclass(frozen=True)
class OrientationState:
    """Snapshot read by the rendering host each frame."""
    rotation_y: float
    camera_position: tuple[float, float, float]
    zoom_level: float
    rotation_velocity: float
    grab_offset: float
    control_mode: ControlMode
    parallax: tuple[float, float] = (0.0, 0.0)

    def to_dict(self) -> dict:
        return {
            "rotation_y": round(self.rotation_y, 6),
            "camera_position": [round(c, 4) for c in self.camera_position],
            "zoom_level": round(self.zoom_level, 4),
            "rotation_velocity": round(self.rotation_velocity, 6),
            "grab_offset": round(self.grab_offset, 6),
            "control_mode": self.control_mode.value,
        }


@dataclass
class ControllerState:
    rotation_y: float = 0.0
    rotation_velocity: float = 0.002
    grab_offset: float = 0.0
    zoom_target: float = 32.0
    parallax_x: float = 0.0
    parallax_y: float = 0.0
    camera: tuple[float, float, float] = (0.0, 0.0, 32.0)
    mode: ControlMode = ControlMode.IDLE

    @classmethod
    def from_config(cls, config: ControllerConfig) -> ControllerState:
        return cls(
            rotation_velocity=config.base_spin,
            zoom_target=config.initial_zoom,
            camera=(0.0, 0.0, config.initial_zoom),
        )

    def snapshot(self) -> OrientationState:
        return OrientationState(
            rotation_y=self.rotation_y,
            camera_position=self.camera,
            zoom_level=self.zoom_target,
            rotation_velocity=self.rotation_velocity,
            grab_offset=self.grab_offset,
            control_mode=self.mode,
            parallax=(self.parallax_x, self.parallax_y),
        )


# --- Transitions ---

def _switch(state: ControllerState, mode: ControlMode):
    if (state.mode, mode) not in _TRANSITIONS:
        raise InvalidTransition(f"{state.mode.value} -> {mode.value}")
    logger.debug("Control mode %s -> %s", state.mode.value, mode.value)
    state.mode = mode


def enter_hand_grab(state: ControllerState, config: ControllerConfig):
    """Anchor the hand so the current rotation is exactly where it points."""
    _switch(state, ControlMode.HAND_GRAB)
    state.grab_offset = state.rotation_y - state.parallax_x * config.hand_rotation_factor
    state.rotation_velocity = 0.0


def release_hand_grab(state: ControllerState, config: ControllerConfig):
    """Let the hand's last motion carry on as inertia, or resume auto-spin."""
    _switch(state, ControlMode.IDLE)
    if abs(state.rotation_velocity) < config.release_epsilon:
        state.rotation_velocity = config.base_spin


def begin_drag(state: ControllerState, config: ControllerConfig):
    _switch(state, ControlMode.DRAGGING)
    state.rotation_velocity = 0.0


def end_drag(state: ControllerState, config: ControllerConfig):
    # rotation_velocity already holds the last drag step
    _switch(state, ControlMode.IDLE)


def _pointer_active(target: InputTarget) -> bool:
    """True when the pointer was held at any point during the tick's events."""
    return target.is_pointer_down or target.pointer_pressed or target.drag_delta_x != 0.0


def _follow_hand(state: ControllerState, dt: float, config: ControllerConfig):
    target_angle = state.parallax_x * config.hand_rotation_factor + state.grab_offset
    prev = state.rotation_y
    state.rotation_y = lerp(prev, target_angle, config.hand_follow_rate * dt)
    state.rotation_velocity = state.rotation_y - prev


def _apply_drag(state: ControllerState, target: InputTarget, config: ControllerConfig):
    amount = target.drag_delta_x * config.drag_sensitivity
    state.rotation_y += amount
    if amount != 0.0:
        state.rotation_velocity = amount


def _coast(state: ControllerState, dt: float, config: ControllerConfig):
    state.rotation_y += state.rotation_velocity
    state.rotation_velocity = lerp(
        state.rotation_velocity, config.base_spin, config.inertia_decay_rate * dt
    )


def arbitrate(state: ControllerState, target: InputTarget, dt: float, config: ControllerConfig):
    """Apply the transitions the tick's input calls for and rotate accordingly.

    Device events are batched per tick, so a press, its moves and the release
    can all arrive together. The drag is applied before the release ends it,
    so the last step still becomes the inertia.
    """
    if target.is_hand_detected:
        if state.mode != ControlMode.HAND_GRAB:
            enter_hand_grab(state, config)
        _follow_hand(state, dt, config)
        return

    if state.mode == ControlMode.HAND_GRAB:
        release_hand_grab(state, config)

    if state.mode == ControlMode.IDLE and _pointer_active(target):
        begin_drag(state, config)

    if state.mode == ControlMode.DRAGGING:
        _apply_drag(state, target, config)
        if target.is_pointer_down:
            return
        end_drag(state, config)

    _coast(state, dt, config)


# --- Integration ---

def step(
    state: ControllerState, target: InputTarget, dt: float, config: ControllerConfig
) -> ControllerState:
    """Integrate one tick into a new ControllerState (``state`` is left untouched)."""
    nxt = replace(state)

    # 1. Parallax input smoothing
    k_input = config.input_smoothing_rate * dt
    nxt.parallax_x = lerp(state.parallax_x, target.x, k_input)
    nxt.parallax_y = lerp(state.parallax_y, target.y, k_input)

    # 2. Zoom
    zoom = (
        state.zoom_target
        + target.wheel_delta_y * config.wheel_sensitivity
        + target.pinch_distance_delta * config.pinch_sensitivity
    )
    if not math.isfinite(zoom):
        zoom = state.zoom_target
    nxt.zoom_target = clamp(zoom, config.min_zoom, config.max_zoom)

    # 3. Camera
    cam_target = (
        nxt.parallax_x * config.parallax_x,
        nxt.parallax_y * config.parallax_y,
        nxt.zoom_target + abs(nxt.parallax_x) * config.lateral_zoom,
    )
    k_cam = config.camera_follow_rate * dt
    nxt.camera = tuple(lerp(c, t, k_cam) for c, t in zip(state.camera, cam_target))

    # 4. Mode and rotation
    arbitrate(nxt, target, dt, config)

    return nxt


def _is_finite(state: ControllerState) -> bool:
    return all_finite(
        state.rotation_y,
        state.rotation_velocity,
        state.grab_offset,
        state.zoom_target,
        state.parallax_x,
        state.parallax_y,
        *state.camera,
    )


class OrientationController:
    """Owns a ControllerState and advances it once per render tick."""

    def __init__(self, config: Optional[ControllerConfig] = None):
        self.config = config or ControllerConfig()
        self.config.validate()
        self.state = ControllerState.from_config(self.config)
        self.total_ticks = 0
        self.rejected_ticks = 0

    def clamp_dt(self, dt: float) -> float:
        if not math.isfinite(dt) or dt <= 0:
            return 0.0
        return min(dt, self.config.max_dt)

    def tick(self, target: InputTarget, dt: float) -> OrientationState:
        """Advance one render frame. Non-finite results keep the previous state."""
        self.total_ticks += 1
        nxt = step(self.state, target, self.clamp_dt(dt), self.config)

        if _is_finite(nxt):
            self.state = nxt
        else:
            self.rejected_ticks += 1
            logger.warning("Discarded non-finite controller update (target=%s)", target)

        return self.state.snapshot()

    @property
    def current(self) -> OrientationState:
        return self.state.snapshot()

    def reset(self):
        self.state = ControllerState.from_config(self.config)


def look_at_matrix(
    eye: tuple[float, float, float],
    target: tuple[float, float, float] = (0.0, 0.0, 0.0),
    up: tuple[float, float, float] = (0.0, 1.0, 0.0),
) -> np.ndarray:
    """Right-handed 4x4 view matrix for a camera at ``eye`` looking at ``target``."""
    eye_v = np.asarray(eye, dtype=np.float64)
    forward = np.asarray(target, dtype=np.float64) - eye_v
    norm = np.linalg.norm(forward)
    if norm < 1e-8:
        return np.eye(4)
    forward /= norm

    side = np.cross(forward, np.asarray(up, dtype=np.float64))
    side_norm = np.linalg.norm(side)
    if side_norm < 1e-8:
        # Looking straight along the up axis; pick any perpendicular
        side = np.cross(forward, np.array([0.0, 0.0, 1.0]))
        side_norm = np.linalg.norm(side)
    side /= side_norm
    true_up = np.cross(side, forward)

    view = np.eye(4)
    view[0, :3] = side
    view[1, :3] = true_up
    view[2, :3] = -forward
    view[:3, 3] = -view[:3, :3] @ eye_v
    return view
