"""Gesture interpretation — stabilize raw landmark geometry into a GestureState.

Raw hand-pose output is jittery and drops out for a frame or two at a time.
The interpreter smooths every signal with a short moving average, applies
hysteresis to the open/closed decision and only declares the hand lost after
several consecutive misses.

Usage:
    interpreter = GestureInterpreter()
    # ~10 Hz, from the inference loop:
    state = interpreter.process(detector, frame_rgb)
    print(gesture_label(state))
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from handorbit.config import InterpreterConfig
from handorbit.landmarks import (
    FINGER_BASES,
    FINGER_TIPS,
    INDEX_TIP,
    PINCH_SUPPORT_BASES,
    PINCH_SUPPORT_TIPS,
    THUMB_TIP,
    WRIST,
    LandmarkFrame,
    LandmarkSource,
    first_detection,
)
from handorbit.smoothing import HysteresisThreshold, SmoothingBuffer

logger = logging.getLogger("handorbit.gestures")

# Scheduler wake-up jitter tolerated by the throttle
_THROTTLE_SLACK = 0.001


@dataclass(frozen=True)
class GestureState:
    """Stabilized hand state published to the rest of the pipeline."""
    is_hand_detected: bool = False
    position: tuple[float, float] = (0.0, 0.0)  # normalized, mirrored
    is_open: bool = False
    is_pinching: bool = False
    is_pulling: bool = False
    pull_velocity: float = 0.0
    index_finger: Optional[tuple[float, float]] = None

    def to_dict(self) -> dict:
        return {
            "is_hand_detected": self.is_hand_detected,
            "position": {"x": round(self.position[0], 4), "y": round(self.position[1], 4)},
            "is_open": self.is_open,
            "is_pinching": self.is_pinching,
            "is_pulling": self.is_pulling,
            "pull_velocity": round(self.pull_velocity, 5),
            "index_finger": (
                {"x": round(self.index_finger[0], 4), "y": round(self.index_finger[1], 4)}
                if self.index_finger is not None else None
            ),
        }


NEUTRAL = GestureState()


def gesture_label(state: GestureState) -> str:
    """Human-readable debug label for a gesture state."""
    if not state.is_hand_detected:
        return "NO HAND"
    if state.is_pinching:
        return "PULL" if state.is_pulling else "PINCH"
    return "OPEN" if state.is_open else "CLOSED"


@dataclass
class InterpreterState:
    """Everything the interpreter remembers between inference results."""
    positions: SmoothingBuffer
    ratios: SmoothingBuffer
    index_tips: SmoothingBuffer
    thumb_tips: SmoothingBuffer
    hysteresis: HysteresisThreshold
    is_open: bool = False
    missed_frames: int = 0
    last_index_y: Optional[float] = None
    last_accepted: Optional[float] = None
    current: GestureState = field(default=NEUTRAL)

    @classmethod
    def from_config(cls, config: InterpreterConfig) -> InterpreterState:
        return cls(
            positions=SmoothingBuffer(config.position_window, dim=2),
            ratios=SmoothingBuffer(config.ratio_window),
            index_tips=SmoothingBuffer(config.finger_window, dim=2),
            thumb_tips=SmoothingBuffer(config.finger_window, dim=2),
            hysteresis=HysteresisThreshold(config.open_above, config.close_below),
        )

    def clear(self):
        """Drop every history so the next hand starts from scratch."""
        self.positions.clear()
        self.ratios.clear()
        self.index_tips.clear()
        self.thumb_tips.clear()
        self.is_open = False
        self.last_index_y = None


def openness_ratio(frame: LandmarkFrame) -> float:
    """Mean fingertip-to-wrist distance over mean knuckle-to-wrist distance.

    Open hands sit well above 1.5, fists near 1.0.
    """
    tip = np.mean([frame.distance(WRIST, t) for t in FINGER_TIPS])
    base = np.mean([frame.distance(WRIST, b) for b in FINGER_BASES])
    return float(tip / (base or 1.0))


def pinch_distance(frame: LandmarkFrame) -> float:
    """Thumb-tip to index-tip distance with each axis scaled by image size."""
    thumb = frame.point(THUMB_TIP)
    index = frame.point(INDEX_TIP)
    dx = (index[0] - thumb[0]) / frame.image_width
    dy = (index[1] - thumb[1]) / frame.image_height
    return float(np.hypot(dx, dy))


def support_fingers_extended(frame: LandmarkFrame, threshold: float) -> bool:
    """True when middle, ring and pinky all reach past their knuckles.

    Separates a real pinch from a fist whose curled tips happen to land near
    the thumb.
    """
    for tip, base in zip(PINCH_SUPPORT_TIPS, PINCH_SUPPORT_BASES):
        base_dist = frame.distance(WRIST, base) or 1.0
        if frame.distance(WRIST, tip) / base_dist <= threshold:
            return False
    return True


def update_on_frame(
    state: InterpreterState, frame: LandmarkFrame, config: InterpreterConfig
) -> GestureState:
    """Fold one valid detection into the state and return the new GestureState."""
    state.missed_frames = 0

    # Position
    state.positions.push(frame.normalized(WRIST))
    position = state.positions.mean

    # Openness with hysteresis
    state.ratios.push(openness_ratio(frame))
    state.is_open = state.hysteresis.update(state.is_open, state.ratios.mean)

    # Pinch
    state.index_tips.push(frame.normalized(INDEX_TIP))
    state.thumb_tips.push(frame.normalized(THUMB_TIP))
    index_x, index_y = state.index_tips.mean

    is_pinching = (
        pinch_distance(frame) < config.pinch_distance
        and support_fingers_extended(frame, config.extension_ratio)
    )

    # Pull: upward index motion while pinching
    pull_velocity = 0.0
    is_pulling = False
    if is_pinching and state.last_index_y is not None:
        pull_velocity = state.last_index_y - index_y
        is_pulling = pull_velocity > config.pull_threshold
    state.last_index_y = index_y

    state.current = GestureState(
        is_hand_detected=True,
        position=position,
        is_open=state.is_open,
        is_pinching=is_pinching,
        is_pulling=is_pulling,
        pull_velocity=pull_velocity,
        index_finger=(index_x, index_y),
    )
    return state.current


def update_on_miss(state: InterpreterState, config: InterpreterConfig) -> GestureState:
    """Count a missed detection; reset to neutral once the hand is gone for good."""
    state.missed_frames += 1
    if state.missed_frames > config.max_missed_frames:
        if state.current is not NEUTRAL:
            logger.debug("Hand lost after %d missed frames", state.missed_frames)
        state.clear()
        state.current = NEUTRAL
    return state.current


class GestureInterpreter:
    """Throttled front end over ``update_on_frame`` / ``update_on_miss``.

    Calls arriving faster than ``throttle_interval`` are no-ops returning the
    previous state, so the caller may invoke it every render frame.
    """

    def __init__(self, config: Optional[InterpreterConfig] = None):
        self.config = config or InterpreterConfig()
        self.config.validate()
        self.state = InterpreterState.from_config(self.config)
        self.total_frames = 0
        self.total_misses = 0
        self.total_failures = 0

    @property
    def current(self) -> GestureState:
        return self.state.current

    def _throttled(self, now: float) -> bool:
        last = self.state.last_accepted
        if last is not None and (now - last) < self.config.throttle_interval - _THROTTLE_SLACK:
            return True
        self.state.last_accepted = now
        return False

    def interpret(
        self, frame: Optional[LandmarkFrame], now: Optional[float] = None
    ) -> GestureState:
        """Accept one detection (or ``None`` for no hand) at the throttled cadence."""
        now = now if now is not None else time.monotonic()
        if self._throttled(now):
            return self.state.current
        return self._apply(frame)

    def process(
        self,
        source: LandmarkSource,
        image: np.ndarray,
        now: Optional[float] = None,
    ) -> GestureState:
        """Run inference on ``image`` and fold in the result.

        Inference failures are treated as a missed detection and never
        propagate.
        """
        now = now if now is not None else time.monotonic()
        if self._throttled(now):
            return self.state.current

        try:
            frame = first_detection(source.estimate(image))
        except Exception as e:
            self.total_failures += 1
            logger.debug("Inference failed: %s", e)
            frame = None

        return self._apply(frame)

    def _apply(self, frame: Optional[LandmarkFrame]) -> GestureState:
        self.total_frames += 1
        if frame is None or not frame.is_valid():
            self.total_misses += 1
            return update_on_miss(self.state, self.config)
        return update_on_frame(self.state, frame, self.config)

    def reset(self):
        """Clear all state."""
        self.state = InterpreterState.from_config(self.config)
