"""Input aggregation — merge device events and the hand state into one target.

Pointer, wheel and two-finger touch events arrive at whatever rate the
windowing layer produces them. The aggregator folds them into per-tick
deltas and hands the controller a single immutable InputTarget snapshot.
Deltas are one-shot: taking a snapshot zeroes them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Optional, Union

from handorbit.config import AggregatorConfig
from handorbit.gestures import NEUTRAL, GestureState


class PointerKind(Enum):
    DOWN = "down"
    MOVE = "move"
    UP = "up"
    LEAVE = "leave"
    CANCEL = "cancel"


class TouchKind(Enum):
    START = "start"
    MOVE = "move"
    END = "end"
    CANCEL = "cancel"


@dataclass(frozen=True)
class PointerEvent:
    kind: PointerKind
    client_x: float
    client_y: float
    is_primary: bool = True
    button: int = 0
    pointer_id: int = 0


@dataclass(frozen=True)
class WheelEvent:
    delta_y: float


@dataclass(frozen=True)
class TouchEvent:
    kind: TouchKind
    touches: tuple[tuple[float, float], ...] = ()


DeviceEvent = Union[PointerEvent, WheelEvent, TouchEvent]


def event_from_dict(data: dict) -> DeviceEvent:
    """Build a device event from its JSON form (as sent by the browser host)."""
    kind = data.get("type")
    if kind == "pointer":
        return PointerEvent(
            kind=PointerKind(data["kind"]),
            client_x=float(data.get("x", 0.0)),
            client_y=float(data.get("y", 0.0)),
            is_primary=bool(data.get("is_primary", True)),
            button=int(data.get("button", 0)),
            pointer_id=int(data.get("pointer_id", 0)),
        )
    if kind == "wheel":
        return WheelEvent(delta_y=float(data["delta_y"]))
    if kind == "touch":
        return TouchEvent(
            kind=TouchKind(data["kind"]),
            touches=tuple((float(t[0]), float(t[1])) for t in data.get("touches", [])),
        )
    raise ValueError(f"Unknown device event type: {kind!r}")


@dataclass(frozen=True)
class InputTarget:
    """Arbitrated input for one controller tick."""
    x: float = 0.0
    y: float = 0.0
    is_hand_detected: bool = False
    is_pointer_down: bool = False
    pointer_pressed: bool = False  # a press arrived since the last snapshot
    drag_delta_x: float = 0.0
    wheel_delta_y: float = 0.0
    pinch_distance_delta: float = 0.0


@dataclass
class AggregatorState:
    pointer_down: bool = False
    pointer_pressed: bool = False
    last_pointer_x: float = 0.0
    pointer_position: Optional[tuple[float, float]] = None
    touch_distance: Optional[float] = None  # set while two fingers are down
    drag_delta_x: float = 0.0
    wheel_delta_y: float = 0.0
    pinch_distance_delta: float = 0.0
    gesture: GestureState = field(default=NEUTRAL)


def _touch_distance(touches) -> float:
    (x0, y0), (x1, y1) = touches[0], touches[1]
    return math.hypot(x0 - x1, y0 - y1)


def _finite(*values: float) -> bool:
    return all(math.isfinite(v) for v in values)


def handle_pointer(state: AggregatorState, event: PointerEvent):
    if not event.is_primary or not _finite(event.client_x, event.client_y):
        return
    state.pointer_position = (event.client_x, event.client_y)

    if event.kind == PointerKind.DOWN:
        if event.button == 0:
            state.pointer_down = True
            state.pointer_pressed = True
            state.last_pointer_x = event.client_x
    elif event.kind == PointerKind.MOVE:
        # A second finger turns the gesture into pinch-zoom, not rotation
        if state.pointer_down and state.touch_distance is None:
            state.drag_delta_x += event.client_x - state.last_pointer_x
            state.last_pointer_x = event.client_x
    else:
        state.pointer_down = False


def handle_wheel(state: AggregatorState, event: WheelEvent):
    if _finite(event.delta_y):
        state.wheel_delta_y += event.delta_y


def handle_touch(state: AggregatorState, event: TouchEvent):
    if event.kind in (TouchKind.END, TouchKind.CANCEL):
        state.touch_distance = None
        return

    if len(event.touches) != 2:
        return
    if not _finite(*(c for t in event.touches for c in t)):
        return

    distance = _touch_distance(event.touches)
    if event.kind == TouchKind.MOVE and state.touch_distance is not None:
        # Fingers closing together (positive delta) zooms out
        state.pinch_distance_delta += state.touch_distance - distance
    state.touch_distance = distance


class InputAggregator:
    """Folds device events and the latest GestureState into InputTargets.

    The hand, when present, drives the parallax position and takes control
    priority; pointer deltas are still reported so the controller can decide
    what to ignore.
    """

    def __init__(self, config: Optional[AggregatorConfig] = None):
        self.config = config or AggregatorConfig()
        self.config.validate()
        self.state = AggregatorState()

    def handle(self, event: DeviceEvent):
        """Apply one raw device event."""
        if isinstance(event, PointerEvent):
            handle_pointer(self.state, event)
        elif isinstance(event, WheelEvent):
            handle_wheel(self.state, event)
        elif isinstance(event, TouchEvent):
            handle_touch(self.state, event)
        else:
            raise TypeError(f"Unsupported event: {event!r}")

    def set_viewport(self, width: float, height: float):
        config = replace(self.config, viewport_width=width, viewport_height=height)
        config.validate()
        self.config = config

    def _pointer_parallax(self) -> tuple[float, float]:
        width = self.config.viewport_width
        height = self.config.viewport_height
        if self.state.pointer_position is None or not width or not height:
            return 0.0, 0.0
        px, py = self.state.pointer_position
        x = (px / width) * 2.0 - 1.0
        y = -((py / height) * 2.0 - 1.0)
        return max(-1.0, min(1.0, x)), max(-1.0, min(1.0, y))

    def aggregate(
        self,
        events: Iterable[DeviceEvent] = (),
        gesture: Optional[GestureState] = None,
    ) -> InputTarget:
        """Apply ``events``, then snapshot and zero the one-shot deltas."""
        for event in events:
            self.handle(event)
        if gesture is not None:
            self.state.gesture = gesture

        hand = self.state.gesture
        if hand.is_hand_detected:
            x, y = hand.position
        else:
            x, y = self._pointer_parallax()

        target = InputTarget(
            x=x,
            y=y,
            is_hand_detected=hand.is_hand_detected,
            is_pointer_down=self.state.pointer_down,
            pointer_pressed=self.state.pointer_pressed,
            drag_delta_x=self.state.drag_delta_x,
            wheel_delta_y=self.state.wheel_delta_y,
            pinch_distance_delta=self.state.pinch_distance_delta,
        )

        self.state.pointer_pressed = False
        self.state.drag_delta_x = 0.0
        self.state.wheel_delta_y = 0.0
        self.state.pinch_distance_delta = 0.0
        return target

    def reset(self):
        self.state = AggregatorState()
