"""Tests for device event aggregation."""

import pytest

from handorbit.config import AggregatorConfig
from handorbit.gestures import GestureState
from handorbit.inputs import (
    InputAggregator,
    PointerEvent,
    PointerKind,
    TouchEvent,
    TouchKind,
    WheelEvent,
    event_from_dict,
)


def down(x, y=0.0, **kw):
    return PointerEvent(PointerKind.DOWN, x, y, **kw)


def move(x, y=0.0, **kw):
    return PointerEvent(PointerKind.MOVE, x, y, **kw)


def up(x, y=0.0):
    return PointerEvent(PointerKind.UP, x, y)


def two_fingers(kind, distance):
    return TouchEvent(kind, ((0.0, 0.0), (distance, 0.0)))


class TestDrag:
    def test_moves_sum_then_clear(self):
        agg = InputAggregator()
        target = agg.aggregate([down(100), move(110), move(130)])
        assert target.is_pointer_down
        assert target.drag_delta_x == 30.0

        target = agg.aggregate()
        assert target.drag_delta_x == 0.0
        assert target.is_pointer_down

    def test_move_without_press_is_ignored(self):
        agg = InputAggregator()
        assert agg.aggregate([move(10), move(50)]).drag_delta_x == 0.0

    def test_release_and_leave_end_drag(self):
        agg = InputAggregator()
        agg.aggregate([down(0), move(5), up(5)])
        assert not agg.aggregate().is_pointer_down

        agg.aggregate([down(0), PointerEvent(PointerKind.LEAVE, 0.0, 0.0)])
        assert not agg.aggregate().is_pointer_down

    def test_secondary_pointer_ignored(self):
        agg = InputAggregator()
        target = agg.aggregate([down(0), move(40, is_primary=False)])
        assert target.drag_delta_x == 0.0

    def test_non_primary_button_does_not_press(self):
        agg = InputAggregator()
        assert not agg.aggregate([down(0, button=2)]).is_pointer_down

    def test_press_reported_even_when_released_in_same_batch(self):
        agg = InputAggregator()
        target = agg.aggregate([down(100), move(150), up(150)])
        assert target.pointer_pressed
        assert not target.is_pointer_down
        assert target.drag_delta_x == 50.0

        assert not agg.aggregate().pointer_pressed

    def test_two_finger_touch_suppresses_drag(self):
        agg = InputAggregator()
        target = agg.aggregate([
            down(100),
            two_fingers(TouchKind.START, 200.0),
            move(160),
        ])
        assert target.drag_delta_x == 0.0

        # Lifting the second finger restores rotation
        target = agg.aggregate([TouchEvent(TouchKind.END), move(170)])
        assert target.drag_delta_x == 70.0

    def test_non_finite_coordinates_dropped(self):
        agg = InputAggregator()
        target = agg.aggregate([down(0), move(float("nan")), move(10)])
        assert target.drag_delta_x == 10.0


class TestWheelAndPinch:
    def test_wheel_accumulates(self):
        agg = InputAggregator()
        target = agg.aggregate([WheelEvent(100.0), WheelEvent(-30.0), WheelEvent(float("inf"))])
        assert target.wheel_delta_y == 70.0
        assert agg.aggregate().wheel_delta_y == 0.0

    def test_fingers_closing_is_positive(self):
        agg = InputAggregator()
        target = agg.aggregate([
            two_fingers(TouchKind.START, 200.0),
            two_fingers(TouchKind.MOVE, 180.0),
            two_fingers(TouchKind.MOVE, 150.0),
        ])
        assert target.pinch_distance_delta == pytest.approx(50.0)

    def test_fingers_spreading_is_negative(self):
        agg = InputAggregator()
        target = agg.aggregate([
            two_fingers(TouchKind.START, 100.0),
            two_fingers(TouchKind.MOVE, 160.0),
        ])
        assert target.pinch_distance_delta == pytest.approx(-60.0)

    def test_single_finger_touch_ignored(self):
        agg = InputAggregator()
        target = agg.aggregate([
            TouchEvent(TouchKind.START, ((0.0, 0.0),)),
            TouchEvent(TouchKind.MOVE, ((10.0, 10.0),)),
        ])
        assert target.pinch_distance_delta == 0.0

    def test_move_after_end_needs_new_start(self):
        agg = InputAggregator()
        target = agg.aggregate([
            two_fingers(TouchKind.START, 100.0),
            TouchEvent(TouchKind.CANCEL),
            two_fingers(TouchKind.MOVE, 50.0),
        ])
        assert target.pinch_distance_delta == 0.0


class TestPriority:
    def test_hand_position_wins(self):
        agg = InputAggregator(AggregatorConfig(viewport_width=800, viewport_height=600))
        hand = GestureState(is_hand_detected=True, position=(0.3, -0.2))
        target = agg.aggregate([move(0, 0)], gesture=hand)
        assert target.is_hand_detected
        assert (target.x, target.y) == (0.3, -0.2)

    def test_gesture_persists_between_ticks(self):
        agg = InputAggregator()
        agg.aggregate(gesture=GestureState(is_hand_detected=True, position=(0.1, 0.1)))
        assert agg.aggregate().is_hand_detected

    def test_pointer_parallax_with_viewport(self):
        agg = InputAggregator(AggregatorConfig(viewport_width=800, viewport_height=600))
        target = agg.aggregate([move(600, 150)])
        assert target.x == pytest.approx(0.5)
        assert target.y == pytest.approx(0.5)

    def test_pointer_parallax_clamped(self):
        agg = InputAggregator()
        agg.set_viewport(100, 100)
        target = agg.aggregate([move(500, -500)])
        assert (target.x, target.y) == (1.0, 1.0)

    def test_no_viewport_no_parallax(self):
        agg = InputAggregator()
        target = agg.aggregate([move(600, 150)])
        assert (target.x, target.y) == (0.0, 0.0)

    def test_unknown_event_type(self):
        with pytest.raises(TypeError):
            InputAggregator().handle("click")

    def test_reset(self):
        agg = InputAggregator()
        agg.aggregate([down(0)], gesture=GestureState(is_hand_detected=True))
        agg.reset()
        target = agg.aggregate()
        assert not target.is_pointer_down
        assert not target.is_hand_detected


class TestEventFromDict:
    def test_pointer(self):
        event = event_from_dict({"type": "pointer", "kind": "down", "x": 12, "y": 8})
        assert event == PointerEvent(PointerKind.DOWN, 12.0, 8.0)

    def test_wheel(self):
        assert event_from_dict({"type": "wheel", "delta_y": -120}) == WheelEvent(-120.0)

    def test_touch(self):
        event = event_from_dict({"type": "touch", "kind": "move", "touches": [[0, 0], [3, 4]]})
        assert event.kind == TouchKind.MOVE
        assert event.touches == ((0.0, 0.0), (3.0, 4.0))

    @pytest.mark.parametrize("data,error", [
        ({"type": "keyboard"}, ValueError),
        ({"type": "pointer", "kind": "hover"}, ValueError),
        ({"type": "wheel"}, KeyError),
    ])
    def test_invalid(self, data, error):
        with pytest.raises(error):
            event_from_dict(data)
