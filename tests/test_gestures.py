"""Tests for gesture interpretation: smoothing, hysteresis, pinch/pull and miss handling."""

import numpy as np
import pytest

from handorbit.config import InterpreterConfig
from handorbit.gestures import (
    NEUTRAL,
    GestureInterpreter,
    GestureState,
    gesture_label,
    openness_ratio,
    pinch_distance,
    support_fingers_extended,
)
from handorbit.landmarks import LandmarkFrame

from synthetic import make_hand, normalized


def unthrottled(**overrides):
    return GestureInterpreter(InterpreterConfig(throttle_interval=0.0, **overrides))


def feed(interpreter, frames, start=0.0, step=0.1):
    states = []
    for i, frame in enumerate(frames):
        states.append(interpreter.interpret(frame, now=start + i * step))
    return states


class FailingSource:
    def __init__(self):
        self.calls = 0

    def estimate(self, image):
        self.calls += 1
        raise RuntimeError("GPU context lost")


class StaticSource:
    def __init__(self, detections):
        self.detections = detections

    def estimate(self, image):
        return self.detections


class TestGeometry:
    def test_openness_ratio_matches_finger_ratio(self):
        assert openness_ratio(make_hand(ratio=1.7)) == pytest.approx(1.7)
        assert openness_ratio(make_hand(ratio=1.0)) == pytest.approx(1.0)

    def test_pinch_distance_normalized_per_axis(self):
        # Thumb sits 10px below the index tip in a 480px-high image
        assert pinch_distance(make_hand(pinch=True)) == pytest.approx(10 / 480)

    def test_support_fingers(self):
        assert support_fingers_extended(make_hand(ratio=1.8), 1.1)
        assert not support_fingers_extended(make_hand(ratio=0.9), 1.1)
        # One curled finger is enough to fail
        curled_pinky = make_hand(finger_ratios=(1.8, 1.8, 1.8, 1.05))
        assert not support_fingers_extended(curled_pinky, 1.1)


class TestPosition:
    def test_wrist_mapped_and_mirrored(self):
        interp = unthrottled()
        state = interp.interpret(make_hand(wrist=(160.0, 120.0)), now=0.0)
        assert state.is_hand_detected
        assert state.position == pytest.approx((0.5, 0.5))

    def test_position_is_mean_of_last_eight(self):
        interp = unthrottled()
        xs = [32.0 * i for i in range(1, 11)]
        frames = [make_hand(wrist=(x, 240.0)) for x in xs]
        state = feed(interp, frames)[-1]

        expected_x = np.mean([normalized(x, 240.0)[0] for x in xs[-8:]])
        assert state.position[0] == pytest.approx(expected_x)
        assert len(interp.state.positions) == 8


class TestHysteresis:
    def test_flips_open_when_smoothed_mean_crosses_upper(self):
        interp = unthrottled()
        feed(interp, [make_hand(ratio=1.0)] * 5)
        assert not interp.current.is_open

        states = feed(interp, [make_hand(ratio=1.7)] * 5, start=1.0)
        # Window means: 1.14, 1.28, 1.42, 1.56, 1.70
        assert [s.is_open for s in states] == [False, False, False, False, True]

    def test_holds_inside_band(self):
        interp = unthrottled()
        feed(interp, [make_hand(ratio=1.8)] * 5)
        assert interp.current.is_open

        # Smoothed value settles at 1.4: inside the band, stays open
        states = feed(interp, [make_hand(ratio=1.4)] * 10, start=1.0)
        assert all(s.is_open for s in states)

    def test_closes_below_lower_then_holds(self):
        interp = unthrottled()
        feed(interp, [make_hand(ratio=1.8)] * 5)
        feed(interp, [make_hand(ratio=1.0)] * 5, start=1.0)
        assert not interp.current.is_open

        states = feed(interp, [make_hand(ratio=1.5)] * 10, start=2.0)
        assert not any(s.is_open for s in states)

    def test_single_spike_does_not_flip(self):
        interp = unthrottled()
        feed(interp, [make_hand(ratio=1.0)] * 5)
        state = interp.interpret(make_hand(ratio=3.5), now=1.0)
        # Mean (4 * 1.0 + 3.5) / 5 = 1.5
        assert not state.is_open


class TestPinch:
    def test_pinch_requires_proximity_and_extension(self):
        interp = unthrottled()
        state = interp.interpret(make_hand(ratio=1.8, pinch=True), now=0.0)
        assert state.is_pinching

    def test_open_hand_without_proximity(self):
        interp = unthrottled()
        state = interp.interpret(make_hand(ratio=1.8, pinch=False), now=0.0)
        assert not state.is_pinching

    def test_fist_with_tips_near_thumb_is_not_pinch(self):
        interp = unthrottled()
        state = interp.interpret(make_hand(ratio=0.9, pinch=True), now=0.0)
        assert not state.is_pinching

    def test_extension_at_threshold_is_not_enough(self):
        interp = unthrottled()
        frame = make_hand(finger_ratios=(1.8, 1.05, 1.05, 1.05), pinch=True)
        assert not interp.interpret(frame, now=0.0).is_pinching


class TestPull:
    def _pinch_track(self, ys):
        return [make_hand(ratio=1.8, pinch=True, wrist=(320.0, y)) for y in ys]

    def test_decreasing_normalized_y_is_positive_pull(self):
        interp = unthrottled()
        # Image y grows → normalized y falls by 0.1 per frame
        states = feed(interp, self._pinch_track([200.0 + 24.0 * i for i in range(6)]))

        assert states[0].pull_velocity == 0.0
        assert not states[0].is_pulling
        for s in states[1:]:
            assert s.pull_velocity > 0.02
            assert s.is_pulling

    def test_opposite_direction_is_not_pull(self):
        interp = unthrottled()
        states = feed(interp, self._pinch_track([340.0 - 24.0 * i for i in range(6)]))
        for s in states[1:]:
            assert s.pull_velocity < 0
            assert not s.is_pulling

    def test_slow_motion_below_threshold(self):
        interp = unthrottled()
        # 1px per frame → ~0.004 normalized, under the 0.02 threshold
        states = feed(interp, self._pinch_track([200.0 + i for i in range(6)]))
        for s in states[1:]:
            assert 0 < s.pull_velocity < 0.02
            assert not s.is_pulling

    def test_no_pull_without_pinch(self):
        interp = unthrottled()
        frames = [make_hand(ratio=1.8, wrist=(320.0, 200.0 + 24.0 * i)) for i in range(6)]
        for s in feed(interp, frames):
            assert s.pull_velocity == 0.0
            assert not s.is_pulling


class TestMissHandling:
    def test_hand_lost_on_sixth_consecutive_miss(self):
        interp = unthrottled()
        feed(interp, [make_hand()] * 10)

        states = feed(interp, [None] * 6, start=2.0)
        assert all(s.is_hand_detected for s in states[:5])
        assert states[5] == NEUTRAL
        assert states[5].position == (0.0, 0.0)

    def test_buffers_cleared_on_reset(self):
        interp = unthrottled()
        feed(interp, [make_hand(ratio=1.8, pinch=True)] * 10)
        feed(interp, [None] * 6, start=2.0)

        s = interp.state
        assert len(s.positions) == 0
        assert len(s.ratios) == 0
        assert len(s.index_tips) == 0
        assert len(s.thumb_tips) == 0
        assert s.last_index_y is None
        assert not s.is_open

    def test_further_misses_are_idempotent(self):
        interp = unthrottled()
        feed(interp, [make_hand()] * 3)
        states = feed(interp, [None] * 9, start=1.0)
        assert states[5] == NEUTRAL
        assert all(s is NEUTRAL for s in states[5:])

    def test_brief_flicker_resumes_from_buffers(self):
        interp = unthrottled()
        feed(interp, [make_hand()] * 4)
        feed(interp, [None] * 3, start=1.0)
        assert len(interp.state.positions) == 4

        state = interp.interpret(make_hand(), now=2.0)
        assert state.is_hand_detected
        assert len(interp.state.positions) == 5
        assert interp.state.missed_frames == 0

    def test_miss_counter_resets_on_detection(self):
        interp = unthrottled()
        feed(interp, [make_hand()] * 2)
        feed(interp, [None] * 4, start=1.0)
        interp.interpret(make_hand(), now=2.0)
        # Four more misses after a detection must not reach the threshold
        states = feed(interp, [None] * 5, start=3.0)
        assert states[-1].is_hand_detected


class TestMalformedFrames:
    def test_non_finite_wrist_is_a_miss(self):
        interp = unthrottled()
        feed(interp, [make_hand()] * 3)
        bad = make_hand()
        bad.points[0] = [np.nan, 100.0]

        interp.interpret(bad, now=1.0)
        assert interp.state.missed_frames == 1
        assert len(interp.state.positions) == 3
        assert len(interp.state.ratios) == 3

    def test_short_frame_is_a_miss(self):
        interp = unthrottled()
        short = LandmarkFrame(np.zeros((5, 2)), 640.0, 480.0)
        state = interp.interpret(short, now=0.0)
        assert not state.is_hand_detected
        assert interp.total_misses == 1

    def test_inf_fingertip_is_a_miss(self):
        interp = unthrottled()
        bad = make_hand()
        bad.points[12] = [np.inf, np.inf]
        interp.interpret(bad, now=0.0)
        assert interp.state.missed_frames == 1
        assert len(interp.state.ratios) == 0


class TestThrottle:
    def test_calls_within_interval_are_noops(self):
        interp = GestureInterpreter()  # 100ms throttle
        first = interp.interpret(make_hand(wrist=(160.0, 120.0)), now=10.0)
        second = interp.interpret(make_hand(wrist=(480.0, 360.0)), now=10.05)

        assert second is first
        assert interp.total_frames == 1
        assert len(interp.state.positions) == 1

    def test_call_after_interval_is_accepted(self):
        interp = GestureInterpreter()
        interp.interpret(make_hand(), now=10.0)
        interp.interpret(make_hand(), now=10.1)
        assert interp.total_frames == 2

    def test_throttled_misses_do_not_count(self):
        interp = GestureInterpreter()
        interp.interpret(make_hand(), now=0.0)
        for i in range(20):
            interp.interpret(None, now=0.01 + i * 0.001)
        assert interp.state.missed_frames == 0
        assert interp.current.is_hand_detected


class TestInferenceFailures:
    def test_exception_counts_as_miss(self):
        interp = unthrottled()
        feed(interp, [make_hand()] * 3)
        source = FailingSource()

        state = interp.process(source, np.zeros((480, 640, 3), dtype=np.uint8), now=1.0)
        assert source.calls == 1
        assert state.is_hand_detected  # one miss is not enough to drop the hand
        assert interp.state.missed_frames == 1
        assert interp.total_failures == 1
        assert len(interp.state.positions) == 3

    def test_repeated_failures_reach_neutral(self):
        interp = unthrottled()
        feed(interp, [make_hand()] * 3)
        source = FailingSource()
        image = np.zeros((4, 4, 3), dtype=np.uint8)
        for i in range(6):
            state = interp.process(source, image, now=1.0 + i)
        assert state == NEUTRAL

    def test_multiple_detections_reduced_to_first(self):
        interp = unthrottled()
        source = StaticSource([make_hand(wrist=(160.0, 120.0)), make_hand(wrist=(480.0, 360.0))])
        state = interp.process(source, np.zeros((4, 4, 3), dtype=np.uint8), now=0.0)
        assert state.position == pytest.approx((0.5, 0.5))

    def test_empty_detection_list_is_miss(self):
        interp = unthrottled()
        interp.process(StaticSource([]), np.zeros((4, 4, 3), dtype=np.uint8), now=0.0)
        assert interp.total_misses == 1


class TestLabel:
    def test_labels(self):
        assert gesture_label(NEUTRAL) == "NO HAND"
        assert gesture_label(GestureState(is_hand_detected=True, is_open=True)) == "OPEN"
        assert gesture_label(GestureState(is_hand_detected=True)) == "CLOSED"
        assert gesture_label(GestureState(is_hand_detected=True, is_pinching=True)) == "PINCH"
        assert gesture_label(GestureState(
            is_hand_detected=True, is_open=True, is_pinching=True, is_pulling=True,
        )) == "PULL"

    def test_to_dict(self):
        data = GestureState(is_hand_detected=True, position=(0.25, -0.5), index_finger=(0.1, 0.2)).to_dict()
        assert data["position"] == {"x": 0.25, "y": -0.5}
        assert data["index_finger"] == {"x": 0.1, "y": 0.2}
        assert NEUTRAL.to_dict()["index_finger"] is None
