"""Tests for Prometheus metrics."""

import pytest

from handorbit.controller import ControlMode
from handorbit.metrics import MetricsCollector


class TestMetricsCollector:
    def test_record_inference(self):
        m = MetricsCollector()
        m.record_inference(0.02, "OPEN", missed=False)
        m.record_inference(0.02, "OPEN", missed=False)
        m.record_inference(0.01, "NO HAND", missed=True)
        assert m.label_counts == {"OPEN": 2, "NO HAND": 1}

        output = m.render()
        assert "handorbit_inference_total 3" in output
        assert "handorbit_inference_misses_total 1" in output

    def test_hand_detection_rate_ema(self):
        m = MetricsCollector()
        for _ in range(200):
            m.record_inference(0.01, "OPEN", missed=False)
        assert m.hand_detection_rate == pytest.approx(1.0, abs=1e-3)

        for _ in range(200):
            m.record_inference(0.01, "NO HAND", missed=True)
        assert m.hand_detection_rate == pytest.approx(0.0, abs=1e-3)

    def test_render_prometheus_format(self):
        m = MetricsCollector()
        m.record_inference(0.005, "PINCH", missed=False)
        m.record_tick(0.0002, ControlMode.HAND_GRAB)
        m.set_failures(4)
        m.set_connections(3)

        output = m.render()
        assert 'handorbit_gesture_labels_total{label="PINCH"} 1' in output
        assert 'handorbit_control_mode{mode="hand_grab"} 1' in output
        assert 'handorbit_control_mode{mode="idle"} 0' in output
        assert "handorbit_inference_failures_total 4" in output
        assert "handorbit_ticks_total 1" in output
        assert "handorbit_active_connections 3" in output
        assert "# HELP" in output
        assert "# TYPE" in output

    def test_histogram_buckets_cumulative(self):
        m = MetricsCollector()
        for _ in range(10):
            m.record_inference(0.003, "OPEN", missed=False)
        m.record_inference(0.2, "OPEN", missed=False)

        output = m.render()
        assert 'handorbit_inference_latency_seconds_bucket{le="0.005"} 10' in output
        assert 'handorbit_inference_latency_seconds_bucket{le="0.25"} 11' in output
        assert 'handorbit_inference_latency_seconds_bucket{le="+Inf"} 11' in output
        assert "handorbit_inference_latency_seconds_count 11" in output

    def test_value_past_last_bucket(self):
        m = MetricsCollector()
        m.record_tick(1.0, ControlMode.IDLE)
        output = m.render()
        assert 'handorbit_tick_latency_seconds_bucket{le="0.01"} 0' in output
        assert 'handorbit_tick_latency_seconds_bucket{le="+Inf"} 1' in output
