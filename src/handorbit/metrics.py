"""Prometheus text-format metrics for the control pipeline.

Exposed by the server at /metrics:
- handorbit_inference_total (counter)
- handorbit_inference_misses_total (counter)
- handorbit_inference_failures_total (counter)
- handorbit_hand_detection_rate (gauge, EMA)
- handorbit_gesture_labels_total (counter, by label)
- handorbit_control_mode (gauge, 1 for the active mode)
- handorbit_inference_latency_seconds (histogram)
- handorbit_tick_latency_seconds (histogram)
- handorbit_ticks_total (counter)
- handorbit_active_connections (gauge)
"""

from __future__ import annotations

import threading
import time
from collections import Counter

from handorbit.controller import ControlMode


class _Histogram:
    """Cumulative-bucket histogram."""

    def __init__(self, buckets: list[float]):
        self.buckets = sorted(buckets)
        self.bucket_counts = [0] * len(self.buckets)
        self.count = 0
        self.sum = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float):
        with self._lock:
            self.count += 1
            self.sum += value
            for i, b in enumerate(self.buckets):
                if value <= b:
                    self.bucket_counts[i] += 1
                    break

    def render(self, name: str, help_text: str) -> list[str]:
        lines = [f"# HELP {name} {help_text}", f"# TYPE {name} histogram"]
        with self._lock:
            cumulative = 0
            for b, n in zip(self.buckets, self.bucket_counts):
                cumulative += n
                lines.append(f'{name}_bucket{{le="{b}"}} {cumulative}')
            lines.append(f'{name}_bucket{{le="+Inf"}} {self.count}')
            lines.append(f"{name}_sum {self.sum:.6f}")
            lines.append(f"{name}_count {self.count}")
        return lines


def _block(name: str, kind: str, help_text: str, samples: list[str]) -> list[str]:
    return [f"# HELP {name} {help_text}", f"# TYPE {name} {kind}", *samples]


class MetricsCollector:
    """Collects pipeline counters and renders them for Prometheus."""

    def __init__(self):
        self._lock = threading.Lock()
        self._inference_total = 0
        self._misses_total = 0
        self._failures_total = 0
        self._ticks_total = 0
        self._labels: Counter = Counter()
        self._mode = ControlMode.IDLE
        self._active_connections = 0
        self._hand_detection_rate = 0.0

        self._inference_latency = _Histogram([0.005, 0.010, 0.020, 0.033, 0.050, 0.100, 0.250])
        self._tick_latency = _Histogram([0.0001, 0.0005, 0.001, 0.002, 0.005, 0.010])
        self._start_time = time.time()

    def record_inference(self, latency_seconds: float, label: str, missed: bool):
        with self._lock:
            self._inference_total += 1
            if missed:
                self._misses_total += 1
            self._labels[label] += 1
            rate = 0.0 if missed else 1.0
            self._hand_detection_rate = 0.95 * self._hand_detection_rate + 0.05 * rate
        self._inference_latency.observe(latency_seconds)

    def set_failures(self, count: int):
        with self._lock:
            self._failures_total = count

    def record_tick(self, latency_seconds: float, mode: ControlMode):
        with self._lock:
            self._ticks_total += 1
            self._mode = mode
        self._tick_latency.observe(latency_seconds)

    def set_connections(self, count: int):
        self._active_connections = count

    @property
    def label_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._labels)

    @property
    def hand_detection_rate(self) -> float:
        return self._hand_detection_rate

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        with self._lock:
            uptime = time.time() - self._start_time
            sections = [
                _block("handorbit_uptime_seconds", "gauge", "Time since collector start",
                       [f"handorbit_uptime_seconds {uptime:.1f}"]),
                _block("handorbit_inference_total", "counter", "Inference results processed",
                       [f"handorbit_inference_total {self._inference_total}"]),
                _block("handorbit_inference_misses_total", "counter", "Inference results without a usable hand",
                       [f"handorbit_inference_misses_total {self._misses_total}"]),
                _block("handorbit_inference_failures_total", "counter", "Inference calls that raised",
                       [f"handorbit_inference_failures_total {self._failures_total}"]),
                _block("handorbit_hand_detection_rate", "gauge", "Exponential moving average of hand presence",
                       [f"handorbit_hand_detection_rate {self._hand_detection_rate:.4f}"]),
                _block("handorbit_gesture_labels_total", "counter", "Gesture labels by name",
                       [f'handorbit_gesture_labels_total{{label="{name}"}} {count}'
                        for name, count in sorted(self._labels.items())]),
                _block("handorbit_control_mode", "gauge", "Active control mode",
                       [f'handorbit_control_mode{{mode="{m.value}"}} {int(m == self._mode)}'
                        for m in ControlMode]),
                _block("handorbit_ticks_total", "counter", "Controller ticks",
                       [f"handorbit_ticks_total {self._ticks_total}"]),
                _block("handorbit_active_connections", "gauge", "Current WebSocket connections",
                       [f"handorbit_active_connections {self._active_connections}"]),
            ]

        sections.append(self._inference_latency.render(
            "handorbit_inference_latency_seconds", "Inference iteration latency in seconds"))
        sections.append(self._tick_latency.render(
            "handorbit_tick_latency_seconds", "Controller tick latency in seconds"))

        return "\n\n".join("\n".join(lines) for lines in sections) + "\n"
