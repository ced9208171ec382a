"""End-to-end control pipeline: landmarks → gesture → input target → orientation.

Wires the interpreter, aggregator and controller together with snapshot
publication, profiling and metrics. Inference can run on its own thread
(``start_inference``) or be driven synchronously (``process_frame`` /
``feed_landmarks``); either way ``tick`` only reads the latest snapshot.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

import numpy as np

from handorbit.config import HandorbitConfig
from handorbit.controller import OrientationController, OrientationState
from handorbit.gestures import NEUTRAL, GestureInterpreter, GestureState, gesture_label
from handorbit.inputs import DeviceEvent, InputAggregator, InputTarget
from handorbit.landmarks import HandDetector, LandmarkFrame, LandmarkSource
from handorbit.metrics import MetricsCollector
from handorbit.profiler import PipelineProfiler
from handorbit.scheduler import FrameProvider, InferenceLoop, Latest

logger = logging.getLogger("handorbit.pipeline")


@dataclass
class PipelineStats:
    """Runtime statistics."""
    ticks: int
    inference_frames: int
    inference_misses: int
    inference_failures: int
    rejected_ticks: int
    hand_detection_rate: float
    label: str
    profiler_summary: dict = field(default_factory=dict)


class _ProfiledSource:
    """Times each ``estimate`` call under the profiler's inference stage."""

    def __init__(self, source: LandmarkSource, profiler: PipelineProfiler):
        self._source = source
        self._profiler = profiler

    def estimate(self, image: np.ndarray) -> list[LandmarkFrame]:
        with self._profiler.stage("inference"):
            return self._source.estimate(image)


class ControlPipeline:
    """Owns one interpreter, aggregator and controller.

    Usage:
        with ControlPipeline() as pipeline:
            pipeline.start_inference(camera.read)
            while running:
                state = pipeline.tick(dt, events)
    """

    def __init__(
        self,
        config: Optional[HandorbitConfig] = None,
        detector: Optional[LandmarkSource] = None,
        metrics: Optional[MetricsCollector] = None,
        enable_profiling: bool = True,
    ):
        self.config = (config or HandorbitConfig()).validate()
        self._detector = detector
        self.interpreter = GestureInterpreter(self.config.interpreter)
        self.aggregator = InputAggregator(self.config.aggregator)
        self.controller = OrientationController(self.config.controller)

        self.gestures: Latest[GestureState] = Latest(NEUTRAL)
        self.orientation: Latest[OrientationState] = Latest(self.controller.current)
        self.last_target = InputTarget()

        self.profiler = PipelineProfiler()
        self.profiler.enabled = enable_profiling
        self.metrics = metrics or MetricsCollector()

        self._callbacks: list[Callable[[GestureState], None]] = []
        self._loop: Optional[InferenceLoop] = None
        self._frames: Optional[FrameProvider] = None
        self._seen = (0, 0)  # interpreter (frames, misses) at last loop iteration
        self._last_published: GestureState = NEUTRAL

    @property
    def detector(self) -> LandmarkSource:
        if self._detector is None:
            self._detector = HandDetector(max_hands=1)
        return self._detector

    def on_gesture(self, callback: Callable[[GestureState], None]):
        """Register a callback fired whenever the published GestureState changes."""
        self._callbacks.append(callback)

    # --- Inference side ---

    def _publish(self, state: GestureState, latency: float, missed: bool):
        previous = self.gestures.get()
        self.gestures.publish(state)
        self._last_published = state
        self.metrics.record_inference(latency, gesture_label(state), missed)
        self.metrics.set_failures(self.interpreter.total_failures)
        if state != previous:
            for cb in self._callbacks:
                cb(state)

    def _run_interpreter(self, call: Callable[[], GestureState]) -> GestureState:
        t0 = time.perf_counter()
        frames = self.interpreter.total_frames
        misses = self.interpreter.total_misses
        with self.profiler.stage("interpret"):
            state = call()
        # Throttled calls leave the counters alone and publish nothing
        if self.interpreter.total_frames != frames:
            self._publish(state, time.perf_counter() - t0, self.interpreter.total_misses != misses)
        return state

    def process_frame(self, frame_rgb: np.ndarray, now: Optional[float] = None) -> GestureState:
        """Run inference on one RGB frame (throttled) and publish the result."""
        source = _ProfiledSource(self.detector, self.profiler)
        return self._run_interpreter(lambda: self.interpreter.process(source, frame_rgb, now))

    def feed_landmarks(
        self, frame: Optional[LandmarkFrame], now: Optional[float] = None
    ) -> GestureState:
        """Fold in a detection that was produced elsewhere (e.g. a recording)."""
        return self._run_interpreter(lambda: self.interpreter.interpret(frame, now))

    def start_inference(self, frames: FrameProvider) -> InferenceLoop:
        """Start the background inference loop pulling images from ``frames``."""
        if self._loop is not None and self._loop.running:
            return self._loop

        self._frames = frames
        self._seen = (self.interpreter.total_frames, self.interpreter.total_misses)
        self._last_published = self.gestures.get()
        self._loop = InferenceLoop(
            source=_ProfiledSource(self.detector, self.profiler),
            interpreter=self.interpreter,
            frames=frames,
            output=self.gestures,
            on_iteration=self._on_loop_iteration,
        )
        self._loop.start()
        return self._loop

    def _on_loop_iteration(self, latency: float, state: GestureState):
        # The loop has already published; only account for accepted results
        frames, misses = self._seen
        self._seen = (self.interpreter.total_frames, self.interpreter.total_misses)
        if self.interpreter.total_frames == frames:
            return

        self.metrics.record_inference(
            latency, gesture_label(state), self.interpreter.total_misses != misses
        )
        self.metrics.set_failures(self.interpreter.total_failures)
        if state != self._last_published:
            self._last_published = state
            for cb in self._callbacks:
                cb(state)

    def stop_inference(self):
        if self._loop is not None:
            self._loop.stop()
            self._loop = None

    @property
    def inference_running(self) -> bool:
        return self._loop is not None and self._loop.running

    # --- Render side ---

    def tick(self, dt: float, events: Iterable[DeviceEvent] = ()) -> OrientationState:
        """Advance the controller by one render frame using the latest gesture snapshot."""
        t0 = time.perf_counter()
        with self.profiler.stage("aggregate"):
            target = self.aggregator.aggregate(events, self.gestures.get())
        with self.profiler.stage("integrate"):
            state = self.controller.tick(target, dt)
        self.last_target = target
        self.orientation.publish(state)
        self.metrics.record_tick(time.perf_counter() - t0, state.control_mode)
        return state

    @property
    def label(self) -> str:
        return gesture_label(self.gestures.get())

    @property
    def stats(self) -> PipelineStats:
        return PipelineStats(
            ticks=self.controller.total_ticks,
            inference_frames=self.interpreter.total_frames,
            inference_misses=self.interpreter.total_misses,
            inference_failures=self.interpreter.total_failures,
            rejected_ticks=self.controller.rejected_ticks,
            hand_detection_rate=self.metrics.hand_detection_rate,
            label=self.label,
            profiler_summary=self.profiler.summary(),
        )

    def reset(self):
        """Clear all state. A running inference loop is stopped first and restarted after."""
        restart = self._frames if self.inference_running else None
        self.stop_inference()
        self.interpreter.reset()
        self.aggregator.reset()
        self.controller.reset()
        self.gestures.publish(NEUTRAL)
        self._last_published = NEUTRAL
        self.orientation.publish(self.controller.current)
        self.profiler.reset()
        if restart is not None:
            self.start_inference(restart)

    def close(self):
        """Stop inference and release the detector."""
        self.stop_inference()
        close = getattr(self._detector, "close", None)
        if close is not None:
            close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
