"""Inference cadence and snapshot publication.

The render tick and hand inference run on independent clocks. Inference runs
on a background thread at a throttled cadence and publishes each new
GestureState by swapping a single reference; the render side only ever reads
the latest snapshot and never waits on inference.

Usage:
    gestures = Latest(NEUTRAL)
    with InferenceLoop(detector, interpreter, camera.read, gestures):
        while running:
            state = pipeline.tick(dt, events)   # reads gestures.get()
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Generic, Optional, TypeVar

import numpy as np

try:
    import cv2
except ImportError:
    cv2 = None

from handorbit.gestures import GestureInterpreter, GestureState
from handorbit.landmarks import LandmarkSource

logger = logging.getLogger("handorbit.scheduler")

T = TypeVar("T")


class Latest(Generic[T]):
    """Single-writer, multi-reader cell holding the most recent snapshot.

    Values must be immutable; publishing replaces the whole reference, so a
    reader sees either the old snapshot or the new one, never a mix.
    """

    def __init__(self, initial: T):
        self._value = initial
        self._version = 0

    def publish(self, value: T):
        self._value = value
        self._version += 1

    def get(self) -> T:
        return self._value

    @property
    def version(self) -> int:
        return self._version


class CancellationToken:
    """Cooperative stop signal shared between a loop and its owner."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout``; returns True early if cancelled."""
        return self._event.wait(timeout)


FrameProvider = Callable[[], Optional[np.ndarray]]


class InferenceLoop:
    """Runs ``interpreter.process`` at a fixed cadence on a background thread.

    Each iteration grabs whatever frame is current, so frames that arrive
    while inference is busy are skipped rather than queued. ``stop()`` cancels
    the token and joins the thread; nothing is left scheduled afterwards.
    """

    def __init__(
        self,
        source: LandmarkSource,
        interpreter: GestureInterpreter,
        frames: FrameProvider,
        output: Latest[GestureState],
        interval: Optional[float] = None,
        on_iteration: Optional[Callable[[float, GestureState], None]] = None,
    ):
        self.source = source
        self.interpreter = interpreter
        self.frames = frames
        self.output = output
        self.interval = interval if interval is not None else interpreter.config.throttle_interval
        self.on_iteration = on_iteration
        self._token: Optional[CancellationToken] = None
        self._thread: Optional[threading.Thread] = None
        self.iterations = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> CancellationToken:
        if self.running:
            return self._token
        self._token = CancellationToken()
        self._thread = threading.Thread(
            target=self._run, args=(self._token,), name="handorbit-inference", daemon=True
        )
        self._thread.start()
        logger.info("Inference loop started (interval=%.3fs)", self.interval)
        return self._token

    def stop(self, timeout: float = 2.0):
        if self._token is not None:
            self._token.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Inference thread did not stop within %.1fs", timeout)
        self._thread = None
        logger.info("Inference loop stopped after %d iterations", self.iterations)

    def run_once(self, now: Optional[float] = None) -> GestureState:
        """Grab one frame, interpret it and publish the result."""
        t0 = time.perf_counter()
        frame = self.frames()
        if frame is None:
            state = self.interpreter.interpret(None, now)
        else:
            state = self.interpreter.process(self.source, frame, now)
        self.output.publish(state)
        self.iterations += 1
        if self.on_iteration:
            self.on_iteration(time.perf_counter() - t0, state)
        return state

    def _run(self, token: CancellationToken):
        while not token.cancelled:
            started = time.monotonic()
            try:
                self.run_once(started)
            except Exception:
                logger.exception("Inference iteration failed")
            remaining = self.interval - (time.monotonic() - started)
            if remaining > 0:
                token.wait(remaining)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *args):
        self.stop()


class CameraSource:
    """OpenCV camera returning RGB frames, or ``None`` when a read fails."""

    def __init__(self, camera_index: int = 0):
        if cv2 is None:
            raise ImportError("opencv-python is required. Install with: pip install opencv-python")
        self.camera_index = camera_index
        self._capture = cv2.VideoCapture(camera_index)

    @property
    def is_open(self) -> bool:
        return bool(self._capture is not None and self._capture.isOpened())

    def read(self) -> Optional[np.ndarray]:
        if not self.is_open:
            return None
        ret, frame = self._capture.read()
        if not ret:
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def close(self):
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
