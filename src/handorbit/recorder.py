"""Landmark session recording and replay.

Recorded sessions let the interpreter and controller be exercised without a
camera: in CI, for tuning constants offline, or for deterministic demos.
Frames where no hand was detected are stored as ``null`` so replay sees the
same miss pattern the live run did.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from handorbit.landmarks import NUM_LANDMARKS, LandmarkFrame


@dataclass
class RecordedFrame:
    """One inference result in a recording."""
    timestamp: float  # seconds from recording start
    hand: Optional[LandmarkFrame]


class LandmarkRecorder:
    """Collects inference results and writes them to disk.

    Usage:
        recorder = LandmarkRecorder()
        recorder.start()
        # In the inference loop:
        recorder.add_frame(first_detection(detector.estimate(frame)))
        recorder.save("session.json")
    """

    def __init__(self):
        self._frames: list[RecordedFrame] = []
        self._start_time: Optional[float] = None
        self._recording = False

    def start(self):
        self._frames = []
        self._start_time = time.monotonic()
        self._recording = True

    def stop(self) -> int:
        """Stop recording. Returns number of frames captured."""
        self._recording = False
        return len(self._frames)

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    def add_frame(self, hand: Optional[LandmarkFrame], timestamp: Optional[float] = None):
        """Append one result. ``timestamp`` defaults to time since ``start()``."""
        if not self._recording:
            return
        if timestamp is None:
            timestamp = time.monotonic() - self._start_time
        self._frames.append(RecordedFrame(timestamp=timestamp, hand=hand))

    def save(self, path: str | Path):
        """Save recording as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": 1,
            "frame_count": len(self._frames),
            "duration": self.duration,
            "frames": [
                {
                    "timestamp": f.timestamp,
                    "hand": f.hand.to_dict() if f.hand is not None else None,
                }
                for f in self._frames
            ],
        }

        with open(path, "w") as f:
            json.dump(data, f)

    def save_compact(self, path: str | Path) -> Path:
        """Save as compressed npz; absent hands are flagged in ``present``."""
        path = Path(path).with_suffix(".npz")
        path.parent.mkdir(parents=True, exist_ok=True)

        n = len(self._frames)
        points = np.zeros((n, NUM_LANDMARKS, 2), dtype=np.float32)
        sizes = np.zeros((n, 2), dtype=np.float32)
        present = np.zeros(n, dtype=bool)
        for i, f in enumerate(self._frames):
            if f.hand is None:
                continue
            points[i] = f.hand.points[:NUM_LANDMARKS, :2]
            sizes[i] = (f.hand.image_width, f.hand.image_height)
            present[i] = True

        np.savez_compressed(
            path,
            timestamps=np.array([f.timestamp for f in self._frames], dtype=np.float64),
            points=points,
            sizes=sizes,
            present=present,
        )
        return path


class LandmarkPlayer:
    """Replays a recorded session.

    Usage:
        player = LandmarkPlayer.load("session.json")
        for frame in player.play():
            interpreter.interpret(frame.hand, now=frame.timestamp)
    """

    def __init__(self, frames: list[RecordedFrame]):
        self._frames = frames

    @classmethod
    def load(cls, path: str | Path) -> LandmarkPlayer:
        path = Path(path)

        if path.suffix == ".npz":
            return cls._load_compact(path)

        with open(path) as f:
            data = json.load(f)

        frames = []
        for entry in data["frames"]:
            hand = entry.get("hand")
            frames.append(RecordedFrame(
                timestamp=entry["timestamp"],
                hand=LandmarkFrame.from_list(
                    hand["points"], hand["image_width"], hand["image_height"]
                ) if hand else None,
            ))
        return cls(frames)

    @classmethod
    def _load_compact(cls, path: Path) -> LandmarkPlayer:
        data = np.load(path, allow_pickle=False)
        frames = []
        for i, ts in enumerate(data["timestamps"]):
            hand = None
            if data["present"][i]:
                width, height = data["sizes"][i]
                hand = LandmarkFrame(
                    points=data["points"][i].astype(np.float64),
                    image_width=float(width),
                    image_height=float(height),
                )
            frames.append(RecordedFrame(timestamp=float(ts), hand=hand))
        return cls(frames)

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    def play(self) -> Iterator[RecordedFrame]:
        """Iterate through all frames instantly (no timing)."""
        yield from self._frames

    def play_realtime(self, speed: float = 1.0) -> Iterator[RecordedFrame]:
        """Replay at original timing, scaled by ``speed``."""
        start = time.monotonic()
        for frame in self._frames:
            target_time = frame.timestamp / speed
            elapsed = time.monotonic() - start
            if target_time > elapsed:
                time.sleep(target_time - elapsed)
            yield frame
