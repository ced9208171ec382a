"""Hand landmark frames and the MediaPipe-backed landmark source."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np

try:
    import mediapipe as mp
except ImportError:
    mp = None


# MediaPipe / handpose landmark indices
WRIST = 0
THUMB_CMC, THUMB_MCP, THUMB_IP, THUMB_TIP = 1, 2, 3, 4
INDEX_MCP, INDEX_PIP, INDEX_DIP, INDEX_TIP = 5, 6, 7, 8
MIDDLE_MCP, MIDDLE_PIP, MIDDLE_DIP, MIDDLE_TIP = 9, 10, 11, 12
RING_MCP, RING_PIP, RING_DIP, RING_TIP = 13, 14, 15, 16
PINKY_MCP, PINKY_PIP, PINKY_DIP, PINKY_TIP = 17, 18, 19, 20

NUM_LANDMARKS = 21

# Openness uses the four non-thumb fingers
FINGER_TIPS = (INDEX_TIP, MIDDLE_TIP, RING_TIP, PINKY_TIP)
FINGER_BASES = (INDEX_MCP, MIDDLE_MCP, RING_MCP, PINKY_MCP)

# Fingers that must stay extended during a pinch
PINCH_SUPPORT_TIPS = (MIDDLE_TIP, RING_TIP, PINKY_TIP)
PINCH_SUPPORT_BASES = (MIDDLE_MCP, RING_MCP, PINKY_MCP)

REFERENCED = (WRIST, THUMB_TIP) + FINGER_TIPS + FINGER_BASES


@dataclass(frozen=True)
class LandmarkFrame:
    """One detected hand in image space.

    ``points`` has shape (21, 2) or (21, 3) in pixel coordinates; only x/y are
    read. No hand is represented by ``None``, never by a zero-filled frame.
    """

    points: np.ndarray
    image_width: float
    image_height: float

    def point(self, index: int) -> np.ndarray:
        return self.points[index, :2]

    def is_valid(self) -> bool:
        """True when every landmark the interpreter reads is present and finite."""
        if self.points.ndim != 2 or self.points.shape[0] < NUM_LANDMARKS:
            return False
        if not (np.isfinite(self.image_width) and np.isfinite(self.image_height)):
            return False
        if self.image_width <= 0 or self.image_height <= 0:
            return False
        return bool(np.all(np.isfinite(self.points[list(REFERENCED), :2])))

    def normalized(self, index: int) -> tuple[float, float]:
        """Landmark mapped to [-1, 1] and mirrored on both axes."""
        px, py = self.point(index)
        x = -1.0 * ((px / self.image_width) * 2.0 - 1.0)
        y = -1.0 * ((py / self.image_height) * 2.0 - 1.0)
        return float(x), float(y)

    def distance(self, a: int, b: int) -> float:
        return float(np.linalg.norm(self.point(a) - self.point(b)))

    @classmethod
    def from_list(
        cls, points: list, image_width: float, image_height: float
    ) -> LandmarkFrame:
        return cls(
            points=np.asarray(points, dtype=np.float64),
            image_width=float(image_width),
            image_height=float(image_height),
        )

    def to_dict(self) -> dict:
        return {
            "points": self.points.tolist(),
            "image_width": self.image_width,
            "image_height": self.image_height,
        }


class LandmarkSource(Protocol):
    """Anything that turns an image into zero or more hand detections."""

    def estimate(self, image: np.ndarray) -> list[LandmarkFrame]:
        ...


class HandDetector:
    """Landmark source backed by MediaPipe Hands.

    MediaPipe reports coordinates normalized to [0, 1]; they are scaled back to
    pixels so downstream code sees the same image-space contract as any other
    hand-pose model.
    """

    def __init__(
        self,
        max_hands: int = 1,
        min_detection_confidence: float = 0.7,
        min_tracking_confidence: float = 0.5,
        static_image_mode: bool = False,
    ):
        if mp is None:
            raise ImportError(
                "mediapipe is required. Install with: pip install mediapipe"
            )

        self.max_hands = max_hands
        self._hands = mp.solutions.hands.Hands(
            static_image_mode=static_image_mode,
            max_num_hands=max_hands,
            min_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
        )

    def estimate(self, image: np.ndarray) -> list[LandmarkFrame]:
        """Detect hands in an RGB image (H, W, 3), uint8.

        Returns:
            List of LandmarkFrame in pixel coordinates. Empty if no hands.
        """
        height, width = image.shape[:2]
        results = self._hands.process(image)

        if not results.multi_hand_landmarks:
            return []

        frames = []
        for hand_landmarks in results.multi_hand_landmarks:
            points = np.array(
                [[lm.x * width, lm.y * height] for lm in hand_landmarks.landmark],
                dtype=np.float64,
            )
            frames.append(LandmarkFrame(points, float(width), float(height)))

        return frames

    def close(self):
        """Release MediaPipe resources."""
        self._hands.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def first_detection(detections: Optional[list[LandmarkFrame]]) -> Optional[LandmarkFrame]:
    """Reduce a detection list to the single hand the interpreter tracks."""
    if not detections:
        return None
    return detections[0]
