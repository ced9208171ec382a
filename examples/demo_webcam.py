#!/usr/bin/env python3
"""Live webcam demo: steer a wireframe cube with your hand or the mouse.

Usage:
    python examples/demo_webcam.py [--camera 0]

Open hand / fist / pinch labels are drawn top-left. Drag with the left mouse
button to spin the cube, scroll to zoom.
"""

import argparse
import math
import sys
import time

import cv2
import numpy as np

from handorbit import ControlPipeline, Latest, OrientationState
from handorbit.controller import look_at_matrix
from handorbit.inputs import PointerEvent, PointerKind, WheelEvent
from handorbit.scheduler import CameraSource

FOV = math.radians(45)
CUBE = np.array(
    [[x, y, z] for x in (-4, 4) for y in (-4, 4) for z in (-4, 4)], dtype=np.float64
)
EDGES = [(a, b) for a in range(8) for b in range(a + 1, 8) if bin(a ^ b).count("1") == 1]


def project(state: OrientationState, width: int, height: int) -> np.ndarray:
    """Screen coordinates of the cube's corners."""
    c, s = math.cos(state.rotation_y), math.sin(state.rotation_y)
    model = np.array([[c, 0, s], [0, 1, 0], [-s, 0, c]])
    world = CUBE @ model.T

    view = look_at_matrix(state.camera_position)
    homo = np.hstack([world, np.ones((len(world), 1))]) @ view.T
    depth = np.maximum(-homo[:, 2], 1e-3)

    focal = (height / 2) / math.tan(FOV / 2)
    xs = width / 2 + homo[:, 0] * focal / depth
    ys = height / 2 - homo[:, 1] * focal / depth
    return np.stack([xs, ys], axis=1).astype(int)


def draw_overlay(frame, state: OrientationState, label: str):
    points = project(state, frame.shape[1], frame.shape[0])
    for a, b in EDGES:
        cv2.line(frame, tuple(points[a]), tuple(points[b]), (0, 255, 255), 2)

    cv2.putText(
        frame,
        f"{label} | {state.control_mode.value} | zoom {state.zoom_level:.1f}",
        (10, 30),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.7,
        (0, 255, 0),
        2,
    )
    return frame


def main():
    parser = argparse.ArgumentParser(description="handorbit webcam demo")
    parser.add_argument("--camera", type=int, default=0, help="Camera index")
    args = parser.parse_args()

    camera = CameraSource(args.camera)
    if not camera.is_open:
        print(f"Error: Cannot open camera {args.camera}")
        sys.exit(1)

    pending = []

    def on_mouse(event, x, y, flags, param):
        if event == cv2.EVENT_LBUTTONDOWN:
            pending.append(PointerEvent(PointerKind.DOWN, x, y))
        elif event == cv2.EVENT_MOUSEMOVE:
            pending.append(PointerEvent(PointerKind.MOVE, x, y))
        elif event == cv2.EVENT_LBUTTONUP:
            pending.append(PointerEvent(PointerKind.UP, x, y))
        elif event == cv2.EVENT_MOUSEWHEEL:
            pending.append(WheelEvent(-cv2.getMouseWheelDelta(flags)))

    cv2.namedWindow("handorbit")
    cv2.setMouseCallback("handorbit", on_mouse)

    print("Starting handorbit...")
    print("Press 'q' to quit\n")

    latest_frame = Latest(None)
    with ControlPipeline() as pipeline:
        pipeline.on_gesture(lambda g: print(f"  🤚 {pipeline.label}"))
        pipeline.start_inference(latest_frame.get)

        last = time.monotonic()
        while True:
            frame_rgb = camera.read()
            if frame_rgb is None:
                break
            latest_frame.publish(frame_rgb)

            if not pipeline.aggregator.config.viewport_width:
                pipeline.aggregator.set_viewport(frame_rgb.shape[1], frame_rgb.shape[0])

            now = time.monotonic()
            events, pending[:] = list(pending), []
            state = pipeline.tick(now - last, events)
            last = now

            frame = cv2.cvtColor(frame_rgb, cv2.COLOR_RGB2BGR)
            cv2.imshow("handorbit", draw_overlay(frame, state, pipeline.label))
            if cv2.waitKey(1) & 0xFF == ord("q"):
                break

        stats = pipeline.stats

    camera.close()
    cv2.destroyAllWindows()

    print(f"\nTicks: {stats.ticks}, inference results: {stats.inference_frames}")
    for name, s in stats.profiler_summary.items():
        print(f"  {name:12s} avg={s['avg_ms']:.2f}ms  p95={s['p95_ms']:.2f}ms")


if __name__ == "__main__":
    main()
