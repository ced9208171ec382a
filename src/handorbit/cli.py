"""handorbit CLI — the main entry point for all operations.

Usage:
    handorbit serve       — Start the WebSocket bridge
    handorbit record      — Record hand landmarks from the camera
    handorbit replay      — Replay a recorded session through the pipeline
    handorbit benchmark   — Time the interpreter and controller
    handorbit config      — Write the default configuration to YAML
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

try:
    import typer
except ImportError:
    raise ImportError("typer is required for CLI. Install with: pip install typer")

from handorbit.config import ConfigError, HandorbitConfig, load_config, save_config
from handorbit.landmarks import first_detection

logger = logging.getLogger("handorbit.cli")

app = typer.Typer(
    name="handorbit",
    help="Hand and pointer driven orbit control for 3D viewers.",
    add_completion=False,
)


def _setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )


def _load(config_path: Optional[str]) -> HandorbitConfig:
    if not config_path:
        return HandorbitConfig()
    try:
        return load_config(config_path)
    except (OSError, ConfigError) as e:
        typer.echo(f"❌ Invalid config {config_path}: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address (overrides config)"),
    port: Optional[int] = typer.Option(None, help="Port (overrides config)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    camera: Optional[int] = typer.Option(None, help="Camera device index"),
    no_camera: bool = typer.Option(False, "--no-camera", help="Pointer and touch control only"),
    log_level: str = typer.Option("info", help="Log level"),
):
    """Start the WebSocket bridge for a browser rendering host."""
    import uvicorn
    from handorbit.server import app as fastapi_app, state

    _setup_logging(log_level)
    cfg = _load(config)
    if host is not None:
        cfg.server.host = host
    if port is not None:
        cfg.server.port = port
    if camera is not None:
        cfg.server.camera_index = camera
    if no_camera:
        cfg.server.enable_camera = False
    state.config = cfg.validate()

    typer.echo(f"🚀 Starting handorbit bridge on {cfg.server.host}:{cfg.server.port}")
    uvicorn.run(fastapi_app, host=cfg.server.host, port=cfg.server.port, log_level=log_level)


def _detect(detector, image):
    """First hand in ``image``, or None when there is no frame, no hand or inference fails."""
    if image is None:
        return None
    try:
        return first_detection(detector.estimate(image))
    except Exception as e:
        logger.debug("Inference failed: %s", e)
        return None


@app.command()
def record(
    output: str = typer.Option("session.json", "-o", help="Output file path"),
    duration: float = typer.Option(0, help="Recording duration in seconds (0 = until Ctrl+C)"),
    compact: bool = typer.Option(False, help="Save in compact .npz format"),
    camera: int = typer.Option(0, help="Camera device index"),
):
    """Record hand landmarks from the camera at the inference cadence."""
    from handorbit.gestures import GestureInterpreter, gesture_label
    from handorbit.landmarks import HandDetector
    from handorbit.recorder import LandmarkRecorder
    from handorbit.scheduler import CameraSource

    source = CameraSource(camera)
    if not source.is_open:
        typer.echo(f"❌ Could not open camera {camera}", err=True)
        raise typer.Exit(1)

    detector = HandDetector(max_hands=1)
    interpreter = GestureInterpreter()
    recorder = LandmarkRecorder()

    typer.echo(f"🎥 Recording from camera {camera}...")
    typer.echo("   Press Ctrl+C to stop")
    recorder.start()
    start = time.monotonic()
    interval = interpreter.config.throttle_interval

    try:
        while True:
            t0 = time.monotonic()
            image = source.read()
            hand = _detect(detector, image)
            recorder.add_frame(hand)
            state = interpreter.interpret(hand, t0)

            typer.echo(f"\r   Frames: {recorder.frame_count} | {gesture_label(state):8s}", nl=False)

            if duration > 0 and (time.monotonic() - start) >= duration:
                break
            time.sleep(max(0.0, interval - (time.monotonic() - t0)))
    except KeyboardInterrupt:
        pass
    finally:
        recorder.stop()
        source.close()
        detector.close()

    typer.echo(f"\n\n📼 Recorded {recorder.frame_count} frames ({recorder.duration:.1f}s)")
    if compact:
        output = str(recorder.save_compact(output))
    else:
        recorder.save(output)
    typer.echo(f"💾 Saved to: {output}")


@app.command()
def replay(
    recording: str = typer.Argument(..., help="Path to recording file"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    fps: float = typer.Option(60.0, help="Simulated render rate"),
    realtime: bool = typer.Option(False, help="Play at original timing"),
):
    """Replay a recorded session through the interpreter and controller."""
    from handorbit.pipeline import ControlPipeline
    from handorbit.recorder import LandmarkPlayer

    path = Path(recording)
    if not path.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    player = LandmarkPlayer.load(path)
    typer.echo(f"▶️  Replaying {path.name} ({player.frame_count} frames, {player.duration:.1f}s)")

    pipeline = ControlPipeline(_load(config), enable_profiling=False)
    pipeline.on_gesture(lambda g: typer.echo(f"   🤚 {pipeline.label}"))

    dt = 1.0 / fps
    clock = 0.0
    frames = player.play_realtime() if realtime else player.play()
    for frame in frames:
        pipeline.feed_landmarks(frame.hand, now=frame.timestamp)
        # Render ticks between inference results
        while clock < frame.timestamp:
            pipeline.tick(dt)
            clock += dt

    final = pipeline.orientation.get()
    typer.echo(f"\n✅ Replay complete. {pipeline.stats.ticks} ticks")
    typer.echo(f"   rotation_y={final.rotation_y:.3f} zoom={final.zoom_level:.1f} mode={final.control_mode.value}")


@app.command()
def benchmark(
    iterations: int = typer.Option(1000, help="Number of iterations"),
):
    """Time the interpreter and controller on synthetic landmarks."""
    import numpy as np
    from handorbit.landmarks import LandmarkFrame
    from handorbit.pipeline import ControlPipeline

    typer.echo(f"⚡ Running benchmark: {iterations} iterations")

    cfg = HandorbitConfig()
    cfg.interpreter.throttle_interval = 0.0
    pipeline = ControlPipeline(cfg)

    rng = np.random.default_rng(42)
    frames = [
        LandmarkFrame(rng.random((21, 2)) * [640, 480], 640.0, 480.0)
        for _ in range(16)
    ]

    for i in range(iterations):
        pipeline.feed_landmarks(frames[i % len(frames)], now=float(i))
        pipeline.tick(1 / 60)

    typer.echo("\n📈 Stage breakdown:")
    for name, stats in pipeline.profiler.summary().items():
        typer.echo(f"   {name:12s} avg={stats['avg_ms']:.3f}ms  p95={stats['p95_ms']:.3f}ms")


@app.command("config")
def write_config(
    output: str = typer.Argument("handorbit.yml", help="Where to write the defaults"),
):
    """Write the default configuration to a YAML file."""
    save_config(HandorbitConfig(), output)
    typer.echo(f"💾 Default config written to {output}")


def main():
    app()


if __name__ == "__main__":
    main()
