"""WebSocket bridge between the control pipeline and a browser rendering host.

The browser forwards raw pointer / wheel / touch events over the socket and
draws whatever orientation state comes back. Hand inference runs on the
server's webcam; if no camera is available the bridge keeps serving
pointer-only control.

Protocol (JSON over /ws):
    client → server  {"type": "pointer", "kind": "down", "x": 10, "y": 20}
                     {"type": "wheel", "delta_y": 120}
                     {"type": "touch", "kind": "move", "touches": [[0, 0], [50, 0]]}
                     {"type": "viewport", "width": 1280, "height": 720}
                     {"type": "ping"}
    server → client  {"type": "state", "orientation": {...}, "gesture": {...}, "label": "OPEN"}

Usage:
    handorbit serve
    # or
    uvicorn handorbit.server:app --host 0.0.0.0 --port 8765
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Optional

try:
    from fastapi import FastAPI, WebSocket, WebSocketDisconnect
    from fastapi.responses import PlainTextResponse
    _HAS_FASTAPI = True
except ImportError:
    _HAS_FASTAPI = False

if not _HAS_FASTAPI:
    raise ImportError("FastAPI required. Install with: pip install fastapi uvicorn")

from handorbit import __version__
from handorbit.config import HandorbitConfig
from handorbit.inputs import DeviceEvent, event_from_dict
from handorbit.pipeline import ControlPipeline
from handorbit.scheduler import CameraSource

logger = logging.getLogger("handorbit.server")

app = FastAPI(title="handorbit", version=__version__)


# --- State ---

class ServerState:
    def __init__(self):
        self.config = HandorbitConfig()
        self.clients: set[WebSocket] = set()
        self.pipeline: Optional[ControlPipeline] = None
        self.camera: Optional[CameraSource] = None
        self.pending: list[DeviceEvent] = []
        self.running = False
        self.camera_available = False

    def ensure_pipeline(self) -> ControlPipeline:
        if self.pipeline is None:
            self.pipeline = ControlPipeline(self.config)
        return self.pipeline

    def snapshot(self) -> dict:
        pipeline = self.ensure_pipeline()
        gesture = pipeline.gestures.get()
        return {
            "type": "state",
            "orientation": pipeline.orientation.get().to_dict(),
            "gesture": gesture.to_dict(),
            "label": pipeline.label,
            "timestamp": time.time(),
        }

state = ServerState()


# --- API endpoints ---

@app.get("/api/status")
async def api_status():
    pipeline = state.ensure_pipeline()
    stats = pipeline.stats
    return {
        "running": state.running,
        "clients": len(state.clients),
        "camera": state.camera_available,
        "inference": pipeline.inference_running,
        "label": stats.label,
        "ticks": stats.ticks,
        "inference_frames": stats.inference_frames,
        "control_mode": pipeline.orientation.get().control_mode.value,
    }


@app.get("/api/state")
async def api_state():
    return state.snapshot()


@app.get("/api/config")
async def api_config():
    return state.config.to_dict()


@app.get("/api/profile")
async def api_profile():
    return state.ensure_pipeline().profiler.summary()


@app.get("/metrics")
async def metrics():
    collector = state.ensure_pipeline().metrics
    collector.set_connections(len(state.clients))
    return PlainTextResponse(
        collector.render(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


# --- WebSocket ---

def handle_message(data: dict) -> Optional[dict]:
    """Apply one client message. Returns a direct reply, if any."""
    kind = data.get("type")
    if kind == "ping":
        return {"type": "pong", "server_time": time.time()}
    if kind == "viewport":
        state.ensure_pipeline().aggregator.set_viewport(
            float(data["width"]), float(data["height"])
        )
        return None
    state.pending.append(event_from_dict(data))
    return None


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    state.clients.add(ws)
    logger.info("Client connected (%d total)", len(state.clients))

    try:
        await ws.send_json({
            "type": "connected",
            "camera": state.camera_available,
            "state": state.snapshot(),
        })

        while True:
            try:
                msg = await asyncio.wait_for(ws.receive_text(), timeout=30)
                reply = handle_message(json.loads(msg))
                if reply is not None:
                    await ws.send_json(reply)
            except asyncio.TimeoutError:
                await ws.send_json({"type": "ping"})
            except (ValueError, KeyError, TypeError) as e:
                await ws.send_json({"type": "error", "message": str(e)})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.debug("WebSocket error: %s", e)
    finally:
        state.clients.discard(ws)
        logger.info("Client disconnected (%d total)", len(state.clients))


async def broadcast(message: dict):
    """Send message to all clients."""
    if not state.clients:
        return
    dead = set()
    payload = json.dumps(message)
    for ws in list(state.clients):
        try:
            await ws.send_text(payload)
        except Exception:
            dead.add(ws)
    state.clients -= dead


# --- Loops ---

def start_camera(pipeline: ControlPipeline) -> bool:
    """Open the camera and start inference. False means pointer-only mode."""
    cfg = state.config.server
    if not cfg.enable_camera:
        logger.info("Camera disabled; pointer and touch control only")
        return False

    try:
        state.camera = CameraSource(cfg.camera_index)
    except ImportError as e:
        logger.warning("%s; pointer and touch control only", e)
        return False

    if not state.camera.is_open:
        logger.warning("Could not open camera %d; pointer and touch control only", cfg.camera_index)
        state.camera.close()
        state.camera = None
        return False

    try:
        pipeline.start_inference(state.camera.read)
    except ImportError as e:
        logger.warning("%s; pointer and touch control only", e)
        state.camera.close()
        state.camera = None
        return False
    return True


async def tick_loop():
    """Advance the controller at the configured rate and stream state to clients."""
    pipeline = state.ensure_pipeline()
    state.camera_available = start_camera(pipeline)
    state.running = True

    interval = 1.0 / state.config.server.tick_rate
    last = time.monotonic()

    try:
        while state.running:
            now = time.monotonic()
            events, state.pending = state.pending, []
            pipeline.tick(now - last, events)
            last = now
            await broadcast(state.snapshot())
            await asyncio.sleep(max(0.0, interval - (time.monotonic() - now)))
    finally:
        state.running = False
        pipeline.stop_inference()
        if state.camera:
            state.camera.close()
            state.camera = None
        logger.info("Tick loop stopped")


@app.on_event("startup")
async def startup():
    asyncio.create_task(tick_loop())


@app.on_event("shutdown")
async def shutdown():
    state.running = False
    if state.pipeline is not None:
        state.pipeline.stop_inference()


# --- CLI entry point ---

def main():
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="handorbit WebSocket bridge")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=8765, help="Port")
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args()

    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
