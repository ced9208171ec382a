"""handorbit - Stabilized hand and pointer control for interactive 3D objects."""

__version__ = "0.1.0"

from handorbit.config import HandorbitConfig, ConfigError, load_config, save_config
from handorbit.smoothing import SmoothingBuffer, HysteresisThreshold
from handorbit.landmarks import LandmarkFrame, HandDetector
from handorbit.gestures import GestureInterpreter, GestureState, NEUTRAL, gesture_label
from handorbit.inputs import InputAggregator, InputTarget, PointerEvent, WheelEvent, TouchEvent
from handorbit.controller import OrientationController, OrientationState, ControlMode
from handorbit.scheduler import InferenceLoop, Latest, CancellationToken
from handorbit.pipeline import ControlPipeline
from handorbit.recorder import LandmarkRecorder, LandmarkPlayer
from handorbit.profiler import PipelineProfiler
from handorbit.metrics import MetricsCollector
