"""
Face camera component shared by the enrollment and verification screens.

Composes the capture pipeline around one CaptureState:

    FaceDetector ─┐
    FramePump ────┼─> PresenceGate ─> CaptureState ─> CaptureController
                  │
    mount():   load models, start camera, start gate
    unmount(): stop gate, then release camera

Camera and model failures are terminal for the screen: mount() raises them
with everything already released.
"""

import logging
from typing import Any, Callable, Dict, Optional

import numpy as np

from core.capture_controller import CaptureController, StillImage
from core.capture_state import CaptureState
from core.config import get_model_dir
from core.errors import FaceAuthError
from core.face_detector import DetectorOptions, FaceDetector
from core.frame_pump import FramePump
from core.media_devices import CameraConstraints, OpenCVMediaDevices
from core.presence_gate import DisplayTicker, PresenceGate

logger = logging.getLogger(__name__)


class FaceCamera:
    """
    Gated camera for one screen.

    Usage:
        async with FaceCamera(config) as camera:
            ...
            image = camera.capture()

    A FaceCamera is mounted at most once; a new screen builds a new one.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        media_devices: Optional[Any] = None,
        detector: Optional[Any] = None,
        state: Optional[CaptureState] = None,
        ticker: Optional[Any] = None,
        on_capture: Optional[Callable[[StillImage], Any]] = None,
    ):
        if config is None:
            from core.config import get_config
            config = get_config()

        camera_config = config.get("camera", {})
        detection_config = config.get("face_detection", {})
        presence_config = config.get("presence", {})
        verification_config = config.get("verification", {})

        self.constraints = CameraConstraints.from_config(camera_config)
        self.model_source = get_model_dir(detection_config)
        self.options = DetectorOptions(
            variant=detection_config.get("variant", "fast"),
            score_threshold=detection_config.get("min_detection_confidence", 0.5),
        )

        self.state = state or CaptureState()
        self.detector = detector or FaceDetector(detection_config)
        self.pump = FramePump(
            media_devices or OpenCVMediaDevices(),
            state=self.state,
            ready_timeout_sec=camera_config.get("ready_timeout_sec", 5.0),
        )
        self.gate = PresenceGate(
            self.pump,
            self.detector,
            self.state,
            ticker=ticker or DisplayTicker(presence_config.get("tick_hz", 60)),
            detect_timeout_sec=detection_config.get("detect_timeout_sec", 2.0),
            options=self.options,
            failure_log_every=presence_config.get("failure_log_every", 30),
        )
        self.controller = CaptureController(
            self.pump,
            self.state,
            jpeg_quality=verification_config.get("jpeg_quality", 92),
            on_capture=on_capture,
        )

        self.error: Optional[FaceAuthError] = None
        self._mounted = False

    async def mount(self) -> None:
        """
        Load models, start the camera, then start the presence loop.

        Raises:
            ModelLoadFailed: Detector models could not be loaded.
            PermissionDenied / DeviceUnavailable / Timeout: Camera failures.
            RuntimeError: If this camera was already mounted.
        """
        if self._mounted:
            raise RuntimeError("FaceCamera can only be mounted once")
        self._mounted = True

        try:
            if not self.detector.models_ready:
                await self.detector.load_models_async(self.model_source, variants=(self.options.variant,))
            self.state.models_ready = True

            await self.pump.start(self.constraints)
            self.gate.start()
        except BaseException as e:
            if isinstance(e, FaceAuthError):
                self.error = e
                logger.error(f"Face camera failed to start: {e.user_message}")
            await self.unmount()
            raise

    async def unmount(self) -> None:
        """Stop the gate before the camera goes away. Idempotent."""
        await self.gate.stop()
        await self.pump.stop()

    async def __aenter__(self):
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.unmount()
        return False

    # ==================== Screen API ====================

    def capture(self) -> Optional[StillImage]:
        return self.controller.capture()

    def current_frame(self) -> Optional[np.ndarray]:
        return self.pump.current_frame()

    @property
    def capture_allowed(self) -> bool:
        return self.state.allowed

    @property
    def status_message(self) -> str:
        if self.error is not None:
            return self.error.user_message
        return self.state.status_message()
