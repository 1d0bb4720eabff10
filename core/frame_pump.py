"""
Frame pump for the face verification client.

Owns the camera stream for one screen: acquires it, reads frames at the
camera's native rate on a reader task, reports readiness, and releases
every track on every exit path. Nothing else touches the stream; the
presence gate and the capture controller read frames via current_frame().

Usage:
    pump = FramePump(OpenCVMediaDevices(), state)
    async with pump.session(CameraConstraints()):
        frame = pump.current_frame()
"""

import asyncio
import contextlib
import logging
import numpy as np
from enum import Enum
from typing import Any, Optional, Tuple

from core.capture_state import CaptureState
from core.errors import CameraError, FaceAuthError, Timeout
from core.media_devices import CameraConstraints, ENDED, MediaStream

logger = logging.getLogger(__name__)

# Back-off between reads while the track produces no decodable frame
_EMPTY_READ_DELAY_SEC = 0.01


class PumpState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    READY = "ready"
    STOPPED = "stopped"


class FramePump:
    """
    Acquires and releases the camera stream and exposes the latest frame.

    At most one stream is active per pump. start() either reaches READY or
    raises with the stream already released.
    """

    def __init__(
        self,
        media_devices: Any,
        state: Optional[CaptureState] = None,
        ready_timeout_sec: float = 5.0,
    ):
        self._media_devices = media_devices
        self._state = state or CaptureState()
        self.ready_timeout_sec = ready_timeout_sec

        self._pump_state = PumpState.IDLE
        self._stream: Optional[MediaStream] = None
        self._reader: Optional[asyncio.Task] = None
        self._first_frame: Optional[asyncio.Event] = None
        self._frame: Optional[np.ndarray] = None
        self.error: Optional[FaceAuthError] = None

    # ==================== Lifecycle ====================

    async def start(self, constraints: Optional[CameraConstraints] = None) -> None:
        """
        Request the camera and wait until it produces a decoded frame.

        Raises:
            PermissionDenied: Access refused by the platform.
            DeviceUnavailable: No camera matches the constraints.
            Timeout: No video within ready_timeout_sec.
            RuntimeError: If the pump already holds a stream.
        """
        if self._pump_state in (PumpState.STARTING, PumpState.READY):
            raise RuntimeError("FramePump is already started")

        constraints = constraints or CameraConstraints()
        self._pump_state = PumpState.STARTING
        self.error = None
        self._frame = None
        self._first_frame = asyncio.Event()

        logger.info(f"Requesting camera access: {constraints}")
        try:
            self._stream = await self._media_devices.get_user_media(constraints)

            tracks = self._stream.get_video_tracks()
            if not tracks:
                raise CameraError(log_message="Camera stream has no video track")

            self._reader = asyncio.create_task(self._read_loop(tracks[0]))

            try:
                await asyncio.wait_for(self._first_frame.wait(), self.ready_timeout_sec)
            except asyncio.TimeoutError:
                raise Timeout(
                    "Camera did not produce video in time",
                    log_message=f"No video frame within {self.ready_timeout_sec}s",
                ) from None

            if self._pump_state != PumpState.STARTING:
                # Track ended before readiness; the reader recorded why
                raise self.error or CameraError(log_message="Camera stopped while starting")

        except BaseException as e:
            logger.error(f"Error accessing camera: {e}")
            if isinstance(e, FaceAuthError):
                self.error = e
            await self.stop()
            raise

        self._pump_state = PumpState.READY
        self._state.camera_ready = True
        h, w = self._frame.shape[:2]
        logger.info(f"Camera ready, dimensions: {w}x{h}")

    async def stop(self) -> None:
        """Stop the reader and every track. Safe to call any number of times."""
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

        self._release_stream()
        self._frame = None
        self._state.camera_ready = False
        if self._pump_state != PumpState.IDLE:
            self._pump_state = PumpState.STOPPED

    @contextlib.asynccontextmanager
    async def session(self, constraints: Optional[CameraConstraints] = None):
        """Scoped acquisition: the stream is released however the block exits."""
        await self.start(constraints)
        try:
            yield self
        finally:
            await self.stop()

    def _release_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop_all()
            logger.info("Camera stream released")

    # ==================== Frames ====================

    async def _read_loop(self, track) -> None:
        while True:
            try:
                frame = await asyncio.to_thread(track.read)
            except Exception as e:
                # cv2.error and driver failures end the stream
                logger.error(f"Camera read failed: {e}")
                self._on_track_ended()
                return

            if track.ready_state == ENDED:
                self._on_track_ended()
                return

            if frame is None:
                # Stream not producing decodable frames yet
                await asyncio.sleep(_EMPTY_READ_DELAY_SEC)
                continue

            self._frame = frame
            if not self._first_frame.is_set():
                self._first_frame.set()

    def _on_track_ended(self) -> None:
        logger.error("Camera track ended unexpectedly")
        self.error = CameraError("Camera disconnected", log_message="Video track ended")
        self._reader = None
        self._release_stream()
        self._frame = None
        self._state.camera_ready = False
        self._pump_state = PumpState.STOPPED
        # Unblock a start() that is still waiting for the first frame
        self._first_frame.set()

    def current_frame(self) -> Optional[np.ndarray]:
        """Latest decoded BGR frame, or None while nothing is decodable."""
        if self._pump_state != PumpState.READY:
            return None
        return self._frame

    # ==================== Properties ====================

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def pump_state(self) -> PumpState:
        return self._pump_state

    @property
    def is_ready(self) -> bool:
        return self._pump_state == PumpState.READY

    @property
    def is_active(self) -> bool:
        """True while a stream is held (the camera indicator is on)."""
        return self._stream is not None

    @property
    def frame_size(self) -> Optional[Tuple[int, int]]:
        """(width, height) of the latest frame."""
        if self._frame is None:
            return None
        h, w = self._frame.shape[:2]
        return (w, h)
