"""
Camera access for the face verification client.

Wraps cv2.VideoCapture behind a small media-stream model: a MediaStream
owns one or more tracks, every track must be stopped to switch the camera
(and its hardware indicator) off. FramePump is the only caller.

Tests substitute their own media devices object with the same
get_user_media() coroutine.
"""

import asyncio
import logging
import os
import sys
import threading
import cv2
import numpy as np
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core.errors import DeviceUnavailable, PermissionDenied, Timeout

logger = logging.getLogger(__name__)

LIVE = "live"
ENDED = "ended"


@dataclass(frozen=True)
class CameraConstraints:
    """Requested camera configuration (ideal values, not guarantees)."""
    width: int = 640
    height: int = 480
    facing_mode: str = "user"
    frame_rate: int = 30
    device_id: int = 0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CameraConstraints":
        return cls(
            width=config.get("width", 640),
            height=config.get("height", 480),
            facing_mode=config.get("facing_mode", "user"),
            frame_rate=config.get("frame_rate", 30),
            device_id=config.get("device_id", 0),
        )


class OpenCVVideoTrack:
    """
    A live video track backed by cv2.VideoCapture.

    read() runs on a worker thread; stop() may be called from the event loop
    at any time. The lock keeps release() from racing an in-progress read().
    """

    kind = "video"

    def __init__(self, capture: "cv2.VideoCapture", label: str = ""):
        self._cap = capture
        self._lock = threading.Lock()
        self.label = label
        self.ready_state = LIVE

    def read(self) -> Optional[np.ndarray]:
        """Read one BGR frame, or None if no frame could be decoded."""
        with self._lock:
            if self.ready_state != LIVE:
                return None
            if not self._cap.isOpened():
                self.ready_state = ENDED
                return None
            ret, frame = self._cap.read()
        return frame if ret else None

    def stop(self) -> None:
        with self._lock:
            if self.ready_state == ENDED:
                return
            self.ready_state = ENDED
            self._cap.release()
        logger.info(f"Camera track stopped: {self.label}")


class MediaStream:
    """A set of tracks acquired together and released together."""

    def __init__(self, tracks: List[Any]):
        self._tracks = list(tracks)

    def get_tracks(self) -> List[Any]:
        return list(self._tracks)

    def get_video_tracks(self) -> List[Any]:
        return [t for t in self._tracks if getattr(t, "kind", "video") == "video"]

    @property
    def active(self) -> bool:
        return any(t.ready_state == LIVE for t in self._tracks)

    def stop_all(self) -> None:
        for track in self._tracks:
            track.stop()


class OpenCVMediaDevices:
    """
    Opens local cameras through OpenCV.

    OpenCV cannot tell a refused permission from a missing camera, so on
    Linux the device node is checked first: a node that exists but cannot be
    opened for reading is reported as PermissionDenied.
    """

    def __init__(self, open_timeout_sec: float = 5.0):
        self.open_timeout_sec = open_timeout_sec

    async def get_user_media(self, constraints: CameraConstraints) -> MediaStream:
        """
        Acquire a camera stream.

        Raises:
            PermissionDenied: The device exists but access is refused.
            DeviceUnavailable: No camera matches the constraints.
            Timeout: The device did not open within open_timeout_sec.
        """
        self._check_device_node(constraints.device_id)

        opening = asyncio.ensure_future(asyncio.to_thread(self._open, constraints))
        try:
            capture = await asyncio.wait_for(asyncio.shield(opening), self.open_timeout_sec)
        except asyncio.TimeoutError:
            # The open may still succeed later; release it when it does
            opening.add_done_callback(_release_late_capture)
            raise Timeout(
                "Camera did not respond in time",
                log_message=f"Opening camera {constraints.device_id} timed out",
            ) from None
        except asyncio.CancelledError:
            opening.add_done_callback(_release_late_capture)
            raise

        if not capture.isOpened():
            capture.release()
            raise DeviceUnavailable(
                log_message=f"Camera {constraints.device_id} could not be opened"
            )

        track = OpenCVVideoTrack(capture, label=f"camera:{constraints.device_id}")
        logger.info(
            f"Opened camera {constraints.device_id} "
            f"(requested {constraints.width}x{constraints.height} @ {constraints.frame_rate} fps)"
        )
        return MediaStream([track])

    @staticmethod
    def _open(constraints: CameraConstraints) -> "cv2.VideoCapture":
        cap = cv2.VideoCapture(constraints.device_id)
        if cap.isOpened():
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
            cap.set(cv2.CAP_PROP_FPS, constraints.frame_rate)
        return cap

    @staticmethod
    def _check_device_node(device_id: int) -> None:
        if not sys.platform.startswith("linux"):
            return

        node = f"/dev/video{device_id}"
        if not os.path.exists(node):
            raise DeviceUnavailable(log_message=f"{node} does not exist")
        if not os.access(node, os.R_OK | os.W_OK):
            raise PermissionDenied(log_message=f"No read/write access to {node}")


def _release_late_capture(future: "asyncio.Future") -> None:
    if future.cancelled() or future.exception() is not None:
        return
    future.result().release()
    logger.info("Released camera that opened after its timeout")


def get_available_cameras(max_check: int = 5) -> list:
    """
    Check which camera device IDs can be opened.

    Args:
        max_check: Maximum device IDs to check.

    Returns:
        List of available camera device IDs.
    """
    available = []
    for i in range(max_check):
        cap = cv2.VideoCapture(i)
        if cap.isOpened():
            available.append(i)
        cap.release()
    return available
