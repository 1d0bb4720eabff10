"""
Capture controller for the face verification client.

Freezes the current camera frame into a single JPEG still, but only while
the capture gate allows it. One call, at most one image: no retries, no loops.
"""

import base64
import logging
import time
import cv2
import numpy as np
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

from core.capture_state import CaptureState

logger = logging.getLogger(__name__)

JPEG_MIME = "image/jpeg"


@dataclass(frozen=True)
class StillImage:
    """
    An immutable JPEG snapshot taken at one instant.

    Attributes:
        jpeg: Encoded image bytes (the wire format sent to the backend).
        width: Image width in pixels.
        height: Image height in pixels.
        captured_at: Unix timestamp of the capture.
    """

    jpeg: bytes = field(repr=False)
    width: int
    height: int
    captured_at: float

    @classmethod
    def from_frame(cls, frame: np.ndarray, quality: int = 92) -> "StillImage":
        """
        Encode a BGR frame as JPEG.

        Raises:
            ValueError: If OpenCV cannot encode the frame.
        """
        encode_param = [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)]
        success, buffer = cv2.imencode(".jpg", frame, encode_param)
        if not success:
            raise ValueError("Failed to encode frame")

        h, w = frame.shape[:2]
        return cls(jpeg=buffer.tobytes(), width=w, height=h, captured_at=time.time())

    def to_frame(self) -> np.ndarray:
        """Decode back to a BGR array (for re-display)."""
        nparr = np.frombuffer(self.jpeg, np.uint8)
        return cv2.imdecode(nparr, cv2.IMREAD_COLOR)

    def to_data_url(self) -> str:
        """In-memory data URL form of the image."""
        return f"data:{JPEG_MIME};base64," + base64.b64encode(self.jpeg).decode("ascii")

    def as_upload(self, filename: str) -> Tuple[str, bytes, str]:
        """(filename, content, content_type) tuple for a multipart upload."""
        return (filename, self.jpeg, JPEG_MIME)

    @property
    def size_bytes(self) -> int:
        return len(self.jpeg)


class CaptureController:
    """
    Produces one StillImage on demand, honoring the capture gate.

    The gate is read at the instant of the call. When capture is not allowed
    the controller returns None and nothing else happens.
    """

    def __init__(
        self,
        frame_pump: Any,
        state: CaptureState,
        jpeg_quality: int = 92,
        on_capture: Optional[Callable[[StillImage], Any]] = None,
    ):
        self._pump = frame_pump
        self._state = state
        self.jpeg_quality = jpeg_quality
        self.on_capture = on_capture

    def capture(self) -> Optional[StillImage]:
        """
        Freeze the current frame.

        Returns:
            The captured StillImage, or None if capture is not allowed.
        """
        if not self._state.allowed:
            logger.debug(f"Capture not allowed: {self._state.status_message()}")
            return None

        frame = self._pump.current_frame()
        if frame is None:
            logger.debug("Capture not allowed: no frame available")
            return None

        image = StillImage.from_frame(frame, quality=self.jpeg_quality)
        logger.info(f"Captured still image {image.width}x{image.height} ({image.size_bytes} bytes)")

        if self.on_capture is not None:
            self.on_capture(image)
        return image
