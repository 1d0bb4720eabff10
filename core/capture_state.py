"""
Shared capture state for one camera screen.

One CaptureState is owned per camera instance and passed by reference to
the frame pump, the presence gate, the capture controller and the attempt
session. Each flag has a single writer:

    camera_ready       FramePump
    models_ready       FaceCamera (after the detector loads)
    face snapshot      PresenceGate
    attempt_in_flight  VerificationSession / EnrollmentSession

Readers (controller, UI) only ever see derived values such as `allowed`.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionSnapshot:
    """Latest face count produced by the presence gate. Never queued."""
    face_count: int
    timestamp: float  # time.monotonic()
    boxes: Tuple[Tuple[int, int, int, int], ...] = ()


class PresenceStatus(Enum):
    """What the status line shows while the camera screen is active."""
    LOADING = "loading"
    CAMERA_STARTING = "camera_starting"
    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"
    READY = "ready"
    VERIFYING = "verifying"


class CaptureState:
    """
    Owned state struct behind the capture gate.

    `allowed` is derived on every read and never stored:
        camera_ready and models_ready and face_count == 1 and not attempt_in_flight
    """

    def __init__(self):
        self._camera_ready = False
        self._models_ready = False
        self._attempt_in_flight = False
        self._snapshot = DetectionSnapshot(face_count=0, timestamp=time.monotonic())
        self._listeners: List[Callable[["CaptureState"], None]] = []

    # ==================== Flags ====================

    @property
    def camera_ready(self) -> bool:
        return self._camera_ready

    @camera_ready.setter
    def camera_ready(self, value: bool) -> None:
        self._set("_camera_ready", value)

    @property
    def models_ready(self) -> bool:
        return self._models_ready

    @models_ready.setter
    def models_ready(self, value: bool) -> None:
        self._set("_models_ready", value)

    @property
    def attempt_in_flight(self) -> bool:
        return self._attempt_in_flight

    @attempt_in_flight.setter
    def attempt_in_flight(self, value: bool) -> None:
        self._set("_attempt_in_flight", value)

    @property
    def snapshot(self) -> DetectionSnapshot:
        return self._snapshot

    @property
    def face_count(self) -> int:
        return self._snapshot.face_count

    def update_faces(self, face_count: int, boxes: Tuple = ()) -> DetectionSnapshot:
        """Replace the detection snapshot. Only the presence gate calls this."""
        if face_count < 0:
            raise ValueError(f"face_count must be >= 0, got {face_count}")

        previous = self._snapshot.face_count
        self._snapshot = DetectionSnapshot(
            face_count=face_count,
            timestamp=time.monotonic(),
            boxes=tuple(boxes),
        )
        if face_count != previous:
            logger.debug(f"Face count changed: {previous} -> {face_count}")
        self._notify()
        return self._snapshot

    # ==================== Derived ====================

    @property
    def allowed(self) -> bool:
        return (
            self._camera_ready
            and self._models_ready
            and self._snapshot.face_count == 1
            and not self._attempt_in_flight
        )

    @property
    def status(self) -> PresenceStatus:
        if not self._models_ready:
            return PresenceStatus.LOADING
        if not self._camera_ready:
            return PresenceStatus.CAMERA_STARTING
        if self._attempt_in_flight:
            return PresenceStatus.VERIFYING
        count = self._snapshot.face_count
        if count == 0:
            return PresenceStatus.NO_FACE
        if count == 1:
            return PresenceStatus.READY
        return PresenceStatus.MULTIPLE_FACES

    def status_message(self) -> str:
        """Status line text for the current state."""
        status = self.status
        if status == PresenceStatus.MULTIPLE_FACES:
            return f"{self.face_count} faces detected - Only one face allowed"
        return STATUS_MESSAGES[status]

    # ==================== Observers ====================

    def subscribe(self, listener: Callable[["CaptureState"], None]) -> Callable[[], None]:
        """Register a change listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, attr: str, value: bool) -> None:
        if getattr(self, attr) == value:
            return
        setattr(self, attr, value)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def __repr__(self) -> str:
        return (
            f"CaptureState(camera_ready={self._camera_ready}, models_ready={self._models_ready}, "
            f"face_count={self.face_count}, attempt_in_flight={self._attempt_in_flight}, "
            f"allowed={self.allowed})"
        )


STATUS_MESSAGES = {
    PresenceStatus.LOADING: "Loading face detection models...",
    PresenceStatus.CAMERA_STARTING: "Starting camera...",
    PresenceStatus.NO_FACE: "No face detected",
    PresenceStatus.READY: "Face detected - Ready to capture",
    PresenceStatus.VERIFYING: "Verifying your identity...",
}
