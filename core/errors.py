"""
Error taxonomy for the face verification client.

Every error carries a short user-facing message next to the log message,
so screens can show it without formatting exception text.

Camera and model errors are terminal for the current screen. Detector
errors are swallowed by the presence gate. Submission errors end an
attempt in the FAILURE state. PreconditionMissing means the caller must
leave the verification flow (e.g. redirect to login).
"""

from typing import Optional


class FaceAuthError(Exception):
    """Base class for all client-side face authentication errors."""

    default_message = "Something went wrong"

    def __init__(self, user_message: Optional[str] = None, *, log_message: Optional[str] = None):
        self.user_message = user_message or self.default_message
        super().__init__(log_message or self.user_message)


# ============================================================
# Camera / model (terminal for the screen)
# ============================================================

class CameraError(FaceAuthError):
    """Base class for camera acquisition failures."""

    default_message = "Failed to access camera"


class PermissionDenied(CameraError):
    """The platform refused access to the camera."""

    default_message = (
        "Camera permission denied. Please allow camera access in your system settings."
    )


class DeviceUnavailable(CameraError):
    """No camera matches the requested constraints."""

    default_message = "No camera available"


class Timeout(FaceAuthError, TimeoutError):
    """A bounded wait expired (camera readiness, detection, or submission)."""

    default_message = "The operation timed out"


class ModelLoadFailed(FaceAuthError):
    """Face detection models could not be loaded."""

    default_message = "Failed to load face detection models"


# ============================================================
# Detection (swallowed per tick)
# ============================================================

class DetectorTransientError(FaceAuthError):
    """A single detection pass failed; the previous face count stands."""

    default_message = "Face detection failed"


class DetectorNotReady(FaceAuthError):
    """Detection was requested before the models were loaded."""

    default_message = "Face detection models are not loaded"


# ============================================================
# Submission (attempt ends in FAILURE)
# ============================================================

class SubmissionNetworkError(FaceAuthError):
    """The backend could not be reached or the transport failed."""

    default_message = "Could not reach the server. Please try again."


class MalformedResponse(SubmissionNetworkError):
    """The backend answered with a body that does not match the contract."""

    default_message = "Invalid response from server. Please try again."


class SubmissionRejected(FaceAuthError):
    """The backend answered verified=false."""

    default_message = "Face verification failed"

    def __init__(self, confidence: Optional[float] = None, user_message: Optional[str] = None):
        self.confidence = confidence
        super().__init__(user_message)


# ============================================================
# Flow preconditions
# ============================================================

class PreconditionMissing(FaceAuthError):
    """No session identity is available for this attempt."""

    default_message = "User information not found. Please log in again."
