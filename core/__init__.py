"""
Core Module for the Face Verification Client

This package contains the camera-side half of the two-step login: face
presence gating, still capture, and the enroll/verify attempt state machine.

Main components:
    - config: Configuration loading and logging setup
    - errors: Error taxonomy with user-facing messages
    - face_detector: Multi-face detection using MediaPipe Tasks
    - media_devices: OpenCV camera acquisition
    - frame_pump: Camera stream lifecycle and latest frame
    - capture_state: Shared camera/model/attempt flags and the capture gate
    - presence_gate: Per-display-tick face counting loop
    - capture_controller: Gated JPEG still capture
    - verification_session: Enroll/verify attempt state machine
    - auth_session: Password-step session and route guard

Usage:
    from core.config import get_config
    from core.face_detector import FaceDetector
    from core.frame_pump import FramePump
    from core.presence_gate import PresenceGate
"""

from core.config import (
    get_config,
    get_section,
    get_camera_config,
    get_face_detection_config,
    get_presence_config,
    get_verification_config,
    get_api_config,
    get_model_dir,
    configure_logging,
)

from core.errors import (
    FaceAuthError,
    CameraError,
    PermissionDenied,
    DeviceUnavailable,
    Timeout,
    ModelLoadFailed,
    DetectorTransientError,
    SubmissionNetworkError,
    SubmissionRejected,
    MalformedResponse,
    PreconditionMissing,
)

from core.capture_state import CaptureState, DetectionSnapshot, PresenceStatus

from core.capture_controller import CaptureController, StillImage

from core.auth_session import AuthSession, SessionIdentity, Redirect

from core.verification_session import (
    AttemptState,
    VerificationSession,
    EnrollmentSession,
    InvalidTransition,
)

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_camera_config",
    "get_face_detection_config",
    "get_presence_config",
    "get_verification_config",
    "get_api_config",
    "get_model_dir",
    "configure_logging",
    # Errors
    "FaceAuthError",
    "CameraError",
    "PermissionDenied",
    "DeviceUnavailable",
    "Timeout",
    "ModelLoadFailed",
    "DetectorTransientError",
    "SubmissionNetworkError",
    "SubmissionRejected",
    "MalformedResponse",
    "PreconditionMissing",
    # Capture
    "CaptureState",
    "DetectionSnapshot",
    "PresenceStatus",
    "CaptureController",
    "StillImage",
    # Sessions
    "AuthSession",
    "SessionIdentity",
    "Redirect",
    "AttemptState",
    "VerificationSession",
    "EnrollmentSession",
    "InvalidTransition",
]
