"""
Frontend UI components for the face verification client.
"""

from .face_camera import FaceCamera
from .verification_panel import VerificationPanel, EnrollmentPanel, PanelMessage, validate_registration

__all__ = [
    "FaceCamera",
    "VerificationPanel", "EnrollmentPanel", "PanelMessage", "validate_registration",
]
