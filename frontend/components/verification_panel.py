"""
Verification and enrollment panel components.

Turns attempt sessions into on-screen text and navigation:
- prompt and result messages for the face step
- redirects after success, and after abandoning a failed verification
- registration form checks run before the password step
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from core.auth_session import AuthSession, Redirect
from core.verification_session import AttemptState, EnrollmentSession, VerificationSession

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


@dataclass
class PanelMessage:
    """Result card content for a terminal attempt."""
    title: str
    detail: str
    success: bool
    hint: Optional[str] = None


class VerificationPanel:
    """
    Face verification screen after password login.

    Responsibilities:
    - Greet the logged-in user and prompt for the camera
    - Describe the attempt result (confidence when available)
    - Mark the auth session verified and build the dashboard redirect
    - Clear the auth session when the user gives up after a failure
    """

    def __init__(self, auth_session: AuthSession):
        self.auth_session = auth_session

    def prompt(self) -> str:
        identity = self.auth_session.identity
        username = identity.username if identity else "there"
        return f"Hello {username}, please look at the camera for verification"

    def result_message(self, session: VerificationSession) -> Optional[PanelMessage]:
        """Message for the current attempt, or None while it is not terminal."""
        if session.attempt_state == AttemptState.SUCCESS:
            return PanelMessage(
                title="Verification Successful!",
                detail="Welcome back! Redirecting to your dashboard...",
                success=True,
            )

        if session.attempt_state == AttemptState.FAILURE:
            if session.confidence is not None:
                detail = f"Face match confidence too low ({session.confidence}%)."
            else:
                detail = "Unable to process face image."
            return PanelMessage(
                title="Verification Failed",
                detail=detail,
                success=False,
                hint="Press R to try again or Q to go back to login",
            )

        return None

    def complete(self, session: VerificationSession) -> Redirect:
        """Success side effect: mark the session verified and go to the dashboard."""
        self.auth_session.mark_verified()
        identity = self.auth_session.identity
        last_login = (self.auth_session.verified_at or datetime.now()).isoformat()

        logger.info(f"Redirecting {identity.username} to dashboard")
        return Redirect("/dashboard", {
            "user": {
                "id": identity.user_id,
                "username": identity.username,
                "email": identity.email,
                "is_verified": True,
                "last_login": last_login,
            },
            "confidence": session.confidence,
        })

    def abandon(self) -> Redirect:
        """Leave the face step after a failure; the password step must be redone."""
        self.auth_session.clear()
        return Redirect("/login", {"error": "Face verification failed. Please try again."})


class EnrollmentPanel:
    """Face registration screen shown right after account creation."""

    def __init__(self, username: str):
        self.username = username

    def prompt(self) -> str:
        return f"Welcome {self.username}! Position your face in the frame to complete registration"

    def result_message(self, session: EnrollmentSession) -> Optional[PanelMessage]:
        if session.attempt_state == AttemptState.SUCCESS:
            return PanelMessage(
                title="Face Registered!",
                detail="Registration complete! Redirecting to login...",
                success=True,
            )
        if session.attempt_state == AttemptState.FAILURE:
            return PanelMessage(
                title="Registration Failed",
                detail=session.error_message or "Failed to register face",
                success=False,
                hint="Press R to capture again",
            )
        return None

    def complete(self, session: EnrollmentSession) -> Redirect:
        logger.info(f"Face enrollment finished for {self.username}")
        return Redirect("/login", {"message": "Registration complete! Please log in with your credentials."})


def validate_registration(password: str, confirm_password: str) -> Optional[str]:
    """
    Check the registration form before it is sent.

    Returns:
        An error message, or None if the form is acceptable.
    """
    if password != confirm_password:
        return "Passwords do not match"
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    return None
