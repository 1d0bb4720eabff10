"""
Authentication session lifecycle.

The password step produces a SessionIdentity and an auth token; the face
step reads the identity and, on success, marks the session verified.

Lifecycle of AuthSession:
    begin()         after a successful password login
    mark_verified() after a successful face verification
    clear()         on logout, or when the user abandons a failed verification

The route guard reads is_authenticated; nothing else mutates the session.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from core.errors import MalformedResponse

logger = logging.getLogger(__name__)

# Stored instead of a token when the backend authenticates without issuing one
SESSION_MARKER = "session"

PUBLIC_ROUTES = frozenset({"/", "/login", "/register"})


@dataclass(frozen=True)
class SessionIdentity:
    """Who is being verified. Read-only to the face verification core."""
    user_id: str
    username: str
    email: str
    has_face_data: bool = False

    @classmethod
    def from_login(cls, data: Dict[str, Any], email: str) -> "SessionIdentity":
        """
        Build an identity from a login response body.

        The user object may be nested under "user" or be the body itself, and
        its id may be called "id" or "user_id".

        Raises:
            MalformedResponse: If no user id can be found.
        """
        user = data.get("user") or data
        user_id = user.get("id") or user.get("user_id")

        if not user_id:
            logger.error(f"Unexpected login response: {data}")
            raise MalformedResponse(log_message="Login response has no user id")

        return cls(
            user_id=str(user_id),
            username=user.get("username") or email.split("@")[0],
            email=user.get("email") or email,
            has_face_data=bool(user.get("has_face_data", False)),
        )


@dataclass(frozen=True)
class Redirect:
    """A navigation instruction produced by the route guard or a flow."""
    path: str
    state: Optional[Dict[str, Any]] = None


class AuthSession:
    """Process-wide authentication state with explicit init and clear points."""

    def __init__(self):
        self._token: Optional[str] = None
        self._identity: Optional[SessionIdentity] = None
        self._verified = False
        self._verified_at: Optional[datetime] = None

    def begin(self, identity: SessionIdentity, token: Optional[str] = None) -> None:
        """Start a session after the password step."""
        self._identity = identity
        self._token = token or SESSION_MARKER
        self._verified = False
        self._verified_at = None
        if token is None:
            logger.info(f"Login for {identity.username} returned no token, using session marker")
        else:
            logger.info(f"Session started for {identity.username}")

    def mark_verified(self) -> None:
        if self._identity is None:
            raise RuntimeError("Cannot verify a session that was never started")
        self._verified = True
        self._verified_at = datetime.now()
        logger.info(f"Face verification completed for {self._identity.username}")

    def clear(self) -> None:
        if self._identity is not None:
            logger.info(f"Session cleared for {self._identity.username}")
        self._token = None
        self._identity = None
        self._verified = False
        self._verified_at = None

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def bearer_token(self) -> Optional[str]:
        """The real backend token, or None when only the session marker is held."""
        if self._token == SESSION_MARKER:
            return None
        return self._token

    @property
    def identity(self) -> Optional[SessionIdentity]:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    @property
    def is_verified(self) -> bool:
        return self._verified

    @property
    def verified_at(self) -> Optional[datetime]:
        return self._verified_at

    def guard(self, path: str) -> Optional[Redirect]:
        """Route guard: protected routes redirect to login when unauthenticated."""
        if path in PUBLIC_ROUTES or self.is_authenticated:
            return None
        return Redirect("/login", {"from": path, "message": "Please log in to continue"})
