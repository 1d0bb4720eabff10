"""
Verification Session Module

State machine for one enroll-or-verify attempt:

    IDLE --submit(image)--> SUBMITTING --> SUCCESS
                                      +--> FAILURE --retry()--> IDLE

SUCCESS and FAILURE are terminal for the attempt; retry() is the only way
back. While an attempt is anywhere past IDLE, the shared CaptureState has
attempt_in_flight set, so the capture gate stays closed until retry().

On SUCCESS a single downstream side effect (usually navigation) runs after
a short grace delay so the user can see the confirmation. close() cancels
it, and nothing a suspended call returns after close() changes the session.

Two variants share the machine:
    - VerificationSession: POST verify-face, keeps the confidence percentage
    - EnrollmentSession:   POST register-face, no confidence; a failure
                           discards the captured still so the user recaptures

Usage:
    session = VerificationSession(api_client, identity, state, on_success=go_dashboard)
    await session.submit(image)
    if session.attempt_state == AttemptState.FAILURE:
        session.retry()
"""

import asyncio
import contextlib
import inspect
import logging
import math
from enum import Enum
from typing import Any, Callable, Optional

from core.auth_session import SessionIdentity
from core.capture_controller import StillImage
from core.capture_state import CaptureState
from core.errors import (
    FaceAuthError,
    PreconditionMissing,
    SubmissionNetworkError,
    SubmissionRejected,
    Timeout,
)

logger = logging.getLogger(__name__)


class AttemptState(Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    FAILURE = "failure"


class InvalidTransition(RuntimeError):
    """An operation was called in a state that does not allow it."""


def confidence_percent(confidence: float) -> int:
    """Convert a [0, 1] confidence to a percentage, rounding halves up."""
    return int(math.floor(confidence * 100 + 0.5))


class _AttemptSession:
    """Shared attempt machine; subclasses send the image and read the reply."""

    kind = "attempt"

    def __init__(
        self,
        api_client: Any,
        identity: Optional[SessionIdentity],
        state: Optional[CaptureState] = None,
        on_success: Optional[Callable[["_AttemptSession"], Any]] = None,
        on_failure: Optional[Callable[["_AttemptSession"], Any]] = None,
        success_delay_sec: float = 1.5,
        submit_timeout_sec: float = 30.0,
    ):
        self._api = api_client
        self._identity = identity
        self._capture_state = state or CaptureState()
        self.on_success = on_success
        self.on_failure = on_failure
        self.success_delay_sec = success_delay_sec
        self.submit_timeout_sec = submit_timeout_sec

        self._attempt_state = AttemptState.IDLE
        self._still: Optional[StillImage] = None
        self._error: Optional[str] = None
        self.failure: Optional[FaceAuthError] = None
        self._closed = False
        self._side_effect: Optional[asyncio.Task] = None
        self._side_effect_fired = False

    # ==================== Properties ====================

    @property
    def attempt_state(self) -> AttemptState:
        return self._attempt_state

    @property
    def identity(self) -> Optional[SessionIdentity]:
        return self._identity

    @property
    def still_image(self) -> Optional[StillImage]:
        """The captured still of the current attempt, kept for re-display."""
        return self._still

    @property
    def error_message(self) -> Optional[str]:
        return self._error

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def capture_state(self) -> CaptureState:
        return self._capture_state

    # ==================== Transitions ====================

    async def submit(self, image: StillImage) -> AttemptState:
        """
        Send one captured still to the backend and interpret the reply.

        Returns:
            The state after the attempt (SUCCESS or FAILURE), or the current
            state unchanged if a submission was already under way.

        Raises:
            PreconditionMissing: If there is no session identity. The session
                                 stays IDLE; the caller should leave the flow.
            InvalidTransition: If the session has been closed.
        """
        if self._closed:
            raise InvalidTransition("Session is closed")
        if self._identity is None:
            raise PreconditionMissing()
        if self._attempt_state != AttemptState.IDLE:
            logger.warning(f"Ignoring {self.kind} submission while {self._attempt_state.value}")
            return self._attempt_state

        self._attempt_state = AttemptState.SUBMITTING
        self._capture_state.attempt_in_flight = True
        self._still = image
        self._error = None
        logger.info(f"Submitting {self.kind} for user {self._identity.user_id}")

        try:
            response = await asyncio.wait_for(self._send(image), self.submit_timeout_sec)
        except FaceAuthError as e:
            logger.error(f"{self.kind.capitalize()} error: {e}")
            return self._fail(e.user_message, e)
        except asyncio.TimeoutError:
            logger.error(f"{self.kind.capitalize()} timed out after {self.submit_timeout_sec}s")
            timeout = Timeout("The server took too long to respond. Please try again.")
            return self._fail(timeout.user_message, timeout)
        except Exception as e:
            logger.exception(f"Unexpected {self.kind} failure: {e}")
            network = SubmissionNetworkError(log_message=str(e))
            return self._fail(network.user_message, network)

        if self._closed:
            logger.debug(f"{self.kind.capitalize()} finished after close; result dropped")
            return self._attempt_state

        return self._interpret(response)

    def retry(self) -> None:
        """FAILURE -> IDLE. Re-enables capture for a fresh attempt."""
        if self._attempt_state != AttemptState.FAILURE:
            raise InvalidTransition(f"Cannot retry from {self._attempt_state.value}")

        self._attempt_state = AttemptState.IDLE
        self._error = None
        self.failure = None
        self._capture_state.attempt_in_flight = False
        self._on_retry()
        logger.info(f"{self.kind.capitalize()} reset for retry")

    async def close(self) -> None:
        """Tear down: cancel the pending side effect and drop late results."""
        self._closed = True
        task, self._side_effect = self._side_effect, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ==================== Outcomes ====================

    def _succeed(self) -> AttemptState:
        self._attempt_state = AttemptState.SUCCESS
        if self.on_success is not None and not self._side_effect_fired:
            self._side_effect = asyncio.create_task(self._run_side_effect())
        return self._attempt_state

    def _fail(self, message: str, error: Optional[FaceAuthError] = None) -> AttemptState:
        if self._closed:
            return self._attempt_state
        self._attempt_state = AttemptState.FAILURE
        self._error = message
        self.failure = error
        self._on_failure()
        if self.on_failure is not None:
            self.on_failure(self)
        return self._attempt_state

    async def _run_side_effect(self) -> None:
        await asyncio.sleep(self.success_delay_sec)
        if self._closed or self._side_effect_fired:
            return
        self._side_effect_fired = True

        result = self.on_success(self)
        if inspect.isawaitable(result):
            await result

    # ==================== Hooks ====================

    async def _send(self, image: StillImage):
        raise NotImplementedError

    def _interpret(self, response) -> AttemptState:
        raise NotImplementedError

    def _on_failure(self) -> None:
        pass

    def _on_retry(self) -> None:
        pass


class VerificationSession(_AttemptSession):
    """
    Face verification attempt against the enrolled face.

    Attributes:
        confidence: Match confidence as a rounded percentage, or None when the
                    backend gave none (transport error, malformed reply).
    """

    kind = "verification"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.confidence: Optional[int] = None

    async def submit(self, image: StillImage) -> AttemptState:
        if self._attempt_state == AttemptState.IDLE:
            self.confidence = None
        return await super().submit(image)

    async def _send(self, image: StillImage):
        return await self._api.verify_face(self._identity.user_id, image)

    def _interpret(self, response) -> AttemptState:
        if not response.ok:
            logger.error(f"Verification error: {response.error}")
            return self._fail(response.error or "Failed to verify face")

        percent = confidence_percent(response.data.confidence)
        self.confidence = percent

        if response.data.verified:
            logger.info(f"Face verified with {percent}% confidence")
            return self._succeed()

        logger.info(f"Face verification rejected ({percent}% confidence)")
        rejection = SubmissionRejected(
            confidence=response.data.confidence,
            user_message=f"Face verification failed ({percent}% confidence). Please try again.",
        )
        return self._fail(rejection.user_message, rejection)


class EnrollmentSession(_AttemptSession):
    """Face enrollment attempt for a freshly registered account."""

    kind = "enrollment"

    async def _send(self, image: StillImage):
        return await self._api.register_face(self._identity.user_id, image)

    def _interpret(self, response) -> AttemptState:
        if not response.ok:
            logger.error(f"Face registration error: {response.error}")
            return self._fail(response.error or "Failed to register face")

        if not response.data.success:
            return self._fail("Failed to register face")

        logger.info("Face registered successfully")
        return self._succeed()

    def _on_failure(self) -> None:
        # The user has to recapture
        self._still = None
