"""
Unit Tests for Verification Session Module

This module tests the enroll/verify attempt state machine:
- IDLE -> SUBMITTING -> SUCCESS / FAILURE, FAILURE -> IDLE only via retry()
- One outstanding submission per attempt
- Confidence stored as a half-up rounded percentage
- Transport, timeout and backend errors end in FAILURE without confidence
- The success side effect runs once, after the grace delay, unless closed

Usage:
    pytest tests/test_verification_session.py -v
"""

import asyncio
from unittest.mock import MagicMock

import httpx
import pytest

from core.capture_state import CaptureState, PresenceStatus
from core.errors import (
    MalformedResponse,
    PreconditionMissing,
    SubmissionNetworkError,
    SubmissionRejected,
    Timeout,
)
from core.verification_session import (
    AttemptState,
    EnrollmentSession,
    InvalidTransition,
    VerificationSession,
    confidence_percent,
)
from frontend.api_client import APIClient, ApiResponse
from frontend.schemas import FaceVerificationResponse, RegisterFaceResponse


def verified(confidence: float = 0.92) -> ApiResponse:
    return ApiResponse(data=FaceVerificationResponse(verified=True, confidence=confidence))


def rejected(confidence: float = 0.4) -> ApiResponse:
    return ApiResponse(data=FaceVerificationResponse(verified=False, confidence=confidence))


def open_state() -> CaptureState:
    state = CaptureState()
    state.camera_ready = True
    state.models_ready = True
    state.update_faces(1)
    return state


# ============================================================
# Confidence rounding
# ============================================================

class TestConfidencePercent:
    """Tests for the rounded percentage."""

    @pytest.mark.parametrize(
        "confidence,expected",
        [(0.92, 92), (0.0, 0), (1.0, 100), (0.5, 50), (0.125, 13), (0.874, 87), (0.876, 88)],
    )
    def test_half_up(self, confidence, expected):
        assert confidence_percent(confidence) == expected


# ============================================================
# Verification outcomes
# ============================================================

class TestVerificationOutcomes:
    """Tests for interpreting backend replies."""

    def test_verified_reaches_success(self, fakes, identity, still_image):
        async def run():
            api = fakes.Api(verified(0.92))
            state = open_state()
            session = VerificationSession(api, identity, state, success_delay_sec=0.01)

            result = await session.submit(still_image)
            await session.close()
            return session, state, api, result

        session, state, api, result = asyncio.run(run())
        assert result == AttemptState.SUCCESS
        assert session.attempt_state == AttemptState.SUCCESS
        assert session.confidence == 92
        assert session.error_message is None
        assert api.calls == [("verify", "42", still_image)]
        # Capture stays closed after the attempt
        assert state.attempt_in_flight
        assert not state.allowed

    def test_rejected_reaches_failure_with_confidence(self, fakes, identity, still_image):
        on_success = MagicMock()

        async def run():
            session = VerificationSession(
                fakes.Api(rejected(0.4)), identity, open_state(),
                on_success=on_success, success_delay_sec=0.01,
            )
            await session.submit(still_image)
            await asyncio.sleep(0.05)
            return session

        session = asyncio.run(run())
        assert session.attempt_state == AttemptState.FAILURE
        assert session.confidence == 40
        assert session.error_message == "Face verification failed (40% confidence). Please try again."
        assert isinstance(session.failure, SubmissionRejected)
        assert session.failure.confidence == 0.4
        # The still is kept for re-display
        assert session.still_image is still_image
        on_success.assert_not_called()

    def test_failure_is_not_retried_automatically(self, fakes, identity, still_image):
        async def run():
            api = fakes.Api(rejected())
            session = VerificationSession(api, identity, open_state())
            await session.submit(still_image)
            await asyncio.sleep(0.05)
            return session, api

        session, api = asyncio.run(run())
        assert session.attempt_state == AttemptState.FAILURE
        assert len(api.calls) == 1

    def test_backend_error_body(self, fakes, identity, still_image):
        async def run():
            session = VerificationSession(fakes.Api(ApiResponse(error="User not found")), identity)
            await session.submit(still_image)
            return session

        session = asyncio.run(run())
        assert session.attempt_state == AttemptState.FAILURE
        assert session.confidence is None
        assert session.error_message == "User not found"

    @pytest.mark.parametrize(
        "error,message",
        [
            (SubmissionNetworkError(), "Could not reach the server. Please try again."),
            (MalformedResponse(), "Invalid response from server. Please try again."),
        ],
    )
    def test_transport_errors(self, fakes, identity, still_image, error, message):
        async def run():
            session = VerificationSession(fakes.Api(error), identity)
            await session.submit(still_image)
            return session

        session = asyncio.run(run())
        assert session.attempt_state == AttemptState.FAILURE
        assert session.confidence is None
        assert session.error_message == message
        assert session.failure is error

    def test_submission_timeout(self, fakes, identity, still_image):
        async def run():
            api = fakes.Api(verified(), blocking=True)
            session = VerificationSession(api, identity, submit_timeout_sec=0.02)
            await session.submit(still_image)
            return session

        session = asyncio.run(run())
        assert session.attempt_state == AttemptState.FAILURE
        assert session.confidence is None
        assert isinstance(session.failure, Timeout)

    def test_on_failure_callback(self, fakes, identity, still_image):
        on_failure = MagicMock()

        async def run():
            session = VerificationSession(fakes.Api(rejected()), identity, on_failure=on_failure)
            await session.submit(still_image)
            return session

        session = asyncio.run(run())
        on_failure.assert_called_once_with(session)

    def test_unexpected_error_ends_in_failure(self, fakes, identity, still_image):
        """Test that an exception outside the domain errors still ends the attempt."""
        state = open_state()

        async def run():
            session = VerificationSession(fakes.Api(RuntimeError("boom")), identity, state)
            await session.submit(still_image)
            return session

        session = asyncio.run(run())
        assert session.attempt_state == AttemptState.FAILURE
        assert session.confidence is None
        assert isinstance(session.failure, SubmissionNetworkError)
        assert not state.allowed

        session.retry()
        assert state.allowed

    def test_undecodable_reply_is_retryable(self, identity, still_image):
        """Test a reply whose Content-Encoding does not match its body."""
        state = open_state()

        def handler(request):
            return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip at all")

        async def run():
            async with APIClient("http://testserver/api", transport=httpx.MockTransport(handler)) as api:
                session = VerificationSession(api, identity, state)
                await session.submit(still_image)
                return session

        session = asyncio.run(run())
        assert session.attempt_state == AttemptState.FAILURE
        assert session.confidence is None
        assert isinstance(session.failure, SubmissionNetworkError)
        assert session.error_message == "Could not reach the server. Please try again."

        session.retry()
        assert session.attempt_state == AttemptState.IDLE
        assert not state.attempt_in_flight
        assert state.allowed


# ============================================================
# Transitions
# ============================================================

class TestTransitions:
    """Tests for the state machine rules."""

    def test_missing_identity_never_submits(self, fakes, still_image):
        async def run():
            api = fakes.Api(verified())
            state = open_state()
            session = VerificationSession(api, None, state)
            with pytest.raises(PreconditionMissing) as exc_info:
                await session.submit(still_image)
            return session, api, state, exc_info.value

        session, api, state, error = asyncio.run(run())
        assert error.user_message == "User information not found. Please log in again."
        assert session.attempt_state == AttemptState.IDLE
        assert api.calls == []
        assert not state.attempt_in_flight

    def test_second_submit_refused_while_submitting(self, fakes, identity, still_image):
        """Test that only one request is ever outstanding per attempt."""
        async def run():
            api = fakes.Api(verified(), blocking=True)
            state = open_state()
            session = VerificationSession(api, identity, state, success_delay_sec=0.01)

            first = asyncio.create_task(session.submit(still_image))
            await fakes.wait_until(lambda: session.attempt_state == AttemptState.SUBMITTING)
            assert state.attempt_in_flight
            assert state.status == PresenceStatus.VERIFYING

            second = await session.submit(still_image)
            assert second == AttemptState.SUBMITTING

            api.release.set()
            result = await first
            await session.close()
            return api, result

        api, result = asyncio.run(run())
        assert result == AttemptState.SUCCESS
        assert len(api.calls) == 1

    def test_submit_refused_in_terminal_states(self, fakes, identity, still_image):
        async def run():
            api = fakes.Api(rejected())
            session = VerificationSession(api, identity)
            await session.submit(still_image)
            again = await session.submit(still_image)
            return api, again

        api, again = asyncio.run(run())
        assert again == AttemptState.FAILURE
        assert len(api.calls) == 1

    def test_retry_from_failure(self, fakes, identity, still_image):
        async def run():
            api = fakes.Api(rejected())
            state = open_state()
            session = VerificationSession(api, identity, state)
            await session.submit(still_image)
            assert not state.allowed

            session.retry()
            return session, state

        session, state = asyncio.run(run())
        assert session.attempt_state == AttemptState.IDLE
        assert session.error_message is None
        assert session.failure is None
        assert not state.attempt_in_flight
        assert state.allowed

    def test_retry_only_from_failure(self, fakes, identity, still_image):
        session = VerificationSession(fakes.Api(verified()), identity)
        with pytest.raises(InvalidTransition):
            session.retry()

        async def run():
            await session.submit(still_image)
            try:
                with pytest.raises(InvalidTransition):
                    session.retry()
            finally:
                await session.close()

        asyncio.run(run())
        assert session.attempt_state == AttemptState.SUCCESS

    def test_new_attempt_clears_confidence(self, fakes, identity, still_image):
        async def run():
            api = fakes.Api(rejected(0.4))
            session = VerificationSession(api, identity)
            await session.submit(still_image)
            assert session.confidence == 40

            session.retry()
            api.response = ApiResponse(error="An error occurred")
            await session.submit(still_image)
            return session

        session = asyncio.run(run())
        assert session.attempt_state == AttemptState.FAILURE
        assert session.confidence is None


# ============================================================
# Success side effect
# ============================================================

class TestSideEffect:
    """Tests for the delayed navigation after success."""

    def test_runs_once_after_delay(self, fakes, identity, still_image):
        on_success = MagicMock()

        async def run():
            session = VerificationSession(
                fakes.Api(verified()), identity, on_success=on_success, success_delay_sec=0.05,
            )
            await session.submit(still_image)
            on_success.assert_not_called()

            await fakes.wait_until(lambda: on_success.called)
            await asyncio.sleep(0.1)
            await session.close()
            return session

        session = asyncio.run(run())
        on_success.assert_called_once_with(session)

    def test_async_side_effect_is_awaited(self, fakes, identity, still_image):
        done = []

        async def navigate(session):
            await asyncio.sleep(0)
            done.append(session.confidence)

        async def run():
            session = VerificationSession(
                fakes.Api(verified(0.88)), identity, on_success=navigate, success_delay_sec=0.01,
            )
            await session.submit(still_image)
            await fakes.wait_until(lambda: done)
            await session.close()

        asyncio.run(run())
        assert done == [88]

    def test_close_cancels_pending_side_effect(self, fakes, identity, still_image):
        on_success = MagicMock()

        async def run():
            session = VerificationSession(
                fakes.Api(verified()), identity, on_success=on_success, success_delay_sec=0.05,
            )
            await session.submit(still_image)
            await session.close()
            await asyncio.sleep(0.1)
            return session

        session = asyncio.run(run())
        on_success.assert_not_called()
        assert session.closed

    def test_result_after_close_is_dropped(self, fakes, identity, still_image):
        """Test that a reply arriving after teardown changes nothing."""
        on_success = MagicMock()

        async def run():
            api = fakes.Api(verified(), blocking=True)
            session = VerificationSession(api, identity, on_success=on_success, success_delay_sec=0.01)

            pending = asyncio.create_task(session.submit(still_image))
            await fakes.wait_until(lambda: len(api.calls) == 1)
            await session.close()

            api.release.set()
            result = await pending
            await asyncio.sleep(0.05)
            return session, result

        session, result = asyncio.run(run())
        assert result == AttemptState.SUBMITTING
        assert session.confidence is None
        on_success.assert_not_called()

    def test_submit_after_close(self, fakes, identity, still_image):
        async def run():
            session = VerificationSession(fakes.Api(verified()), identity)
            await session.close()
            with pytest.raises(InvalidTransition):
                await session.submit(still_image)

        asyncio.run(run())


# ============================================================
# Enrollment
# ============================================================

class TestEnrollmentSession:
    """Tests for the registration variant."""

    def test_success(self, fakes, identity, still_image):
        on_success = MagicMock()

        async def run():
            api = fakes.Api(ApiResponse(data=RegisterFaceResponse(success=True)))
            session = EnrollmentSession(api, identity, on_success=on_success, success_delay_sec=0.01)
            await session.submit(still_image)
            await fakes.wait_until(lambda: on_success.called)
            await session.close()
            return session, api

        session, api = asyncio.run(run())
        assert session.attempt_state == AttemptState.SUCCESS
        assert api.calls[0][0] == "register"
        on_success.assert_called_once_with(session)

    def test_failure_discards_still(self, fakes, identity, still_image):
        async def run():
            api = fakes.Api(ApiResponse(error="Face already registered"))
            state = open_state()
            session = EnrollmentSession(api, identity, state)
            await session.submit(still_image)
            assert session.still_image is None
            assert session.error_message == "Face already registered"

            session.retry()
            return session, state

        session, state = asyncio.run(run())
        assert session.attempt_state == AttemptState.IDLE
        assert state.allowed

    def test_unsuccessful_body(self, fakes, identity, still_image):
        async def run():
            api = fakes.Api(ApiResponse(data=RegisterFaceResponse(success=False)))
            session = EnrollmentSession(api, identity)
            await session.submit(still_image)
            return session

        session = asyncio.run(run())
        assert session.attempt_state == AttemptState.FAILURE
        assert session.error_message == "Failed to register face"
        assert session.still_image is None

    def test_network_error(self, fakes, identity, still_image):
        async def run():
            session = EnrollmentSession(fakes.Api(SubmissionNetworkError()), identity)
            await session.submit(still_image)
            return session

        session = asyncio.run(run())
        assert session.attempt_state == AttemptState.FAILURE
        assert session.still_image is None
