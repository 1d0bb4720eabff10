"""
Presence Gate Module

Keeps a near-real-time answer to "is there exactly one face in front of
the camera?" and publishes it through the shared CaptureState.

The gate is a cooperative asyncio task. It re-arms once per display tick
and only after the previous detection call has resolved, so there is never
more than one detection in flight. Ticks without a decodable frame skip the
detector entirely.

Detector failures keep the previous face count instead of reporting zero
faces, so a flaky detector does not flap the capture button. A detection
that times out is left to finish on its own; no new detection starts until
it has.

Usage:
    gate = PresenceGate(pump, detector, state)
    gate.start()
    ...
    await gate.stop()     # before releasing the camera
"""

import asyncio
import contextlib
import logging
import time
from typing import Any, Optional

from core.capture_state import CaptureState
from core.face_detector import DetectorOptions

logger = logging.getLogger(__name__)


class DisplayTicker:
    """
    Display-refresh tick source.

    Ticks fall on a fixed grid of the monotonic clock (like animation frames),
    so a slow detection skips to the next refresh instead of adding a full
    period on top of its own duration.
    """

    def __init__(self, hz: float = 60.0):
        if hz <= 0:
            raise ValueError(f"hz must be positive, got {hz}")
        self.period = 1.0 / hz

    async def next_tick(self) -> float:
        now = time.monotonic()
        next_at = (int(now / self.period) + 1) * self.period
        await asyncio.sleep(next_at - now)
        return next_at


class PresenceGate:
    """
    Continuous face-count polling loop.

    Attributes:
        detections_started: Number of detection calls issued (for diagnostics).
        consecutive_failures: Detector failures since the last success.
    """

    def __init__(
        self,
        frame_pump: Any,
        detector: Any,
        state: CaptureState,
        ticker: Optional[Any] = None,
        detect_timeout_sec: float = 2.0,
        options: Optional[DetectorOptions] = None,
        failure_log_every: int = 30,
    ):
        self._pump = frame_pump
        self._detector = detector
        self._state = state
        self._ticker = ticker or DisplayTicker()
        self.detect_timeout_sec = detect_timeout_sec
        self.options = options or DetectorOptions()
        self.failure_log_every = max(1, failure_log_every)

        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self._stale_call: Optional[asyncio.Future] = None

        self.detections_started = 0
        self.consecutive_failures = 0

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """
        Start the loop. Requires a ready camera and loaded models.

        Raises:
            RuntimeError: If the gate is running, closed, or not ready to run.
        """
        if self._closed:
            raise RuntimeError("PresenceGate has been stopped")
        if self.is_running:
            raise RuntimeError("PresenceGate is already running")
        if not (self._pump.is_ready and self._state.models_ready):
            raise RuntimeError("PresenceGate needs a ready camera and loaded models")

        logger.info("Starting face presence detection")
        self._task = asyncio.create_task(self._run(), name="presence-gate")

    async def stop(self) -> None:
        """
        Stop the loop and wait for it to exit.

        After this returns no detection result can reach the shared state.
        Idempotent.
        """
        self._closed = True

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            logger.info("Face presence detection stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    # ==================== Loop ====================

    async def _run(self) -> None:
        while not self._closed:
            await self._ticker.next_tick()

            if self._closed:
                return
            if not (self._pump.is_ready and self._state.models_ready):
                logger.info("Camera or models no longer ready, presence loop exiting")
                return

            await self._tick()

    async def _tick(self) -> None:
        if self._stale_call is not None:
            if not self._stale_call.done():
                # A timed-out detection still owns the detector
                return
            self._stale_call = None

        frame = self._pump.current_frame()
        if frame is None:
            return

        self.detections_started += 1
        call = asyncio.ensure_future(self._detector.detect_async(frame, self.options))

        try:
            faces = await asyncio.wait_for(asyncio.shield(call), self.detect_timeout_sec)
        except asyncio.CancelledError:
            call.cancel()
            raise
        except asyncio.TimeoutError:
            self._stale_call = call
            call.add_done_callback(_consume_result)
            self._record_failure(f"detection timed out after {self.detect_timeout_sec}s")
            return
        except Exception as e:
            self._record_failure(str(e) or type(e).__name__)
            return

        if self._closed:
            # Torn down while the detector was running
            return

        if self.consecutive_failures:
            logger.info(f"Face detection recovered after {self.consecutive_failures} failure(s)")
            self.consecutive_failures = 0

        self._state.update_faces(len(faces), boxes=[f.box for f in faces])

    def _record_failure(self, reason: str) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures == 1 or self.consecutive_failures % self.failure_log_every == 0:
            logger.warning(
                f"Error detecting faces ({self.consecutive_failures} consecutive): {reason}; "
                f"keeping face count {self._state.face_count}"
            )
        else:
            logger.debug(f"Error detecting faces: {reason}")


def _consume_result(future: "asyncio.Future") -> None:
    # Retrieve the outcome so a late failure is not reported as never retrieved
    if not future.cancelled():
        future.exception()
