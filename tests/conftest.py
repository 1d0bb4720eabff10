"""
Shared test doubles for the face verification client.

The doubles stand in for the camera, the detector, the display refresh and
the backend so the async pipeline can be driven step by step:
- FakeTrack / FakeMediaDevices: camera acquisition without hardware
- FakePump: a ready camera that returns a fixed frame
- FakeDetector: scripted face counts, optional blocking, concurrency counter
- ManualTicker: display ticks fired explicitly by the test
- FakeApi: scripted verify/register responses

Tests get them through the `fakes` fixture.
"""

import asyncio
import sys
import time
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.auth_session import SessionIdentity
from core.capture_controller import StillImage
from core.face_detector import FaceBox
from core.media_devices import ENDED, LIVE, MediaStream


def make_frame(width: int = 64, height: int = 48, value: int = 128) -> np.ndarray:
    """Solid gray BGR frame."""
    return np.full((height, width, 3), value, dtype=np.uint8)


async def settle(rounds: int = 20):
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005):
    """Poll until predicate() is true or fail the test."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)


# ============================================================
# Camera
# ============================================================

class FakeTrack:
    """Video track that serves one frame on every read."""

    kind = "video"

    def __init__(self, frame=None, produce: bool = True, read_error=None):
        self.frame = make_frame() if frame is None else frame
        self.produce = produce
        self.read_error = read_error
        self.ready_state = LIVE
        self.reads = 0
        self.stop_calls = 0

    def read(self):
        self.reads += 1
        time.sleep(0.001)
        if self.read_error is not None:
            raise self.read_error
        if self.ready_state != LIVE or not self.produce:
            return None
        return self.frame

    def stop(self):
        self.stop_calls += 1
        self.ready_state = ENDED

    def unplug(self):
        """Simulate the device going away without stop() being called."""
        self.ready_state = ENDED

    @property
    def stopped(self) -> bool:
        return self.stop_calls > 0


class FakeMediaDevices:
    """Hands out a stream wrapping one FakeTrack, or raises a scripted error."""

    def __init__(self, track=None, error=None):
        self.track = track or FakeTrack()
        self.error = error
        self.requests = []

    async def get_user_media(self, constraints):
        self.requests.append(constraints)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return MediaStream([self.track])


class FakePump:
    """Stands in for FramePump in presence gate and controller tests."""

    def __init__(self, frame=None, ready: bool = True):
        self.frame = make_frame() if frame is None else frame
        self.is_ready = ready

    def current_frame(self):
        if not self.is_ready:
            return None
        return self.frame


# ============================================================
# Detector / ticker
# ============================================================

class FakeDetector:
    """
    Scripted detector.

    `results` is a list of face counts or exceptions, consumed one per call;
    the last entry repeats. While `release` is not set, calls block.
    """

    def __init__(self, results=None, blocking: bool = False, load_error=None, models_ready: bool = True):
        self.results = list(results) if results is not None else [1]
        self.release = asyncio.Event() if blocking else None
        self.load_error = load_error
        self.models_ready = models_ready
        self.load_calls = []
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.cancelled = 0

    async def load_models_async(self, source=None, variants=(), download=True):
        self.load_calls.append((source, tuple(variants)))
        await asyncio.sleep(0)
        if self.load_error is not None:
            raise self.load_error
        self.models_ready = True

    async def detect_async(self, frame, options=None):
        result = self.results[min(self.calls, len(self.results) - 1)]
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.release is not None:
                await self.release.wait()
            else:
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1

        if isinstance(result, Exception):
            raise result
        return [FaceBox(box=(10 * i, 10, 10 * i + 8, 30), score=0.9) for i in range(result)]


class ManualTicker:
    """Display ticker driven by the test: each tick() releases one next_tick()."""

    def __init__(self):
        self._pending = 0
        self._event = None
        self.consumed = 0

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
        return self._event

    async def next_tick(self) -> float:
        while self._pending == 0:
            event = self._get_event()
            event.clear()
            await event.wait()
        self._pending -= 1
        self.consumed += 1
        return time.monotonic()

    def tick(self, count: int = 1) -> None:
        self._pending += count
        self._get_event().set()


# ============================================================
# Backend
# ============================================================

class FakeApi:
    """
    Scripted face endpoints.

    `response` is returned (or raised, if it is an exception) from both
    verify_face and register_face. While `release` is not set, calls block.
    """

    def __init__(self, response=None, blocking: bool = False):
        self.response = response
        self.release = asyncio.Event() if blocking else None
        self.calls = []

    async def verify_face(self, user_id, image):
        return await self._respond("verify", user_id, image)

    async def register_face(self, user_id, image):
        return await self._respond("register", user_id, image)

    async def _respond(self, kind, user_id, image):
        self.calls.append((kind, user_id, image))
        if self.release is not None:
            await self.release.wait()
        else:
            await asyncio.sleep(0)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def fakes():
    """Namespace with the doubles and async helpers."""
    return SimpleNamespace(
        Track=FakeTrack,
        MediaDevices=FakeMediaDevices,
        Pump=FakePump,
        Detector=FakeDetector,
        Ticker=ManualTicker,
        Api=FakeApi,
        make_frame=make_frame,
        settle=settle,
        wait_until=wait_until,
    )


@pytest.fixture
def identity():
    """Identity of a logged-in user with an enrolled face."""
    return SessionIdentity(user_id="42", username="alice", email="alice@example.com", has_face_data=True)


@pytest.fixture
def still_image():
    """A small JPEG still."""
    return StillImage.from_frame(make_frame())
