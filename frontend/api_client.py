"""
API client for the face verification backend.

Handles the REST calls of the two-step login: password register/login,
then face register/verify with a JPEG upload.
Includes mock mode for development without backend.

Every call returns an ApiResponse with either `data` or `error` (the
backend's error message for non-2xx statuses). Transport failures raise
SubmissionNetworkError / Timeout; bodies that break the contract raise
MalformedResponse.
"""

import asyncio
import logging
import uuid
import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

import httpx
from pydantic import ValidationError

from core.capture_controller import StillImage
from core.errors import MalformedResponse, SubmissionNetworkError, Timeout
from frontend.schemas import (
    FaceVerificationResponse,
    LoginResponse,
    RegisterFaceResponse,
    RegisterResponse,
    UserProfile,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ERROR = "An error occurred"


class ConnectionMode(Enum):
    """API connection mode."""
    MOCK = "mock"          # Simulated responses (no backend needed)
    LIVE = "live"          # Real backend connection


@dataclass
class ApiResponse(Generic[T]):
    """Result of one backend call: data on success, error message otherwise."""
    data: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MockBackend:
    """
    Simulates backend responses for development without the real API.
    Mimics the register/login/face endpoints of the identity service.
    """

    def __init__(self, latency_sec: float = 0.3):
        self.latency_sec = latency_sec
        self._users: Dict[str, Dict[str, Any]] = {}
        self._faces: Dict[str, bytes] = {}

    def reset(self):
        """Forget all simulated accounts."""
        self._users.clear()
        self._faces.clear()

    async def register(self, username: str, email: str, password: str) -> ApiResponse[Dict[str, Any]]:
        await asyncio.sleep(self.latency_sec)
        if any(u["email"] == email for u in self._users.values()):
            return ApiResponse(error="Email already registered")

        user_id = f"usr_{uuid.uuid4().hex[:8]}"
        self._users[user_id] = {"id": user_id, "username": username, "email": email, "password": password}
        return ApiResponse(data={"user_id": user_id})

    async def login(self, email: str, password: str) -> ApiResponse[Dict[str, Any]]:
        await asyncio.sleep(self.latency_sec)
        for user in self._users.values():
            if user["email"] == email and user["password"] == password:
                return ApiResponse(data={
                    "user": {
                        "id": user["id"],
                        "username": user["username"],
                        "email": user["email"],
                        "has_face_data": user["id"] in self._faces,
                    },
                    "token": f"mock-token-{user['id']}",
                })
        return ApiResponse(error="Invalid email or password")

    async def register_face(self, user_id: str, image: StillImage) -> ApiResponse[Dict[str, Any]]:
        await asyncio.sleep(self.latency_sec)
        if user_id not in self._users:
            return ApiResponse(error="User not found")
        self._faces[user_id] = image.jpeg
        return ApiResponse(data={"success": True})

    async def verify_face(self, user_id: str, image: StillImage) -> ApiResponse[Dict[str, Any]]:
        await asyncio.sleep(self.latency_sec)
        if user_id not in self._faces:
            return ApiResponse(error="No face data registered for this user")

        # Random match result (80% match rate for demo)
        verified = bool(np.random.random() > 0.2)
        confidence = np.random.uniform(0.75, 0.98) if verified else np.random.uniform(0.3, 0.6)
        return ApiResponse(data={"verified": verified, "confidence": float(confidence)})


class APIClient:
    """
    Client for communicating with the identity backend.

    Supports both live (real backend) and mock (simulated) modes.
    Use as an async context manager, or call aclose() when done.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:5000/api",
        mode: ConnectionMode = ConnectionMode.LIVE,
        timeout_sec: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        mock_backend: Optional[MockBackend] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.mode = mode
        self.timeout_sec = timeout_sec

        self._mock = mock_backend or MockBackend()
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_sec,
            transport=transport,
        )

    def set_mode(self, mode: ConnectionMode) -> None:
        """Switch between mock and live mode."""
        self.mode = mode
        logger.info(f"API client switched to {mode.value.upper()} mode")

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    # ==================== Auth ====================

    async def register(self, username: str, email: str, password: str) -> ApiResponse[Dict[str, Any]]:
        """Create an account. Success data: {"user_id": ...}."""
        if self.mode == ConnectionMode.MOCK:
            return await self._mock.register(username, email, password)

        result = await self._request(
            "POST", "/auth/register",
            json={"username": username, "email": email, "password": password},
        )
        if result.ok:
            self._validate(RegisterResponse, result.data, "register")
        return result

    async def login(self, email: str, password: str) -> ApiResponse[Dict[str, Any]]:
        """
        Password login. Success data: {"user": {...}, "token": ...}.

        The token is not stored here; the caller owns the AuthSession.
        """
        if self.mode == ConnectionMode.MOCK:
            return await self._mock.login(email, password)

        result = await self._request("POST", "/auth/login", json={"email": email, "password": password})
        if result.ok:
            self._validate(LoginResponse, result.data, "login")
        return result

    async def get_profile(self, token: str) -> ApiResponse[UserProfile]:
        """Fetch the current user's profile with a bearer token."""
        if self.mode == ConnectionMode.MOCK:
            return ApiResponse(error="Profile is not available in mock mode")

        result = await self._request("GET", "/user/profile", headers={"Authorization": f"Bearer {token}"})
        if not result.ok:
            return result
        return ApiResponse(data=self._validate(UserProfile, result.data, "profile"))

    # ==================== Face ====================

    async def register_face(self, user_id: str, image: StillImage) -> ApiResponse[RegisterFaceResponse]:
        """Enroll a face sample for a freshly registered user."""
        if self.mode == ConnectionMode.MOCK:
            result = await self._mock.register_face(user_id, image)
        else:
            result = await self._request(
                "POST", "/face/register-face",
                files={"face_image": image.as_upload("face.jpg")},
                data={"user_id": user_id},
            )
        if not result.ok:
            return result
        return ApiResponse(data=self._validate(RegisterFaceResponse, result.data, "register-face"))

    async def verify_face(self, user_id: str, image: StillImage) -> ApiResponse[FaceVerificationResponse]:
        """Verify a face sample against the user's enrolled face."""
        if self.mode == ConnectionMode.MOCK:
            result = await self._mock.verify_face(user_id, image)
        else:
            result = await self._request(
                "POST", "/face/verify-face",
                files={"face_image": image.as_upload("face-verification.jpg")},
                data={"user_id": user_id},
            )
        if not result.ok:
            return result
        return ApiResponse(data=self._validate(FaceVerificationResponse, result.data, "verify-face"))

    # ==================== Helpers ====================

    async def _request(self, method: str, path: str, **kwargs) -> ApiResponse[Dict[str, Any]]:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise Timeout(
                "The server took too long to respond. Please try again.",
                log_message=f"{method} {path} timed out: {e}",
            ) from e
        except httpx.HTTPError as e:
            # Also covers DecodingError from a broken Content-Encoding
            raise SubmissionNetworkError(log_message=f"{method} {path} failed: {e}") from e

        return self._handle_response(method, path, response)

    @staticmethod
    def _handle_response(method: str, path: str, response: httpx.Response) -> ApiResponse[Dict[str, Any]]:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if not response.is_success:
            logger.warning(f"{method} {path} failed: {response.status_code}")
            return ApiResponse(error=data.get("error") or DEFAULT_ERROR)

        return ApiResponse(data=data)

    @staticmethod
    def _validate(schema, data: Any, operation: str):
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise MalformedResponse(log_message=f"Malformed {operation} response: {e}") from e


# Global client instance
_api_client: Optional[APIClient] = None


def get_api_client() -> APIClient:
    """Get or create the global API client instance from the api config section."""
    global _api_client
    if _api_client is None:
        from core.config import get_api_config

        api_config = get_api_config()
        _api_client = APIClient(
            base_url=api_config.get("base_url", "http://localhost:5000/api"),
            mode=ConnectionMode(api_config.get("mode", "live")),
            timeout_sec=api_config.get("timeout_sec", 30.0),
        )
    return _api_client
