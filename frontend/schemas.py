"""
Pydantic Schemas for Backend Responses

This module defines the response bodies the client expects from the
identity backend. Validation failures are reported as malformed responses
by the API client.

These schemas provide:
- Type validation
- Clear interface contracts with the backend
"""

from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field


# ============================================================
# Auth Schemas
# ============================================================

class RegisterResponse(BaseModel):
    """Body of a successful POST /auth/register."""
    model_config = ConfigDict(extra="allow")

    user_id: Union[str, int] = Field(..., description="Identifier of the created account")


class UserProfile(BaseModel):
    """User object returned by login and profile endpoints."""
    model_config = ConfigDict(extra="allow")

    id: Union[str, int, None] = Field(None, description="User identifier")
    user_id: Union[str, int, None] = Field(None, description="Alternative identifier key")
    username: Optional[str] = Field(None, description="Display name")
    email: Optional[str] = Field(None, description="Account email")
    has_face_data: bool = Field(False, description="True if a face has been enrolled")


class LoginResponse(BaseModel):
    """Body of a successful POST /auth/login. The token may be absent."""
    model_config = ConfigDict(extra="allow")

    user: Optional[UserProfile] = Field(None, description="Authenticated user")
    token: Optional[str] = Field(None, description="Bearer token, if the backend issues one")


# ============================================================
# Face Schemas
# ============================================================

class RegisterFaceResponse(BaseModel):
    """Body of a successful POST /face/register-face."""
    model_config = ConfigDict(extra="allow")

    success: bool = Field(True, description="Whether the face sample was stored")


class FaceVerificationResponse(BaseModel):
    """Body of a successful POST /face/verify-face."""
    verified: bool = Field(..., description="True if the face matches the enrolled user")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Match confidence in [0, 1]")
