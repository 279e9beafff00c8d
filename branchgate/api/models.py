"""
Pydantic Models for the BranchGate API.

Request and response models for all API endpoints.
"""
from datetime import datetime
from typing import Optional, Dict
from pydantic import BaseModel, EmailStr, Field, ConfigDict


# ============================================
# Authentication Models
# ============================================

class LoginRequest(BaseModel):
    """
    Login request.

    Authenticate a principal with email and password.
    """
    email: EmailStr = Field(..., description="Registered email address")
    password: str = Field(..., min_length=1, max_length=1024, description="Account password")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "branch@client.com",
                "password": "securepassword123"
            }
        }
    )


class RegisterRequest(BaseModel):
    """
    Branch registration request.

    Sets the first password of a provisioned account. The password policy
    (minimum 8 characters) is enforced by the service.
    """
    email: EmailStr = Field(..., description="Provisioned email address")
    password: str = Field(..., max_length=1024, description="New password (minimum 8 characters)")
    manager_name: Optional[str] = Field(None, max_length=255, description="Branch manager, shown as the display name")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "branch@client.com",
                "password": "securepassword123",
                "manager_name": "Ana Torres"
            }
        }
    )


class EmailRequest(BaseModel):
    """Request carrying only an address (verification and reset requests)."""
    email: EmailStr = Field(..., description="Email address")


class TokenRequest(BaseModel):
    """Request carrying a single-use token."""
    token: str = Field(..., min_length=1, max_length=256)


class PasswordResetRequest(BaseModel):
    """
    Password reset with a token from the reset email.

    All sessions of the account are revoked on success.
    """
    token: str = Field(..., min_length=1, max_length=256, description="Reset token")
    new_password: str = Field(..., max_length=1024, description="New password (minimum 8 characters)")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "token": "q3N0cW1oZ0...",
                "new_password": "newsecurepassword456"
            }
        }
    )


class PrincipalResponse(BaseModel):
    """Profile of the authenticated principal."""
    principal_id: str
    identity_address: str
    display_name: Optional[str] = None
    is_verified: bool
    last_login_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    """Uniform result of every auth operation."""
    success: bool
    message: str
    reason: str = Field(..., description="Machine-readable outcome code")
    token: Optional[str] = Field(None, description="Bearer token (login only)")
    expires_at: Optional[datetime] = None
    retry_after: Optional[int] = Field(None, description="Seconds until retry is allowed")
    principal: Optional[PrincipalResponse] = Field(None, description="Authenticated principal (login only)")


# ============================================
# Health Models
# ============================================

class HealthStatus(BaseModel):
    """API health status."""
    status: str
    version: str
    services: Dict[str, str]
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    code: Optional[str] = None
