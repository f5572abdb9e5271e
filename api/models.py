"""
API request and response models for FieldDay Auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import ResolvedIdentity, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
CODE_PATTERN = r"^\d{6}$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class OtpRequest(BaseModel):
    """Request body for POST /api/v1/auth/otp/request. Exactly one of phone or email."""

    model_config = ConfigDict(str_strip_whitespace=True)

    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: Optional[str]) -> Optional[str]:
        """Email addresses are case-insensitive in practice; store one canonical form."""
        return value.lower() if value else value

    @model_validator(mode="after")
    def require_identifier(self) -> "OtpRequest":
        if not self.phone and not self.email:
            raise ValueError("Either phone or email is required")
        return self

    @property
    def identifier(self) -> str:
        return self.phone or self.email


class OtpVerify(OtpRequest):
    """Request body for POST /api/v1/auth/otp/verify."""

    code: str = Field(pattern=CODE_PATTERN)


class MagicLinkRequest(BaseModel):
    """Request body for POST /api/v1/auth/magic/request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    redirect_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh. Browsers send the cookie instead."""

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: Optional[str] = None
    phone: Optional[str] = None
    roles: list[str]

    @classmethod
    def from_user(cls, user: User) -> "UserInfo":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            phone=user.phone,
            roles=[r.value for r in user.roles],
        )


class TokenResponse(BaseModel):
    """Token pair returned after sign-in or refresh.

    refresh_token is None for browser clients, which receive it as an
    httpOnly cookie instead.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int
    user: Optional[UserInfo] = None


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    email: Optional[str] = None
    phone: Optional[str] = None
    roles: list[str]
    acting_role: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: ResolvedIdentity, user: User) -> "MeResponse":
        return cls(
            user_id=user.id,
            username=user.username,
            email=user.email,
            phone=user.phone,
            roles=[r.value for r in user.roles],
            acting_role=identity.acting_role.value if identity.acting_role else None,
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
