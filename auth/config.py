"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Session configuration.

    Sessions are issued by the login flow and validated here. Durations are
    in hours.
    """

    session_expiry_hours: int = Field(
        default=2160,  # 90 days
        description="Session lifetime in hours",
        ge=1,
        le=2160,
    )
    session_extend_on_activity: bool = Field(
        default=True,
        description="Whether to extend session expiry on activity",
    )
    session_extend_threshold_hours: int = Field(
        default=24,
        description="Extend session if less than this many hours remaining",
        ge=1,
    )
    session_cookie_name: str = Field(
        default="session_token",
        description="Cookie carrying the session token",
    )
