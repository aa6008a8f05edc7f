"""GitHub integration configuration models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator


class GitHubConfig(BaseModel):
    """GitHub REST API settings shared by every pull-request promotion."""

    model_config = ConfigDict(extra="forbid")

    # Overrides the API base derived from the repository host
    api_url: str | None = None
    timeout: int = 30
    verify_ssl: bool = True
    retries: int = 3

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str | None) -> str | None:
        """Validate API URL format."""
        if v is None:
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        """Validate retries is at least one."""
        if v < 1:
            raise ValueError("retries must be at least 1")
        return v
