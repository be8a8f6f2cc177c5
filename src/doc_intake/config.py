"""Configuration models for the document intake client."""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_INTAKE_PATH = "/api/v1/oracle/admin/upload-insurance"
DEFAULT_STATUS_PATH = "/api/v1/admin/upload-status"

MEGABYTE = 1024 * 1024


class IntakeClientConfig(BaseModel):
    """Connection and polling settings for the intake service."""

    base_url: str = Field(default=DEFAULT_BASE_URL, description="Service base URL")
    intake_path: str = Field(
        default=DEFAULT_INTAKE_PATH, description="Path of the multi-file intake endpoint"
    )
    status_path: str = Field(
        default=DEFAULT_STATUS_PATH,
        description="Path of the status endpoint; the correlation id is appended",
    )
    request_timeout_seconds: float = Field(default=120.0, description="Request timeout")
    poll_initial_delay: float = Field(
        default=2.0, description="Delay before the first status query"
    )
    poll_interval: float = Field(default=5.0, description="Delay between status queries")
    max_poll_attempts: int = Field(
        default=60, description="Status queries allowed before a record times out"
    )
    chunk_size: int = Field(default=64 * 1024, description="Upload stream chunk size")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    user_agent: str = Field(
        default="DocIntakeClient/0.1",
        description="User agent string for requests",
    )

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("request_timeout_seconds", "poll_interval", "chunk_size", "max_poll_attempts")
    @classmethod
    def _must_be_positive(cls, value):
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("poll_initial_delay")
    @classmethod
    def _must_not_be_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @property
    def intake_url(self) -> str:
        return f"{self.base_url}{self.intake_path}"

    def status_url(self, correlation_id: str) -> str:
        """Build the status URL for one correlation id."""
        return f"{self.base_url}{self.status_path.rstrip('/')}/{correlation_id}"

    @property
    def polling_bound_seconds(self) -> float:
        """Upper bound on how long one record can stay in processing."""
        return self.poll_initial_delay + self.max_poll_attempts * self.poll_interval

    @classmethod
    def from_env(cls, base_url: Optional[str] = None) -> "IntakeClientConfig":
        """Build a configuration from ``DOC_INTAKE_*`` environment variables.

        Args:
            base_url: Explicit base URL, overriding ``DOC_INTAKE_API_URL``

        Returns:
            IntakeClientConfig with environment overrides applied
        """
        values: dict = {
            "base_url": base_url or os.environ.get("DOC_INTAKE_API_URL", DEFAULT_BASE_URL),
        }
        env_fields = {
            "DOC_INTAKE_REQUEST_TIMEOUT": "request_timeout_seconds",
            "DOC_INTAKE_POLL_INTERVAL": "poll_interval",
            "DOC_INTAKE_POLL_INITIAL_DELAY": "poll_initial_delay",
            "DOC_INTAKE_MAX_POLL_ATTEMPTS": "max_poll_attempts",
            "DOC_INTAKE_VERIFY_SSL": "verify_ssl",
        }
        for env_name, field_name in env_fields.items():
            raw = os.environ.get(env_name)
            if raw is not None and raw != "":
                values[field_name] = raw
        return cls(**values)


class FileUploadOptions(BaseModel):
    """Acceptance rules applied to candidate files before registration."""

    max_files: int = Field(default=1, description="Maximum registered files")
    max_size_bytes: int = Field(default=15 * MEGABYTE, description="Per-file size limit")
    accepted_file_types: list[str] = Field(
        default_factory=lambda: ["application/pdf"],
        description="Accepted MIME types",
    )
    allow_multiple: bool = Field(
        default=False, description="Whether one submission may carry several files"
    )

    @field_validator("max_files", "max_size_bytes")
    @classmethod
    def _limit_must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("accepted_file_types")
    @classmethod
    def _types_required(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one accepted file type is required")
        return [v.strip().lower() for v in value]

