"""Data models for batch document upload and status tracking.

- Source file handles and per-file records tracked by the orchestrator
- Intake and status endpoint response models
- Processing phases and their progress floors
"""

import asyncio
import mimetypes
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class FileStatus(str, Enum):
    """Status of one submitted file on its way through the orchestrator."""

    SELECTED = "selected"
    PENDING = "pending"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (FileStatus.COMPLETED, FileStatus.ERROR)


# Allowed forward moves; same-state updates are listed where progress may change.
ALLOWED_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.SELECTED: frozenset({FileStatus.PENDING}),
    FileStatus.PENDING: frozenset({FileStatus.UPLOADING}),
    FileStatus.UPLOADING: frozenset(
        {FileStatus.UPLOADING, FileStatus.PROCESSING, FileStatus.ERROR}
    ),
    FileStatus.PROCESSING: frozenset(
        {FileStatus.PROCESSING, FileStatus.COMPLETED, FileStatus.ERROR}
    ),
    FileStatus.COMPLETED: frozenset(),
    FileStatus.ERROR: frozenset(),
}


class ErrorKind(str, Enum):
    """Which failure class put a record into the error state."""

    VALIDATION = "validation"
    TRANSPORT = "transport"
    REMOTE_PROCESSING = "remote_processing"
    TIMEOUT = "timeout"


class ProcessingPhase(str, Enum):
    """Remote processing phases with a known progress floor."""

    PROCESSING = "processing"
    PARSING = "parsing"
    EXTRACTING = "extracting"
    STORING = "storing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ProcessingPhase"]:
        """Map a remote status string to a phase, None when unknown."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


PHASE_PROGRESS_FLOORS: dict[ProcessingPhase, int] = {
    ProcessingPhase.PROCESSING: 20,
    ProcessingPhase.PARSING: 40,
    ProcessingPhase.EXTRACTING: 60,
    ProcessingPhase.STORING: 80,
    ProcessingPhase.COMPLETED: 100,
}


@dataclass(frozen=True)
class SourceFile:
    """Handle to one candidate document.

    The orchestrator only looks at name, size and content type; the bytes are
    streamed straight into the upload request.
    """

    name: str
    size: int
    content_type: str
    path: Optional[Path] = None
    data: Optional[bytes] = field(default=None, repr=False)

    @classmethod
    def from_path(cls, path: "str | Path", content_type: Optional[str] = None) -> "SourceFile":
        """Create a handle for a file on disk, guessing its MIME type."""
        file_path = Path(path)
        guessed, _ = mimetypes.guess_type(file_path.name)
        return cls(
            name=file_path.name,
            size=file_path.stat().st_size,
            content_type=(content_type or guessed or DEFAULT_CONTENT_TYPE).lower(),
            path=file_path,
        )

    @classmethod
    def from_bytes(
        cls,
        name: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> "SourceFile":
        """Create a handle for in-memory content."""
        guessed, _ = mimetypes.guess_type(name)
        return cls(
            name=name,
            size=len(data),
            content_type=(content_type or guessed or DEFAULT_CONTENT_TYPE).lower(),
            data=data,
        )

    async def iter_chunks(self, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        """Yield the content in chunks of at most ``chunk_size`` bytes."""
        if self.data is not None:
            for offset in range(0, len(self.data), chunk_size):
                yield self.data[offset:offset + chunk_size]
            return
        if self.path is None:
            raise ValueError(f"Source file {self.name} has neither a path nor data")
        with open(self.path, "rb") as handle:
            while True:
                chunk = await asyncio.to_thread(handle.read, chunk_size)
                if not chunk:
                    break
                yield chunk


@dataclass
class FileRecord:
    """Per-file state from registration to a terminal outcome."""

    source: SourceFile
    record_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    progress: int = 0
    status: FileStatus = FileStatus.PENDING
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    correlation_id: Optional[str] = None
    phase: Optional[ProcessingPhase] = None
    remote_status: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def file_name(self) -> str:
        return self.source.name

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and JSON output."""
        return {
            "record_id": self.record_id,
            "file_name": self.source.name,
            "file_size": self.source.size,
            "content_type": self.source.content_type,
            "status": self.status.value,
            "progress": self.progress,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "correlation_id": self.correlation_id,
            "phase": self.phase.value if self.phase else None,
            "remote_status": self.remote_status,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class FileRejection:
    """A candidate file that failed validation, with the reason shown to the user."""

    source: SourceFile
    error: str
    error_code: Optional[int] = None


class ValidationResult(BaseModel):
    """Result of validating one candidate file."""

    valid: bool = Field(..., description="Whether validation passed")
    error_code: Optional[int] = Field(None, description="HTTP-style error code if invalid")
    error_message: Optional[str] = Field(None, description="Error message if invalid")
    content_type: Optional[str] = Field(None, description="Declared MIME type")
    file_size: Optional[int] = Field(None, description="File size in bytes")


class UploadEntry(BaseModel):
    """Intake response entry for one file accepted for processing."""

    upload_id: str = Field(..., description="Correlation id used for status queries")
    filename: Optional[str] = Field(None, description="Original file name")
    status: Optional[str] = Field(None, description="Initial remote status")
    message: Optional[str] = Field(None, description="Optional message")


class IntakeResponse(BaseModel):
    """Body returned by the multi-file intake endpoint."""

    success: bool = Field(..., description="Whether the transaction was accepted")
    message: Optional[str] = Field(None, description="Summary message")
    uploads: list[UploadEntry] = Field(default_factory=list)
    failed_uploads: list[dict[str, Any]] = Field(
        default_factory=list, description="One {filename: reason} mapping per failed file"
    )


class ProcessingStatus(BaseModel):
    """Body returned by the status endpoint for one correlation id."""

    upload_id: Optional[str] = Field(None, description="Correlation id")
    filename: Optional[str] = Field(None, description="Original file name")
    status: str = Field(..., description="Remote processing phase")
    progress_percentage: Optional[float] = Field(None, description="Remote progress")
    current_step: Optional[str] = Field(None, description="Remote step description")
    error: Optional[str] = Field(None, description="Error message for failed phase")
    estimated_completion: Optional[str] = Field(None, description="Remote estimate")

    @property
    def phase(self) -> Optional[ProcessingPhase]:
        return ProcessingPhase.parse(self.status)
