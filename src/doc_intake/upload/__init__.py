"""Batch document upload and status polling.

- File validation before registration
- In-memory record store with progress and completion callbacks
- One intake transaction per submission
- Per-record status polling with a bounded attempt ceiling
"""

from doc_intake.upload.models import (
    FileStatus,
    ErrorKind,
    ProcessingPhase,
    PHASE_PROGRESS_FLOORS,
    SourceFile,
    FileRecord,
    FileRejection,
    ValidationResult,
    UploadEntry,
    IntakeResponse,
    ProcessingStatus,
)
from doc_intake.upload.validator import FileValidator, SubmissionValidation
from doc_intake.upload.store import ProgressAggregator, RecordStore
from doc_intake.upload.client import IntakeClient, TransferTracker
from doc_intake.upload.uploader import BatchUploader
from doc_intake.upload.poller import StatusPoller
from doc_intake.upload.controller import AcceptResult, BatchUploadController

__all__ = [
    # Models
    "FileStatus",
    "ErrorKind",
    "ProcessingPhase",
    "PHASE_PROGRESS_FLOORS",
    "SourceFile",
    "FileRecord",
    "FileRejection",
    "ValidationResult",
    "UploadEntry",
    "IntakeResponse",
    "ProcessingStatus",
    # Validation
    "FileValidator",
    "SubmissionValidation",
    # Record store
    "ProgressAggregator",
    "RecordStore",
    # Transport
    "IntakeClient",
    "TransferTracker",
    # Orchestration
    "BatchUploader",
    "StatusPoller",
    "AcceptResult",
    "BatchUploadController",
]
