"""Exception classes for the document intake client."""

from enum import Enum
from typing import Optional


class IntakeClientError(Exception):
    """Base exception for all document intake client errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class ValidationError(IntakeClientError):
    """A candidate file violated a type, size or batch-count rule."""

    def __init__(
        self,
        message: str,
        file_name: Optional[str] = None,
        validation_type: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="VALIDATION", **kwargs)
        self.file_name = file_name
        self.validation_type = validation_type
        self.details.update({
            "file_name": file_name,
            "validation_type": validation_type,
        })


class TransportErrorKind(str, Enum):
    """Classification of a failed exchange with the intake service."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    BAD_REQUEST = "bad_request"
    SERVER = "server"


class TransportError(IntakeClientError):
    """Error talking to the intake or status endpoint."""

    def __init__(
        self,
        message: str,
        kind: TransportErrorKind = TransportErrorKind.SERVER,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="TRANSPORT", **kwargs)
        self.kind = kind
        self.status_code = status_code
        self.url = url
        self.details.update({
            "kind": kind.value,
            "status_code": status_code,
            "url": url,
        })


class AuthenticationError(TransportError):
    """The service rejected the bearer credential (401/403)."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(
            message,
            kind=TransportErrorKind.AUTHENTICATION,
            status_code=status_code,
            **kwargs,
        )


class RemoteProcessingError(IntakeClientError):
    """The remote pipeline reported a terminal failure phase."""

    def __init__(
        self,
        message: str,
        correlation_id: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="REMOTE_PROCESSING", **kwargs)
        self.correlation_id = correlation_id
        self.details.update({"correlation_id": correlation_id})


class ProcessingTimeoutError(IntakeClientError):
    """Polling hit its attempt ceiling without a terminal remote phase."""

    def __init__(
        self,
        message: str,
        correlation_id: Optional[str] = None,
        attempts: int = 0,
        **kwargs,
    ):
        super().__init__(message, error_code="PROCESSING_TIMEOUT", **kwargs)
        self.correlation_id = correlation_id
        self.attempts = attempts
        self.details.update({
            "correlation_id": correlation_id,
            "attempts": attempts,
        })


class InvalidTransitionError(IntakeClientError):
    """A record mutation would move its state machine backward or sideways."""

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="INVALID_TRANSITION", **kwargs)
        self.record_id = record_id
        self.from_status = from_status
        self.to_status = to_status
        self.details.update({
            "record_id": record_id,
            "from_status": from_status,
            "to_status": to_status,
        })
