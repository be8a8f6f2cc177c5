"""Core utilities for the document intake client."""

from doc_intake.core.logging import get_logger, configure_logging
from doc_intake.core.errors import (
    IntakeClientError,
    ValidationError,
    TransportError,
    TransportErrorKind,
    AuthenticationError,
    RemoteProcessingError,
    ProcessingTimeoutError,
    InvalidTransitionError,
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    # Errors
    "IntakeClientError",
    "ValidationError",
    "TransportError",
    "TransportErrorKind",
    "AuthenticationError",
    "RemoteProcessingError",
    "ProcessingTimeoutError",
    "InvalidTransitionError",
]
