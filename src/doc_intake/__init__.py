"""Client-side batch upload and status-polling orchestrator for document intake."""

__version__ = "0.1.0"
