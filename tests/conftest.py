"""Shared fixtures for the document intake client tests."""

import pytest

from doc_intake.config import FileUploadOptions, IntakeClientConfig
from doc_intake.upload.models import SourceFile


def make_pdf(name: str = "report.pdf", size: int = 1024) -> SourceFile:
    """Build an in-memory PDF source of ``size`` bytes."""
    return SourceFile.from_bytes(name, b"%" + b"P" * (size - 1), "application/pdf")


class RecordingSleeper:
    """Stand-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture
def pdf():
    return make_pdf()


@pytest.fixture
def multi_options():
    """Options allowing up to ten PDFs per session."""
    return FileUploadOptions(max_files=10, allow_multiple=True)


@pytest.fixture
def fast_config():
    return IntakeClientConfig(
        base_url="http://intake.test",
        poll_initial_delay=2.0,
        poll_interval=5.0,
        max_poll_attempts=60,
    )


@pytest.fixture
def sleeper():
    return RecordingSleeper()
