"""Batch upload controller.

Entry point for callers: validates submissions, registers records, runs one
upload task per ``accept`` call and one polling task per uploaded record.
"""

import asyncio
from collections.abc import Coroutine, Iterable
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from doc_intake.config import FileUploadOptions, IntakeClientConfig
from doc_intake.core import get_logger
from doc_intake.upload.client import IntakeClient
from doc_intake.upload.models import FileRecord, FileRejection, SourceFile
from doc_intake.upload.poller import Sleeper, StatusPoller
from doc_intake.upload.store import ProgressAggregator, RecordsCallback, RecordStore
from doc_intake.upload.uploader import BatchUploader
from doc_intake.upload.validator import FileValidator

logger = get_logger(__name__)


@dataclass
class AcceptResult:
    """What one ``accept`` call registered and what it turned away."""

    records: list[FileRecord] = field(default_factory=list)
    rejections: list[FileRejection] = field(default_factory=list)

    @property
    def accepted(self) -> int:
        return len(self.records)


class BatchUploadController:
    """Orchestrates validation, upload and status polling for one session.

    All sub-batches share one record store and one completion latch. Each
    ``accept`` call is uploaded as its own transaction; uploads and polling
    loops run as independent asyncio tasks.
    """

    def __init__(
        self,
        client: Optional[IntakeClient] = None,
        options: Optional[FileUploadOptions] = None,
        on_upload_start: Optional[Callable[[list[SourceFile]], Any]] = None,
        on_upload_progress: Optional[RecordsCallback] = None,
        on_upload_complete: Optional[RecordsCallback] = None,
        on_upload_error: Optional[Callable[[list[FileRejection]], Any]] = None,
        disabled: bool = False,
        config: Optional[IntakeClientConfig] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        """Initialize the controller.

        Args:
            client: Intake client; one is created (and owned) when omitted
            options: File acceptance rules
            on_upload_start: Called once per accept call with the accepted files
            on_upload_progress: Called after every record mutation with all records
            on_upload_complete: Called once when every record is terminal
            on_upload_error: Called with the rejections of a submission
            disabled: Ignore submissions while True
            config: Client configuration, used when no client is given
            sleep: Awaitable used between status queries
        """
        self._owns_client = client is None
        self.client = client or IntakeClient(config)
        self.options = options or FileUploadOptions()
        self.disabled = disabled
        self.on_upload_start = on_upload_start
        self.on_upload_error = on_upload_error

        self.validator = FileValidator(self.options)
        self.aggregator = ProgressAggregator(
            on_progress=on_upload_progress,
            on_complete=on_upload_complete,
        )
        self.store = RecordStore(self.aggregator)
        self.uploader = BatchUploader(self.client, self.store)
        self.poller = StatusPoller(self.client, self.store, self.client.config, sleep=sleep)
        self._tasks: set[asyncio.Task] = set()

    async def __aenter__(self) -> "BatchUploadController":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    @property
    def records(self) -> list[FileRecord]:
        """Snapshot of every registered record."""
        return self.store.records()

    @property
    def is_processing(self) -> bool:
        return self.store.is_processing

    @property
    def in_flight(self) -> int:
        """Number of upload and polling tasks still running."""
        return len(self._tasks)

    async def accept(self, sources: Iterable[SourceFile]) -> AcceptResult:
        """Validate and register a submission, then start its upload.

        Args:
            sources: Candidate files in submission order

        Returns:
            AcceptResult with the registered records and the rejections
        """
        if self.disabled:
            logger.info("submission_ignored", reason="disabled")
            return AcceptResult()

        submission = list(sources)
        validation = self.validator.validate_submission(submission, len(self.store))

        if validation.rejections:
            self.aggregator.notify(self.on_upload_error, validation.rejections, event="error")

        if not validation.valid_files:
            return AcceptResult(rejections=validation.rejections)

        records = self.store.register(validation.valid_files)
        self.aggregator.notify(self.on_upload_start, validation.valid_files, event="start")

        record_ids = [r.record_id for r in records]
        logger.info(
            "sub_batch_accepted",
            files=len(record_ids),
            rejected=len(validation.rejections),
        )
        self._spawn(self._run_sub_batch(record_ids))
        return AcceptResult(records=records, rejections=validation.rejections)

    def remove(self, record_id: str) -> bool:
        """Remove one record; its polling loop exits at the next tick."""
        return self.store.remove(record_id)

    def clear_completed(self) -> int:
        """Remove every completed or failed record."""
        return self.store.clear_completed()

    async def wait_idle(self) -> list[FileRecord]:
        """Wait until no upload or polling task is running.

        Returns:
            Snapshot of every registered record afterwards
        """
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.aggregator.drain()
        return self.store.records()

    async def aclose(self) -> None:
        """Cancel outstanding tasks and release the client if owned."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("tasks_cancelled", count=len(tasks))
        await self.aggregator.drain()
        if self._owns_client:
            await self.client.close()

    async def _run_sub_batch(self, record_ids: list[str]) -> None:
        processing = await self.uploader.submit(record_ids)
        for record in processing:
            self._spawn(self.poller.poll(record.record_id))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "background_task_failed",
                error=str(error),
                error_type=type(error).__name__,
            )
