"""Per-record status polling with a hard attempt ceiling."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from doc_intake.config import IntakeClientConfig
from doc_intake.core import (
    ProcessingTimeoutError,
    RemoteProcessingError,
    TransportError,
    get_logger,
)
from doc_intake.upload.client import IntakeClient, STATUS_FAILED_MESSAGE
from doc_intake.upload.models import (
    PHASE_PROGRESS_FLOORS,
    ErrorKind,
    FileRecord,
    FileStatus,
    ProcessingPhase,
    ProcessingStatus,
)
from doc_intake.upload.store import RecordStore

logger = get_logger(__name__)

PROCESSING_FAILED_MESSAGE = "Processing failed"
PROCESSING_TIMEOUT_MESSAGE = "Processing timeout. Please check the status later."

Sleeper = Callable[[float], Awaitable[Any]]


class StatusPoller:
    """Drives one processing record to a terminal state by polling its status.

    Each call to :meth:`poll` is an independent loop: it waits
    ``poll_initial_delay``, then queries the status endpoint every
    ``poll_interval`` seconds, at most ``max_poll_attempts`` times. The whole
    loop also runs against a local deadline of
    ``IntakeClientConfig.polling_bound_seconds``; a status query still
    pending at the deadline is abandoned and the record times out. A record
    that is removed stops being polled at the next tick; a request already in
    flight is left to finish and its answer is dropped.
    """

    def __init__(
        self,
        client: IntakeClient,
        store: RecordStore,
        config: Optional[IntakeClientConfig] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.config = config or client.config
        self._sleep = sleep

    async def poll(self, record_id: str) -> Optional[FileRecord]:
        """Poll until the record is terminal, removed, or out of attempts.

        Args:
            record_id: A record in the processing state

        Returns:
            Final snapshot of the record, or None if it was removed
        """
        record = self.store.get(record_id)
        if record is None or record.status != FileStatus.PROCESSING:
            return record
        correlation_id = record.correlation_id

        max_attempts = self.config.max_poll_attempts
        best_phase: Optional[ProcessingPhase] = None

        logger.info(
            "polling_started",
            record_id=record_id,
            correlation_id=correlation_id,
            interval=self.config.poll_interval,
            max_attempts=max_attempts,
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.polling_bound_seconds

        await self._sleep(self.config.poll_initial_delay)

        for attempt in range(1, max_attempts + 1):
            if not self.store.is_live(record_id):
                logger.info("polling_stopped", record_id=record_id, attempt=attempt)
                return self.store.get(record_id)

            remaining = deadline - loop.time()
            if remaining <= 0:
                return self._time_out(record_id, correlation_id, attempt - 1)

            try:
                status = await asyncio.wait_for(
                    self.client.get_status(correlation_id), timeout=remaining
                )
            except asyncio.TimeoutError:
                return self._time_out(record_id, correlation_id, attempt)
            except TransportError as e:
                return self._fail(record_id, e.message or STATUS_FAILED_MESSAGE, attempt)
            except Exception:
                logger.exception("status_check_failed_unexpectedly", record_id=record_id)
                return self._fail(record_id, STATUS_FAILED_MESSAGE, attempt)

            if not self.store.is_live(record_id):
                logger.info("polling_stopped", record_id=record_id, attempt=attempt)
                return self.store.get(record_id)

            phase = status.phase
            if phase == ProcessingPhase.COMPLETED:
                logger.info(
                    "processing_completed",
                    record_id=record_id,
                    correlation_id=correlation_id,
                    attempts=attempt,
                )
                return self.store.update(
                    record_id,
                    status=FileStatus.COMPLETED,
                    progress=100,
                    phase=ProcessingPhase.COMPLETED,
                    remote_status=status.status,
                )

            if phase == ProcessingPhase.FAILED:
                error = RemoteProcessingError(
                    status.error or PROCESSING_FAILED_MESSAGE,
                    correlation_id=correlation_id,
                )
                logger.warning(
                    "processing_failed",
                    record_id=record_id,
                    correlation_id=correlation_id,
                    error=error.message,
                )
                return self.store.update(
                    record_id,
                    status=FileStatus.ERROR,
                    error=error.message,
                    error_kind=ErrorKind.REMOTE_PROCESSING,
                    remote_status=status.status,
                )

            best_phase = self._advance(record_id, status, best_phase)

            if attempt >= max_attempts:
                break
            await self._sleep(min(self.config.poll_interval, max(0.0, deadline - loop.time())))

        return self._time_out(record_id, correlation_id, max_attempts)

    def _time_out(
        self,
        record_id: str,
        correlation_id: Optional[str],
        attempts: int,
    ) -> Optional[FileRecord]:
        """Fail a record that ran out of attempts or of its polling window."""
        timeout = ProcessingTimeoutError(
            PROCESSING_TIMEOUT_MESSAGE,
            correlation_id=correlation_id,
            attempts=attempts,
        )
        logger.warning(
            "poll_timeout",
            record_id=record_id,
            correlation_id=correlation_id,
            attempts=attempts,
        )
        return self.store.update(
            record_id,
            status=FileStatus.ERROR,
            error=timeout.message,
            error_kind=ErrorKind.TIMEOUT,
        )

    def _advance(
        self,
        record_id: str,
        status: ProcessingStatus,
        best_phase: Optional[ProcessingPhase],
    ) -> Optional[ProcessingPhase]:
        """Move progress to the floor of the reported phase, never backward."""
        phase = status.phase
        if phase in PHASE_PROGRESS_FLOORS:
            if best_phase is None or PHASE_PROGRESS_FLOORS[phase] > PHASE_PROGRESS_FLOORS[best_phase]:
                best_phase = phase

        if best_phase is None:
            self.store.update(record_id, remote_status=status.status)
            return None

        self.store.update(
            record_id,
            progress=PHASE_PROGRESS_FLOORS[best_phase],
            phase=best_phase,
            remote_status=status.status,
        )
        return best_phase

    def _fail(self, record_id: str, message: str, attempt: int) -> Optional[FileRecord]:
        logger.error(
            "status_check_failed",
            record_id=record_id,
            attempt=attempt,
            error=message,
        )
        return self.store.update(
            record_id,
            status=FileStatus.ERROR,
            error=message,
            error_kind=ErrorKind.TRANSPORT,
        )
