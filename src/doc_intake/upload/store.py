"""In-memory record store and progress aggregation for one upload session.

The store is the only place records change. Every accepted change is followed
by one progress callback carrying the whole record set, and the store owns the
latch that makes the completion callback fire once per batch generation.
"""

import asyncio
import dataclasses
import inspect
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from doc_intake.core import InvalidTransitionError, get_logger
from doc_intake.upload.models import (
    ALLOWED_TRANSITIONS,
    ErrorKind,
    FileRecord,
    FileStatus,
    ProcessingPhase,
    SourceFile,
)

logger = get_logger(__name__)

RecordsCallback = Callable[[list[FileRecord]], Any]

_UNSET: Any = object()


class ProgressAggregator:
    """Delivers store events to caller-supplied callbacks.

    Callbacks may be plain functions or coroutine functions; coroutines are
    scheduled on the running loop in the order they were emitted. A failing
    callback is logged and does not interrupt the orchestrator.
    """

    def __init__(
        self,
        on_progress: Optional[RecordsCallback] = None,
        on_complete: Optional[RecordsCallback] = None,
    ):
        self.on_progress = on_progress
        self.on_complete = on_complete
        self._pending: set[asyncio.Future] = set()

    def emit_progress(self, records: list[FileRecord]) -> None:
        self.notify(self.on_progress, records, event="progress")

    def emit_complete(self, records: list[FileRecord]) -> None:
        self.notify(self.on_complete, records, event="complete")

    def notify(self, callback: Optional[Callable[..., Any]], payload: Any, event: str) -> None:
        """Invoke one callback with ``payload``."""
        if callback is None:
            return
        try:
            result = callback(payload)
        except Exception as e:
            logger.exception("callback_failed", callback_event=event, error=str(e))
            return
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._pending.add(future)
            future.add_done_callback(
                lambda done, name=event: self._callback_done(done, name)
            )

    def _callback_done(self, future: asyncio.Future, event: str) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("callback_failed", callback_event=event, error=str(error))

    async def drain(self) -> None:
        """Wait for scheduled coroutine callbacks to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class RecordStore:
    """Ordered, identity-keyed collection of FileRecords for one session."""

    def __init__(self, aggregator: Optional[ProgressAggregator] = None):
        self.aggregator = aggregator or ProgressAggregator()
        self._records: dict[str, FileRecord] = {}
        self._completion_fired = False

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    @property
    def completion_fired(self) -> bool:
        """Whether the completion callback already fired for this generation."""
        return self._completion_fired

    @property
    def is_processing(self) -> bool:
        """True while any record is still on its way to a terminal state."""
        return any(not r.is_terminal for r in self._records.values())

    def records(self) -> list[FileRecord]:
        """Snapshot of every registered record in registration order."""
        return [dataclasses.replace(r) for r in self._records.values()]

    def get(self, record_id: str) -> Optional[FileRecord]:
        """Snapshot of one record, None if it is not registered."""
        record = self._records.get(record_id)
        return dataclasses.replace(record) if record else None

    def is_live(self, record_id: str) -> bool:
        """True if the record is registered and not yet terminal."""
        record = self._records.get(record_id)
        return record is not None and not record.is_terminal

    def status_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in FileStatus}
        for record in self._records.values():
            counts[record.status.value] += 1
        return counts

    def register(self, sources: Iterable[SourceFile]) -> list[FileRecord]:
        """Register new Pending records, one per source, in order.

        The same source may be registered more than once; each registration is
        an independent record.
        """
        created = []
        for source in sources:
            record = FileRecord(source=source, status=FileStatus.PENDING, progress=0)
            self._records[record.record_id] = record
            created.append(record)

        if not created:
            return []

        logger.info(
            "records_registered",
            count=len(created),
            total=len(self._records),
            files=[r.source.name for r in created],
        )
        self._after_mutation()
        return [dataclasses.replace(r) for r in created]

    def update(
        self,
        record_id: str,
        *,
        status: Optional[FileStatus] = None,
        progress: Optional[int] = None,
        error: Optional[str] = None,
        error_kind: Optional[ErrorKind] = None,
        correlation_id: Optional[str] = None,
        phase: Any = _UNSET,
        remote_status: Any = _UNSET,
    ) -> Optional[FileRecord]:
        """Apply a change to one record through the single mutation path.

        Args:
            record_id: Record to change
            status: New status, checked against the state machine
            progress: New progress value (0-100)
            error: Error message, required when moving to ERROR
            error_kind: Failure class for ERROR transitions
            correlation_id: Remote id, required when moving into PROCESSING
            phase: Last mapped remote processing phase
            remote_status: Raw remote status string

        Returns:
            Snapshot of the updated record, or None if the record is gone or
            already terminal and the change was dropped

        Raises:
            InvalidTransitionError: If the change would break the state machine
        """
        record = self._records.get(record_id)
        if record is None:
            logger.debug("update_ignored", record_id=record_id, reason="record_removed")
            return None
        if record.is_terminal:
            logger.debug(
                "update_ignored",
                record_id=record_id,
                reason="record_terminal",
                status=record.status.value,
            )
            return None

        current = record.status
        target = status or current
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Cannot move record from {current.value} to {target.value}",
                record_id=record_id,
                from_status=current.value,
                to_status=target.value,
            )

        changes: dict[str, Any] = {}
        if target != current:
            changes["status"] = target

        new_phase = record.phase if phase is _UNSET else phase
        if progress is not None:
            if not 0 <= progress <= 100:
                raise ValueError(f"progress must be between 0 and 100, got {progress}")
            self._check_progress(record, target, progress, new_phase)
        if target == FileStatus.COMPLETED:
            progress = 100
        if progress is not None and progress != record.progress:
            changes["progress"] = progress

        if target == FileStatus.PROCESSING and current == FileStatus.UPLOADING:
            if not correlation_id:
                raise InvalidTransitionError(
                    "A correlation id is required to enter processing",
                    record_id=record_id,
                    from_status=current.value,
                    to_status=target.value,
                )
            changes["correlation_id"] = correlation_id
        elif correlation_id is not None and correlation_id != record.correlation_id:
            raise InvalidTransitionError(
                "The correlation id is assigned once, when entering processing",
                record_id=record_id,
                from_status=current.value,
                to_status=target.value,
            )

        if target == FileStatus.ERROR:
            changes["error"] = error or "Upload failed"
            changes["error_kind"] = error_kind or ErrorKind.TRANSPORT
        elif error is not None:
            raise InvalidTransitionError(
                "An error message is only allowed with the error status",
                record_id=record_id,
                from_status=current.value,
                to_status=target.value,
            )

        if phase is not _UNSET and phase != record.phase:
            changes["phase"] = phase
        if remote_status is not _UNSET and remote_status != record.remote_status:
            changes["remote_status"] = remote_status

        if not changes:
            return dataclasses.replace(record)

        for name, value in changes.items():
            setattr(record, name, value)
        record.updated_at = datetime.now(timezone.utc)

        if "status" in changes:
            logger.info(
                "record_transition",
                record_id=record_id,
                file_name=record.source.name,
                from_status=current.value,
                to_status=target.value,
                progress=record.progress,
                correlation_id=record.correlation_id,
                error=record.error,
            )

        self._after_mutation()
        return dataclasses.replace(record)

    def _check_progress(
        self,
        record: FileRecord,
        target: FileStatus,
        progress: int,
        new_phase: Optional[ProcessingPhase],
    ) -> None:
        if target != record.status or target not in (
            FileStatus.UPLOADING,
            FileStatus.PROCESSING,
        ):
            return
        if progress >= record.progress:
            return
        # The first remote phase restarts the scale after the upload reached 100.
        if target == FileStatus.PROCESSING and record.phase is None and new_phase is not None:
            return
        raise InvalidTransitionError(
            f"Progress cannot go back from {record.progress} to {progress}",
            record_id=record.record_id,
            from_status=record.status.value,
            to_status=target.value,
        )

    def remove(self, record_id: str) -> bool:
        """Delete one record; the others are untouched.

        Returns:
            True if the record existed
        """
        record = self._records.pop(record_id, None)
        if record is None:
            return False
        logger.info(
            "record_removed",
            record_id=record_id,
            file_name=record.source.name,
            status=record.status.value,
        )
        self._after_mutation()
        return True

    def clear_completed(self) -> int:
        """Delete every record in a terminal state.

        Returns:
            Number of records removed
        """
        terminal = [rid for rid, r in self._records.items() if r.is_terminal]
        for record_id in terminal:
            del self._records[record_id]
        if terminal:
            logger.info("terminal_records_cleared", count=len(terminal))
            self._after_mutation()
        return len(terminal)

    def _after_mutation(self) -> None:
        """Recompute the completion latch and emit callbacks for one mutation."""
        if not self._records:
            self._completion_fired = False
            return

        all_terminal = all(r.is_terminal for r in self._records.values())
        if not all_terminal:
            self._completion_fired = False

        snapshot = self.records()
        fire_completion = all_terminal and not self._completion_fired
        if fire_completion:
            self._completion_fired = True

        self.aggregator.emit_progress(snapshot)

        if fire_completion:
            counts = self.status_counts()
            logger.info(
                "batch_completed",
                total=len(snapshot),
                completed=counts[FileStatus.COMPLETED.value],
                failed=counts[FileStatus.ERROR.value],
            )
            self.aggregator.emit_complete(snapshot)
