"""Sub-batch uploader.

Sends every file registered by one ``accept`` call in a single intake
transaction and maps the per-file outcome back onto the records.
"""

from typing import Any, Optional

from doc_intake.core import TransportError, get_logger
from doc_intake.upload.client import IntakeClient, UPLOAD_FAILED_MESSAGE
from doc_intake.upload.models import (
    ErrorKind,
    FileRecord,
    FileStatus,
    IntakeResponse,
    UploadEntry,
)
from doc_intake.upload.store import RecordStore

logger = get_logger(__name__)

MISSING_RESULT_MESSAGE = "No upload result returned for this file."


def _parse_failed_entry(entry: dict[str, Any]) -> tuple[Optional[str], str]:
    """Read ``(filename, reason)`` from one failed-upload mapping.

    Accepts the ``{filename: reason}`` shape as well as
    ``{"filename": ..., "error": ...}``.
    """
    if "filename" in entry:
        reason = entry.get("error") or entry.get("reason") or entry.get("message")
        return entry.get("filename"), str(reason or "Upload failed")
    if not entry:
        return None, "Upload failed"
    filename, reason = next(iter(entry.items()))
    return str(filename), str(reason or "Upload failed")


class BatchUploader:
    """Uploads one sub-batch and records the outcome for each file."""

    def __init__(self, client: IntakeClient, store: RecordStore):
        self.client = client
        self.store = store

    async def submit(self, record_ids: list[str]) -> list[FileRecord]:
        """Upload the given records as one transaction.

        Args:
            record_ids: Pending records of one sub-batch, in submission order

        Returns:
            Records that reached processing and need status polling
        """
        records = []
        for record_id in record_ids:
            record = self.store.update(record_id, status=FileStatus.UPLOADING, progress=0)
            if record is not None:
                records.append(record)
        if not records:
            return []

        def on_progress(percent: int) -> None:
            for record in records:
                self.store.update(record.record_id, progress=percent)

        try:
            response = await self.client.upload_files(
                [r.source for r in records], on_progress=on_progress
            )
        except TransportError as e:
            logger.error(
                "upload_failed",
                files=len(records),
                kind=e.kind.value,
                status_code=e.status_code,
                error=e.message,
            )
            self._fail_all(records, e.message)
            return []
        except Exception as e:
            logger.exception("upload_failed_unexpectedly", files=len(records), error=str(e))
            self._fail_all(records, UPLOAD_FAILED_MESSAGE)
            return []

        if not response.success:
            message = response.message or "Upload failed"
            logger.error("upload_rejected", files=len(records), message=message)
            self._fail_all(records, message)
            return []

        return self._apply_response(records, response)

    def _fail_all(self, records: list[FileRecord], message: str) -> None:
        for record in records:
            self.store.update(
                record.record_id,
                status=FileStatus.ERROR,
                error=message,
                error_kind=ErrorKind.TRANSPORT,
            )

    def _apply_response(
        self,
        records: list[FileRecord],
        response: IntakeResponse,
    ) -> list[FileRecord]:
        """Map response entries onto records by position and apply each outcome.

        Success entries are aligned with the records in submission order.
        Failure entries then claim the records left over, in order. Surplus
        entries are logged; records left without an entry become errors.
        """
        unclaimed = list(records)
        assigned: list[tuple[FileRecord, Any]] = []

        for upload in response.uploads:
            if not unclaimed:
                logger.warning("upload_result_unmatched", filename=upload.filename)
                continue
            record = unclaimed.pop(0)
            if upload.filename and upload.filename != record.source.name:
                logger.warning(
                    "upload_result_name_mismatch",
                    record_id=record.record_id,
                    file_name=record.source.name,
                    reported_filename=upload.filename,
                )
            assigned.append((record, upload))

        for entry in response.failed_uploads:
            filename, reason = _parse_failed_entry(entry)
            if not unclaimed:
                logger.warning("upload_result_unmatched", filename=filename)
                continue
            assigned.append((unclaimed.pop(0), reason))

        processing = []
        for record, outcome in assigned:
            if isinstance(outcome, UploadEntry):
                updated = self.store.update(
                    record.record_id,
                    status=FileStatus.PROCESSING,
                    progress=100,
                    correlation_id=outcome.upload_id,
                )
                if updated is not None:
                    processing.append(updated)
            else:
                logger.warning(
                    "file_upload_rejected",
                    record_id=record.record_id,
                    file_name=record.source.name,
                    reason=outcome,
                )
                self.store.update(
                    record.record_id,
                    status=FileStatus.ERROR,
                    error=outcome,
                    error_kind=ErrorKind.TRANSPORT,
                )

        for record in unclaimed:
            logger.warning(
                "upload_result_missing",
                record_id=record.record_id,
                file_name=record.source.name,
            )
            self.store.update(
                record.record_id,
                status=FileStatus.ERROR,
                error=MISSING_RESULT_MESSAGE,
                error_kind=ErrorKind.TRANSPORT,
            )

        logger.info(
            "upload_results_applied",
            files=len(records),
            processing=len(processing),
            failed=len(records) - len(processing),
        )
        return processing
