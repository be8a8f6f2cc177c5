"""Tests for sub-batch upload and response mapping."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_pdf
from doc_intake.core import AuthenticationError, TransportError, TransportErrorKind
from doc_intake.upload.models import ErrorKind, FileStatus, IntakeResponse
from doc_intake.upload.store import RecordStore
from doc_intake.upload.uploader import MISSING_RESULT_MESSAGE, BatchUploader


def _response(uploads=(), failed=(), success=True, message=None) -> IntakeResponse:
    return IntakeResponse.model_validate({
        "success": success,
        "message": message,
        "uploads": [
            {"upload_id": upload_id, "filename": filename, "status": "processing"}
            for filename, upload_id in uploads
        ],
        "failed_uploads": list(failed),
    })


class TestBatchUploader:
    """Tests for BatchUploader.submit."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.upload_files = AsyncMock()
        return client

    @pytest.fixture
    def store(self):
        return RecordStore()

    @pytest.fixture
    def uploader(self, client, store):
        return BatchUploader(client, store)

    def _register(self, store, *names):
        return [r.record_id for r in store.register([make_pdf(n) for n in names])]

    @pytest.mark.asyncio
    async def test_all_files_reach_processing(self, uploader, client, store):
        ids = self._register(store, "a.pdf", "b.pdf")
        client.upload_files.return_value = _response(uploads=[("a.pdf", "u-a"), ("b.pdf", "u-b")])

        processing = await uploader.submit(ids)

        assert [r.record_id for r in processing] == ids
        records = store.records()
        assert [r.status for r in records] == [FileStatus.PROCESSING] * 2
        assert [r.correlation_id for r in records] == ["u-a", "u-b"]
        assert all(r.progress == 100 for r in records)
        sent = client.upload_files.call_args[0][0]
        assert [s.name for s in sent] == ["a.pdf", "b.pdf"]

    @pytest.mark.asyncio
    async def test_mixed_outcome_aligns_with_submission_order(self, uploader, client, store):
        ids = self._register(store, "a.pdf", "b.pdf", "c.pdf")
        client.upload_files.return_value = _response(
            uploads=[("a.pdf", "u-a"), ("b.pdf", "u-b")],
            failed=[{"c.pdf": "Duplicate document"}],
        )

        processing = await uploader.submit(ids)

        assert [r.record_id for r in processing] == [ids[0], ids[1]]
        a, b, c = store.records()
        assert a.correlation_id == "u-a"
        assert b.correlation_id == "u-b"
        assert c.status == FileStatus.ERROR
        assert c.error == "Duplicate document"
        assert c.error_kind == ErrorKind.TRANSPORT

    @pytest.mark.asyncio
    async def test_uploads_mapped_by_position_not_filename(self, uploader, client, store):
        ids = self._register(store, "a.pdf", "b.pdf")
        client.upload_files.return_value = _response(
            uploads=[("b.pdf", "u-0"), ("a.pdf", "u-1")]
        )

        await uploader.submit(ids)

        assert [(r.file_name, r.correlation_id) for r in store.records()] == [
            ("a.pdf", "u-0"),
            ("b.pdf", "u-1"),
        ]

    @pytest.mark.asyncio
    async def test_failures_claim_records_left_after_uploads(self, uploader, client, store):
        ids = self._register(store, "a.pdf", "b.pdf")
        client.upload_files.return_value = _response(
            uploads=[("b.pdf", "u-b")],
            failed=[{"filename": "a.pdf", "error": "Corrupt PDF"}],
        )

        await uploader.submit(ids)

        a, b = store.records()
        assert a.correlation_id == "u-b"
        assert b.status == FileStatus.ERROR
        assert b.error == "Corrupt PDF"

    @pytest.mark.asyncio
    async def test_surplus_entries_are_ignored(self, uploader, client, store):
        ids = self._register(store, "a.pdf")
        client.upload_files.return_value = _response(
            uploads=[("a.pdf", "u-a"), ("extra.pdf", "u-x")],
            failed=[{"ghost.pdf": "Unknown"}],
        )

        processing = await uploader.submit(ids)

        assert [r.correlation_id for r in processing] == ["u-a"]
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_duplicate_names_claimed_in_order(self, uploader, client, store):
        ids = self._register(store, "same.pdf", "same.pdf")
        client.upload_files.return_value = _response(
            uploads=[("same.pdf", "u-1"), ("same.pdf", "u-2")]
        )

        await uploader.submit(ids)

        assert [r.correlation_id for r in store.records()] == ["u-1", "u-2"]

    @pytest.mark.asyncio
    async def test_renamed_files_keep_positional_results(self, uploader, client, store):
        ids = self._register(store, "a.pdf", "b.pdf")
        client.upload_files.return_value = _response(
            uploads=[("renamed-1.pdf", "u-1"), ("renamed-2.pdf", "u-2")]
        )

        await uploader.submit(ids)

        assert [r.correlation_id for r in store.records()] == ["u-1", "u-2"]

    @pytest.mark.asyncio
    async def test_records_without_result_become_errors(self, uploader, client, store):
        ids = self._register(store, "a.pdf", "b.pdf")
        client.upload_files.return_value = _response(uploads=[("a.pdf", "u-a")])

        processing = await uploader.submit(ids)

        assert len(processing) == 1
        b = store.get(ids[1])
        assert b.status == FileStatus.ERROR
        assert b.error == MISSING_RESULT_MESSAGE

    @pytest.mark.asyncio
    async def test_transport_error_fails_every_record(self, uploader, client, store):
        ids = self._register(store, "a.pdf", "b.pdf")
        client.upload_files.side_effect = TransportError(
            "File too large. Please upload a smaller file.",
            kind=TransportErrorKind.PAYLOAD_TOO_LARGE,
            status_code=413,
        )

        processing = await uploader.submit(ids)

        assert processing == []
        for record in store.records():
            assert record.status == FileStatus.ERROR
            assert record.error == "File too large. Please upload a smaller file."
            assert record.correlation_id is None

    @pytest.mark.asyncio
    async def test_authentication_error_message(self, uploader, client, store):
        ids = self._register(store, "a.pdf")
        client.upload_files.side_effect = AuthenticationError(
            "Authentication required. Please log in again.", status_code=401
        )

        await uploader.submit(ids)

        assert store.get(ids[0]).error == "Authentication required. Please log in again."

    @pytest.mark.asyncio
    async def test_unexpected_error_uses_generic_message(self, uploader, client, store):
        ids = self._register(store, "a.pdf")
        client.upload_files.side_effect = RuntimeError("socket exploded")

        await uploader.submit(ids)

        assert store.get(ids[0]).error == "Upload failed. Please try again."

    @pytest.mark.asyncio
    async def test_unsuccessful_response_fails_every_record(self, uploader, client, store):
        ids = self._register(store, "a.pdf", "b.pdf")
        client.upload_files.return_value = _response(success=False, message="Quota exceeded")

        processing = await uploader.submit(ids)

        assert processing == []
        assert [r.error for r in store.records()] == ["Quota exceeded", "Quota exceeded"]

    @pytest.mark.asyncio
    async def test_unsuccessful_response_without_message(self, uploader, client, store):
        ids = self._register(store, "a.pdf")
        client.upload_files.return_value = _response(success=False)

        await uploader.submit(ids)

        assert store.get(ids[0]).error == "Upload failed"

    @pytest.mark.asyncio
    async def test_transfer_progress_mirrored_to_every_record(self, uploader, client, store):
        ids = self._register(store, "a.pdf", "b.pdf")
        seen = []

        async def fake_upload(sources, on_progress=None):
            for percent in (25, 50, 100):
                on_progress(percent)
                seen.append([r.progress for r in store.records()])
            return _response(uploads=[("a.pdf", "u-a"), ("b.pdf", "u-b")])

        client.upload_files.side_effect = fake_upload

        await uploader.submit(ids)

        assert seen == [[25, 25], [50, 50], [100, 100]]

    @pytest.mark.asyncio
    async def test_removed_records_are_not_uploaded(self, uploader, client, store):
        ids = self._register(store, "a.pdf")
        store.remove(ids[0])

        assert await uploader.submit(ids) == []
        client.upload_files.assert_not_called()
