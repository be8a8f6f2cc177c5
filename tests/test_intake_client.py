"""Tests for the aiohttp intake client.

Requests go to a real aiohttp application served by TestServer:
- Multipart upload with aggregate transfer progress
- Status queries by correlation id
- Classification of error responses and transport failures
"""

import asyncio
from typing import Optional
from unittest.mock import MagicMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from conftest import make_pdf
from doc_intake.config import IntakeClientConfig
from doc_intake.core import AuthenticationError, TransportError, TransportErrorKind
from doc_intake.upload.client import (
    AUTH_REQUIRED_MESSAGE,
    BAD_REQUEST_MESSAGE,
    MALFORMED_RESPONSE_MESSAGE,
    TOO_LARGE_MESSAGE,
    UPLOAD_FAILED_MESSAGE,
    IntakeClient,
    TransferTracker,
)

INTAKE_PATH = "/api/v1/oracle/admin/upload-insurance"
STATUS_PATH = "/api/v1/admin/upload-status/{upload_id}"


class FakeIntakeService:
    """Minimal intake backend that records what it received."""

    def __init__(self):
        self.received: list[tuple[str, int, str]] = []
        self.headers: list[dict] = []
        self.upload_reply: Optional[web.Response] = None
        self.status_reply: Optional[web.Response] = None

    async def upload(self, request: web.Request) -> web.Response:
        self.headers.append(dict(request.headers))
        form = await request.post()
        for field in form.getall("files", []):
            self.received.append((field.filename, len(field.file.read()), field.content_type))
        if self.upload_reply is not None:
            return self.upload_reply
        return web.json_response({
            "success": True,
            "message": f"{len(self.received)} files uploaded",
            "uploads": [
                {"upload_id": f"up-{i}", "filename": name, "status": "processing"}
                for i, (name, _, _) in enumerate(self.received)
            ],
            "failed_uploads": [],
        })

    async def status(self, request: web.Request) -> web.Response:
        self.headers.append(dict(request.headers))
        if self.status_reply is not None:
            return self.status_reply
        return web.json_response({
            "upload_id": request.match_info["upload_id"],
            "status": "parsing",
            "progress_percentage": 40.0,
        })

    def app(self) -> web.Application:
        app = web.Application(client_max_size=64 * 1024 * 1024)
        app.router.add_post(INTAKE_PATH, self.upload)
        app.router.add_get(STATUS_PATH, self.status)
        return app


def _config(server: TestServer, **overrides) -> IntakeClientConfig:
    return IntakeClientConfig(
        base_url=f"http://{server.host}:{server.port}",
        chunk_size=256,
        **overrides,
    )


class TestTransferTracker:
    """Tests for aggregate transfer progress."""

    def test_reports_whole_percent_changes_only(self):
        seen = []
        tracker = TransferTracker(1000, seen.append)

        tracker.advance(10)
        tracker.advance(4)
        tracker.advance(486)
        tracker.advance(500)

        assert seen == [1, 50, 100]

    def test_empty_transfer_is_complete(self):
        assert TransferTracker(0).percent == 100


class TestIntakeClientUpload:
    """Tests for the multipart intake request."""

    @pytest.fixture
    def service(self):
        return FakeIntakeService()

    @pytest.mark.asyncio
    async def test_upload_sends_every_file_in_one_request(self, service):
        sources = [make_pdf("a.pdf", 1000), make_pdf("b.pdf", 3000)]

        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server), token_provider=lambda: "secret") as client:
                response = await client.upload_files(sources)

        assert response.success is True
        assert [u.upload_id for u in response.uploads] == ["up-0", "up-1"]
        assert service.received == [
            ("a.pdf", 1000, "application/pdf"),
            ("b.pdf", 3000, "application/pdf"),
        ]
        assert service.headers[0]["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_upload_reports_aggregate_progress(self, service):
        percents = []

        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server)) as client:
                await client.upload_files(
                    [make_pdf("a.pdf", 2000), make_pdf("b.pdf", 2000)],
                    on_progress=percents.append,
                )

        assert percents
        assert percents == sorted(percents)
        assert percents[-1] == 100
        assert 50 in percents

    @pytest.mark.asyncio
    async def test_no_token_sends_no_authorization(self, service):
        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server), token_provider=lambda: None) as client:
                await client.upload_files([make_pdf()])

        assert "Authorization" not in service.headers[0]

    @pytest.mark.asyncio
    async def test_unsuccessful_body_is_returned(self, service):
        service.upload_reply = web.json_response({"success": False, "message": "Quota exceeded"})

        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server)) as client:
                response = await client.upload_files([make_pdf()])

        assert response.success is False
        assert response.message == "Quota exceeded"

    @pytest.mark.asyncio
    async def test_unauthorized_calls_auth_failure_hook(self, service):
        service.upload_reply = web.json_response({"detail": "Token expired"}, status=401)
        on_auth_failure = MagicMock()

        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server), on_auth_failure=on_auth_failure) as client:
                with pytest.raises(AuthenticationError) as exc_info:
                    await client.upload_files([make_pdf()])

        assert exc_info.value.message == AUTH_REQUIRED_MESSAGE
        assert exc_info.value.kind == TransportErrorKind.AUTHENTICATION
        assert exc_info.value.status_code == 401
        on_auth_failure.assert_called_once()

    @pytest.mark.asyncio
    async def test_forbidden_is_authentication_error_without_hook(self, service):
        service.upload_reply = web.json_response({"detail": "Forbidden"}, status=403)
        on_auth_failure = MagicMock()

        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server), on_auth_failure=on_auth_failure) as client:
                with pytest.raises(AuthenticationError):
                    await client.upload_files([make_pdf()])

        on_auth_failure.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,body,kind,message",
        [
            (400, {"detail": "Only PDF files are accepted"}, TransportErrorKind.BAD_REQUEST,
             "Only PDF files are accepted"),
            (400, None, TransportErrorKind.BAD_REQUEST, BAD_REQUEST_MESSAGE),
            (413, {"detail": "too big"}, TransportErrorKind.PAYLOAD_TOO_LARGE, TOO_LARGE_MESSAGE),
            (500, {"detail": "Database unavailable"}, TransportErrorKind.SERVER,
             "Database unavailable"),
            (502, None, TransportErrorKind.SERVER, UPLOAD_FAILED_MESSAGE),
        ],
    )
    async def test_error_status_classification(self, service, status, body, kind, message):
        if body is None:
            service.upload_reply = web.Response(status=status, text="gateway error")
        else:
            service.upload_reply = web.json_response(body, status=status)

        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server)) as client:
                with pytest.raises(TransportError) as exc_info:
                    await client.upload_files([make_pdf()])

        assert exc_info.value.kind == kind
        assert exc_info.value.status_code == status
        assert exc_info.value.message == message

    @pytest.mark.asyncio
    async def test_validation_detail_list_is_joined(self, service):
        service.upload_reply = web.json_response(
            {"detail": [{"msg": "field required"}, {"msg": "bad type"}]}, status=400
        )

        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server)) as client:
                with pytest.raises(TransportError) as exc_info:
                    await client.upload_files([make_pdf()])

        assert exc_info.value.message == "field required; bad type"

    @pytest.mark.asyncio
    async def test_non_json_success_body_is_malformed(self, service):
        service.upload_reply = web.Response(text="<html>ok</html>")

        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server)) as client:
                with pytest.raises(TransportError) as exc_info:
                    await client.upload_files([make_pdf()])

        assert exc_info.value.message == MALFORMED_RESPONSE_MESSAGE
        assert exc_info.value.kind == TransportErrorKind.SERVER

    @pytest.mark.asyncio
    async def test_body_missing_fields_is_malformed(self, service):
        service.upload_reply = web.json_response({"uploads": "nope"})

        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server)) as client:
                with pytest.raises(TransportError) as exc_info:
                    await client.upload_files([make_pdf()])

        assert exc_info.value.message == MALFORMED_RESPONSE_MESSAGE


class TestIntakeClientStatus:
    """Tests for status queries."""

    @pytest.fixture
    def service(self):
        return FakeIntakeService()

    @pytest.mark.asyncio
    async def test_get_status(self, service):
        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server), token_provider=lambda: "t") as client:
                status = await client.get_status("up-42")

        assert status.upload_id == "up-42"
        assert status.status == "parsing"
        assert service.headers[0]["Authorization"] == "Bearer t"

    @pytest.mark.asyncio
    async def test_status_error_uses_status_fallback(self, service):
        service.status_reply = web.Response(status=500)

        async with TestServer(service.app()) as server:
            async with IntakeClient(_config(server)) as client:
                with pytest.raises(TransportError) as exc_info:
                    await client.get_status("up-1")

        assert exc_info.value.message == "Failed to check processing status"

    @pytest.mark.asyncio
    async def test_status_timeout(self, service):
        async def slow(request):
            await asyncio.sleep(1)
            return web.json_response({"status": "parsing"})

        app = web.Application()
        app.router.add_get(STATUS_PATH, slow)

        async with TestServer(app) as server:
            config = _config(server, request_timeout_seconds=0.05)
            async with IntakeClient(config) as client:
                with pytest.raises(TransportError) as exc_info:
                    await client.get_status("up-1")

        assert exc_info.value.kind == TransportErrorKind.TIMEOUT
        assert exc_info.value.message == "Request timed out after 0.05s"


class TestIntakeClientTransport:
    """Tests for connection-level failures and session handling."""

    @pytest.mark.asyncio
    async def test_connection_refused_is_network_error(self):
        config = IntakeClientConfig(base_url="http://127.0.0.1:1")

        async with IntakeClient(config) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.get_status("up-1")

        assert exc_info.value.kind == TransportErrorKind.NETWORK
        assert exc_info.value.message.startswith("Network error:")

    @pytest.mark.asyncio
    async def test_close_leaves_external_session_open(self):
        session = MagicMock()
        session.closed = False
        client = IntakeClient(session=session)

        await client.close()

        session.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_owned_session_is_closed(self):
        client = IntakeClient()
        session = client.session

        await client.close()

        assert session.closed
