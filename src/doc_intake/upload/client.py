"""Async HTTP client for the document intake and status endpoints.

- One multipart transaction per sub-batch, with aggregate transfer progress
- Status queries by correlation id
- Bearer credentials supplied per request by a token provider
- Failure classification into TransportError kinds
"""

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any, Callable, Optional

import aiohttp
from pydantic import ValidationError as PydanticValidationError

from doc_intake.config import IntakeClientConfig
from doc_intake.core import (
    AuthenticationError,
    TransportError,
    TransportErrorKind,
    get_logger,
)
from doc_intake.upload.models import IntakeResponse, ProcessingStatus, SourceFile

logger = get_logger(__name__)

TokenProvider = Callable[[], Optional[str]]
ProgressHandler = Callable[[int], None]

AUTH_REQUIRED_MESSAGE = "Authentication required. Please log in again."
BAD_REQUEST_MESSAGE = "Invalid file or request format."
TOO_LARGE_MESSAGE = "File too large. Please upload a smaller file."
UPLOAD_FAILED_MESSAGE = "Upload failed. Please try again."
STATUS_FAILED_MESSAGE = "Failed to check processing status"
MALFORMED_RESPONSE_MESSAGE = "Malformed response from server"


class TransferTracker:
    """Counts bytes streamed for one transaction and reports whole percentages."""

    def __init__(self, total_bytes: int, on_progress: Optional[ProgressHandler] = None):
        self.total_bytes = total_bytes
        self.sent_bytes = 0
        self.on_progress = on_progress
        self._last_percent = 0

    @property
    def percent(self) -> int:
        if self.total_bytes <= 0:
            return 100
        return min(100, round(self.sent_bytes * 100 / self.total_bytes))

    def advance(self, count: int) -> None:
        self.sent_bytes += count
        percent = self.percent
        if percent != self._last_percent:
            self._last_percent = percent
            if self.on_progress:
                self.on_progress(percent)

    async def stream(self, source: SourceFile, chunk_size: int) -> AsyncIterator[bytes]:
        """Stream one file's content while counting it toward the total."""
        async for chunk in source.iter_chunks(chunk_size):
            self.advance(len(chunk))
            yield chunk


def _detail_message(body: Any) -> Optional[str]:
    """Extract a readable message from an error body."""
    if not isinstance(body, dict):
        return None
    detail = body.get("detail") or body.get("message")
    if detail is None:
        return None
    if isinstance(detail, str):
        return detail
    if isinstance(detail, list):
        parts = []
        for item in detail:
            if isinstance(item, dict) and item.get("msg"):
                parts.append(str(item["msg"]))
            else:
                parts.append(str(item))
        return "; ".join(parts) or None
    return json.dumps(detail)


class IntakeClient:
    """Client for the remote intake service.

    Use as an async context manager, or call :meth:`close` when done. The
    aiohttp session is created on first use.
    """

    def __init__(
        self,
        config: Optional[IntakeClientConfig] = None,
        token_provider: Optional[TokenProvider] = None,
        on_auth_failure: Optional[Callable[[], None]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize the client.

        Args:
            config: Connection settings
            token_provider: Returns the bearer token for each request, or None
            on_auth_failure: Called when the service answers 401
            session: Optional pre-built session (owned by the caller)
        """
        self.config = config or IntakeClientConfig()
        self.token_provider = token_provider
        self.on_auth_failure = on_auth_failure
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.config.user_agent}
            )
            self._owns_session = True
        return self._session

    async def __aenter__(self) -> "IntakeClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None if self._owns_session else self._session

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.token_provider() if self.token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("request_without_token")
        return headers

    async def upload_files(
        self,
        sources: list[SourceFile],
        on_progress: Optional[ProgressHandler] = None,
    ) -> IntakeResponse:
        """Send every file of a sub-batch in one multipart request.

        Args:
            sources: Files in submission order
            on_progress: Receives the aggregate transfer percentage when it changes

        Returns:
            Parsed intake response

        Raises:
            TransportError: If the request fails or the body is unusable
        """
        url = self.config.intake_url
        tracker = TransferTracker(sum(s.size for s in sources), on_progress)

        form = aiohttp.FormData()
        for source in sources:
            form.add_field(
                "files",
                tracker.stream(source, self.config.chunk_size),
                filename=source.name,
                content_type=source.content_type,
            )

        logger.info(
            "upload_submitted",
            url=url,
            files=len(sources),
            total_bytes=tracker.total_bytes,
        )
        body = await self._request_json(
            "POST", url, fallback_message=UPLOAD_FAILED_MESSAGE, data=form
        )

        try:
            response = IntakeResponse.model_validate(body)
        except PydanticValidationError as e:
            logger.error("upload_response_invalid", url=url, error=str(e))
            raise TransportError(
                MALFORMED_RESPONSE_MESSAGE,
                kind=TransportErrorKind.SERVER,
                url=url,
            ) from e

        logger.info(
            "upload_response_received",
            url=url,
            success=response.success,
            uploads=len(response.uploads),
            failed_uploads=len(response.failed_uploads),
        )
        return response

    async def get_status(self, correlation_id: str) -> ProcessingStatus:
        """Query the processing status of one uploaded file.

        Args:
            correlation_id: Id issued by the intake endpoint

        Returns:
            Parsed processing status

        Raises:
            TransportError: If the request fails or the body is unusable
        """
        url = self.config.status_url(correlation_id)
        body = await self._request_json("GET", url, fallback_message=STATUS_FAILED_MESSAGE)
        try:
            status = ProcessingStatus.model_validate(body)
        except PydanticValidationError as e:
            logger.error("status_response_invalid", url=url, error=str(e))
            raise TransportError(
                MALFORMED_RESPONSE_MESSAGE,
                kind=TransportErrorKind.SERVER,
                url=url,
            ) from e
        logger.debug(
            "status_received",
            correlation_id=correlation_id,
            status=status.status,
        )
        return status

    async def _request_json(
        self,
        method: str,
        url: str,
        fallback_message: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        timeout = self.config.request_timeout_seconds
        try:
            async with self.session.request(
                method,
                url,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=timeout),
                ssl=self.config.verify_ssl,
                **kwargs,
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None

                if response.status >= 400:
                    raise self._classify(response.status, body, url, fallback_message)

                if not isinstance(body, dict):
                    logger.error(
                        "response_not_json_object",
                        url=url,
                        status=response.status,
                    )
                    raise TransportError(
                        MALFORMED_RESPONSE_MESSAGE,
                        kind=TransportErrorKind.SERVER,
                        status_code=response.status,
                        url=url,
                    )
                return body

        except asyncio.TimeoutError as e:
            logger.error("request_timeout", method=method, url=url, timeout=timeout)
            raise TransportError(
                f"Request timed out after {timeout:g}s",
                kind=TransportErrorKind.TIMEOUT,
                url=url,
            ) from e
        except aiohttp.ClientError as e:
            logger.error("request_client_error", method=method, url=url, error=str(e))
            raise TransportError(
                f"Network error: {e}",
                kind=TransportErrorKind.NETWORK,
                url=url,
            ) from e

    def _classify(
        self,
        status: int,
        body: Any,
        url: str,
        fallback_message: str,
    ) -> TransportError:
        """Map an error response onto the TransportError taxonomy."""
        detail = _detail_message(body)
        logger.error("request_failed", url=url, status=status, detail=detail)

        if status in (401, 403):
            if status == 401 and self.on_auth_failure:
                self.on_auth_failure()
            return AuthenticationError(AUTH_REQUIRED_MESSAGE, status_code=status, url=url)
        if status == 400:
            return TransportError(
                detail or BAD_REQUEST_MESSAGE,
                kind=TransportErrorKind.BAD_REQUEST,
                status_code=status,
                url=url,
            )
        if status == 413:
            return TransportError(
                TOO_LARGE_MESSAGE,
                kind=TransportErrorKind.PAYLOAD_TOO_LARGE,
                status_code=status,
                url=url,
            )
        return TransportError(
            detail or fallback_message,
            kind=TransportErrorKind.SERVER,
            status_code=status,
            url=url,
        )
