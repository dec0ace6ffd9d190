"""Receipt image upload proxy to the extraction webhook.

The webhook (an n8n workflow) extracts the receipt fields and writes
the record to the receipt table; this service only validates the file,
forwards it as multipart form data and maps every outcome to a
structured :class:`UploadResult`.

Outcome mapping:

- no webhook configured                  -> CONFIGURATION_ERROR (500)
- missing file / bad type / too large    -> NO_FILE_PROVIDED, INVALID_FILE_TYPE, FILE_TOO_LARGE (400)
- webhook answered with a non-2xx status -> WEBHOOK_ERROR (502)
- JSON body without a success marker     -> WEBHOOK_INVALID_RESPONSE (502)
- 2xx body that is not JSON              -> success
- no answer within the hard timeout      -> WEBHOOK_TIMEOUT (408)
- connection refused / unreachable       -> WEBHOOK_NETWORK_ERROR (503)
- any other transport failure            -> WEBHOOK_CONNECTION_ERROR (502)

A :class:`CancellationToken` aborts the request in flight; the call then
raises :class:`UploadCancelled` instead of returning a result.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import time
import uuid
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from fisboard.core.config import settings
from fisboard.core.observability import sentry_breadcrumb
from fisboard.models.enums import UploadErrorCode
from fisboard.models.schemas import UploadErrorDetail, UploadMetadata, UploadResult
from fisboard.utils.formatting import format_file_size
from fisboard.utils.validation import UploadValidationError, validate_upload

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    UploadErrorCode.CONFIGURATION_ERROR: 500,
    UploadErrorCode.INVALID_CONTENT_TYPE: 400,
    UploadErrorCode.FORM_PARSE_ERROR: 400,
    UploadErrorCode.NO_FILE_PROVIDED: 400,
    UploadErrorCode.INVALID_FILE_TYPE: 400,
    UploadErrorCode.FILE_TOO_LARGE: 400,
    UploadErrorCode.WEBHOOK_ERROR: 502,
    UploadErrorCode.WEBHOOK_INVALID_RESPONSE: 502,
    UploadErrorCode.WEBHOOK_TIMEOUT: 408,
    UploadErrorCode.WEBHOOK_NETWORK_ERROR: 503,
    UploadErrorCode.WEBHOOK_CONNECTION_ERROR: 502,
    UploadErrorCode.INTERNAL_SERVER_ERROR: 500,
    UploadErrorCode.METHOD_NOT_ALLOWED: 405,
}


class UploadCancelled(Exception):
    """The caller cancelled the upload before it completed."""


class CancellationToken:
    """Explicit cancellation signal passed into an upload."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise UploadCancelled()


@dataclass(frozen=True)
class ReceiptImage:
    filename: str
    content_type: Optional[str]
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


def failure(code: UploadErrorCode, message: str, details: str = "") -> UploadResult:
    return UploadResult(
        success=False,
        message=message,
        error=UploadErrorDetail(code=code, details=details),
        status_code=STATUS_BY_CODE[code],
    )


def is_success_payload(payload: Any) -> bool:
    """The webhook reports success with any of three markers."""
    if not isinstance(payload, dict):
        return False
    return payload.get("upload") == "success" or payload.get("status") == "success" or payload.get("success") is True


def new_upload_id() -> str:
    return f"upload_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class UploadService:
    """Forwards receipt images to the extraction webhook."""

    def __init__(
        self,
        webhook_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        max_size: int | None = None,
    ) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else settings.N8N_WEBHOOK_URL
        self.timeout = timeout if timeout is not None else settings.WEBHOOK_TIMEOUT_SECONDS
        self.max_size = max_size if max_size is not None else settings.MAX_UPLOAD_SIZE
        self._client = client

    async def upload(self, image: ReceiptImage | None, cancel_token: CancellationToken | None = None) -> UploadResult:
        if not self.webhook_url:
            logger.error("[upload] N8N_WEBHOOK_URL is not configured")
            return failure(
                UploadErrorCode.CONFIGURATION_ERROR,
                "Server configuration error: webhook URL not configured",
                "N8N_WEBHOOK_URL environment variable is missing",
            )
        if image is None or not image.content:
            return failure(
                UploadErrorCode.NO_FILE_PROVIDED,
                "No file provided in form data",
                "File field is missing or empty",
            )
        try:
            validate_upload(image.content_type, image.size, self.max_size)
        except UploadValidationError as exc:
            return failure(exc.code, str(exc), exc.details)

        token = cancel_token or CancellationToken()
        token.raise_if_cancelled()

        metadata = UploadMetadata(
            file_name=image.filename,
            file_size=image.size,
            file_type=image.content_type or "",
            upload_id=new_upload_id(),
            timestamp=dt.datetime.now(dt.timezone.utc).isoformat(),
        )
        form = {
            "uploadId": metadata.upload_id,
            "timestamp": metadata.timestamp,
            "originalFileName": metadata.file_name,
            "fileSize": str(metadata.file_size),
            "fileType": metadata.file_type,
        }
        files = {"file": (image.filename, image.content, image.content_type)}

        logger.info("[upload] sending %s (%s) to webhook", image.filename, format_file_size(image.size))
        try:
            response = await self._post(files, form, token)
        except UploadCancelled:
            logger.info("[upload] %s cancelled by caller", metadata.upload_id)
            raise
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("[upload] webhook timed out after %.0fs", self.timeout)
            return failure(
                UploadErrorCode.WEBHOOK_TIMEOUT,
                "Request timeout: webhook took too long to respond",
                f"The webhook request exceeded the {self.timeout:.0f}s timeout limit",
            )
        except httpx.NetworkError as exc:
            logger.warning("[upload] webhook unreachable: %s", exc)
            return failure(
                UploadErrorCode.WEBHOOK_NETWORK_ERROR,
                "Network error: unable to connect to webhook",
                str(exc),
            )
        except httpx.HTTPError as exc:
            logger.warning("[upload] webhook request failed: %s", exc)
            return failure(
                UploadErrorCode.WEBHOOK_CONNECTION_ERROR,
                "Failed to connect to webhook",
                str(exc) or exc.__class__.__name__,
            )

        if not response.is_success:
            logger.error(
                "[upload] webhook failed status=%s body=%s", response.status_code, response.text[:500]
            )
            return failure(
                UploadErrorCode.WEBHOOK_ERROR,
                "Failed to process file with webhook",
                f"Webhook returned {response.status_code}: {response.reason_phrase}",
            )

        try:
            payload = response.json()
        except ValueError:
            logger.warning("[upload] webhook returned non-JSON response, treating as success")
        else:
            if not is_success_payload(payload):
                logger.warning("[upload] unexpected webhook response: %s", str(payload)[:200])
                return failure(
                    UploadErrorCode.WEBHOOK_INVALID_RESPONSE,
                    "Webhook returned invalid response format",
                    f"Expected success status but received: {str(payload)[:200]}",
                )

        sentry_breadcrumb(
            category="upload",
            message="upload.completed",
            data={"upload_id": metadata.upload_id, "size": image.size, "type": metadata.file_type},
        )
        return UploadResult(
            success=True,
            message="File uploaded and processed successfully via webhook",
            data=metadata,
        )

    async def _post(self, files: dict, form: dict, token: CancellationToken) -> httpx.Response:
        """POST to the webhook, racing the request against cancellation and the hard timeout."""
        client_cm = nullcontext(self._client) if self._client is not None else httpx.AsyncClient(timeout=self.timeout)
        async with client_cm as client:
            request_task = asyncio.ensure_future(client.post(self.webhook_url, files=files, data=form))
            cancel_task = asyncio.ensure_future(token.wait())
            try:
                done, _ = await asyncio.wait(
                    {request_task, cancel_task}, timeout=self.timeout, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                cancel_task.cancel()
            if request_task in done:
                return request_task.result()
            request_task.cancel()
            await asyncio.wait([request_task])
        if token.cancelled:
            raise UploadCancelled()
        raise asyncio.TimeoutError()
