"""Upload flow state machine.

``idle -> uploading -> success | error``; ``abort()`` returns an
in-flight upload to ``idle`` with the selected file kept. A file that
fails local validation moves straight to ``error`` without any network
call.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fisboard.models.enums import UploadErrorCode, UploadState
from fisboard.models.schemas import UploadErrorDetail, UploadResult
from fisboard.services.invalidation import InvalidationCoordinator, InvalidationReport
from fisboard.services.upload_service import (
    CancellationToken,
    ReceiptImage,
    UploadCancelled,
    UploadService,
    failure,
)
from fisboard.utils.validation import UploadValidationError, validate_upload

logger = logging.getLogger(__name__)


class UploadController:
    def __init__(
        self,
        service: UploadService,
        coordinator: InvalidationCoordinator,
        listener: Optional[Callable[["UploadController"], None]] = None,
    ) -> None:
        self.service = service
        self.coordinator = coordinator
        self.state = UploadState.IDLE
        self.selected: Optional[ReceiptImage] = None
        self.result: Optional[UploadResult] = None
        self.message: Optional[str] = None
        self.error: Optional[UploadErrorDetail] = None
        self.last_report: Optional[InvalidationReport] = None
        self._listener = listener
        self._token: Optional[CancellationToken] = None

    @property
    def is_uploading(self) -> bool:
        return self.state is UploadState.UPLOADING

    def select_file(self, image: ReceiptImage) -> bool:
        """Validate type and size locally; return ``False`` and enter ``error`` when rejected."""
        if self.is_uploading:
            raise RuntimeError("cannot change the file while an upload is in progress")
        self.result = None
        try:
            validate_upload(image.content_type, image.size, self.service.max_size)
        except UploadValidationError as exc:
            self.selected = None
            self._set(UploadState.ERROR, str(exc), UploadErrorDetail(code=exc.code, details=exc.details))
            return False
        self.selected = image
        self._set(UploadState.IDLE)
        return True

    async def upload(self) -> Optional[UploadResult]:
        """Send the selected file; ``None`` when the upload was aborted."""
        if self.is_uploading:
            raise RuntimeError("an upload is already in progress")
        if self.selected is None:
            result = failure(UploadErrorCode.NO_FILE_PROVIDED, "No file selected", "Select a receipt image first")
            self.result = result
            self._set(UploadState.ERROR, result.message, result.error)
            return result

        token = CancellationToken()
        self._token = token
        self.result = None
        self._set(UploadState.UPLOADING)
        try:
            result = await self.service.upload(self.selected, cancel_token=token)
        except UploadCancelled:
            return None
        # abort() already restored the state; nothing may be invalidated after it
        if token.cancelled:
            return None
        self._token = None
        self.result = result

        if not result.success:
            self._set(UploadState.ERROR, result.message, result.error)
            return result

        self._set(UploadState.SUCCESS, result.message)
        self.last_report = await self.coordinator.on_write_completed()
        if not self.last_report.ok:
            logger.warning("[upload] %d views failed to refresh after upload", len(self.last_report.failures))
        return result

    def abort(self) -> bool:
        if not self.is_uploading or self._token is None:
            return False
        self._token.cancel()
        self._token = None
        self._set(UploadState.IDLE)
        logger.info("[upload] upload aborted by user")
        return True

    def reset(self) -> None:
        self.abort()
        self.selected = None
        self.result = None
        self._set(UploadState.IDLE)

    def _set(self, state: UploadState, message: str | None = None, error: UploadErrorDetail | None = None) -> None:
        self.state = state
        self.message = message
        self.error = error
        if self._listener is not None:
            self._listener(self)
