"""Receipt image upload proxy.

``POST /api/upload-file`` accepts a single ``file`` field as
``multipart/form-data`` and forwards it to the extraction webhook. Every
response, success or failure, uses the envelope
``{success, message, data?, error?: {code, details}}``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile
from starlette.formparsers import MultiPartException

from fisboard.api.dependencies import get_coordinator, get_upload_service
from fisboard.core.config import settings
from fisboard.core.observability import sentry_breadcrumb
from fisboard.models.enums import UploadErrorCode
from fisboard.models.schemas import UploadResult
from fisboard.services.invalidation import InvalidationCoordinator
from fisboard.services.upload_service import ReceiptImage, UploadService, failure
from fisboard.utils.validation import UploadValidationError, validate_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix=settings.API_PREFIX, tags=["upload"])


def _respond(result: UploadResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.to_response())


@router.post("/upload-file")
async def upload_file(
    request: Request,
    service: UploadService = Depends(get_upload_service),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
) -> JSONResponse:
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        return _respond(
            failure(
                UploadErrorCode.INVALID_CONTENT_TYPE,
                "Content-Type must be multipart/form-data",
                f"Received: {content_type or 'none'}",
            )
        )

    try:
        form = await request.form()
    except (MultiPartException, HTTPException, ValueError) as exc:
        logger.warning("[upload] form parse failed: %s", exc)
        return _respond(
            failure(
                UploadErrorCode.FORM_PARSE_ERROR,
                "Failed to parse form data",
                getattr(exc, "detail", None) or str(exc),
            )
        )

    upload = form.get("file")
    if not isinstance(upload, UploadFile):
        return _respond(
            failure(
                UploadErrorCode.NO_FILE_PROVIDED,
                "No file provided in form data",
                "File field is missing or empty",
            )
        )
    try:
        # the parser spools large parts to disk; reject them before reading into memory
        if upload.size is not None:
            validate_upload(upload.content_type, upload.size, service.max_size)
        content = await upload.read(service.max_size + 1)
    except UploadValidationError as exc:
        logger.info("[upload] rejected %s: %s", upload.filename, exc.code.value)
        return _respond(failure(exc.code, str(exc), exc.details))
    finally:
        await upload.close()

    image = ReceiptImage(filename=upload.filename or "receipt", content_type=upload.content_type, content=content)
    result = await service.upload(image)
    sentry_breadcrumb(
        category="upload",
        message="upload.response",
        level="info" if result.success else "warning",
        data={"status": result.status_code, "code": result.error.code.value if result.error else None},
    )
    if result.success:
        report = await coordinator.on_write_completed()
        logger.info("[upload] invalidated %d cached views", report.revalidated_count)
    return _respond(result)


@router.get("/upload-file")
async def upload_file_get() -> JSONResponse:
    return _respond(
        failure(
            UploadErrorCode.METHOD_NOT_ALLOWED,
            "Method not allowed. Use POST to upload files.",
            "Only POST requests are accepted on this endpoint",
        )
    )
