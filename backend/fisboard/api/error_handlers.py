"""
Custom exception handlers for FastAPI.
Errors use the same envelope as the upload proxy: ``{success, message, error: {code, details}}``.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.status import HTTP_422_UNPROCESSABLE_ENTITY, HTTP_500_INTERNAL_SERVER_ERROR

from fisboard.core.observability import sentry_capture
from fisboard.models.enums import UploadErrorCode


def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "message": "Validation error",
            "error": {"code": "VALIDATION_ERROR", "details": jsonable_encoder(exc.errors())},
        },
    )


def generic_exception_handler(request: Request, exc: Exception):
    # No-op unless a Sentry DSN is configured
    sentry_capture(exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "message": "Internal server error",
            "error": {"code": UploadErrorCode.INTERNAL_SERVER_ERROR.value, "details": str(exc)},
        },
    )
