"""Local input validation run before any network call.

Filter forms and selected upload files are checked here so that an
obviously invalid request (min amount above max amount, a PDF where an
image is expected...) never reaches the data source or the webhook.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from fisboard.core.config import settings
from fisboard.models.enums import UploadErrorCode
from fisboard.models.schemas import Filters
from fisboard.utils.helpers import parse_amount_input, parse_date_input

FILTER_VALIDATION_MESSAGES = {
    "INVALID_DATE_RANGE": "Start date cannot be after end date",
    "INVALID_AMOUNT_RANGE": "Minimum amount cannot be greater than maximum amount",
    "NEGATIVE_AMOUNT": "Amount cannot be negative",
    "INVALID_DATE_FORMAT": "Invalid date format",
    "INVALID_NUMBER_FORMAT": "Invalid number format",
}


@dataclass(frozen=True)
class FilterIssue:
    code: str
    field: str
    message: str


class FilterValidationError(ValueError):
    """Raised when a filter form cannot be turned into a query."""

    def __init__(self, issues: Iterable[FilterIssue]) -> None:
        self.issues = list(issues)
        super().__init__("; ".join(f"{i.field}: {i.message}" for i in self.issues))


def _issue(code: str, field: str) -> FilterIssue:
    return FilterIssue(code=code, field=field, message=FILTER_VALIDATION_MESSAGES[code])


def validate_filters(filters: Filters) -> list[FilterIssue]:
    """Return every problem found in ``filters`` (empty list when valid)."""
    issues: list[FilterIssue] = []

    dates: dict[str, Any] = {}
    for name in ("date_from", "date_to"):
        try:
            dates[name] = parse_date_input(getattr(filters, name))
        except ValueError:
            issues.append(_issue("INVALID_DATE_FORMAT", name))

    amounts: dict[str, Optional[float]] = {}
    for name in ("min_amount", "max_amount"):
        try:
            amounts[name] = parse_amount_input(getattr(filters, name))
        except ValueError:
            issues.append(_issue("INVALID_NUMBER_FORMAT", name))
            continue
        if amounts[name] is not None and amounts[name] < 0:
            issues.append(_issue("NEGATIVE_AMOUNT", name))

    if dates.get("date_from") and dates.get("date_to") and dates["date_from"] > dates["date_to"]:
        issues.append(_issue("INVALID_DATE_RANGE", "date_from"))

    low, high = amounts.get("min_amount"), amounts.get("max_amount")
    if low is not None and high is not None and low > high:
        issues.append(_issue("INVALID_AMOUNT_RANGE", "min_amount"))
    return issues


def filters_to_query(filters: Filters) -> dict[str, Any]:
    """Validate ``filters`` and convert them to ``QueryParams`` fields.

    Raises :class:`FilterValidationError` when the form is invalid.
    Unset fields are omitted.
    """
    issues = validate_filters(filters)
    if issues:
        raise FilterValidationError(issues)
    query: dict[str, Any] = {}
    if filters.search.strip():
        query["search"] = filters.search.strip()
    if filters.record_no.strip():
        query["record_no"] = filters.record_no.strip()
    for name in ("date_from", "date_to"):
        value = parse_date_input(getattr(filters, name))
        if value is not None:
            query[name] = value
    for name in ("min_amount", "max_amount"):
        value = parse_amount_input(getattr(filters, name))
        if value is not None:
            query[name] = value
    return query


# ---------------------------------------------------------------------------
# Upload files


class UploadValidationError(ValueError):
    """Raised when a selected file cannot be uploaded."""

    def __init__(self, code: UploadErrorCode, message: str, details: str = "") -> None:
        self.code = code
        self.details = details
        super().__init__(message)


def validate_upload(content_type: str | None, size: int, max_size: int | None = None) -> None:
    """Check the MIME type and size of a receipt image."""
    allowed = settings.ALLOWED_UPLOAD_TYPES
    limit = settings.MAX_UPLOAD_SIZE if max_size is None else max_size
    if (content_type or "") not in allowed:
        raise UploadValidationError(
            UploadErrorCode.INVALID_FILE_TYPE,
            "Invalid file type. Only JPG, JPEG, and PNG files are allowed",
            f"Received: {content_type}, Allowed: {', '.join(allowed)}",
        )
    if size > limit:
        raise UploadValidationError(
            UploadErrorCode.FILE_TOO_LARGE,
            f"File size exceeds limit. Maximum size is {limit // (1024 * 1024)}MB",
            f"File size: {size / 1024 / 1024:.2f}MB, Limit: {limit // (1024 * 1024)}MB",
        )
