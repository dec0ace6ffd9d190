"""Pydantic schemas for receipts, queries and result envelopes.

Pydantic models are used for validating and serialising data that
crosses the boundary of the data source, the cache and the HTTP API.
Receipt schemas are intentionally separate from the ORM model in
``fisboard.models.tables`` so the hosted column names (``fis_no``,
``tarih_saat``...) never leak past the data source.

Every model that ends up inside a cache entry is frozen: cached values
are replaced wholesale on refetch and never edited in place.
"""

from __future__ import annotations

import datetime as dt
import math
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .enums import ErrorKind, SortField, SortOrder, UploadErrorCode

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Receipt domain


class ReceiptItem(BaseModel):
    """Single line on a receipt."""

    model_config = ConfigDict(frozen=True)

    name: str
    quantity: float = Field(gt=0)
    unit_price: float = Field(gt=0)
    tax_rate: float = Field(ge=0)
    line_total: float = Field(gt=0)


class ReceiptRead(BaseModel):
    """Receipt as returned by the data source."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    record_no: Optional[str] = None
    event_time: Optional[dt.datetime] = None
    created_at: dt.datetime
    updated_at: dt.datetime
    total: Optional[float] = None
    total_tax: Optional[float] = None
    items: Optional[List[ReceiptItem]] = None


class ReceiptCreate(BaseModel):
    record_no: Optional[str] = None
    event_time: Optional[dt.datetime] = None
    total: Optional[float] = None
    total_tax: Optional[float] = None
    items: Optional[List[ReceiptItem]] = None


class ReceiptUpdate(BaseModel):
    record_no: Optional[str] = None
    event_time: Optional[dt.datetime] = None
    total: Optional[float] = None
    total_tax: Optional[float] = None
    items: Optional[List[ReceiptItem]] = None


# ---------------------------------------------------------------------------
# Queries and results


class QueryParams(BaseModel):
    """Parameters of a paginated receipt list query.

    Build instances through ``fisboard.services.query_keys.make_list_key``
    when they are used as cache keys; it drops empty values first.
    """

    model_config = ConfigDict(frozen=True)

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    sort_by: SortField = SortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC
    search: Optional[str] = None
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    min_amount: Optional[float] = Field(default=None, ge=0)
    max_amount: Optional[float] = Field(default=None, ge=0)
    record_no: Optional[str] = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PaginatedResult(BaseModel, Generic[T]):
    """One page of results plus the navigation flags derived from the count."""

    model_config = ConfigDict(frozen=True)

    items: List[T] = Field(default_factory=list)
    total_count: int = Field(ge=0)
    total_pages: int = Field(ge=0)
    current_page: int = Field(ge=1)
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, items: List[T], total_count: int, page: int, limit: int) -> "PaginatedResult[T]":
        total_pages = math.ceil(total_count / limit) if limit > 0 else 0
        return cls(
            items=list(items),
            total_count=total_count,
            total_pages=total_pages,
            current_page=page,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class Statistics(BaseModel):
    """Aggregate figures shown on the dashboard.

    Serialised with camelCase aliases (``totalRecords``...) on the HTTP API.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    total_records: int = Field(ge=0)
    total_amount: float = 0.0
    total_tax: float = 0.0
    today_records: int = Field(default=0, ge=0)
    average_amount: float = 0.0
    average_daily_records: float = 0.0

    @classmethod
    def from_totals(
        cls,
        total_records: int,
        total_amount: float,
        today_records: int,
        recent_records: int,
        total_tax: float = 0.0,
        window_days: int = 30,
    ) -> "Statistics":
        return cls(
            total_records=total_records,
            total_amount=total_amount,
            total_tax=total_tax,
            today_records=today_records,
            average_amount=total_amount / total_records if total_records > 0 else 0.0,
            average_daily_records=recent_records / window_days,
        )


class Filters(BaseModel):
    """Raw filter form values as typed by the user (empty string = unset)."""

    model_config = ConfigDict(frozen=True)

    search: str = ""
    date_from: str = ""
    date_to: str = ""
    min_amount: str = ""
    max_amount: str = ""
    record_no: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, float) and math.isnan(value):
            return ""
        if isinstance(value, (dt.date, dt.datetime)):
            return value.isoformat()
        return str(value)

    @property
    def is_active(self) -> bool:
        return any(value.strip() for value in self.model_dump().values())

    def merged(self, **partial: Any) -> "Filters":
        unknown = set(partial) - set(type(self).model_fields)
        if unknown:
            raise TypeError(f"unknown filter fields: {', '.join(sorted(unknown))}")
        return type(self)(**{**self.model_dump(), **partial})


# ---------------------------------------------------------------------------
# Result envelopes


class ErrorInfo(BaseModel):
    """Structured error carried by failed results and cache entries."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind = ErrorKind.TRANSPORT
    message: str
    code: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSPORT


class ApiResponse(BaseModel, Generic[T]):
    """Success-or-error envelope returned by every data source call."""

    model_config = ConfigDict(frozen=True)

    success: bool
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def ok(cls, data: T) -> "ApiResponse[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, message: str, kind: ErrorKind = ErrorKind.TRANSPORT, code: str | None = None) -> "ApiResponse[T]":
        return cls(success=False, error=ErrorInfo(kind=kind, message=message, code=code))


# ---------------------------------------------------------------------------
# Upload proxy


class UploadMetadata(BaseModel):
    file_name: str = Field(serialization_alias="fileName")
    file_size: int = Field(serialization_alias="fileSize")
    file_type: str = Field(serialization_alias="fileType")
    upload_id: str = Field(serialization_alias="uploadId")
    timestamp: str


class UploadErrorDetail(BaseModel):
    code: UploadErrorCode
    details: str


class UploadResult(BaseModel):
    """Outcome of forwarding one receipt image to the extraction webhook."""

    success: bool
    message: str
    data: Optional[UploadMetadata] = None
    error: Optional[UploadErrorDetail] = None
    status_code: int = Field(default=200, exclude=True)

    @model_validator(mode="after")
    def _error_matches_success(self) -> "UploadResult":
        if not self.success and self.error is None:
            raise ValueError("failed upload results must carry an error")
        return self

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
