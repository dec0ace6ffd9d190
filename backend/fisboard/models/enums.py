"""Enumeration types used throughout the receipt dashboard.

Enumerations constrain the values that can be passed to the data
source (sort fields, directions), the states exposed by the cache and
the controllers, and the error codes returned by the upload proxy.
"""

from enum import Enum


class SortField(str, Enum):
    """Receipt columns the list view can be ordered by."""

    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    EVENT_TIME = "event_time"
    TOTAL = "total"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"

    def toggled(self) -> "SortOrder":
        return SortOrder.DESC if self is SortOrder.ASC else SortOrder.ASC


class Resource(str, Enum):
    """Resource classes a cache key can belong to."""

    LIST = "list"
    STATS = "stats"
    DETAIL = "detail"


class CacheStatus(str, Enum):
    """Lifecycle states of a cache entry."""

    IDLE = "idle"
    LOADING = "loading"
    VALIDATING = "validating"
    SUCCESS = "success"
    ERROR = "error"


class ErrorKind(str, Enum):
    """Error taxonomy used by the data source and cache.

    Only transport errors are retried.
    """

    TRANSPORT = "transport"
    VALIDATION = "validation"
    UPSTREAM = "upstream"


class UploadErrorCode(str, Enum):
    """Structured error codes returned by the upload proxy."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INVALID_CONTENT_TYPE = "INVALID_CONTENT_TYPE"
    FORM_PARSE_ERROR = "FORM_PARSE_ERROR"
    NO_FILE_PROVIDED = "NO_FILE_PROVIDED"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    WEBHOOK_ERROR = "WEBHOOK_ERROR"
    WEBHOOK_INVALID_RESPONSE = "WEBHOOK_INVALID_RESPONSE"
    WEBHOOK_TIMEOUT = "WEBHOOK_TIMEOUT"
    WEBHOOK_NETWORK_ERROR = "WEBHOOK_NETWORK_ERROR"
    WEBHOOK_CONNECTION_ERROR = "WEBHOOK_CONNECTION_ERROR"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"


class UploadState(str, Enum):
    """States of the client-side upload flow."""

    IDLE = "idle"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"
