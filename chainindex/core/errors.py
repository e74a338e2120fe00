"""
Error classification for chainindex.

Two layers:

- ``ErrorKind`` / ``ErrorInfo``: a stable, serializable description of a
  failure, produced by the ``classify_*`` helpers from raw Postgres and
  HTTP errors. The connection registry uses the Postgres classification to
  decide whether a failure is fatal for a tenant pool.
- ``ChainIndexError`` and subclasses: exceptions raised across component
  boundaries. Each carries the ``ErrorKind`` it maps to and the HTTP status
  the API layer answers with.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Standardized error categories."""

    AUTH = "auth"                               # bad or missing shared secret
    NOT_FOUND = "not_found"                     # unknown job or connection
    VALIDATION = "validation"                   # missing payload fields, bad config
    UNSUPPORTED_DATA_TYPE = "unsupported_data_type"
    INVALID_ACTION = "invalid_action"

    DB_CONNECTION = "db_connection"             # tenant database unreachable
    DB_CONSTRAINT = "db_constraint"
    DB_TIMEOUT = "db_timeout"
    DB_POOL_TIMEOUT = "db_pool_timeout"         # no pooled connection within the timeout
    DB_QUERY = "db_query"                       # syntax, undefined table/column, ...

    PROVISIONING = "provisioning"
    EVENT_SOURCE = "event_source"               # webhook provider call failed
    TIMEOUT = "timeout"

    UNKNOWN = "unknown"


class ErrorInfo(BaseModel):
    """Serializable error description, suitable for IngestionLog metadata."""

    kind: ErrorKind = Field(default=ErrorKind.UNKNOWN, description="Error category")
    retryable: bool = Field(default=False, description="Whether retrying may succeed")
    code: str = Field(default="UNKNOWN", description="Source specific code (PG_23505, HTTP_429, ...)")
    message: str = Field(default="Unknown error")
    source: str = Field(default="unknown", description="Component that produced the error")
    http_status: Optional[int] = None
    pg_code: Optional[str] = None
    exception_type: Optional[str] = None

    @property
    def pool_fatal(self) -> bool:
        """True when the tenant pool that produced this error must be rebuilt."""
        return self.kind == ErrorKind.DB_CONNECTION

    def to_dict(self) -> dict[str, Any]:
        d = {
            "kind": self.kind.value,
            "retryable": self.retryable,
            "code": self.code,
            "message": self.message,
            "source": self.source,
        }
        if self.http_status is not None:
            d["http_status"] = self.http_status
        if self.pg_code is not None:
            d["pg_code"] = self.pg_code
        if self.exception_type is not None:
            d["exception_type"] = self.exception_type
        return d


def classify_postgres_error(error: Exception) -> ErrorInfo:
    """Classify a psycopg / psycopg_pool exception."""
    # Imported lazily so the error model stays usable without a driver installed
    import psycopg
    from psycopg import errors as pg_errors
    from psycopg_pool import PoolClosed, PoolTimeout

    error_type = type(error).__name__
    sqlstate = getattr(error, "sqlstate", None)
    code = f"PG_{sqlstate}" if sqlstate else f"PG_{error_type}"

    if isinstance(error, PoolTimeout):
        return ErrorInfo(
            kind=ErrorKind.DB_POOL_TIMEOUT, retryable=True, code="POOL_TIMEOUT",
            message=str(error), source="postgres", exception_type=error_type,
        )
    if isinstance(error, PoolClosed):
        return ErrorInfo(
            kind=ErrorKind.DB_CONNECTION, retryable=True, code="POOL_CLOSED",
            message=str(error), source="postgres", exception_type=error_type,
        )
    if sqlstate == "57014" or isinstance(error, pg_errors.QueryCanceled):
        return ErrorInfo(
            kind=ErrorKind.DB_TIMEOUT, retryable=True, code=code,
            message=str(error), source="postgres", pg_code=sqlstate, exception_type=error_type,
        )
    if isinstance(error, psycopg.IntegrityError) or (sqlstate and sqlstate.startswith("23")):
        return ErrorInfo(
            kind=ErrorKind.DB_CONSTRAINT, retryable=False, code=code,
            message=str(error), source="postgres", pg_code=sqlstate, exception_type=error_type,
        )
    # Class 08 (connection exception), 28 (invalid authorization), 3D (invalid catalog name),
    # 57P0x (admin/crash shutdown) and client side OperationalError without a SQLSTATE
    if (
        (sqlstate and (sqlstate[:2] in ("08", "28", "3D") or sqlstate.startswith("57P")))
        or (isinstance(error, psycopg.OperationalError) and not sqlstate)
    ):
        return ErrorInfo(
            kind=ErrorKind.DB_CONNECTION, retryable=True, code=code,
            message=str(error), source="postgres", pg_code=sqlstate, exception_type=error_type,
        )
    if isinstance(error, psycopg.Error):
        return ErrorInfo(
            kind=ErrorKind.DB_QUERY, retryable=False, code=code,
            message=str(error), source="postgres", pg_code=sqlstate, exception_type=error_type,
        )
    return ErrorInfo(
        kind=ErrorKind.UNKNOWN, retryable=False, code=code,
        message=str(error), source="postgres", exception_type=error_type,
    )


def classify_http_error(status_code: int, message: str = "") -> ErrorInfo:
    """Classify an HTTP status returned by the webhook provider."""
    if status_code in (401, 403):
        kind, retryable = ErrorKind.AUTH, False
    elif status_code == 404:
        kind, retryable = ErrorKind.NOT_FOUND, False
    elif status_code == 429 or status_code >= 500:
        kind, retryable = ErrorKind.EVENT_SOURCE, True
    elif 400 <= status_code < 500:
        kind, retryable = ErrorKind.VALIDATION, False
    else:
        kind, retryable = ErrorKind.UNKNOWN, False
    return ErrorInfo(
        kind=kind,
        retryable=retryable,
        code=f"HTTP_{status_code}",
        message=message or f"HTTP Error {status_code}",
        source="helius",
        http_status=status_code,
    )


class ChainIndexError(Exception):
    """Base class for errors raised across chainindex component boundaries."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    status_code: int = 500

    def __init__(self, message: str = "", info: Optional[ErrorInfo] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.info = info or ErrorInfo(kind=self.kind, message=self.message, source="chainindex")


class NotFoundError(ChainIndexError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ValidationError(ChainIndexError):
    kind = ErrorKind.VALIDATION
    status_code = 400


class UnsupportedDataTypeError(ChainIndexError):
    kind = ErrorKind.UNSUPPORTED_DATA_TYPE
    status_code = 400


class InvalidActionError(ChainIndexError):
    kind = ErrorKind.INVALID_ACTION
    status_code = 400


class ConnectivityError(ChainIndexError):
    kind = ErrorKind.DB_CONNECTION
    status_code = 400


class ProvisioningError(ChainIndexError):
    kind = ErrorKind.PROVISIONING
    status_code = 500


class EventSourceError(ChainIndexError):
    kind = ErrorKind.EVENT_SOURCE
    status_code = 502
