"""Directory-specific exceptions for error handling."""
from __future__ import annotations
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .odata import ODataError


class DirectoryError(Exception):
    """Base exception for all directory operations."""

    status_code: int = 0


class PreconditionError(DirectoryError, ValueError):
    """A required identifier or collection was missing; no request was sent."""
    pass


class AuthenticationError(DirectoryError):
    """Token acquisition against the authority failed."""

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class DirectoryTransportError(DirectoryError):
    """Network failure or unreadable response body."""

    def __init__(self, endpoint: str, cause: Exception):
        self.endpoint = endpoint
        self.cause = cause
        super().__init__(f"{endpoint}: {cause}")


class CodecError(DirectoryError):
    """JSON encoding or decoding failed.

    Attributes:
        step: "encode" or "decode"
        status_code: HTTP status of the response being decoded (0 on encode)
    """

    def __init__(self, step: str, operation: str, cause: Exception, status_code: int = 0):
        self.step = step
        self.operation = operation
        self.cause = cause
        self.status_code = status_code
        super().__init__(f"{operation}: {step} failed: {cause}")


class DirectoryAPIError(DirectoryError):
    """Non-success HTTP status from the directory API.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
        odata_error: Parsed structured error, when the body carried one
    """

    def __init__(self, status_code: int, message: str, endpoint: str, odata_error: Optional["ODataError"] = None):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        self.odata_error = odata_error
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class RequestCancelledError(DirectoryError):
    """The caller cancelled the operation or its deadline passed."""

    def __init__(self, endpoint: str, reason: str = "cancelled", status_code: int = 0):
        self.endpoint = endpoint
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{endpoint}: request {reason}")


class ReconcileError(DirectoryError):
    """A relationship edge failed with an unclassified error.

    Edges processed before the failure are not rolled back; they are listed
    in ``processed``.
    """

    def __init__(self, relation: str, application_id: str, target_id: str, cause: DirectoryError, processed=None):
        self.relation = relation
        self.application_id = application_id
        self.target_id = target_id
        self.cause = cause
        self.status_code = getattr(cause, "status_code", 0)
        self.processed = list(processed or [])
        super().__init__(f"{relation} edge {application_id} -> {target_id} failed: {cause}")
