"""Error types raised at the remote-client boundary.

Every failure of a remote call is one of four kinds. The offline layer only
absorbs ``CONNECTIVITY``; the other kinds reach the caller unchanged.
"""
from enum import Enum
from typing import Optional

import httpx


class ErrorKind(Enum):
    """Closed set of remote failure kinds."""
    CONNECTIVITY = "connectivity"  # no network, timeout, reset, service unavailable
    VALIDATION = "validation"  # malformed input or out-of-range value
    NOT_FOUND = "not_found"
    REJECTED = "rejected"  # business-rule rejection, auth failure, server error


class RemoteError(Exception):
    """Base class for failures of a remote call."""
    kind: ErrorKind = ErrorKind.REJECTED

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_connectivity(self) -> bool:
        return self.kind is ErrorKind.CONNECTIVITY


class ConnectivityError(RemoteError):
    """The remote service could not be reached."""
    kind = ErrorKind.CONNECTIVITY


class ValidationError(RemoteError):
    """The request was malformed or a value was out of range."""
    kind = ErrorKind.VALIDATION


class NotFoundError(RemoteError):
    """The addressed learner, content or record does not exist."""
    kind = ErrorKind.NOT_FOUND


class RejectedError(RemoteError):
    """The server refused the request for a reason unlikely to change."""
    kind = ErrorKind.REJECTED


_ERROR_TYPES = {
    ErrorKind.CONNECTIVITY: ConnectivityError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.REJECTED: RejectedError,
}

# Gateway and availability statuses mean the request never got a real answer.
_CONNECTIVITY_STATUSES = {408, 502, 503, 504}


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP error status to an error kind."""
    if status_code in _CONNECTIVITY_STATUSES:
        return ErrorKind.CONNECTIVITY
    if status_code in (400, 422):
        return ErrorKind.VALIDATION
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    return ErrorKind.REJECTED


def error_for_status(status_code: int, message: str) -> RemoteError:
    """Build the error matching an HTTP error status."""
    error_type = _ERROR_TYPES[classify_status(status_code)]
    return error_type(message, status_code=status_code)


def error_for_transport(exc: httpx.TransportError) -> ConnectivityError:
    """Wrap an httpx transport failure (connect, read, timeout) as a connectivity error."""
    return ConnectivityError(f"{type(exc).__name__}: {exc}")
