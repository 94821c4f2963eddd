"""
services/error_classifier.py

Responsibility: Maps raised errors onto the provider's error taxonomy
(not found, unauthenticated, forbidden, validation, conflict, rate limited,
server error, transport, canceled) using structured fields first: the HTTP
status of an ApiError or the AWS-style code of a SpacesError.
Does NOT: retry, log, or raise.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum

from exceptions import ApiError, OperationCanceledError, SpacesError, TransportError

# S3 error codes that mean the object or bucket is gone
_SPACES_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "NoSuchBucketPolicy", "NotFound", "BucketDeleted"})
_SPACES_CONFLICT_CODES = frozenset({"BucketAlreadyExists", "BucketAlreadyOwnedByYou", "BucketNotEmpty", "OperationAborted"})
_SPACES_FORBIDDEN_CODES = frozenset({"AccessDenied", "AllAccessDisabled"})
_SPACES_AUTH_CODES = frozenset({"InvalidAccessKeyId", "SignatureDoesNotMatch"})
_SPACES_VALIDATION_CODES = frozenset({"MalformedPolicy", "InvalidArgument", "InvalidBucketName", "MalformedXML"})
_SPACES_THROTTLE_CODES = frozenset({"SlowDown", "TooManyRequests"})


class ErrorKind(str, Enum):
    NOT_FOUND = "notFound"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    RATE_LIMITED = "rateLimited"
    SERVER_ERROR = "serverError"
    TRANSPORT = "transport"
    CANCELED = "canceled"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Classification:
    """Result of classify(): the error kind and whether a retry may succeed."""

    kind: ErrorKind
    retryable: bool


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def classify(err: BaseException) -> Classification:
    """
    Classifies an error raised by a transport or by the engine.

    Args:
        err: Any exception; ApiError, SpacesError and TransportError are
            classified structurally, everything else is UNKNOWN.

    Returns:
        A Classification.
    """
    if isinstance(err, (asyncio.CancelledError, OperationCanceledError)):
        return Classification(ErrorKind.CANCELED, False)
    if isinstance(err, ApiError):
        return _classify_status(err.status_code)
    if isinstance(err, SpacesError):
        return _classify_spaces(err)
    if isinstance(err, TransportError):
        return Classification(ErrorKind.TRANSPORT, True)
    return Classification(ErrorKind.UNKNOWN, False)


def is_api_error(err: BaseException, status_code: int, message: str = "") -> bool:
    """
    Returns True if err is an ApiError with the given status whose message
    contains ``message`` (case-insensitive). An empty message matches any.

    Args:
        err: The error to inspect.
        status_code: Expected HTTP status.
        message: Optional substring of the upstream message.
    """
    if not isinstance(err, ApiError) or err.status_code != status_code:
        return False
    return message.lower() in err.message.lower()


def is_not_found(err: BaseException) -> bool:
    return classify(err).kind is ErrorKind.NOT_FOUND


def is_spaces_error(err: BaseException, *codes: str) -> bool:
    return isinstance(err, SpacesError) and err.code in codes


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _classify_status(status: int) -> Classification:
    if status == 404:
        return Classification(ErrorKind.NOT_FOUND, False)
    if status == 401:
        return Classification(ErrorKind.UNAUTHENTICATED, False)
    if status == 403:
        return Classification(ErrorKind.FORBIDDEN, False)
    if status in (400, 422):
        return Classification(ErrorKind.VALIDATION, False)
    if status in (409, 412):
        return Classification(ErrorKind.CONFLICT, False)
    if status == 429:
        return Classification(ErrorKind.RATE_LIMITED, True)
    if status >= 500:
        return Classification(ErrorKind.SERVER_ERROR, True)
    return Classification(ErrorKind.UNKNOWN, False)


def _classify_spaces(err: SpacesError) -> Classification:
    code = err.code
    if code in _SPACES_NOT_FOUND_CODES:
        return Classification(ErrorKind.NOT_FOUND, False)
    if code in _SPACES_CONFLICT_CODES:
        return Classification(ErrorKind.CONFLICT, False)
    if code in _SPACES_FORBIDDEN_CODES:
        return Classification(ErrorKind.FORBIDDEN, False)
    if code in _SPACES_AUTH_CODES:
        return Classification(ErrorKind.UNAUTHENTICATED, False)
    if code in _SPACES_VALIDATION_CODES:
        return Classification(ErrorKind.VALIDATION, False)
    if code in _SPACES_THROTTLE_CODES:
        return Classification(ErrorKind.RATE_LIMITED, True)
    if code == "TransportError":
        return Classification(ErrorKind.TRANSPORT, True)
    if err.status_code:
        return _classify_status(err.status_code)
    return Classification(ErrorKind.UNKNOWN, False)
