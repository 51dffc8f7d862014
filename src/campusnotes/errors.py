"""Full error hierarchy for the campusnotes client.

Every public error class inherits from CampusNotesError. Each carries a
machine-readable ``code`` (from :class:`ErrorCode`), a human-readable
``message``, an optional structured ``context`` dict, and an optional
``cause`` (chained exception).

Error codes are defined as a :class:`str` enum so that they serialise
naturally to JSON and can be matched with simple ``==`` comparisons.

Transient failures (:class:`TransportError`) are absorbed by the retry and
fallback layers.  Everything else is terminal and crosses the
:class:`~campusnotes.coordinator.RecordCoordinator` boundary unchanged;
:func:`user_message` turns any of them into a single sentence suitable for
display.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Error code enum
# ---------------------------------------------------------------------------

class ErrorCode(str, Enum):
    """Machine-readable error codes for every error the client can raise."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    UNSUPPORTED_FILE_TYPE = "UNSUPPORTED_FILE_TYPE"
    FILE_FETCH_ERROR = "FILE_FETCH_ERROR"
    NO_CONNECTIVITY = "NO_CONNECTIVITY"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UPLOAD_EXHAUSTED = "UPLOAD_EXHAUSTED"
    RECORD_WRITE_ERROR = "RECORD_WRITE_ERROR"


# ---------------------------------------------------------------------------
# Base error
# ---------------------------------------------------------------------------

class CampusNotesError(Exception):
    """Base exception for all campusnotes errors.

    Parameters
    ----------
    code:
        A value from :class:`ErrorCode` (or any string) identifying the
        error category.
    message:
        A developer-friendly description of what went wrong.
    context:
        Arbitrary structured data providing extra diagnostic detail.
        Keys and expected types are documented per subclass.
    cause:
        The underlying exception, if this error wraps another.
    """

    code_default: str = "ERROR"

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
        code: str | None = None,
    ) -> None:
        self.code: str = code or self.code_default
        self.message: str = message
        self.context: dict[str, Any] = context or {}
        self.cause: Exception | None = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        ctx = f", context={self.context!r}" if self.context else ""
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r}{ctx})"


# ---------------------------------------------------------------------------
# Identity / access errors
# ---------------------------------------------------------------------------

class UnauthenticatedError(CampusNotesError):
    """No valid caller identity, or the backend rejected the token (401).

    Context keys: ``operation``, ``status_code``.
    """

    code_default = ErrorCode.UNAUTHENTICATED


class PermissionDeniedError(CampusNotesError):
    """The caller does not own the resource, or the backend returned 403.

    Context keys: ``note_id``, ``owner_id``, ``caller_id``.
    """

    code_default = ErrorCode.PERMISSION_DENIED


class NotFoundError(CampusNotesError):
    """The requested note or storage object does not exist.

    Context keys: ``resource_type``, ``resource_id``.
    """

    code_default = ErrorCode.NOT_FOUND


# ---------------------------------------------------------------------------
# Local file errors
# ---------------------------------------------------------------------------

class UnsupportedFileTypeError(CampusNotesError):
    """The file is neither a PDF nor an image.

    Context keys: ``declared_mime``, ``name``.
    """

    code_default = ErrorCode.UNSUPPORTED_FILE_TYPE


class FileFetchError(CampusNotesError):
    """A file reference could not be turned into bytes (bad URI, read
    failure, zero-byte result, oversized payload).

    Context keys: ``uri``, ``reason``.
    """

    code_default = ErrorCode.FILE_FETCH_ERROR


# ---------------------------------------------------------------------------
# Network / backend errors
# ---------------------------------------------------------------------------

class NoConnectivityError(CampusNotesError):
    """The connectivity probe reported the device offline."""

    code_default = ErrorCode.NO_CONNECTIVITY


class TransportError(CampusNotesError):
    """A transport-level failure: timeout, connection reset, DNS, or a
    retryable ``5xx`` / ``429`` response.

    Context keys: ``method``, ``path``, ``status_code``, ``strategy``.
    """

    code_default = ErrorCode.TRANSPORT_ERROR


class BackendValidationError(CampusNotesError):
    """The backend rejected the request payload (400/409/413/415/422).

    Context keys: ``method``, ``path``, ``status_code``, ``body``.
    """

    code_default = ErrorCode.VALIDATION_ERROR


# ---------------------------------------------------------------------------
# Terminal upload / record errors
# ---------------------------------------------------------------------------

class UploadExhaustedError(CampusNotesError):
    """Every upload strategy failed, or one failed in a way weaker
    strategies cannot fix.

    Context keys: ``path``, ``failures`` (strategy name -> last error).
    """

    code_default = ErrorCode.UPLOAD_EXHAUSTED


class RecordWriteError(CampusNotesError):
    """A note row insert/update/delete failed after storage was touched.

    Context keys: ``operation``, ``storage_path``, ``compensated``.
    """

    code_default = ErrorCode.RECORD_WRITE_ERROR


# ---------------------------------------------------------------------------
# Human-readable mapping
# ---------------------------------------------------------------------------

_USER_MESSAGES: dict[str, str] = {
    ErrorCode.UNAUTHENTICATED: "Authentication failed - please log in again.",
    ErrorCode.PERMISSION_DENIED: "You do not have access to this note.",
    ErrorCode.NOT_FOUND: "The note could not be found.",
    ErrorCode.UNSUPPORTED_FILE_TYPE: (
        "Unsupported file type. Only PDF and image files are supported."
    ),
    ErrorCode.FILE_FETCH_ERROR: (
        "The selected file could not be read. Please try selecting it again."
    ),
    ErrorCode.NO_CONNECTIVITY: (
        "No internet connection. Please check your network and try again."
    ),
    ErrorCode.TRANSPORT_ERROR: (
        "Network connection issue - please check your internet connection."
    ),
    ErrorCode.VALIDATION_ERROR: "The server rejected the request.",
    ErrorCode.UPLOAD_EXHAUSTED: (
        "Upload failed due to a network connection issue. Please try again."
    ),
    ErrorCode.RECORD_WRITE_ERROR: "The note could not be saved. Please try again.",
}

_FALLBACK_MESSAGE = "Something went wrong. Please try again."


def user_message(exc: BaseException) -> str:
    """Map an exception to a single human-readable sentence.

    Unknown exceptions map to a generic sentence; the raw message and
    traceback are never exposed.
    """
    if isinstance(exc, CampusNotesError):
        return _USER_MESSAGES.get(exc.code, _FALLBACK_MESSAGE)
    return _FALLBACK_MESSAGE
