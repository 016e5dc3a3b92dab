"""
Error taxonomy for the ingestion pipeline.

Each error knows the HTTP status it maps to and whether the operation that
raised it is worth retrying. Handlers translate these into responses; any
other exception is reported as a generic 500.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class InvalidKeyError(PipelineError):
    """Object key missing or unusable."""

    status_code = 400


class GrantError(PipelineError):
    """An upload grant was rejected."""

    status_code = 403


class GrantExpiredError(GrantError):
    """The grant's validity window has elapsed."""


class GrantReusedError(GrantError):
    """A single-use grant was presented a second time."""


class GrantSignatureError(GrantError):
    """The grant does not cover the requested bucket/key or was tampered with."""


class ObjectNotFoundError(PipelineError):
    """Requested object does not exist in the store."""

    status_code = 404


class UnsupportedFormatError(PipelineError):
    """Raw object is not a row-oriented format the worker can read."""

    status_code = 415


class MalformedInputError(PipelineError):
    """Raw object could not be parsed. Retrying will not help."""

    status_code = 422


class StorageUnavailableError(PipelineError):
    """Object storage is unreachable or throttling."""

    status_code = 503
    retryable = True


class BatchJobError(PipelineError):
    """The batch conversion job could not be started."""

    status_code = 502
    retryable = True
