"""Gateway error taxonomy.

Handler-level errors subclass ``HTTPException`` so FastAPI renders them as
``{"detail": ...}`` with the matching status code. ``BackendError`` and
``DiscoveryError`` never reach callers directly; they are translated at the
handler boundary or abort startup.
"""

from __future__ import annotations

from fastapi import HTTPException


class GatewayError(HTTPException):
    """Base class for errors surfaced to HTTP callers."""

    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)


class InvalidIdentifier(GatewayError):
    status_code = 400
    default_detail = "Invalid identifier"


class InvalidRequestBody(GatewayError):
    status_code = 400
    default_detail = "Invalid request body"


class NotFound(GatewayError):
    status_code = 404
    default_detail = "Not found"


class Conflict(GatewayError):
    status_code = 409
    default_detail = "Conflict"


class InternalError(GatewayError):
    status_code = 500


class BackendError(Exception):
    """Failure reported by a storage backend.

    Attributes:
        code: S3-style error code (``NoSuchKey``, ``BucketNotEmpty`` ...).
        message: Backend supplied message, for logs only.
    """

    def __init__(self, code: str, message: str = ""):
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message


class DiscoveryError(RuntimeError):
    """Raised when no usable backend instances can be discovered."""


class ConfigError(ValueError):
    """Raised when configuration values cannot be parsed."""


# S3 error codes the handlers translate.
NO_SUCH_BUCKET = "NoSuchBucket"
NO_SUCH_KEY = "NoSuchKey"
BUCKET_NOT_EMPTY = "BucketNotEmpty"
BUCKET_ALREADY_OWNED = "BucketAlreadyOwnedByYou"
BUCKET_ALREADY_EXISTS = "BucketAlreadyExists"
INVALID_CREDENTIALS = "InvalidCredentials"
TRANSPORT_ERROR = "TransportError"
