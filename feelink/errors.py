"""
Error taxonomy for backend requests and voice capture.
"""

from typing import Optional


class ApiError(Exception):
    """Base class for failures of a single backend request."""

    kind = "api_error"


class InvalidRequestError(ApiError):
    """The request could not be built (malformed URL or parameters)."""

    kind = "invalid_url"


class TransportError(ApiError):
    """No usable response arrived: connection failure, timeout, or no data."""

    kind = "transport"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class NoDataError(TransportError):
    """The server answered 200 with an empty body."""

    kind = "no_data"


class ServerRejectedError(ApiError):
    """The server answered with a non-200 status."""

    kind = "server_error"

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"Server rejected request with HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class DecodeFailedError(ApiError):
    """The response body did not match the expected shape."""

    kind = "decoding_error"


class TranscriptionError(Exception):
    """Speech capture or recognition failed."""


class TranscriptionCancelled(TranscriptionError):
    """Capture ended because the user or the platform cancelled it."""
