"""
Error taxonomy for PageSpeed Insights calls.

Every failed call ends in exactly one WatcherError subclass. Callers branch
on ``kind`` (and ``provider_code`` for provider errors) rather than on
message text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classification of a failed call."""
    INVALID_ARGUMENT = "invalid_argument"
    MISSING_CREDENTIAL = "missing_credential"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    PROVIDER_ERROR = "provider_error"
    SERVER_UNAVAILABLE = "server_unavailable"
    TRANSPORT_FAILURE = "transport_failure"


class ProviderErrorCode(Enum):
    """Sub-classification of errors reported by the provider."""
    BAD_REQUEST = "bad_request"
    AUTH_ERROR = "auth_error"
    QUOTA_EXCEEDED = "quota_exceeded"
    OTHER = "other"

    @classmethod
    def from_code(cls, code: Optional[int]) -> "ProviderErrorCode":
        """Map a provider/HTTP error code to its sub-classification."""
        if code == 400:
            return cls.BAD_REQUEST
        if code in (401, 403):
            return cls.AUTH_ERROR
        if code == 429:
            return cls.QUOTA_EXCEEDED
        return cls.OTHER


_RETRYABLE_KINDS = {
    ErrorKind.RATE_LIMIT_EXCEEDED,
    ErrorKind.SERVER_UNAVAILABLE,
    ErrorKind.TRANSPORT_FAILURE,
}


class WatcherError(Exception):
    """Base class for classified failures."""
    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def retryable(self) -> bool:
        """Whether retrying later (with backoff) can succeed."""
        return self.kind in _RETRYABLE_KINDS


class InvalidArgumentError(WatcherError):
    """Bad URL, strategy or host. Caller bug, never retryable."""
    kind = ErrorKind.INVALID_ARGUMENT


class MissingCredentialError(WatcherError):
    """No API key configured."""
    kind = ErrorKind.MISSING_CREDENTIAL

    def __init__(self, message: str = "PSI API key is not configured"):
        super().__init__(message)


class RateLimitExceededError(WatcherError):
    """Local admission control rejected the call."""
    kind = ErrorKind.RATE_LIMIT_EXCEEDED


class ProviderError(WatcherError):
    """The provider rejected the request."""
    kind = ErrorKind.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.provider_code = ProviderErrorCode.from_code(code)

    @property
    def retryable(self) -> bool:
        return self.provider_code == ProviderErrorCode.QUOTA_EXCEEDED


class ServerUnavailableError(WatcherError):
    """Provider answered with a 5xx status."""
    kind = ErrorKind.SERVER_UNAVAILABLE

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class TransportFailureError(WatcherError):
    """No response: connection failure or timeout."""
    kind = ErrorKind.TRANSPORT_FAILURE
