"""
Error taxonomy shared by the provider adapters and the processing pipeline.

Adapters raise ProviderError subclasses. The pipeline catches them at the
chat call site and converts them into ProcessingError subclasses, which are
the only errors that cross the core boundary.
"""

from enum import Enum


class ScreenCoderError(Exception):
    """Base exception for the Screen Coder backend."""


class ConfigurationError(ScreenCoderError):
    """Raised for programmer errors such as an unknown provider id."""


# ── Adapter-level errors ──────────────────────────────────────────────────────


class ProviderError(ScreenCoderError):
    """Raised by an adapter when a backend call fails."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class ProviderHTTPError(ProviderError):
    """The backend answered with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str, provider: str = ""):
        super().__init__(f"{provider or 'provider'} API error ({status_code}): {message}", provider)
        self.status_code = status_code


class ProviderRequestError(ProviderError):
    """The request never produced an HTTP response (DNS, connect, timeout)."""


class ProviderResponseError(ProviderError):
    """The backend answered 2xx but the body was empty or malformed."""


# ── Pipeline-level errors ─────────────────────────────────────────────────────


class FailureKind(str, Enum):
    NO_SCREENSHOTS = "no_screenshots"
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ProcessingError(ScreenCoderError):
    kind: FailureKind = FailureKind.UNKNOWN
    default_message = "Processing failed."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class NoScreenshotsError(ProcessingError):
    kind = FailureKind.NO_SCREENSHOTS
    default_message = "No screenshots to process."


class CredentialError(ProcessingError):
    kind = FailureKind.INVALID_CREDENTIALS
    default_message = "Invalid API key. Please check your settings."


class RateLimitError(ProcessingError):
    kind = FailureKind.RATE_LIMITED
    default_message = "API rate limit exceeded. Please try again later."


class TransientServerError(ProcessingError):
    kind = FailureKind.SERVER_ERROR
    default_message = "Server error. Please try again later."


class CancellationError(ProcessingError):
    kind = FailureKind.CANCELLED
    default_message = "Processing was canceled by the user."


class UnknownProcessingError(ProcessingError):
    kind = FailureKind.UNKNOWN


class ParseFallbackWarning(UserWarning):
    """A parser could not find the expected structure and fell back to raw text."""
