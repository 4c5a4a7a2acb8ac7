"""Error taxonomy shared by every pipeline stage.

Each error carries a short ``message`` that is safe to show to operators.
Tool and service errors also carry ``diagnostics`` (captured process output,
response bodies) which is persisted only in internal fields.
"""
from typing import Optional


class ClipperError(Exception):
    """Base class for pipeline errors."""

    status_code = 500

    def __init__(self, message: str, diagnostics: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.diagnostics = diagnostics

    def __str__(self):
        return self.message


class ValidationError(ClipperError):
    """Input failed validation."""
    status_code = 400


class UnsupportedPlatformError(ClipperError):
    """Source URL does not belong to a supported platform."""
    status_code = 400


class ExternalToolError(ClipperError):
    """A local executable was missing, timed out or exited non-zero."""
    status_code = 500


class ExternalServiceError(ClipperError):
    """A remote capability failed or returned an unusable payload.

    ``transient`` marks failures worth retrying (timeouts, connection
    errors, 429 and 5xx responses).
    """
    status_code = 502

    def __init__(self, message: str, diagnostics: Optional[str] = None, transient: bool = False):
        super().__init__(message, diagnostics)
        self.transient = transient


class ParseError(ClipperError):
    """Structured output could not be recovered from a response."""
    status_code = 502


class QuotaExceededError(ClipperError):
    """The account has reached its plan limit for the current period."""
    status_code = 429


class NotFoundError(ClipperError):
    """A requested record does not exist."""
    status_code = 404
