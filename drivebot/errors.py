"""
Upload failure taxonomy.

Every error carries the backend status code and response body (when there was
one) so a failed upload can be diagnosed without retrying it blindly.
"""
from typing import Optional


class UploadError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        if self.detail:
            return f"{self.message}: {self.status_code} - {self.detail}"
        return f"{self.message}: {self.status_code}"


class ConfigurationError(UploadError):
    """A required setting (bot token, credentials, folder) is missing or invalid."""


class AuthError(UploadError):
    """The service-account credential could not be turned into a bearer token."""


class SourceUnavailable(UploadError):
    """The file bytes could not be retrieved from the chat provider."""


class SessionInitiationError(UploadError):
    """Drive refused to open a resumable upload session."""


class TransientTransferError(UploadError):
    """Network failure or 5xx from Drive; retried with backoff."""
