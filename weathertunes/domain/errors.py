from typing import Optional


class AssemblyError(Exception):
    """Base class for failures that end a playlist assembly session."""


class CredentialExpired(AssemblyError):
    """Access token was rejected as expired. Recoverable once via refresh."""


class UpstreamError(AssemblyError):
    """Network or provider failure. Includes the upstream status when known."""

    def __init__(self, status: Optional[int], message: str = "Upstream request failed") -> None:
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.status}: {self.message}"


class ValidationError(AssemblyError):
    """Required input is missing. Raised before any network call."""


class EmptyResult(AssemblyError):
    """No candidate tracks were produced by any source."""


class SessionExpired(AssemblyError):
    """Credentials could not be refreshed. Caller must log the user out."""

    def __init__(self, message: str = "Session expired. Please log out and log in again.") -> None:
        super().__init__(message)
