"""Exceptions raised by the generation client and tracker."""

from typing import Optional


class TrackerError(Exception):
    """Base class for all btec_monitor errors."""


class NetworkError(TrackerError):
    """Connectivity problem or timeout talking to the generation service."""


class RemoteError(TrackerError):
    """The generation service rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class NotFoundError(RemoteError):
    """The referenced assignment or job no longer exists."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message, status_code=404, code=code)


class InvalidOperationError(TrackerError):
    """A control operation is not valid for the current job state."""


class TransportUnavailable(TrackerError):
    """The push channel could not be established."""
