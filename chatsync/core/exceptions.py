"""
Custom exceptions for the sync layer.
"""

from typing import Any, Optional


class ChatSyncError(Exception):
    """Base exception for chatsync."""

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(ChatSyncError):
    """Resource not found."""

    pass


class ValidationError(ChatSyncError):
    """Validation error."""

    pass


class AuthenticationError(ChatSyncError):
    """Not authenticated, or the access token is unusable."""

    pass


class AuthorizationError(ChatSyncError):
    """Authorization failed."""

    pass


class ForbiddenError(AuthorizationError):
    """Not a participant of the requested chat."""

    pass


class InfrastructureError(ChatSyncError):
    """Infrastructure-related error (network, local store, etc.)."""

    pass


class TransientNetworkError(InfrastructureError):
    """Request failed in a way that may succeed when retried."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message, details=details)
        self.status_code = status_code


class CacheError(InfrastructureError):
    """Local cache read or write failed."""

    pass


class TransportDisconnectedError(InfrastructureError):
    """The update channel dropped or could not be opened."""

    pass


class EventDecodeError(ChatSyncError):
    """An inbound event frame could not be decoded."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message, details={"raw": raw})
        self.raw = raw
