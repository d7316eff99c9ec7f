"""Exceptions raised while fetching history or syncing playlists."""

from typing import Optional


class SyncError(Exception):
    """Base class for all radiosync errors."""
    pass


class TransportError(SyncError):
    """Raised when a request could not be sent or no response came back."""
    pass


class ProtocolError(SyncError):
    """Raised when an API answers with a non-success HTTP status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PreconditionFailedError(ProtocolError):
    """Raised when Tidal rejects a playlist mutation because If-None-Match is stale."""
    pass


class NotAuthenticatedError(SyncError):
    """Raised when a Tidal call is made before the token or login it needs."""
    pass


class DecodeError(SyncError):
    """Raised when a response body or cursor cannot be parsed."""
    pass


class EmptyResultError(SyncError):
    """Raised when a history page contains no tracks."""
    pass
