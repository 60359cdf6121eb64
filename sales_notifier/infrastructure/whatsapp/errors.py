"""WhatsApp messaging errors, grouped by how callers must react to them."""

from typing import Optional


class WhatsAppClientError(Exception):
    """Base exception for WhatsApp client errors."""
    pass


class ConnectionClosedError(WhatsAppClientError):
    """The connection dropped mid-operation. Retried after a forced reconnect."""

    def __init__(self, message: str = "Connection Closed", status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SessionNotReadyError(WhatsAppClientError):
    """The session was still not open after asking it to connect."""
    pass


class SessionLoggedOutError(WhatsAppClientError):
    """Credentials were revoked. Needs a new pairing; never retried."""
    pass


class InvalidDestinationError(WhatsAppClientError, ValueError):
    """Destination is empty or has no digits."""
    pass


class InvalidImageError(WhatsAppClientError, ValueError):
    """Image payload is not valid base64."""
    pass


class NotificationDispatchError(WhatsAppClientError):
    """Every delivery attempt failed. The message is the last failure's."""
    pass


# Markers the network client puts in errors for a dead stream
_CONNECTION_MARKERS = ("Connection Closed", "Stream Errored")
_CONNECTION_REPLACED = 440


def is_connection_error(error: BaseException) -> bool:
    """True when ``error`` means the session is broken and must be rebuilt."""
    if isinstance(error, ConnectionClosedError):
        return True
    if getattr(error, "status_code", None) == _CONNECTION_REPLACED:
        return True
    message = str(error)
    return any(marker in message for marker in _CONNECTION_MARKERS)
