from .credentials import (
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
    PairingCodeCache,
    credential_store_for,
    pairing_cache_for,
)
from .dispatcher import NotificationDispatcher, SendResult, decode_image, normalize_destination
from .errors import (
    ConnectionClosedError,
    InvalidDestinationError,
    InvalidImageError,
    NotificationDispatchError,
    SessionLoggedOutError,
    SessionNotReadyError,
    WhatsAppClientError,
    is_connection_error,
)
from .messaging_provider import (
    ChatClient,
    ConnectionStatus,
    ConnectionUpdate,
    DisconnectReason,
    SeleniumProvider,
)
from .retry import RetryPolicy, attempt
from .session import ConnectionState, MessagingSession, SessionEvent
