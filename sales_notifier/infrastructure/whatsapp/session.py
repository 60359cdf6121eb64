"""
Messaging Session - One WhatsApp Connection Per Process
=======================================================

State machine:

    idle ──connect──> connecting ──paired──> open
                         │  ^                  │
               pairing code│  └─delay─┐        │ closed (retryable)
                 (cached)  v          │        v
                      connecting    closed <───┘
                                      │
            fatal close (logged out) ─┴─> idle, credentials cleared

At most one ChatClient exists at a time; starting a new one always tears
the previous one down first. Concurrent ``connect()`` calls do not queue:
while an attempt is in flight they return False straight away.

Listeners added with ``add_listener`` receive a ``SessionEvent`` on every
state change and every new pairing code.
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from ..config import WhatsAppSettings
from .credentials import CredentialStore, PairingCodeCache
from .messaging_provider import (
    ChatClient,
    ConnectionStatus,
    ConnectionUpdate,
    DisconnectReason,
)

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionEvent:
    state: ConnectionState
    pairing_code: Optional[str] = None


SessionListener = Callable[[SessionEvent], Awaitable[None]]
ClientFactory = Callable[[Path], ChatClient]


class MessagingSession:
    """
    Owns the lifecycle of the single WhatsApp connection.

    Usage:
        session = MessagingSession(client_factory, credentials, settings.whatsapp)
        await session.connect()          # False while cooling down / in flight
        session.pairing_code             # QR image for the dashboard
        session.is_open()
        await session.delete_session()   # never raises
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        credentials: CredentialStore,
        settings: WhatsAppSettings,
        pairing_cache: Optional[PairingCodeCache] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client_factory = client_factory
        self._credentials = credentials
        self._settings = settings
        self._pairing_cache = pairing_cache
        self._clock = clock

        self._client: Optional[ChatClient] = None
        self._state = ConnectionState.IDLE
        self._pairing_code: Optional[str] = None
        self._last_attempt: Optional[float] = None
        self._starting = False
        # Bumped by delete_session() and close(); a start from an older generation is stale
        self._generation = 0
        self._reconnect_attempts = 0
        self._reconnect_task: Optional[asyncio.Task] = None
        self._listeners: List[SessionListener] = []

    # ── Observers ──────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def client(self) -> Optional[ChatClient]:
        return self._client

    @property
    def pairing_code(self) -> Optional[str]:
        """Last pairing code; cleared once open or after deletion."""
        return self._pairing_code

    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN and self._client is not None

    def is_connecting(self) -> bool:
        return self._starting or self._state is ConnectionState.CONNECTING

    def cached_pairing_code(self) -> Optional[str]:
        """In-memory code, falling back to the cache file."""
        if self._pairing_code or self._pairing_cache is None:
            return self._pairing_code
        try:
            return self._pairing_cache.read()
        except OSError as e:
            logger.error(f"Error reading QR code from file: {e}")
            return None

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    async def _notify(self) -> None:
        event = SessionEvent(state=self._state, pairing_code=self._pairing_code)
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                logger.exception(f"Session listener failed on {event.state.value}: {e}")

    async def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.info(f"WhatsApp session {self._state.value} -> {state.value}")
        self._state = state
        await self._notify()

    def _set_pairing_code(self, code: Optional[str]) -> None:
        self._pairing_code = code
        if self._pairing_cache is None:
            return
        try:
            if code:
                self._pairing_cache.write(code)
            else:
                self._pairing_cache.clear()
        except OSError as e:
            logger.error(f"Error updating QR code file: {e}")

    # ── Connecting ─────────────────────────────────────────────────

    async def connect(self, force: bool = False) -> bool:
        """
        Make sure a connection exists or is being made.

        Returns False when another attempt is in flight, or, without
        ``force``, while the cooldown since the last attempt is running.
        """
        if self._starting:
            logger.info("Connection attempt already in progress")
            return False

        if not force:
            if self.is_open():
                return True
            if self._state is ConnectionState.CONNECTING:
                logger.info("Connection attempt already in progress")
                return False
            now = self._clock()
            if (self._last_attempt is not None
                    and now - self._last_attempt < self._settings.connect_cooldown_seconds):
                logger.info("Connection attempt cooldown period, waiting...")
                return False
        else:
            self._reconnect_attempts = 0
            self._set_pairing_code(None)

        return await self._start()

    async def reconnect(self) -> bool:
        """Throw the current client away and start a fresh one, keeping credentials."""
        if self._starting:
            logger.info("Connection attempt already in progress")
            return False
        logger.info("Forcing WhatsApp reconnect")
        self._reconnect_attempts = 0
        self._set_pairing_code(None)
        return await self._start()

    async def _start(self) -> bool:
        self._starting = True
        self._last_attempt = self._clock()
        self._cancel_scheduled_reconnect()
        generation = self._generation
        client: Optional[ChatClient] = None
        try:
            await self._teardown_client()
            if generation != self._generation:
                return False
            await self._set_state(ConnectionState.CONNECTING)
            if generation != self._generation:
                return False

            logger.info("Creating new WhatsApp connection...")
            client = self._client_factory(self._credentials.location())
            client.on_connection_update(functools.partial(self._on_update, client))
            self._client = client
            await client.connect()
            if generation != self._generation:
                logger.info("Session was torn down while connecting; discarding the new client")
                await self._discard(client)
                return False
            return True
        except Exception as e:
            if generation != self._generation:
                logger.info(f"Connection attempt abandoned after teardown: {e}")
                await self._discard(client)
                return False
            logger.exception(f"Error connecting to WhatsApp: {e}")
            await self._teardown_client()
            await self._set_state(ConnectionState.IDLE)
            return False
        finally:
            self._starting = False

    async def _discard(self, client: Optional[ChatClient]) -> None:
        """Close a client left over from a superseded start."""
        if client is None:
            return
        if client is self._client:
            self._client = None
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing WhatsApp client: {e}")

    async def _teardown_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing WhatsApp client: {e}")

    # ── Connection updates ─────────────────────────────────────────

    async def _on_update(self, client: ChatClient, update: ConnectionUpdate) -> None:
        if client is not self._client:
            logger.debug(f"Ignoring update from a replaced client: {update}")
            return

        if update.qr and self._state is not ConnectionState.OPEN:
            self._set_pairing_code(update.qr)
            logger.info("New QR code received")
            await self._notify()

        if update.connection is ConnectionStatus.OPEN:
            self._reconnect_attempts = 0
            self._set_pairing_code(None)
            await self._set_state(ConnectionState.OPEN)
            logger.info("Connected to WhatsApp!")
        elif update.connection is ConnectionStatus.CLOSE:
            await self._on_close(update.reason or DisconnectReason.CONNECTION_CLOSED)

    async def _on_close(self, reason: DisconnectReason) -> None:
        logger.info(f"Connection closed: {reason.value}")
        await self._teardown_client()

        if reason.is_fatal:
            logger.warning("Logged out, clearing credentials; a new QR scan is required")
            self._set_pairing_code(None)
            try:
                self._credentials.clear()
            except OSError as e:
                logger.error(f"Error clearing credentials: {e}")
            await self._set_state(ConnectionState.IDLE)
            return

        await self._set_state(ConnectionState.CLOSED)

        if reason is DisconnectReason.CONFLICT:
            logger.warning("Connection conflict detected - another instance is connected")
            return
        if self._reconnect_attempts >= self._settings.max_reconnect_attempts:
            logger.warning(
                f"Giving up after {self._reconnect_attempts} reconnect attempts; "
                "waiting for a manual connect"
            )
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        self._reconnect_attempts += 1
        self._reconnect_task = asyncio.create_task(
            self._reconnect_later(self._reconnect_attempts)
        )

    async def _reconnect_later(self, attempt_number: int) -> None:
        await asyncio.sleep(self._settings.reconnect_delay_seconds)
        if self._state is not ConnectionState.CLOSED or self._starting:
            return
        logger.info(
            f"Reconnecting to WhatsApp "
            f"(attempt {attempt_number}/{self._settings.max_reconnect_attempts})"
        )
        await self._start()

    def _cancel_scheduled_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    # ── Teardown ───────────────────────────────────────────────────

    async def delete_session(self) -> bool:
        """
        Log out, destroy the client and forget the credentials.

        Local state is always reset, even when logging out fails. Returns
        False only if the stored credentials could not be removed.
        """
        logger.info("Deleting WhatsApp session...")
        self._generation += 1
        self._cancel_scheduled_reconnect()

        client, self._client = self._client, None
        if client is not None:
            try:
                await client.logout()
            except Exception as e:
                logger.warning(f"Error logging out: {e}")
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing WhatsApp connection: {e}")

        self._reconnect_attempts = 0
        self._last_attempt = None
        self._set_pairing_code(None)
        await self._set_state(ConnectionState.IDLE)

        try:
            self._credentials.clear()
        except OSError as e:
            logger.error(f"Error deleting WhatsApp session: {e}")
            return False

        logger.info("WhatsApp session deleted")
        return True

    async def close(self) -> None:
        """Shut down on process exit. Credentials are kept."""
        self._generation += 1
        self._cancel_scheduled_reconnect()
        await self._teardown_client()
        await self._set_state(ConnectionState.IDLE)
