"""
Messaging Provider - Abstraction Layer for WhatsApp Messaging
==============================================================

``ChatClient`` is the narrow seam between the session logic and whatever
actually talks to WhatsApp. The session only needs to connect, send text,
send an image, log out, close, and hear about connection changes.

USAGE:
    client = SeleniumProvider(profile_dir, settings.whatsapp)
    client.on_connection_update(handle_update)
    await client.connect()
    await client.send_text("628123456789@s.whatsapp.net", "Hello!")

Connection changes are pushed to listeners as ``ConnectionUpdate`` values:
a pairing code while waiting for a scan, ``open`` once paired, ``close``
with a ``DisconnectReason`` when the connection goes away.
"""

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from ..config import WhatsAppSettings
from .errors import ConnectionClosedError

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


class DisconnectReason(Enum):
    LOGGED_OUT = "logged_out"
    BAD_SESSION = "bad_session"
    CONFLICT = "conflict"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_CLOSED = "connection_closed"
    TIMED_OUT = "timed_out"
    RESTART_REQUIRED = "restart_required"

    @property
    def is_fatal(self) -> bool:
        """Fatal reasons invalidate the stored credentials."""
        return self in (DisconnectReason.LOGGED_OUT, DisconnectReason.BAD_SESSION)


@dataclass(frozen=True)
class ConnectionUpdate:
    """One connection event pushed by a ChatClient."""
    connection: Optional[ConnectionStatus] = None
    qr: Optional[str] = None
    reason: Optional[DisconnectReason] = None


UpdateListener = Callable[[ConnectionUpdate], Awaitable[None]]


class ChatClient(ABC):
    """
    Abstract base class for WhatsApp network clients.
    Implement this interface to add new messaging backends.
    """

    def __init__(self):
        self._listeners: List[UpdateListener] = []

    def on_connection_update(self, listener: UpdateListener) -> None:
        """Register a coroutine called with every ConnectionUpdate."""
        self._listeners.append(listener)

    async def _emit(self, update: ConnectionUpdate) -> None:
        for listener in list(self._listeners):
            try:
                await listener(update)
            except Exception as e:
                logger.exception(f"Connection listener failed on {update}: {e}")

    @abstractmethod
    async def connect(self) -> None:
        """Start connecting. Progress arrives through connection updates."""
        ...

    @abstractmethod
    async def send_text(self, jid: str, text: str) -> Optional[str]:
        """Send a text message. Returns a message id when the backend has one."""
        ...

    @abstractmethod
    async def send_image(self, jid: str, image: bytes, caption: Optional[str] = None) -> Optional[str]:
        """Send one image, optionally with a caption."""
        ...

    @abstractmethod
    async def logout(self) -> None:
        """Unlink this device from the account."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection without unlinking. Must be safe to call twice."""
        ...


def _image_suffix(image: bytes) -> str:
    if image.startswith(b"\x89PNG"):
        return ".png"
    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return ".webp"
    return ".jpg"


class SeleniumProvider(ChatClient):
    """
    Selenium-based WhatsApp Web automation.

    The Chrome profile directory holds the session credentials. Blocking
    driver calls run in a worker thread, one at a time; a watcher task polls
    the page and turns what it sees into connection updates.
    """

    def __init__(self, profile_dir: Path, settings: WhatsAppSettings):
        super().__init__()
        self._profile_dir = Path(profile_dir)
        self._settings = settings
        self._client = None
        self._lock = asyncio.Lock()
        self._watcher: Optional[asyncio.Task] = None
        self._last_qr_ref: Optional[str] = None
        self._was_open = False
        self._closed = False

    async def connect(self) -> None:
        """Launch the browser and start watching the page."""
        from .whatsapp_client import WhatsAppClient

        if self._closed:
            raise ConnectionClosedError("Connection Closed: provider was closed")

        client = await asyncio.to_thread(
            WhatsAppClient,
            self._profile_dir,
            headless=self._settings.headless,
            page_load_timeout=self._settings.connect_timeout_seconds,
        )
        # close() ran while the browser was starting
        if self._closed:
            logger.info("Provider closed during browser start; quitting the new browser")
            await asyncio.to_thread(client.close)
            raise ConnectionClosedError("Connection Closed: provider was closed while connecting")

        self._client = client
        await self._emit(ConnectionUpdate(connection=ConnectionStatus.CONNECTING))
        if not self._closed:
            self._watcher = asyncio.create_task(self._watch())

    async def _call(self, method: str, *args):
        """Run one driver call in a thread; driver failures mean a dead stream."""
        from selenium.common.exceptions import WebDriverException

        async with self._lock:
            if self._client is None:
                raise ConnectionClosedError("Connection Closed: browser is not running")
            try:
                return await asyncio.to_thread(getattr(self._client, method), *args)
            except WebDriverException as e:
                raise ConnectionClosedError(f"Stream Errored: {e.msg or e}") from e

    async def _watch(self) -> None:
        from .whatsapp_client import PageState

        loop = asyncio.get_running_loop()
        started = loop.time()

        while self._client is not None:
            try:
                probe = await self._call("probe")
            except ConnectionClosedError as e:
                logger.warning(f"Browser connection lost: {e}")
                await self._emit(ConnectionUpdate(
                    connection=ConnectionStatus.CLOSE, reason=DisconnectReason.CONNECTION_LOST
                ))
                return

            if probe.state is PageState.READY and not self._was_open:
                self._was_open = True
                await self._emit(ConnectionUpdate(connection=ConnectionStatus.OPEN))
            elif probe.state is PageState.QR:
                if self._was_open:
                    # QR after being linked means the phone unlinked us
                    await self._close_with(DisconnectReason.LOGGED_OUT)
                    return
                if probe.qr_ref and probe.qr_ref != self._last_qr_ref:
                    self._last_qr_ref = probe.qr_ref
                    await self._emit(ConnectionUpdate(qr=probe.qr_image))
            elif probe.state is PageState.QR_EXPIRED:
                await self._close_with(DisconnectReason.TIMED_OUT)
                return
            elif probe.state is PageState.CONFLICT:
                await self._close_with(DisconnectReason.CONFLICT)
                return
            elif probe.state is PageState.BLOCKED:
                await self._close_with(DisconnectReason.LOGGED_OUT)
                return

            if not self._was_open and loop.time() - started > self._settings.pairing_timeout_seconds:
                await self._close_with(DisconnectReason.TIMED_OUT)
                return

            await asyncio.sleep(self._settings.poll_interval_seconds)

    async def _close_with(self, reason: DisconnectReason) -> None:
        logger.info(f"WhatsApp Web reports connection closed: {reason.value}")
        await self._emit(ConnectionUpdate(connection=ConnectionStatus.CLOSE, reason=reason))

    @staticmethod
    def _phone_from_jid(jid: str) -> str:
        return jid.split("@", 1)[0]

    async def send_text(self, jid: str, text: str) -> Optional[str]:
        phone = self._phone_from_jid(jid)
        await self._call("open_chat", phone)
        await self._call("send_message", text)
        return None

    async def send_image(self, jid: str, image: bytes, caption: Optional[str] = None) -> Optional[str]:
        phone = self._phone_from_jid(jid)
        fd, path = tempfile.mkstemp(prefix="wa-image-", suffix=_image_suffix(image))
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(image)
            await self._call("open_chat", phone)
            await self._call("send_image", path, caption)
        finally:
            os.unlink(path)
        return None

    async def logout(self) -> None:
        await self._call("logout")

    async def close(self) -> None:
        self._closed = True
        client, self._client = self._client, None
        watcher, self._watcher = self._watcher, None

        # close() can run inside the watcher, via a listener
        if watcher is not None and watcher is not asyncio.current_task():
            watcher.cancel()
        if client is not None:
            async with self._lock:
                await asyncio.to_thread(client.close)
