"""
Notification Dispatcher - Reliable Delivery of One Notification
================================================================

Sends a rendered notification (text plus zero or more images) to one
destination through the MessagingSession.

- Images go out one by one, in the order given; only the last one carries
  the text as its caption. Without images a single text message is sent.
- Each image gets its own small retry loop.
- The whole send is retried too. A connection failure on any attempt
  rebuilds the session before the next one, since a half-broken
  connection does not recover in place.
- When every attempt fails, NotificationDispatchError carries the last
  failure's message. Images already delivered are not recalled.
"""

import asyncio
import base64
import binascii
import functools
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..config import WhatsAppSettings
from .errors import (
    InvalidDestinationError,
    InvalidImageError,
    NotificationDispatchError,
    SessionLoggedOutError,
    SessionNotReadyError,
    is_connection_error,
)
from .messaging_provider import ChatClient
from .retry import RetryPolicy, attempt
from .session import MessagingSession

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


def normalize_destination(destination: str, country_code: str = "62",
                          jid_suffix: str = "@s.whatsapp.net") -> str:
    """
    Canonical WhatsApp address for a phone number.

    Non-digits are dropped, a local leading 0 becomes the country code,
    numbers already starting with the country code are kept as they are.
    """
    digits = re.sub(r"\D", "", str(destination or ""))
    if not digits.startswith(country_code):
        digits = country_code + digits.lstrip("0")
    if digits == country_code:
        raise InvalidDestinationError(f"Invalid destination number: {destination!r}")
    return f"{digits}{jid_suffix}"


def decode_image(payload: str) -> bytes:
    """Base64 image, optionally as a data URL, to raw bytes."""
    try:
        return base64.b64decode(_DATA_URL_PREFIX.sub("", payload.strip()), validate=True)
    except (binascii.Error, ValueError, AttributeError) as e:
        raise InvalidImageError(f"Image is not valid base64: {e}") from e


@dataclass
class SendResult:
    destination: str
    messages_sent: int


class NotificationDispatcher:
    """
    Usage:
        dispatcher = NotificationDispatcher(session, settings.whatsapp)
        await dispatcher.send("08123456789", text, images=[b64_jpeg, ...])
    """

    def __init__(self, session: MessagingSession, settings: WhatsAppSettings):
        self._session = session
        self._settings = settings
        self._send_policy = RetryPolicy(
            settings.send_max_attempts, settings.send_retry_delay_seconds
        )
        self._image_policy = RetryPolicy(
            settings.image_max_attempts, settings.image_retry_delay_seconds
        )

    async def send(self, destination: str, text: str,
                   images: Optional[Sequence[str]] = None) -> SendResult:
        """Deliver ``text`` (and ``images``) or raise NotificationDispatchError."""
        jid = normalize_destination(
            destination, self._settings.country_code, self._settings.jid_suffix
        )
        decoded = [decode_image(image) for image in images or []]

        logger.info(f"Sending notification to {jid} with {len(decoded)} image(s)")
        try:
            sent = await attempt(
                functools.partial(self._deliver, jid, text, decoded),
                self._send_policy,
                on_failure=self._on_send_failure,
            )
        except Exception as e:
            logger.error(f"Giving up on notification to {jid}: {e}")
            raise NotificationDispatchError(str(e)) from e

        logger.info(f"Notification sent to {jid} ({sent} message(s))")
        return SendResult(destination=jid, messages_sent=sent)

    async def _on_send_failure(self, error: BaseException, attempt_number: int) -> None:
        logger.warning(
            f"Failed to send message "
            f"(attempt {attempt_number}/{self._send_policy.max_attempts}): {error}"
        )
        if is_connection_error(error):
            logger.info("Connection issue detected, forcing reconnect...")
            await self._session.reconnect()

    async def _ensure_open(self) -> ChatClient:
        if not self._session.is_open():
            logger.info("Not connected, attempting to connect...")
            await self._session.connect()
            await asyncio.sleep(self._settings.settle_seconds)

        client = self._session.client
        if self._session.is_open() and client is not None:
            return client
        if self._session.pairing_code:
            raise SessionLoggedOutError(
                "WhatsApp is not paired; scan the QR code in the admin dashboard"
            )
        raise SessionNotReadyError("Still not connected to WhatsApp after connection attempt")

    async def _deliver(self, jid: str, text: str, images: List[bytes]) -> int:
        client = await self._ensure_open()

        if not images:
            await client.send_text(jid, text)
            return 1

        last = len(images) - 1
        for index, image in enumerate(images):
            caption = text if index == last else None
            await attempt(
                functools.partial(client.send_image, jid, image, caption),
                self._image_policy,
            )
            if index != last:
                await asyncio.sleep(self._settings.inter_image_delay_seconds)
        return len(images)
