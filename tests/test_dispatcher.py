import base64
import tempfile
import unittest
from pathlib import Path

import pytest

from sales_notifier.infrastructure.whatsapp import (
    ConnectionClosedError,
    FileCredentialStore,
    InvalidDestinationError,
    InvalidImageError,
    MessagingSession,
    NotificationDispatchError,
    NotificationDispatcher,
    decode_image,
    is_connection_error,
    normalize_destination,
)

from tests.conftest import QR_CODE, FakeClientFactory, fast_whatsapp_settings

JID = "628123456789@s.whatsapp.net"


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


# ---------- Pure helpers ----------

@pytest.mark.parametrize("raw, expected", [
    ("08123456789", JID),
    ("8123456789", JID),
    ("628123456789", JID),
    ("+62 812-3456-789", JID),
    ("08123", "628123@s.whatsapp.net"),
])
def test_normalize_destination(raw, expected):
    assert normalize_destination(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "0", None])
def test_normalize_destination_rejects_numbers_without_digits(raw):
    with pytest.raises(InvalidDestinationError):
        normalize_destination(raw)


def test_decode_image_accepts_data_urls():
    assert decode_image("data:image/jpeg;base64," + b64(b"jpeg")) == b"jpeg"
    assert decode_image(b64(b"png")) == b"png"


def test_decode_image_rejects_garbage():
    with pytest.raises(InvalidImageError):
        decode_image("not base64!!")


def test_connection_error_detection():
    assert is_connection_error(ConnectionClosedError())
    assert is_connection_error(RuntimeError("Stream Errored (conflict)"))
    assert not is_connection_error(RuntimeError("timeout"))

    replaced = RuntimeError("replaced")
    replaced.status_code = 440
    assert is_connection_error(replaced)


# ---------- Delivery ----------

class DispatcherTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.settings = fast_whatsapp_settings(Path(self.temp_dir.name) / "auth")
        self.factory = FakeClientFactory()
        self.session = MessagingSession(
            self.factory, FileCredentialStore(self.settings.auth_dir), self.settings
        )
        self.dispatcher = NotificationDispatcher(self.session, self.settings)

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_text_only_sends_one_message(self):
        result = await self.dispatcher.send("08123456789", "Halo")

        self.assertEqual(result.destination, JID)
        self.assertEqual(result.messages_sent, 1)
        self.assertEqual(self.factory.sent, [("text", JID, "Halo")])

    async def test_images_in_order_with_caption_on_last(self):
        images = [b64(b"one"), "data:image/png;base64," + b64(b"two"), b64(b"three")]
        result = await self.dispatcher.send("08123456789", "Caption", images)

        self.assertEqual(result.messages_sent, 3)
        self.assertEqual(self.factory.sent, [
            ("image", JID, b"one", None),
            ("image", JID, b"two", None),
            ("image", JID, b"three", "Caption"),
        ])

    async def test_image_retries_on_its_own(self):
        self.factory.failures = [None, RuntimeError("upload failed")]
        await self.dispatcher.send("08123456789", "Caption", [b64(b"one"), b64(b"two")])

        self.assertEqual([record[2] for record in self.factory.sent], [b"one", b"two"])
        self.assertEqual(len(self.factory.clients), 1)

    async def test_connection_closed_forces_exactly_one_reconnect(self):
        self.factory.failures = [ConnectionClosedError()]
        await self.dispatcher.send("08123456789", "Halo")

        self.assertEqual(len(self.factory.clients), 2)
        self.assertTrue(self.factory.clients[0].closed)
        self.assertEqual(self.factory.sent, [("text", JID, "Halo")])

    async def test_other_failures_retry_without_reconnect(self):
        self.factory.failures = [RuntimeError("slow network")]
        await self.dispatcher.send("08123456789", "Halo")

        self.assertEqual(len(self.factory.clients), 1)
        self.assertEqual(len(self.factory.sent), 1)

    async def test_exhausted_retries_raise(self):
        self.factory.failures = [RuntimeError("boom")] * 3
        with self.assertRaises(NotificationDispatchError) as caught:
            await self.dispatcher.send("08123456789", "Halo")

        self.assertEqual(str(caught.exception), "boom")
        self.assertEqual(self.factory.sent, [])

    async def test_exhausted_image_retries_fail_the_whole_send(self):
        # Image 1 goes out, image 2 fails every try on every attempt
        self.factory.failures = [None] + [RuntimeError("upload failed")] * 3 + \
            [None] + [RuntimeError("upload failed")] * 3 + \
            [None] + [RuntimeError("upload failed")] * 3
        with self.assertRaises(NotificationDispatchError):
            await self.dispatcher.send("08123456789", "Caption", [b64(b"one"), b64(b"two")])

        # Earlier images stay delivered
        self.assertEqual([record[2] for record in self.factory.sent], [b"one"] * 3)

    async def test_invalid_destination_fails_before_connecting(self):
        with self.assertRaises(InvalidDestinationError):
            await self.dispatcher.send("no digits", "Halo")
        self.assertEqual(self.factory.clients, [])

    async def test_unpaired_session_is_not_retried(self):
        self.factory.auto_open = False
        self.factory.qr = QR_CODE
        with self.assertRaises(NotificationDispatchError) as caught:
            await self.dispatcher.send("08123456789", "Halo")

        self.assertIn("not paired", str(caught.exception))
        self.assertEqual(len(self.factory.clients), 1)

    async def test_session_that_never_opens_raises_not_ready(self):
        self.factory.auto_open = False
        with self.assertRaises(NotificationDispatchError) as caught:
            await self.dispatcher.send("08123456789", "Halo")
        self.assertIn("Still not connected", str(caught.exception))
