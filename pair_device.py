"""
Device Pairing - Link WhatsApp From a Terminal
===============================================

Starts a WhatsApp session with the configured credentials, saves every
pairing QR code to ``<auth dir>/qrcode.png`` and waits until the phone has
scanned it. Optionally sends a test message once connected.

    python pair_device.py
    python pair_device.py --to 08123456789 --message "Hello from the server"
    python pair_device.py --reset       # forget the old session first
"""

import argparse
import asyncio
import logging
import sys

from sales_notifier.infrastructure.config import get_settings
from sales_notifier.infrastructure.whatsapp import (
    ConnectionState,
    MessagingSession,
    NotificationDispatcher,
    SeleniumProvider,
    SessionEvent,
    WhatsAppClientError,
    credential_store_for,
    decode_image,
    pairing_cache_for,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pair this server with WhatsApp.")
    parser.add_argument("--to", help="send a test message to this number once connected")
    parser.add_argument("--message", default="Test message from Sales Notifier",
                        help="text of the test message")
    parser.add_argument("--timeout", type=float, default=180,
                        help="seconds to wait for the QR code to be scanned")
    parser.add_argument("--reset", action="store_true",
                        help="delete the stored session before pairing")
    return parser.parse_args(argv)


async def pair(args: argparse.Namespace) -> int:
    settings = get_settings().whatsapp
    qr_file = settings.auth_dir / "qrcode.png"
    opened = asyncio.Event()

    async def on_event(event: SessionEvent) -> None:
        if event.pairing_code:
            qr_file.parent.mkdir(parents=True, exist_ok=True)
            qr_file.write_bytes(decode_image(event.pairing_code))
            print(f"\n   Scan the QR code saved at {qr_file.resolve()}\n")
        if event.state is ConnectionState.OPEN:
            opened.set()

    session = MessagingSession(
        lambda profile_dir: SeleniumProvider(profile_dir, settings),
        credential_store_for(settings),
        settings,
        pairing_cache=pairing_cache_for(settings),
    )
    session.add_listener(on_event)

    try:
        if args.reset:
            await session.delete_session()

        print("Launching WhatsApp Web...")
        if not await session.connect(force=True):
            print("Failed to start the WhatsApp session")
            return 1

        try:
            await asyncio.wait_for(opened.wait(), timeout=args.timeout)
        except asyncio.TimeoutError:
            print(f"Not connected after {args.timeout:.0f}s")
            return 1
        print("Connected to WhatsApp!")
        qr_file.unlink(missing_ok=True)

        if args.to:
            dispatcher = NotificationDispatcher(session, settings)
            try:
                result = await dispatcher.send(args.to, args.message)
            except WhatsAppClientError as e:
                print(f"Test message failed: {e}")
                return 1
            print(f"Test message sent to {result.destination}")
        return 0
    finally:
        await session.close()


def main(argv=None) -> int:
    return asyncio.run(pair(parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
