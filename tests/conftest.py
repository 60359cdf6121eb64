# Sales Notifier Test Suite - Shared Fakes and Fixtures
#
# This module provides:
# - A scriptable in-process ChatClient (no browser)
# - WhatsApp settings with every delay zeroed
# - A temporary reference store
# - A TestClient wired to the fakes

import asyncio
from pathlib import Path
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from sales_notifier.infrastructure.config import Settings, StoreSettings, WhatsAppSettings
from sales_notifier.infrastructure.persistence import init_store
from sales_notifier.infrastructure.whatsapp import (
    ChatClient,
    ConnectionStatus,
    ConnectionUpdate,
    DisconnectReason,
)

QR_CODE = "data:image/png;base64,iVBORw0KGgo="


def fast_whatsapp_settings(auth_dir: Path, **overrides) -> WhatsAppSettings:
    """WhatsApp settings with no waiting anywhere."""
    values = dict(
        connect_cooldown_seconds=0,
        reconnect_delay_seconds=0,
        settle_seconds=0,
        force_connect_wait_seconds=0,
        send_retry_delay_seconds=0,
        image_retry_delay_seconds=0,
        inter_image_delay_seconds=0,
        auth_mode="file",
        auth_dir=Path(auth_dir),
        headless=True,
    )
    values.update(overrides)
    return WhatsAppSettings(**values)


async def settle(rounds: int = 20) -> None:
    """Let scheduled reconnect tasks run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeChatClient(ChatClient):
    """ChatClient that records what it sends and fails on demand."""

    def __init__(self, profile_dir: Path, factory: "FakeClientFactory"):
        super().__init__()
        self.profile_dir = profile_dir
        self.factory = factory
        self.closed = False
        self.logged_out = False

    async def connect(self) -> None:
        if self.factory.connect_gate is not None:
            await self.factory.connect_gate.wait()
        if self.factory.fail_connect:
            raise RuntimeError("browser failed to start")
        await self._emit(ConnectionUpdate(connection=ConnectionStatus.CONNECTING))
        if self.factory.qr:
            await self._emit(ConnectionUpdate(qr=self.factory.qr))
        if self.factory.auto_open:
            await self._emit(ConnectionUpdate(connection=ConnectionStatus.OPEN))

    async def open(self) -> None:
        await self._emit(ConnectionUpdate(connection=ConnectionStatus.OPEN))

    async def disconnect(self, reason: DisconnectReason) -> None:
        await self._emit(ConnectionUpdate(connection=ConnectionStatus.CLOSE, reason=reason))

    async def _deliver(self, record: tuple) -> None:
        if self.factory.failures:
            error = self.factory.failures.pop(0)
            if error is not None:
                raise error
        self.factory.sent.append(record)

    async def send_text(self, jid: str, text: str) -> Optional[str]:
        await self._deliver(("text", jid, text))
        return None

    async def send_image(self, jid: str, image: bytes, caption: Optional[str] = None) -> Optional[str]:
        await self._deliver(("image", jid, image, caption))
        return None

    async def logout(self) -> None:
        if self.factory.fail_teardown:
            raise RuntimeError("logout request failed")
        self.logged_out = True

    async def close(self) -> None:
        self.closed = True
        if self.factory.fail_teardown:
            raise RuntimeError("browser already gone")


class FakeClientFactory:
    """
    Client factory for MessagingSession.

    ``failures`` is consumed one entry per send call across all clients;
    ``None`` entries let that call succeed. ``connect_gate``, when set, holds
    every connect() until the event fires; ``fail_teardown`` makes logout and
    close raise.
    """

    def __init__(self, auto_open: bool = True, qr: Optional[str] = None, fail_connect: bool = False):
        self.auto_open = auto_open
        self.qr = qr
        self.fail_connect = fail_connect
        self.clients: List[FakeChatClient] = []
        self.sent: List[tuple] = []
        self.failures: List[Optional[BaseException]] = []
        self.connect_gate: Optional[asyncio.Event] = None
        self.fail_teardown = False

    def __call__(self, profile_dir: Path) -> FakeChatClient:
        client = FakeChatClient(profile_dir, self)
        self.clients.append(client)
        return client

    @property
    def current(self) -> FakeChatClient:
        return self.clients[-1]


@pytest.fixture
def store(tmp_path):
    return init_store(tmp_path / "test.db")


@pytest.fixture
def chat_factory():
    return FakeClientFactory()


@pytest.fixture
def app_settings(tmp_path):
    return Settings(
        whatsapp=fast_whatsapp_settings(tmp_path / "auth"),
        store=StoreSettings(database_file=tmp_path / "test.db"),
    )


@pytest.fixture
def client(app_settings, store, chat_factory):
    from sales_notifier.web.app import create_app

    app = create_app(settings=app_settings, store=store, client_factory=chat_factory)
    with TestClient(app) as test_client:
        yield test_client
