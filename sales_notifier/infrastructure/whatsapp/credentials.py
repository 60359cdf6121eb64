"""
Session credentials and the pairing-code cache file.

For the browser client the credentials are the Chrome profile directory:
keep it and the next start is already linked, wipe it and the next start
shows a fresh QR code.
"""

import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from ..config import WhatsAppSettings

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Where a session keeps its credentials."""

    @abstractmethod
    def location(self) -> Path:
        """Directory holding the credentials, created on demand."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Forget the credentials. Safe to call when there are none."""
        ...


class FileCredentialStore(CredentialStore):
    """Persistent profile directory; survives process restarts."""

    def __init__(self, auth_dir: Path):
        self._profile_dir = Path(auth_dir) / "profile"

    def location(self) -> Path:
        self._profile_dir.mkdir(parents=True, exist_ok=True)
        return self._profile_dir

    def clear(self) -> None:
        if self._profile_dir.exists():
            shutil.rmtree(self._profile_dir)
            logger.info(f"Removed WhatsApp credentials at {self._profile_dir}")


class MemoryCredentialStore(CredentialStore):
    """Throwaway profile directory; the session dies with the process."""

    def __init__(self):
        self._profile_dir: Optional[Path] = None

    def location(self) -> Path:
        if self._profile_dir is None:
            self._profile_dir = Path(tempfile.mkdtemp(prefix="whatsapp-session-"))
        return self._profile_dir

    def clear(self) -> None:
        profile_dir, self._profile_dir = self._profile_dir, None
        if profile_dir is not None and profile_dir.exists():
            shutil.rmtree(profile_dir)
            logger.info("Discarded in-memory WhatsApp credentials")


class PairingCodeCache:
    """
    Mirrors the current pairing code to a file so a request served by a
    process that does not own the session can still show the QR code.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def write(self, code: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(code, encoding="utf-8")

    def read(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding="utf-8") or None
        except FileNotFoundError:
            return None

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def credential_store_for(settings: WhatsAppSettings) -> CredentialStore:
    if settings.auth_mode == "memory":
        return MemoryCredentialStore()
    return FileCredentialStore(settings.auth_dir)


def pairing_cache_for(settings: WhatsAppSettings) -> PairingCodeCache:
    return PairingCodeCache(settings.auth_dir / "qrcode.txt")
