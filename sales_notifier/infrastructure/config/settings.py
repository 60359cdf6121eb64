"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- All configuration is loaded from environment variables (no hardcoded secrets)
- Settings are immutable dataclass for safety and clarity
- Single source of truth for all configurable values

Every timing constant below is a tuning knob, not a protocol requirement.
Tests build their own WhatsAppSettings with zeroed delays.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from functools import lru_cache

# Load .env file if present (development convenience)
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # python-dotenv is optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class WhatsAppSettings:
    """WhatsApp session, delivery and browser settings."""

    # Destination addressing
    country_code: str = "62"
    jid_suffix: str = "@s.whatsapp.net"

    # Connection lifecycle (seconds)
    connect_cooldown_seconds: float = 30
    reconnect_delay_seconds: float = 5
    max_reconnect_attempts: int = 3
    settle_seconds: float = 3
    force_connect_wait_seconds: float = 3

    # Delivery retries
    send_max_attempts: int = 3
    send_retry_delay_seconds: float = 2
    image_max_attempts: int = 3
    image_retry_delay_seconds: float = 2
    inter_image_delay_seconds: float = 2

    # Browser adapter timing
    connect_timeout_seconds: float = 10
    pairing_timeout_seconds: float = 60
    poll_interval_seconds: float = 2

    # Credentials: "file" keeps the browser profile across restarts,
    # "memory" uses a throwaway profile.
    auth_mode: str = field(default_factory=lambda: os.getenv("WHATSAPP_AUTH_MODE", "file"))
    auth_dir: Path = field(
        default_factory=lambda: Path(os.getenv("WHATSAPP_AUTH_DIR", "whatsapp-auth"))
    )

    # The QR is screenshotted for the dashboard, so headless works for pairing
    headless: bool = field(default_factory=lambda: _env_bool("WHATSAPP_HEADLESS", True))


@dataclass(frozen=True)
class StoreSettings:
    """Reference data store settings."""

    database_file: Path = field(
        default_factory=lambda: Path(os.getenv("SALES_DB_FILE", "sales_notifier.db"))
    )


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from sales_notifier.infrastructure.config import get_settings
        settings = get_settings()
        print(settings.whatsapp.country_code)
    """

    whatsapp: WhatsAppSettings = field(default_factory=WhatsAppSettings)
    store: StoreSettings = field(default_factory=StoreSettings)

    def validate(self) -> list[str]:
        """
        Validate settings and return list of warnings/errors.
        Returns empty list if all settings are valid.
        """
        issues = []

        if self.whatsapp.auth_mode not in ("file", "memory"):
            issues.append(
                f"WARNING: WHATSAPP_AUTH_MODE={self.whatsapp.auth_mode!r} is unknown. "
                "Falling back to 'file'."
            )
        elif self.whatsapp.auth_mode == "memory":
            issues.append(
                "WARNING: WHATSAPP_AUTH_MODE=memory. "
                "The WhatsApp session is lost on every restart and must be paired again."
            )

        if not self.whatsapp.headless and not os.getenv("DISPLAY"):
            issues.append(
                "WARNING: WHATSAPP_HEADLESS is off but no DISPLAY is set. "
                "Chrome will fail to start on this machine."
            )

        if self.whatsapp.send_max_attempts < 1 or self.whatsapp.image_max_attempts < 1:
            issues.append("ERROR: send and image attempt counts must be at least 1.")

        return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance.
    Cached to ensure consistent settings throughout application lifecycle.
    """
    return Settings()
