from pathlib import Path

from sales_notifier.infrastructure.config import Settings, WhatsAppSettings
from sales_notifier.infrastructure.whatsapp import (
    FileCredentialStore,
    MemoryCredentialStore,
    credential_store_for,
    pairing_cache_for,
)


def test_defaults_match_delivery_policy():
    settings = WhatsAppSettings(auth_dir=Path("auth"))
    assert settings.country_code == "62"
    assert settings.connect_cooldown_seconds == 30
    assert (settings.send_max_attempts, settings.send_retry_delay_seconds) == (3, 2)
    assert (settings.image_max_attempts, settings.image_retry_delay_seconds) == (3, 2)


def test_auth_mode_picks_credential_store(monkeypatch, tmp_path):
    monkeypatch.setenv("WHATSAPP_AUTH_MODE", "memory")
    assert isinstance(credential_store_for(WhatsAppSettings(auth_dir=tmp_path)), MemoryCredentialStore)

    monkeypatch.setenv("WHATSAPP_AUTH_MODE", "file")
    assert isinstance(credential_store_for(WhatsAppSettings(auth_dir=tmp_path)), FileCredentialStore)
    assert pairing_cache_for(WhatsAppSettings(auth_dir=tmp_path)).path == tmp_path / "qrcode.txt"


def test_validate_warns_about_memory_mode(tmp_path):
    settings = Settings(whatsapp=WhatsAppSettings(auth_mode="memory", auth_dir=tmp_path))
    issues = settings.validate()
    assert any("memory" in issue for issue in issues)


def test_validate_rejects_zero_attempts(tmp_path):
    settings = Settings(whatsapp=WhatsAppSettings(send_max_attempts=0, auth_dir=tmp_path))
    assert any(issue.startswith("ERROR") for issue in settings.validate())
