from .settings import Settings, StoreSettings, WhatsAppSettings, get_settings

__all__ = ["Settings", "StoreSettings", "WhatsAppSettings", "get_settings"]
