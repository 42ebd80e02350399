"""Service layer helpers (settings, research)."""

from .research import WebResearchClient
from .settings import Settings, SettingsStore

__all__ = ["Settings", "SettingsStore", "WebResearchClient"]
