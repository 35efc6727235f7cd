"""Configuration layer."""

from copilot_automation.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
