"""Configuration module for Emporium."""

from emporium.config.settings import CartConfig, Settings, get_settings

__all__ = ["CartConfig", "Settings", "get_settings"]
