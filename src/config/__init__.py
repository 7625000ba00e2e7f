"""Configuration loading for the trade guard."""

from .settings import BackendSettings, Settings, SystemConfig

__all__ = ["BackendSettings", "Settings", "SystemConfig"]
