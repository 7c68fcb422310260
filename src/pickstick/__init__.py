"""Core package for the weekly NFL pick-and-stick pool."""

from .settings import AppSettings, get_settings, reset_settings_cache

__all__ = [
    "AppSettings",
    "get_settings",
    "reset_settings_cache",
]
