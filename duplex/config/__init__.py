"""Configuration helpers for the stream client."""

from .settings import StreamSettings, get_settings

__all__ = ["StreamSettings", "get_settings"]
