"""
Shared configuration and API schemas.
"""

from .config import Settings, get_settings, settings

__all__ = ["Settings", "get_settings", "settings"]
