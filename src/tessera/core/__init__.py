"""
Core module for Tessera.

Exports the configuration entry points.
"""

from tessera.core.config import Settings, get_settings

__all__ = [
    # Config
    "Settings",
    "get_settings",
]
