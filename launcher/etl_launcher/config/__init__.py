"""
config module: persistent settings.env store.
"""

from .settings_store import Category, Scope, SettingsStore, escape_value, instance_key

__all__ = [
    "Category",
    "Scope",
    "SettingsStore",
    "escape_value",
    "instance_key",
]
