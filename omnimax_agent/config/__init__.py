"""Configuration management utilities."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from omnimax_agent.config.settings import (
        DEFAULT_PERSONA,
        AssistantSettings,
        HttpSettings,
        ModelSettings,
        Persona,
        SettingsError,
        StorageSettings,
        load_config,
        load_settings,
        validate_settings,
    )

__all__ = [
    "DEFAULT_PERSONA",
    "AssistantSettings",
    "HttpSettings",
    "ModelSettings",
    "Persona",
    "SettingsError",
    "StorageSettings",
    "load_config",
    "load_settings",
    "validate_settings",
]


def __getattr__(name: str):
    if name in __all__:
        from omnimax_agent.config import settings

        return getattr(settings, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
