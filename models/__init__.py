"""
Pydantic v2 data models — the contract for stored bot state.

Characters are validated here before they reach the settings store;
guild settings are edited through the typed setting catalogue.
"""

from models.characters import Character
from models.settings import (
    DEFAULT_PREFIX,
    DEFAULT_SETTINGS,
    SETTING_SPECS,
    ListSetting,
    SettingSpec,
    StringSetting,
    apply_defaults,
)

__all__ = [
    "Character",
    "DEFAULT_PREFIX",
    "DEFAULT_SETTINGS",
    "SETTING_SPECS",
    "ListSetting",
    "SettingSpec",
    "StringSetting",
    "apply_defaults",
]
