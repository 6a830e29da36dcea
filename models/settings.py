"""
Guild setting schemas — the typed catalogue behind the `cfg` editor.

Each editable key is a tagged variant: a StringSetting holds one value,
a ListSetting holds many. The generic editor asks the variant what it
supports instead of switching on a type name.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel

DEFAULT_PREFIX = "?"

DEFAULT_FAIL_MESSAGES: List[str] = [
    "I beg your pardon?",
    "Hmm?",
    "Pardon me?",
    "Very sorry!",
    "Wot’s this?",
    "Oh dear…",
]


class StringSetting(BaseModel):
    """A single string value."""

    kind: Literal["string"] = "string"
    key: str
    help_text: str = ""
    default: Optional[str] = None

    @property
    def supports_add(self) -> bool:
        return False

    @property
    def supports_remove(self) -> bool:
        return False

    def coerce(self, stored: Any) -> Optional[str]:
        if stored is None:
            return None
        if isinstance(stored, list):
            return stored[0] if stored else None
        return str(stored)

    def assign(self, value: str) -> str:
        return value


class ListSetting(BaseModel):
    """An ordered list of string values."""

    kind: Literal["list"] = "list"
    key: str
    help_text: str = ""
    default: Optional[List[str]] = None

    @property
    def supports_add(self) -> bool:
        return True

    @property
    def supports_remove(self) -> bool:
        return True

    def coerce(self, stored: Any) -> List[str]:
        """Stored scalars are upgraded to one-element lists."""
        if stored is None:
            return []
        if isinstance(stored, list):
            return list(stored)
        return [stored]

    def assign(self, value: str) -> List[str]:
        return [value]


SettingSpec = Union[StringSetting, ListSetting]


SETTING_SPECS: Dict[str, SettingSpec] = {
    spec.key: spec
    for spec in (
        StringSetting(key="prefix", default=DEFAULT_PREFIX, help_text="Command prefix"),
        ListSetting(key="admin_group", help_text="Role names allowed to use admin commands"),
        ListSetting(key="fail_messages", help_text="Replies used when I don’t understand"),
        ListSetting(key="default_roles", help_text="Roles given to new members"),
        StringSetting(key="welcome_message", help_text="Greeting for new members. Use {user} for their name"),
        StringSetting(key="welcome_channel", help_text="Channel name for greetings"),
        StringSetting(key="log_channel", help_text="Channel name for moderation logs"),
        StringSetting(key="log_everything", default="off", help_text="`on` to audit-log every message"),
    )
}


DEFAULT_SETTINGS: Dict[str, Any] = {
    key: spec.default for key, spec in SETTING_SPECS.items() if spec.default is not None
}


def apply_defaults(stored: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Prune `None` values from stored settings and fill in defaults."""
    settings = {k: v for k, v in (stored or {}).items() if v is not None}
    return {**DEFAULT_SETTINGS, **settings}


def is_enabled(value: Any) -> bool:
    """Truthiness for on/off style string settings."""
    if isinstance(value, str):
        return value.strip().lower() in ("on", "true", "yes", "1")
    return bool(value)
