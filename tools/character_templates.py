"""
Character Templates — Game systems a character can track stats for.

Each stat may carry a `calc` that turns the stored base value into a
modifier (e.g. D&D ability scores). Derived stats are computed from the
whole character and are never stored.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

EXP_THRESHOLDS = [
    0, 300, 900, 2700, 6500, 14000, 23000, 34000, 48000, 64000, 85000,
    100000, 120000, 140000, 165000, 195000, 225000, 265000, 305000, 355000,
]


def _to_number(value: Any) -> Optional[float]:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def dnd5e_modifier(value: Any) -> Optional[int]:
    """Ability score modifier: floor((score - 10) / 2)."""
    number = _to_number(value)
    if number is None:
        return None
    return math.floor((number - 10) / 2)


@dataclass
class StatDef:
    name: str
    abbrev: Optional[str] = None
    calc: Optional[Callable[[Any], Optional[int]]] = None
    alias: List[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.abbrev or self.name


@dataclass
class DerivedStat:
    name: str
    calc: Callable[[Dict[str, Any]], Optional[int]]
    alias: List[str] = field(default_factory=list)


@dataclass
class CharacterTemplate:
    game: str
    stats: Dict[str, StatDef]
    derived_stats: Dict[str, DerivedStat] = field(default_factory=dict)

    def find_stat(self, name: str) -> Optional[str]:
        """Resolve a stat key from its key, name or abbreviation."""
        wanted = name.strip().lower()
        for key, stat in self.stats.items():
            if wanted in (key, stat.name.lower(), (stat.abbrev or "").lower()) or wanted in stat.alias:
                return key
        return None

    def find_derived(self, name: str) -> Optional[str]:
        wanted = name.strip().lower()
        for key, stat in self.derived_stats.items():
            if wanted in (key, stat.name.lower()) or wanted in stat.alias:
                return key
        return None


def _dnd5e_level(character: Dict[str, Any]) -> Optional[int]:
    exp = _to_number((character.get("stats") or {}).get("exp"))
    if exp is None:
        return None
    level = sum(1 for threshold in EXP_THRESHOLDS if exp >= threshold)
    return max(level, 1)


def _dnd5e_proficiency(character: Dict[str, Any]) -> Optional[int]:
    level = _dnd5e_level(character)
    if level is None:
        return None
    return 2 + (level - 1) // 4


def _dnd5e_initiative(character: Dict[str, Any]) -> Optional[int]:
    return dnd5e_modifier((character.get("stats") or {}).get("dex"))


def _dnd5e_passive_perception(character: Dict[str, Any]) -> Optional[int]:
    modifier = dnd5e_modifier((character.get("stats") or {}).get("wis"))
    return None if modifier is None else 10 + modifier


CHARACTER_TEMPLATES: Dict[str, CharacterTemplate] = {
    "d&d5e": CharacterTemplate(
        game="Dungeons & Dragons 5th Edition",
        stats={
            "str": StatDef("Strength", "STR", dnd5e_modifier),
            "dex": StatDef("Dexterity", "DEX", dnd5e_modifier),
            "con": StatDef("Constitution", "CON", dnd5e_modifier),
            "int": StatDef("Intelligence", "INT", dnd5e_modifier),
            "wis": StatDef("Wisdom", "WIS", dnd5e_modifier),
            "cha": StatDef("Charisma", "CHA", dnd5e_modifier),
            "ac": StatDef("Armor Class", "AC"),
            "hp": StatDef("Hit Point Maximum", "Max HP"),
            "speed": StatDef("Speed"),
            "exp": StatDef("Experience", "XP", alias=["xp"]),
        },
        derived_stats={
            "level": DerivedStat("Level", _dnd5e_level, alias=["lvl"]),
            "proficiency": DerivedStat("Proficiency", _dnd5e_proficiency, alias=["prof", "pro", "pr"]),
            "initiative": DerivedStat("Initiative", _dnd5e_initiative, alias=["init"]),
            "passive_perception": DerivedStat("Passive Perception", _dnd5e_passive_perception),
        },
    ),
}


def get_template(name: Optional[str]) -> Optional[CharacterTemplate]:
    if not name:
        return None
    return CHARACTER_TEMPLATES.get(name.strip().lower())


def format_modifier(modifier: int) -> str:
    return f"+{modifier}" if modifier > 0 else str(modifier)
