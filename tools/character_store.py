"""
CharacterStore — Per-guild character roster plus each player's current character.

Storage layout (via SettingsStore):
    <guild_id>-characters     JSON list of Character dicts (all players)
    <guild_id>__<user_id>     user settings; `current_character` names the
                              character the user is playing

Names must be fuzzy-distinct among non-retired characters of a guild.
Creating or renaming into a name at or above NAME_DISTANCE similarity
raises ExistingCharacterError carrying the conflicting character.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from models.characters import Character
from tools.character_templates import get_template
from tools.errors import BadArgumentError, ExistingCharacterError, NotFoundError
from tools.settings_store import SettingsStore, data_key
from tools.text_utils import fuzzy_find, similarity

logger = logging.getLogger("CharacterStore")

CHARACTERS_SUFFIX = "-characters"
NAME_DISTANCE = 0.8


class CharacterStore:
    """Character CRUD on top of a SettingsStore."""

    def __init__(self, settings: SettingsStore):
        self.settings = settings

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    async def list_characters(self, guild_id: Any, include_retired: bool = False) -> List[Dict[str, Any]]:
        data = await self.settings.get(data_key(guild_id, suffix=CHARACTERS_SUFFIX))
        if not isinstance(data, list):
            return []
        characters = [c for c in data if isinstance(c, dict) and c.get("name")]
        if not include_retired:
            characters = [c for c in characters if not c.get("retired")]
        return characters

    async def _save_roster(self, guild_id: Any, characters: List[Dict[str, Any]]):
        await self.settings.set(data_key(guild_id, suffix=CHARACTERS_SUFFIX), characters, overwrite=True)

    async def characters_of(self, guild_id: Any, user_id: Any, include_retired: bool = False) -> List[Dict[str, Any]]:
        owner = str(user_id)
        return [c for c in await self.list_characters(guild_id, include_retired) if c.get("owner") == owner]

    async def find_similar(
        self, guild_id: Any, name: str, distance: float = NAME_DISTANCE, exclude: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Closest non-retired character whose name is at least `distance` similar."""
        best, best_score = None, 0.0
        for character in await self.list_characters(guild_id):
            if exclude is not None and _same(character, exclude):
                continue
            score = similarity(name, character["name"])
            if score >= distance and score > best_score:
                best, best_score = character, score
        return best

    async def find_character(
        self, guild_id: Any, name: str, owner_id: Any = None, include_retired: bool = False
    ) -> Optional[Dict[str, Any]]:
        """Best fuzzy match by name, optionally restricted to one owner."""
        if owner_id is not None:
            characters = await self.characters_of(guild_id, owner_id, include_retired)
        else:
            characters = await self.list_characters(guild_id, include_retired)
        by_name = {c["name"]: c for c in characters}
        exact = next((c for c in characters if c["name"].lower() == name.strip().lower()), None)
        if exact:
            return exact
        match, _ = fuzzy_find(name, by_name.keys(), minimum=0.5)
        return by_name.get(match) if match else None

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    async def create_character(self, guild_id: Any, character: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and store a new character. Raises ExistingCharacterError on a name clash."""
        try:
            model = Character.model_validate(character)
        except ValidationError as e:
            raise BadArgumentError(f"That doesn’t look like a valid character: {e.errors()[0]['msg']}") from e

        if model.template and get_template(model.template) is None:
            raise BadArgumentError(f"I don’t know the `{model.template}` template.")

        existing = await self.find_similar(guild_id, model.name)
        if existing:
            raise ExistingCharacterError(
                f"That’s very similar to someone else’s character \"{existing['name']}\"… "
                f"Try something else to avoid confusion.",
                character=existing,
            )

        stored = model.model_dump(exclude_none=True)
        roster = await self.list_characters(guild_id, include_retired=True)
        roster.append(stored)
        await self._save_roster(guild_id, roster)
        await self.set_current_character(guild_id, model.owner, model.name)
        logger.info(f"Created character '{model.name}' for user {model.owner} in guild {guild_id}")
        return stored

    async def update_character(self, guild_id: Any, character: Dict[str, Any], new_name: Optional[str] = None) -> Dict[str, Any]:
        """Replace a stored character (matched by owner and name), optionally renaming it."""
        roster = await self.list_characters(guild_id, include_retired=True)
        index = next((i for i, c in enumerate(roster) if _same(c, character)), None)
        if index is None:
            raise NotFoundError(f"I don’t believe I’ve met {character.get('name')}…", result=character)

        updated = dict(character)
        if new_name and new_name != character["name"]:
            clash = await self.find_similar(guild_id, new_name, exclude=character)
            if clash:
                raise ExistingCharacterError(
                    f"That’s very similar to someone else’s character \"{clash['name']}\"… "
                    f"Try something else to avoid confusion.",
                    character=clash,
                )
            updated["name"] = new_name

        roster[index] = Character.model_validate(updated).model_dump(exclude_none=True)
        await self._save_roster(guild_id, roster)

        if new_name and new_name != character["name"]:
            current = await self.current_character_name(guild_id, character["owner"])
            if current == character["name"]:
                await self.set_current_character(guild_id, character["owner"], new_name)
        return roster[index]

    async def delete_character(self, guild_id: Any, owner_id: Any, name: str) -> Dict[str, Any]:
        """Delete one of `owner_id`'s characters by exact name."""
        roster = await self.list_characters(guild_id, include_retired=True)
        owner = str(owner_id)
        index = next(
            (i for i, c in enumerate(roster) if c.get("owner") == owner and c["name"] == name.strip()),
            None,
        )
        if index is None:
            raise NotFoundError(f"I don’t believe I’ve met {name.strip()}…", result={"name": name})

        removed = roster.pop(index)
        await self._save_roster(guild_id, roster)
        if await self.current_character_name(guild_id, owner_id) == removed["name"]:
            await self.set_current_character(guild_id, owner_id, None)
        logger.info(f"Deleted character '{removed['name']}' of user {owner} in guild {guild_id}")
        return removed

    async def retire_character(self, guild_id: Any, owner_id: Any, name: str) -> Dict[str, Any]:
        """Mark a character retired. Retired names no longer block new characters."""
        character = await self.find_character(guild_id, name, owner_id)
        if character is None:
            raise NotFoundError(f"I don’t believe I’ve met {name.strip()}…", result={"name": name})
        retired = await self.update_character(guild_id, {**character, "retired": True})
        if await self.current_character_name(guild_id, owner_id) == character["name"]:
            await self.set_current_character(guild_id, owner_id, None)
        return retired

    # ------------------------------------------------------------------
    # Current character
    # ------------------------------------------------------------------

    async def current_character_name(self, guild_id: Any, user_id: Any) -> Optional[str]:
        user_settings = await self.settings.get_user_settings(guild_id, user_id)
        return user_settings.get("current_character")

    async def get_current_character(self, guild_id: Any, user_id: Any) -> Optional[Dict[str, Any]]:
        name = await self.current_character_name(guild_id, user_id)
        if not name:
            return None
        owner = str(user_id)
        for character in await self.characters_of(guild_id, user_id):
            if character["name"] == name and character.get("owner") == owner:
                return character
        return None

    async def set_current_character(self, guild_id: Any, user_id: Any, name: Optional[str]):
        user_settings = await self.settings.get_user_settings(guild_id, user_id)
        if name:
            user_settings["current_character"] = name
        else:
            user_settings.pop("current_character", None)
        await self.settings.save_user_settings(guild_id, user_id, user_settings, overwrite=True)


def _same(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    return a.get("name") == b.get("name") and str(a.get("owner")) == str(b.get("owner"))
