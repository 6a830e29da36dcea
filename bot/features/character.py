"""
Character Feature — Player characters, their stats and the creation walkthrough.

Commands:
  character help|create|new|walkthrough|delete|retire|stat|info|image|sheet
  whois     — who is playing what
  whoplays  — who plays a given character
  playas    — switch your current character

Direct messages belonging to an active walkthrough are consumed by a
passive handler that runs before every other fallback handler.
"""

import logging
import re
from typing import Any, Dict, List, Optional

import discord

from tools.character_store import CharacterStore
from tools.character_templates import CHARACTER_TEMPLATES, format_modifier, get_template
from tools.character_walkthrough import CharacterWalkthrough
from tools.command_registry import HelpEntry, render_help_entry
from tools.errors import BadCommandError, ExistingCharacterError, NotFoundError
from tools.text_utils import capitalize, fuzzy_find, sanitize

logger = logging.getLogger("CharacterFeature")

WALKTHROUGH_PRIORITY = 10

# Fields the sheet renders specially; everything else is listed as free-form info.
SHEET_SKIP_FIELDS = {
    "title", "name", "race", "description", "image", "stats", "level", "class",
    "occupation", "job", "template", "owner", "retired",
}

_MENTION_RE = re.compile(r"^<@!?(\d+)>$")
_USER_SPLIT_RE = re.compile(r"\s*[,;]\s*|\s+")
_INFO_RE = re.compile(r"^(\w+)\s*([\s\S]*)$")

SUBCOMMAND_HELP = [
    HelpEntry("help", help_text="Get help for character commands."),
    HelpEntry("create", ("name", "(--type TEMPLATE)"),
              "Create a character. Current templates are " + ", ".join(f"`{t}`" for t in CHARACTER_TEMPLATES)),
    HelpEntry("walkthrough", help_text="Create a character step by step, over direct messages."),
    HelpEntry("delete", ("exact name",), "Delete a character. Be careful!"),
    HelpEntry("retire", ("name",), "Retire a character. Their name becomes available again."),
    HelpEntry("stat", ("stat name", "(value)"), "Set or display a character stat. Depends on template (if used)."),
    HelpEntry("info", ("info name", "(value)"),
              "Set or display a character’s info. Generally free-form, but try `name`, `description`, `race`, "
              "or `class`. Delete character info by writing `delete` as a value."),
    HelpEntry("image", ("inserted picture",), "Set a character’s picture. When uploading a file, use this as a comment."),
    HelpEntry("sheet", ("(name)",), "Displays a character sheet. Defaults to your current character."),
]

NOT_PLAYING = "You’re not currently playing a character. Please create or select a character first."


class CharacterFeature:
    """Character commands plus the walkthrough passive handler."""

    def __init__(self, dispatcher):
        self.dispatcher = dispatcher
        self.store = CharacterStore(dispatcher.store)
        self.walkthrough = CharacterWalkthrough(self.store, delay=dispatcher.reply_delay)

    # ------------------------------------------------------------------
    # Lookups shared with other features
    # ------------------------------------------------------------------

    async def stat_modifier(self, guild_id: Any, user_id: Any, stat: str) -> Optional[int]:
        """Numeric modifier for `stat` on the user's current character, or None."""
        character = await self.store.get_current_character(guild_id, user_id)
        if not character:
            return None
        stats = character.get("stats") or {}
        template = get_template(character.get("template"))
        wanted = stat.strip().lower()

        if template:
            key = template.find_stat(wanted)
            if key and key in stats:
                calc = template.stats[key].calc
                if calc:
                    return calc(stats[key])
                return _to_int(stats[key])
            derived = template.find_derived(wanted)
            if derived:
                return template.derived_stats[derived].calc(character)

        return _to_int(stats.get(wanted))

    def find_members(self, guild: Any, queries: List[str], author: Any) -> List[Any]:
        """Resolve user searches (mentions, me/self, names) to members; misses stay strings."""
        names: Dict[str, Any] = {}
        for member in getattr(guild, "members", []) or []:
            for name in (getattr(member, "nick", None), member.display_name, member.name):
                if name and name.lower() not in names:
                    names[name.lower()] = member

        results = []
        for query in queries:
            mention = _MENTION_RE.match(query)
            if query.lower() in ("me", "self", "myself"):
                results.append(author)
            elif mention:
                results.append(guild.get_member(int(mention.group(1))) or query)
            else:
                match, _ = fuzzy_find(query.lower(), names.keys(), minimum=0.5)
                results.append(names[match] if match else query)
        return results

    def _member_name(self, guild: Any, user_id: Any) -> str:
        member = guild.get_member(int(user_id)) if guild is not None else None
        return member.display_name if member else "someone who has left"

    # ------------------------------------------------------------------
    # character <subcommand>
    # ------------------------------------------------------------------

    async def character(self, args, message):
        subcommand = (args.get(0) or "").lower()
        parts = args.raw.strip().split(None, 1)
        rest = parts[1].strip() if len(parts) > 1 else ""

        if subcommand == "help":
            return await self.character_help(message)
        if message.guild is None:
            return await self.dispatcher.reply(message, "Characters live on servers. Try that in a server channel!")
        if subcommand in ("create", "new"):
            return await self.create(args, message)
        if subcommand == "walkthrough":
            return await self.start_walkthrough(message)
        if subcommand == "delete":
            return await self.delete(rest, message)
        if subcommand == "retire":
            return await self.retire(rest, message)
        if subcommand == "stat":
            return await self.stat(args, message)
        if subcommand == "info":
            return await self.info(rest, message)
        if subcommand in ("pic", "picture", "photo", "image"):
            return await self.image(rest, message)
        if subcommand == "sheet":
            return await self.sheet(rest, message)
        raise BadCommandError(f"Unknown character subcommand '{subcommand}'")

    async def character_help(self, message):
        settings = await self.dispatcher.settings_for(message)
        prefix, default_prefix = self.dispatcher.prefixes_for(settings)
        reply = "Character commands.\n\n"
        for entry in SUBCOMMAND_HELP:
            reply += render_help_entry(
                HelpEntry(f"character {entry.name}", entry.args, entry.help_text), prefix, default_prefix
            )
        return await self.dispatcher.reply(message, reply)

    async def create(self, args, message):
        name = sanitize(" ".join(args.positional[1:]), message.guild)
        if not name:
            raise BadCommandError("No character name given")
        template = args.flags.get("type")
        if template is True:
            template = None
        if template:
            template = template.lower()

        try:
            character = await self.store.create_character(
                message.guild.id, {"name": name, "owner": str(message.author.id), "template": template}
            )
        except ExistingCharacterError as e:
            owner = self._member_name(message.guild, e.character.get("owner", 0))
            return await self.dispatcher.reply(
                message,
                f"That’s very similar to {owner}’s character \"{e.character.get('name')}\"… "
                f"Try something else to avoid confusion.",
            )

        game = get_template(character.get("template"))
        kind = game.game if game else "free-form"
        return await self.dispatcher.reply(
            message, f"Nice to meet you, {character['name']}! I’ll keep track of your {kind} stats."
        )

    async def start_walkthrough(self, message):
        await self.walkthrough.start(message)
        return await self.dispatcher.reply(message, "Check your direct messages! Let’s build a character together.")

    async def delete(self, name: str, message):
        try:
            removed = await self.store.delete_character(message.guild.id, message.author.id, name)
        except NotFoundError:
            safe = re.sub(r"[^a-zA-Z0-9'’]+", " ", name).strip()
            return await self.dispatcher.reply(message, f"I don’t believe I’ve met {safe}…")
        return await self.dispatcher.reply(message, f"Goodbye {removed['name']}! It was nice knowing you.")

    async def retire(self, name: str, message):
        if not name:
            current = await self.store.get_current_character(message.guild.id, message.author.id)
            if not current:
                return await self.dispatcher.reply(message, NOT_PLAYING)
            name = current["name"]
        retired = await self.store.retire_character(message.guild.id, message.author.id, name)
        return await self.dispatcher.reply(message, f"{retired['name']} has hung up their boots. Enjoy the rest!")

    async def _current_or_reply(self, message) -> Optional[Dict[str, Any]]:
        character = await self.store.get_current_character(message.guild.id, message.author.id)
        if not character:
            await self.dispatcher.reply(message, NOT_PLAYING)
        return character

    async def stat(self, args, message):
        stat = (args.get(1) or "").strip().lower()
        if not stat:
            raise BadCommandError("No stat given")
        value = " ".join(args.positional[2:]).strip() or None

        character = await self._current_or_reply(message)
        if not character:
            return None
        stats = dict(character.get("stats") or {})
        template = get_template(character.get("template"))
        name = character["name"]

        if template:
            derived = template.find_derived(stat)
            if derived and not value:
                result = template.derived_stats[derived].calc(character)
                if result is None:
                    return await self.dispatcher.reply(message, f"{name}’s {template.derived_stats[derived].name} can’t be worked out yet.")
                return await self.dispatcher.reply(message, f"{name}’s {template.derived_stats[derived].name} is currently {result}")

            key = template.find_stat(stat)
            if value:
                if key is None:
                    return await self.dispatcher.reply(
                        message,
                        f"I don’t think {stat} is used in {template.game}. "
                        f"Possible options: {', '.join(template.stats)}",
                    )
                stats[key] = value
                await self.store.update_character(message.guild.id, {**character, "stats": stats})
                return await self.dispatcher.reply(
                    message, f"Great! {name}’s {template.stats[key].name} is now {_stat_value(template, key, value)}"
                )

            if key and key in stats:
                return await self.dispatcher.reply(
                    message, f"{name}’s {template.stats[key].name} is currently {_stat_value(template, key, stats[key])}"
                )
            if stat in stats:
                return await self.dispatcher.reply(message, f"{name}’s {stat} is currently {stats[stat]}")
            return await self.dispatcher.reply(message, f"{name}’s {stat} not currently being tracked.")

        # Free-form character
        if value:
            if value == "delete":
                stats.pop(stat, None)
            else:
                stats[stat] = value
            await self.store.update_character(message.guild.id, {**character, "stats": stats})
            if stat in stats:
                return await self.dispatcher.reply(message, f"Great! {name}’s {stat} is now {stats[stat]}")
            return await self.dispatcher.reply(message, f"I’ve forgotten {name}’s {stat}")
        if stat in stats:
            return await self.dispatcher.reply(message, f"{name}’s {stat} is currently {stats[stat]}")
        return await self.dispatcher.reply(message, f"{name}’s {stat} not currently being tracked.")

    async def info(self, raw: str, message):
        match = _INFO_RE.match(raw.strip())
        if not match:
            raise BadCommandError("No info field given")
        field = match.group(1).lower()
        value = sanitize(match.group(2), message.guild)
        if field in ("stats", "image", "owner", "template", "retired"):
            raise BadCommandError(f"'{field}' cannot be edited as info")

        character = await self._current_or_reply(message)
        if not character:
            return None
        name = character["name"]

        if not value:
            current = character.get(field)
            if not current:
                return await self.dispatcher.reply(message, f"{name}’s {field} not currently being tracked.")
            if len(current) > 15:
                return await self.dispatcher.reply(message, f"{name}’s {field} is as follows:\n```{current}```")
            return await self.dispatcher.reply(message, f"{name}’s {field} is {current}")

        if field == "name":
            try:
                updated = await self.store.update_character(message.guild.id, character, new_name=value)
            except ExistingCharacterError as e:
                return await self.dispatcher.reply(message, str(e))
            return await self.dispatcher.reply(message, f"Great! {name}’s name is now {updated['name']}")

        updated = dict(character)
        if value == "delete":
            updated.pop(field, None)
        else:
            updated[field] = value
        await self.store.update_character(message.guild.id, updated)

        if field not in updated:
            return await self.dispatcher.reply(message, f"I’ve forgotten {name}’s {field}")
        if len(value) > 15:
            return await self.dispatcher.reply(message, f"Great! {name}’s {field} is saved.")
        return await self.dispatcher.reply(message, f"Great! {name}’s {field} is now {value}")

    async def image(self, rest: str, message):
        attachments = getattr(message, "attachments", None) or []
        if attachments:
            image = attachments[0].url
        elif rest.strip().lower() == "delete":
            image = None
        else:
            raise BadCommandError("No picture attached")

        character = await self._current_or_reply(message)
        if not character:
            return None

        updated = dict(character)
        if image:
            updated["image"] = image
        else:
            updated.pop("image", None)
        await self.store.update_character(message.guild.id, updated)

        if image:
            return await self.dispatcher.reply(message, f"Wow! Now I know what {character['name']} looks like.")
        return await self.dispatcher.reply(message, f"Ok. I’ll get rid of that picture of {character['name']}.")

    async def sheet(self, name: str, message):
        if name:
            character = await self.store.find_character(message.guild.id, name)
            if not character:
                return await self.dispatcher.reply(message, f"I don’t believe I’ve met {sanitize(name, message.guild)}…")
        else:
            character = await self.store.get_current_character(message.guild.id, message.author.id)
            if not character:
                return await self.dispatcher.reply(message, "It doesn’t seem like you have a character to display.")

        player = self._member_name(message.guild, character["owner"])
        return await self.dispatcher.reply(message, embed=render_sheet(character, player))

    # ------------------------------------------------------------------
    # whois / whoplays / playas
    # ------------------------------------------------------------------

    async def whois(self, args, message):
        if message.guild is None:
            return await self.dispatcher.fail(message)
        query = args.raw.strip()
        if query.lower() in ("all", "everyone"):
            return await self.whois_all(message)

        queries = [q for q in _USER_SPLIT_RE.split(query) if q]
        if not queries:
            queries = ["me"]

        lines = []
        for member in self.find_members(message.guild, queries, message.author):
            if isinstance(member, str):
                lines.append(f"**{member}:** I couldn’t find that user.")
                continue
            lines.append(await self._whois_line(message, member))
        return await self.dispatcher.reply(message, "\n\n".join(lines))

    async def _whois_line(self, message, member) -> str:
        guild_id = message.guild.id
        current = await self.store.current_character_name(guild_id, member.id)
        others = [c["name"] for c in await self.store.characters_of(guild_id, member.id) if c["name"] != current]
        is_self = member.id == message.author.id
        who = "You are" if is_self else f"{member.display_name} is"

        line = f"{who} currently playing as **{current}**." if current else f"{who} not currently playing as anyone."
        if others:
            by = "you" if is_self else member.display_name
            line += f"\nOther characters played by {by}: {', '.join(others)}."
        return line

    async def whois_all(self, message):
        by_owner: Dict[str, List[str]] = {}
        for character in await self.store.list_characters(message.guild.id):
            by_owner.setdefault(character["owner"], []).append(character["name"])

        lines = []
        for owner, names in by_owner.items():
            if owner == str(message.author.id):
                lines.append(f"You are playing {', '.join(names)}")
                continue
            member = message.guild.get_member(int(owner))
            if member:
                lines.append(f"{member.display_name} is playing {', '.join(names)}")
        if not lines:
            return await self.dispatcher.reply(message, "Nobody is playing anyone yet!")
        return await self.dispatcher.reply(message, "\n\n".join(lines))

    async def whoplays(self, args, message):
        if message.guild is None:
            return await self.dispatcher.fail(message)
        name = args.raw.strip()
        character = await self.store.find_character(message.guild.id, name) if name else None
        if not character:
            return await self.dispatcher.reply(message, f"I don’t believe I’ve met {sanitize(name, message.guild)}…")
        player = self._member_name(message.guild, character["owner"])
        return await self.dispatcher.reply(message, f"{character['name']} is played by **{player}**")

    async def playas(self, args, message):
        if message.guild is None:
            return await self.dispatcher.fail(message)
        name = args.raw.strip()
        guild_id, user_id = message.guild.id, message.author.id

        if not name:
            await self.store.set_current_character(guild_id, user_id, None)
            return await self.dispatcher.reply(message, "Ok. You’re not currently playing as anyone.")

        character = await self.store.find_character(guild_id, name, owner_id=user_id)
        if not character:
            return await self.dispatcher.reply(message, f"I don’t believe I’ve met {sanitize(name, message.guild)}…")
        await self.store.set_current_character(guild_id, user_id, character["name"])
        return await self.dispatcher.reply(message, f"Ok. You’re currently {character['name']}.")

    # ------------------------------------------------------------------
    # Help contribution
    # ------------------------------------------------------------------

    def help_entries(self, is_admin: bool):
        return [HelpEntry(
            "character walkthrough",
            help_text="New here? I’ll help you build a character, one question at a time.",
            sort=9989,
        )]


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _stat_value(template, key: str, value: str) -> str:
    """Stat value with its modifier, e.g. "+2 (15)", when the template computes one."""
    calc = template.stats[key].calc
    modifier = calc(value) if calc else None
    if modifier is not None:
        return f"{format_modifier(modifier)} ({value})"
    return str(value)


def render_sheet(character: Dict[str, Any], player: str) -> discord.Embed:
    """Build the character sheet embed."""
    title = f"{character['title']} {character['name']}" if character.get("title") else character["name"]
    embed = discord.Embed(
        title=title,
        description=character.get("description") or "Not much is known about this mysterious character…",
    )
    if character.get("image"):
        embed.set_thumbnail(url=character["image"])

    template = get_template(character.get("template"))
    kind = f"A {template.game} character" if template else "A free-form character"
    embed.set_footer(text=f"{kind} - Played by {player}")

    if character.get("race"):
        embed.add_field(name="Race", value=character["race"], inline=False)
    if character.get("class"):
        if character.get("level"):
            embed.add_field(name="Class & Level", value=f"Lvl. {character['level']} {character['class']}", inline=False)
        else:
            embed.add_field(name="Class", value=character["class"], inline=False)
    if character.get("occupation") or character.get("job"):
        embed.add_field(name="Occupation", value=character.get("occupation") or character.get("job"), inline=False)

    stats = character.get("stats") or {}
    if template:
        for key, stat in template.stats.items():
            value = stats.get(key)
            shown = _stat_value(template, key, value) if value else "Not Set"
            embed.add_field(name=stat.label, value=shown, inline=True)
        for derived in template.derived_stats.values():
            result = derived.calc(character)
            if result is not None:
                embed.add_field(name=derived.name, value=str(result), inline=True)
    else:
        for key, value in stats.items():
            embed.add_field(name=capitalize(key), value=str(value), inline=True)

    for field, value in character.items():
        if field in SHEET_SKIP_FIELDS or not value:
            continue
        embed.add_field(name=capitalize(field), value=str(value), inline=False)

    return embed


def setup(dispatcher):
    feature = CharacterFeature(dispatcher)
    dispatcher.register_command(
        "character", feature.character,
        args=("commands",),
        help_text="Character management. Try typing `{prefix}character help`.",
        sort=9990,
    )
    dispatcher.register_command(
        "whois", feature.whois, args=("username",),
        help_text="Look up the characters a player is playing", sort=9991,
    )
    dispatcher.register_command(
        "whoplays", feature.whoplays, args=("character name",),
        help_text="Look up the player of a certain character", sort=9992,
    )
    dispatcher.register_command(
        "playas", feature.playas, args=("character name",),
        help_text="Change your current character", sort=9993,
    )
    dispatcher.registry.add_help_generator(feature.help_entries)
    dispatcher.add_passive_handler(feature.walkthrough.engine.handle_message, priority=WALKTHROUGH_PRIORITY, name="walkthrough")
    dispatcher.features["character"] = feature
    return feature
