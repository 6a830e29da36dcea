"""
Core Feature — help, guild configuration and cache refresh.

Commands:
  help      — DM the command listing (also `@White Rabbit help`)
  cfg       — admin; generic typed editor over the settings catalogue
  refresh   — admin; forget this guild's cached settings

`cfg` and `refresh` ignore the guild prefix so an admin can always fix
a broken prefix with the default one.
"""

import logging
import re
from typing import Any, Dict, Optional

import discord

from models.settings import SETTING_SPECS
from tools.errors import BadArgumentError, BadCommandError, NotFoundError

logger = logging.getLogger("CoreFeature")

HELP_HEADER = "Oh dear! Oh dear! I shall be too late! Here’s what I can do:\n\n"

_CFG_RE = re.compile(r"^(\w+)\s*((?:(?:set|reset|show|list|add|remove)(?:\s+|$))?)(.*)$", re.DOTALL)


def parse_cfg(raw: str):
    """Split `cfg` arguments into (key, method, value).

    An omitted method means `set` when a value is given, else `show`.
    """
    match = _CFG_RE.match((raw or "").strip())
    if not match:
        raise BadCommandError("Could not parse cfg arguments", result={"raw": raw})
    key = match.group(1).strip().lower()
    method = match.group(2).strip().lower()
    value = match.group(3).strip() or None
    if not method:
        method = "set" if value is not None else "show"
    return key, method, value


def edit_setting(settings: Dict[str, Any], key: str, method: str, value: Optional[str]) -> Dict[str, Any]:
    """Apply one cfg operation to a settings dict (not persisted).

    Returns {"key", "method", "value", "modified"}. Raises BadArgumentError
    for unknown keys, BadCommandError for operations the setting type does
    not support, NotFoundError when removing a missing list entry.
    """
    result = {"key": key, "method": method, "value": value, "modified": False}
    spec = SETTING_SPECS.get(key)
    if spec is None:
        raise BadArgumentError(f"I’m sorry, I don’t know anything about `{key}`.", result=result)

    current = spec.coerce(settings.get(key))

    if method == "add":
        if not spec.supports_add or value is None:
            raise BadCommandError(f"Cannot add to {key}", result=result)
        new_value = current + [value]
    elif method == "remove":
        if not spec.supports_remove or value is None:
            raise BadCommandError(f"Cannot remove from {key}", result=result)
        if value not in current:
            raise NotFoundError(f"I couldn’t find `{value}` in `{key}`.", result=result)
        new_value = list(current)
        new_value.remove(value)
    elif method == "reset":
        new_value = spec.default
    elif method in ("show", "list"):
        result["value"] = current if current not in (None, []) else spec.default
        return result
    else:
        if value is None:
            raise BadCommandError(f"No value given for {key}", result=result)
        new_value = spec.assign(value)

    result["value"] = new_value
    result["modified"] = True
    return result


def _describe(value: Any) -> str:
    if value in (None, [], ""):
        return "not set"
    if isinstance(value, list):
        return ", ".join(f"`{v}`" for v in value)
    return f"`{value}`"


class CoreFeature:
    """help / cfg / refresh."""

    def __init__(self, dispatcher):
        self.dispatcher = dispatcher
        self.store = dispatcher.store

    async def help(self, args, message):
        settings = await self.dispatcher.settings_for(message)
        prefix, default_prefix = self.dispatcher.prefixes_for(settings)
        admin = await self.dispatcher.is_admin(message, settings)
        pages = self.dispatcher.registry.render_help(prefix, default_prefix, is_admin=admin, header=HELP_HEADER)

        try:
            for page in pages:
                await self.dispatcher.send_dm(message.author, page)
        except discord.Forbidden:
            logger.info(f"Could not DM help to {message.author}")
            return await self.dispatcher.reply(
                message, "I tried to send you my commands, but your direct messages are closed."
            )

        if getattr(message, "guild", None) is not None:
            await self.dispatcher.reply(message, "I’ve sent you a direct message with everything I can do.")
        return pages

    async def cfg(self, args, message):
        key, method, value = parse_cfg(args.raw)
        guild_id = message.guild.id
        settings = await self.store.get_guild_settings(guild_id)
        result = edit_setting(settings, key, method, value)

        if result["modified"]:
            await self.store.save_guild_settings(guild_id, {key: result["value"]})
            logger.info(f"Guild {guild_id}: {key} {method} by {message.author}")
            if method == "reset":
                return await self.dispatcher.reply(message, f"Okay! I’ve reset `{key}`. It is now {_describe(result['value'])}.")
            return await self.dispatcher.reply(message, f"Okay! `{key}` is now {_describe(result['value'])}.")

        return await self.dispatcher.reply(message, f"`{key}` is currently {_describe(result['value'])}.")

    async def refresh(self, args, message):
        dropped = self.store.invalidate_guild_settings(message.guild.id)
        logger.info(f"Guild {message.guild.id}: settings refreshed (cached={dropped})")
        return await self.dispatcher.reply(message, "All freshened up!")


def setup(dispatcher):
    feature = CoreFeature(dispatcher)
    dispatcher.register_command(
        "help", feature.help,
        help_text="Get this list of commands, sent to you directly.",
        help_shortcut=True, ignore_prefix=True, sort=0,
    )
    dispatcher.register_command(
        "cfg", feature.cfg,
        args=("key", "(set|add|remove|reset|show|list)", "(value)"),
        help_text="Change a server setting. Try `{prefix}cfg prefix !` or `{prefix}cfg admin_group add Moderators`. "
                  "Settings: " + ", ".join(f"`{k}`" for k in SETTING_SPECS),
        admin_only=True, ignore_prefix=True, sort=1,
    )
    dispatcher.register_command(
        "refresh", feature.refresh,
        help_text="Reload this server’s settings from storage.",
        admin_only=True, ignore_prefix=True, sort=2,
    )
    dispatcher.features["core"] = feature
    return feature
