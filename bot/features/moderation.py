"""
Moderation Feature — behead (bulk delete) and begone (username bans on join).

begone patterns live in the guild settings under `begones`:
    [{"pattern": "spam.*bot", "ban": true}]
Patterns are regular expressions tested against the lowercased username
of every member that joins.
"""

import asyncio
import logging
import re
from typing import Any, Dict, Optional

import discord

from tools.errors import BadCommandError

logger = logging.getLogger("ModerationFeature")

MAX_BEHEAD = 20
BANISHED_REASON = "Your username is not permitted on this server."


class ModerationFeature:
    def __init__(self, dispatcher):
        self.dispatcher = dispatcher

    # ------------------------------------------------------------------
    # behead
    # ------------------------------------------------------------------

    async def behead(self, args, message):
        if len(args) != 1:
            raise BadCommandError("behead needs a count")
        try:
            count = int(args[0])
        except ValueError:
            raise BadCommandError(f"Not a number: {args[0]}")

        if count > MAX_BEHEAD:
            return await self.dispatcher.reply(
                message,
                "Oh my! That seems like an awful lot of messages. I don’t think I can handle more than 20 at a time.",
            )
        if count < 1:
            return await self.dispatcher.reply(
                message, "Well, I can try, but there wouldn’t be much point, now would there?"
            )

        try:
            # +1 for the command message itself
            deleted = await message.channel.purge(limit=count + 1)
        except discord.HTTPException as e:
            logger.warning(f"behead failed in #{getattr(message.channel, 'name', '?')}: {e}")
            return await self.dispatcher.reply(
                message,
                "How dreadful! I wasn’t permitted to behead any messages. You may need to invite me again!",
            )
        logger.info(f"{message.author} beheaded {len(deleted)} message(s) in #{message.channel.name}")
        return deleted

    # ------------------------------------------------------------------
    # begone
    # ------------------------------------------------------------------

    async def begone(self, args, message):
        if message.guild is None or len(args) < 1:
            raise BadCommandError("begone needs a pattern")
        pattern = args[0]
        try:
            re.compile(pattern)
        except re.error:
            return await self.dispatcher.reply(message, f"\"{pattern}\" doesn’t look like a pattern I can use.")

        settings = await self.dispatcher.settings_for(message)
        begones = list(settings.get("begones") or [])
        index = next((i for i, b in enumerate(begones) if b.get("pattern") == pattern), None)

        if len(args) > 1 and args[1] == "delete":
            if index is None:
                return await self.dispatcher.reply(message, f"I couldn’t find a match for \"{pattern}\"")
            begones.pop(index)
            await self.dispatcher.store.save_guild_settings(message.guild.id, {"begones": begones})
            return await self.dispatcher.reply(message, f"I’ve rescinded \"{pattern}\"’s banishment")

        if index is not None:
            return await self.dispatcher.reply(message, f"\"{pattern}\" is already banished.")

        ban = bool(args.flags.get("ban"))
        begones.append({"pattern": pattern, "ban": ban})
        await self.dispatcher.store.save_guild_settings(message.guild.id, {"begones": begones})
        if ban:
            return await self.dispatcher.reply(message, f"\"{pattern}\" has been banished forever.")
        return await self.dispatcher.reply(message, f"\"{pattern}\" has been banished.")

    @staticmethod
    def matching_begone(settings: Dict[str, Any], username: str) -> Optional[Dict[str, Any]]:
        for begone in settings.get("begones") or []:
            try:
                if re.search(begone.get("pattern", ""), username.lower()):
                    return begone
            except re.error:
                logger.warning(f"Ignoring invalid begone pattern {begone.get('pattern')!r}")
        return None

    async def on_member_join(self, member):
        """Kick or ban members whose username matches a begone pattern."""
        # Let the welcome handlers run first.
        await asyncio.sleep(0.1)
        settings = await self.dispatcher.guild_settings(member.guild)
        begone = self.matching_begone(settings, member.name)
        if not begone:
            return False

        if begone.get("ban"):
            await member.ban(reason=BANISHED_REASON, delete_message_seconds=24 * 60 * 60)
            logger.info(f"Banned {member} from {member.guild.name} (pattern {begone['pattern']!r})")
        else:
            await member.kick(reason=BANISHED_REASON)
            logger.info(f"Kicked {member} from {member.guild.name} (pattern {begone['pattern']!r})")

        channel = getattr(member.guild, "system_channel", None)
        if channel is not None:
            try:
                async for join in channel.history(limit=10):
                    if join.type == discord.MessageType.new_member and join.author.id == member.id:
                        await join.delete()
            except discord.HTTPException as e:
                logger.debug(f"Could not tidy join message for {member}: {e}")
        return True


def setup(dispatcher):
    feature = ModerationFeature(dispatcher)
    dispatcher.register_command(
        "behead", feature.behead, args=("#",),
        help_text="Off with his head! Delete # messages.",
        admin_only=True,
    )
    dispatcher.register_command(
        "begone", feature.begone,
        args=("name pattern", "delete", "(--ban)"),
        help_text="USE EXTREME CAUTION! Instantly banish bad bots that follow a specific username pattern "
                  "(regular expression), and optionally ban them. Pass 'delete' to remove the banishment, and "
                  "allow new members to join. NOTE: Deleting an entry will not unban already banned members.",
        admin_only=True, sort=99999,
    )
    dispatcher.add_event_handler("member_join", feature.on_member_join)
    dispatcher.features["moderation"] = feature
    return feature
