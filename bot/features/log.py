"""
Log Feature — moderation log of deleted messages and departed members.

Posts to the channel named by the `log_channel` setting. Long deleted
messages are split so each post stays readable.
"""

import logging

from bot.features.welcome import find_channel

logger = logging.getLogger("LogFeature")

CHUNK_SIZE = 1000


def format_deleted(message) -> list:
    """Log posts for one deleted message, split at CHUNK_SIZE characters."""
    content = message.content or ""
    head = f"**[δ] Channel:** <#{message.channel.id}> — **{message.author}** deleted:\n"
    posts = [head + content[:CHUNK_SIZE]]
    for start in range(CHUNK_SIZE, len(content), CHUNK_SIZE):
        posts.append("_ _\n" + content[start:start + CHUNK_SIZE])
    return posts


class LogFeature:
    def __init__(self, dispatcher):
        self.dispatcher = dispatcher

    async def _log_channel(self, guild):
        if guild is None:
            return None
        settings = await self.dispatcher.guild_settings(guild)
        return find_channel(guild, settings.get("log_channel"))

    async def on_message_delete(self, message):
        if self.dispatcher.bot_id is not None and message.author.id == self.dispatcher.bot_id:
            return
        channel = await self._log_channel(getattr(message, "guild", None))
        if channel is None:
            return
        for post in format_deleted(message):
            await channel.send(post)

    async def on_member_remove(self, member):
        channel = await self._log_channel(member.guild)
        if channel is None:
            return
        await channel.send(f"**[←] {member}** ({member.display_name}) has left the server.")


def setup(dispatcher):
    feature = LogFeature(dispatcher)
    dispatcher.add_event_handler("message_delete", feature.on_message_delete)
    dispatcher.add_event_handler("member_remove", feature.on_member_remove)
    dispatcher.features["log"] = feature
    return feature
