"""
Welcome Feature — greet new members and hand out default roles.

Uses the `default_roles`, `welcome_message` and `welcome_channel` settings.
`{user}` in the welcome message is replaced with a mention of the member.
"""

import logging

import discord

logger = logging.getLogger("WelcomeFeature")


def find_channel(guild, name):
    """Text channel by name (with or without a leading '#') or by <#id> mention."""
    if not name:
        return None
    name = str(name).strip()
    if name.startswith("<#") and name.endswith(">"):
        return guild.get_channel(int(name[2:-1]))
    return discord.utils.get(guild.text_channels, name=name.lstrip("#"))


class WelcomeFeature:
    def __init__(self, dispatcher):
        self.dispatcher = dispatcher

    async def on_member_join(self, member):
        guild = member.guild
        settings = await self.dispatcher.guild_settings(guild)

        role_names = settings.get("default_roles") or []
        if isinstance(role_names, str):
            role_names = [role_names]
        roles = [r for r in (discord.utils.get(guild.roles, name=n) for n in role_names) if r is not None]
        if roles:
            try:
                await member.add_roles(*roles, reason="Default roles")
                logger.info(f"Gave {member} default roles: {', '.join(r.name for r in roles)}")
            except discord.HTTPException as e:
                logger.warning(f"Could not assign default roles in {guild.name}: {e}")

        welcome = settings.get("welcome_message")
        if not welcome:
            return
        channel = find_channel(guild, settings.get("welcome_channel")) or getattr(guild, "system_channel", None)
        if channel is None:
            logger.info(f"No welcome channel in {guild.name}")
            return
        await self.dispatcher.pause()
        await channel.send(welcome.replace("{user}", member.mention))


def setup(dispatcher):
    feature = WelcomeFeature(dispatcher)
    dispatcher.add_event_handler("member_join", feature.on_member_join)
    dispatcher.features["welcome"] = feature
    return feature
