"""
Dice Feature — `roll #d#+# …`

Stat-name modifiers (`roll 1d20+str`) are looked up on the roller's
current character through the character feature, when it is loaded.
"""

import logging

from tools.dice_roller import DiceError, format_roll, parse_dice, roll_dice, stat_names

logger = logging.getLogger("DiceFeature")


class DiceFeature:
    def __init__(self, dispatcher):
        self.dispatcher = dispatcher

    async def _resolve_stats(self, names, message):
        character = self.dispatcher.features.get("character")
        guild = getattr(message, "guild", None)
        if not names or character is None or guild is None:
            return {}

        stats = {}
        for name in names:
            value = await character.stat_modifier(guild.id, message.author.id, name)
            if value is not None:
                stats[name] = value
        return stats

    async def roll(self, args, message):
        try:
            groups = parse_dice(args.raw)
        except DiceError as e:
            logger.info(f"Bad dice from {message.author}: {e}")
            return await self.dispatcher.fail(message)

        stats = await self._resolve_stats(stat_names(groups), message)
        result = roll_dice(groups, stats)
        return await self.dispatcher.reply(message, format_roll(result))


def setup(dispatcher):
    feature = DiceFeature(dispatcher)
    dispatcher.register_command(
        "roll", feature.roll,
        args=("#d# + #", "(…#d# + #)"),
        help_text="Roll dice. You can roll several dice at once, and add your character’s stats, like `{prefix}roll 1d20+str`.",
    )
    dispatcher.features["dice"] = feature
    return feature
