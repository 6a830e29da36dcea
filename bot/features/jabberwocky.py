"""
Jabberwocky Feature — "Callooh! Callay!" gets the next verse of the poem.

The verse counter is kept per guild under `<guild_id>-jabberwocky`.
"""

import logging

from tools.settings_store import data_key

logger = logging.getLogger("JabberwockyFeature")

TRIGGER = "Callooh! Callay!"

VERSES = [
    "’Twas brillig, and the slithy toves\n  Did gyre and gimble in the wabe:\n"
    "All mimsy were the borogoves,\n  And the mome raths outgrabe.",
    "\"Beware the Jabberwock, my son!\n  The jaws that bite, the claws that catch!\n"
    "Beware the Jubjub bird, and shun\n  The frumious Bandersnatch!\"",
    "He took his vorpal sword in hand:\n  Long time the manxome foe he sought --\n"
    "So rested he by the Tumtum tree,\n  And stood awhile in thought.",
    "And, as in uffish thought he stood,\n  The Jabberwock, with eyes of flame,\n"
    "Came whiffling through the tulgey wood,\n  And burbled as it came!",
    "One, two! One, two! And through and through\n  The vorpal blade went snicker-snack!\n"
    "He left it dead, and with its head\n  He went galumphing back.",
    "\"And, has thou slain the Jabberwock?\n  Come to my arms, my beamish boy!\n"
    "O frabjous day! Callooh! Callay!\"\n  He chortled in his joy.",
]


class JabberwockyFeature:
    def __init__(self, dispatcher):
        self.dispatcher = dispatcher

    async def recite(self, message):
        guild_id = getattr(getattr(message, "guild", None), "id", None)
        key = data_key(guild_id, suffix="-jabberwocky")
        verse = await self.dispatcher.store.get(key)
        if not isinstance(verse, int) or not 0 <= verse < len(VERSES):
            verse = 0
        await self.dispatcher.store.set(key, (verse + 1) % len(VERSES), overwrite=True)
        return await self.dispatcher.reply(message, VERSES[verse])


def setup(dispatcher):
    feature = JabberwockyFeature(dispatcher)
    dispatcher.add_phrase(TRIGGER, feature.recite, name="jabberwocky")
    dispatcher.features["jabberwocky"] = feature
    return feature
