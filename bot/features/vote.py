"""
Vote Feature — quick 👍/👎 polls with one vote per person.

Poll message ids are remembered in a bounded in-process buffer; polls
older than the buffer simply stop enforcing the one-vote rule.
"""

import logging
from collections import deque

import discord

from tools.errors import BadCommandError
from tools.text_utils import sanitize

logger = logging.getLogger("VoteFeature")

VOTE_OPTIONS = ("👍", "👎")
MAX_TRACKED_POLLS = 100


class VoteFeature:
    def __init__(self, dispatcher, max_polls: int = MAX_TRACKED_POLLS):
        self.dispatcher = dispatcher
        self.polls = deque(maxlen=max_polls)

    async def vote(self, args, message):
        question = sanitize(args.raw, getattr(message, "guild", None))
        if not question:
            raise BadCommandError("vote needs a question")

        poll = await self.dispatcher.reply(message, f"**{message.author.display_name} asks:** {question}")
        for option in VOTE_OPTIONS:
            await poll.add_reaction(option)
        self.polls.append(poll.id)
        return poll

    async def on_reaction_add(self, reaction, user):
        """Keep one vote per user: drop their other vote reaction on the same poll."""
        if getattr(user, "bot", False) or reaction.message.id not in self.polls:
            return
        emoji = str(reaction.emoji)
        if emoji not in VOTE_OPTIONS:
            return
        for other in reaction.message.reactions:
            if str(other.emoji) in VOTE_OPTIONS and str(other.emoji) != emoji:
                try:
                    await other.remove(user)
                except discord.HTTPException as e:
                    logger.debug(f"Could not remove vote reaction: {e}")


def setup(dispatcher):
    feature = VoteFeature(dispatcher)
    dispatcher.register_command(
        "vote", feature.vote, args=("question",),
        help_text="Ask everyone a yes or no question. One vote each!",
    )
    dispatcher.add_event_handler("reaction_add", feature.on_reaction_add)
    dispatcher.features["vote"] = feature
    return feature
