"""
Responder Feature — When you say marco, I say polo.

Responses live in the guild settings under `responses`:
    [{"marco": "hello", "polo": "Hi!", "fuzzy": false, "partial": false}]
"""

import logging
from typing import Any, Dict, List, Optional

from tools.errors import BadCommandError
from tools.text_utils import similarity

logger = logging.getLogger("ResponderFeature")

RESPONDER_PRIORITY = 50
FUZZY_MINIMUM = 0.8


def find_response(responses: Optional[List[Dict[str, Any]]], text: str) -> Optional[Dict[str, Any]]:
    """First configured response matching `text` (already lowercased)."""
    for response in responses or []:
        marco = response.get("marco", "")
        if not marco:
            continue
        if response.get("fuzzy"):
            if similarity(text, marco) >= FUZZY_MINIMUM:
                return response
        elif response.get("partial"):
            if marco in text:
                return response
        elif text == marco:
            return response
    return None


class ResponderFeature:
    def __init__(self, dispatcher):
        self.dispatcher = dispatcher

    async def response(self, args, message):
        if message.guild is None or len(args) != 2:
            raise BadCommandError("response needs exactly two arguments")

        marco = args[0].lower()
        polo = args[1]
        settings = await self.dispatcher.settings_for(message)
        responses = list(settings.get("responses") or [])

        if polo == "delete":
            index = next((i for i, r in enumerate(responses) if r.get("marco") == marco), None)
            if index is None:
                return await self.dispatcher.reply(message, f"I don’t have a response for \"{marco}\"")
            responses.pop(index)
            await self.dispatcher.store.save_guild_settings(message.guild.id, {"responses": responses})
            return await self.dispatcher.reply(message, f"I’ve forgotten the response to \"{marco}\"")

        existing = find_response(responses, marco)
        if existing:
            return await self.dispatcher.reply(message, f"I’m already responding to \"{marco}\": \"{existing['polo']}\"")

        fuzzy = bool(args.flags.get("fuzzy"))
        partial = bool(args.flags.get("partial"))
        responses.append({"marco": marco, "polo": polo, "fuzzy": fuzzy, "partial": partial})
        await self.dispatcher.store.save_guild_settings(message.guild.id, {"responses": responses})

        if fuzzy:
            return await self.dispatcher.reply(message, f"Ok! When someone says something similar to \"{marco}\", I’ll say \"{polo}\"!")
        if partial:
            return await self.dispatcher.reply(message, f"Ok! When someone says something with \"{marco}\" in it, I’ll say \"{polo}\"!")
        return await self.dispatcher.reply(message, f"Ok! When someone says \"{marco}\", I’ll say \"{polo}\"!")

    async def respond(self, message) -> bool:
        """Passive handler: answer a configured marco."""
        if message.guild is None or getattr(message.author, "bot", False):
            return False
        settings = await self.dispatcher.settings_for(message)
        found = find_response(settings.get("responses"), (message.content or "").lower().strip())
        if not found:
            return False
        await self.dispatcher.reply(message, found["polo"])
        return True


def setup(dispatcher):
    feature = ResponderFeature(dispatcher)
    dispatcher.register_command(
        "response", feature.response,
        args=("\"marco\"", "\"polo\"", "(--fuzzy)", "(--partial)"),
        help_text="When you say __marco__, I say __polo__. Enclose marco/polo in `\"` quotes. Use `\"delete\"` for "
                  "polo to remove a response. Use --fuzzy to roughly match, and --partial to respond if it’s anywhere "
                  "in a message.",
        admin_only=True,
    )
    dispatcher.add_passive_handler(feature.respond, priority=RESPONDER_PRIORITY, name="responder")
    dispatcher.features["responder"] = feature
    return feature
