"""
Character Walkthrough — Step-by-step character creation over direct messages.

Steps, in order:
    template → name → description → pic → info ⇄ info_value → stat → done
    emergency_name is only entered when the final save finds a name clash.

"skip" is honoured by each step's own logic. The name step makes the
player repeat a literal "skip" to confirm it really is the name; the
emergency_name step refuses to skip at all.
"""

import logging
import re
from typing import Any, Dict, Optional

from tools.character_store import CharacterStore, NAME_DISTANCE
from tools.character_templates import CHARACTER_TEMPLATES, format_modifier, get_template
from tools.errors import ExistingCharacterError, StepError
from tools.text_utils import sanitize
from tools.walkthrough import ConversationTrack, Step, WalkthroughEngine

logger = logging.getLogger("CharacterWalkthrough")

_SKIP_TRIM_RE = re.compile(r"(^[^a-z]+|[^a-z]$)", re.IGNORECASE)
_URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)


def is_skip(answer: Any, word: str = "skip") -> bool:
    """Case- and punctuation-insensitive match of an answer against `word`."""
    text = getattr(answer, "content", answer)
    text = str(text if text is not None else "").lower().strip()
    return _SKIP_TRIM_RE.sub("", text) == word


class CharacterWalkthrough:
    """Builds the character-creation walkthrough on top of a CharacterStore."""

    def __init__(self, store: CharacterStore, delay: float = 0.5, timeout_seconds: Optional[float] = None):
        self.store = store
        steps = [
            Step("template", self.open_template, self.process_template),
            Step("name", "What is your character’s name?", self.process_name,
                 repeat="Got any other ideas for a name for your character?"),
            Step("description", self.open_description, self.process_description),
            Step("pic", "Do you have a picture of your character you’d like to use? "
                        "If you do, please send it to me!", self.process_pic),
            Step("info", self.open_info, self.process_info, repeat=self.repeat_info),
            Step("info_value", self.open_info_value, self.process_info_value),
            Step("stat", self.open_stat, self.process_stat, repeat=self.repeat_stat),
            Step("emergency_name", "Got any other ideas for a name for your character?",
                 self.process_emergency_name),
        ]
        kwargs: Dict[str, Any] = {}
        if timeout_seconds is not None:
            kwargs["timeout_seconds"] = timeout_seconds
        self.engine = WalkthroughEngine(
            steps,
            on_complete=self.complete,
            recovery_step="emergency_name",
            recoverable=(ExistingCharacterError,),
            delay=delay,
            **kwargs,
        )
        # Index just past the last regular step; reaching it completes the walkthrough.
        self.finish = len(steps)

    async def start(self, message: Any) -> ConversationTrack:
        return await self.engine.start(
            message.author,
            guild=message.guild,
            member=message.author,
            intro="Let’s make a character! You can say `ABORT` at any time to stop.",
        )

    def _clean(self, track: ConversationTrack, message: Any) -> str:
        return sanitize(message.content, track.guild)

    async def _check_name(self, track: ConversationTrack, name: str):
        if not name:
            raise StepError("I didn’t quite catch that. What is your character’s name?")
        clash = await self.store.find_similar(track.guild_id, name, NAME_DISTANCE)
        if clash:
            raise StepError(
                f"That’s very similar to someone else’s character \"{clash['name']}\"… "
                f"Try something else to avoid confusion."
            )

    def _after_info(self, track: ConversationTrack):
        return "stat" if track.data.get("stats") else self.finish

    # ------------------------------------------------------------------
    # template
    # ------------------------------------------------------------------

    def open_template(self, track: ConversationTrack) -> str:
        names = "`, `".join(CHARACTER_TEMPLATES)
        return (
            f"What kind of character did you want to create? I know about `{names}`. "
            f"If you don’t want to use a template, just say `none`."
        )

    async def process_template(self, track: ConversationTrack, message: Any, engine: WalkthroughEngine):
        answer = (message.content or "").strip().lower()
        template = get_template(answer)
        if template:
            track.draft["template"] = answer
            track.data["stats"] = list(template.stats)
            await engine.say(track, f"Got it! I’ll keep track of their {template.game} stats.")
            return True
        if is_skip(message) or is_skip(message, "none"):
            track.draft.pop("template", None)
            track.data["stats"] = []
            await engine.say(track, "Got it! I’ll keep track of their free form stats.")
            return True
        raise StepError("Hmm... I’m not quite sure what you mean.")

    # ------------------------------------------------------------------
    # name
    # ------------------------------------------------------------------

    async def process_name(self, track: ConversationTrack, message: Any, engine: WalkthroughEngine):
        if is_skip(message) and not track.data.get("skip_confirmed"):
            track.data["skip_confirmed"] = True
            raise StepError(
                f"Sorry, this is the one thing I can’t skip. If you actually want to name your "
                f"character \"{message.content.strip()}\", just type it one more time."
            )
        name = self._clean(track, message)
        await self._check_name(track, name)
        track.draft["name"] = name
        await engine.say(track, f"Okay! Their name is {name}!")
        return True

    # ------------------------------------------------------------------
    # description / pic
    # ------------------------------------------------------------------

    def open_description(self, track: ConversationTrack) -> str:
        return (
            f"Tell me about {track.draft.get('name', 'them')}. What do they like? How do they dress? "
            f"Where are they from? Give me all the details of their life, so I know exactly who they are."
        )

    async def process_description(self, track: ConversationTrack, message: Any, engine: WalkthroughEngine):
        if is_skip(message) or is_skip(message, "no"):
            await engine.say(track, "Moving right along!")
            return True
        track.draft["description"] = self._clean(track, message)
        await engine.say(track, "Wonderful!")
        return True

    async def process_pic(self, track: ConversationTrack, message: Any, engine: WalkthroughEngine):
        if is_skip(message) or is_skip(message, "no"):
            await engine.say(track, "No picture? That’s too bad, but you can always add it later.")
            return True

        attachments = getattr(message, "attachments", None) or []
        content = (message.content or "").strip()
        if attachments:
            track.draft["image"] = attachments[0].url
        elif _URL_RE.match(content):
            track.draft["image"] = content
        else:
            raise StepError("Whoops! There didn’t seem to be a picture with that message.")

        await engine.say(track, f"Wow! Now I know what {track.draft.get('name')} looks like.")
        return True

    # ------------------------------------------------------------------
    # info ⇄ info_value
    # ------------------------------------------------------------------

    def open_info(self, track: ConversationTrack) -> str:
        return (
            "Now let’s work on some details. What information would you like to add? For instance, "
            "you can say something like `job`, `class`, or `race`. If you want to do this later, say `skip`."
        )

    def repeat_info(self, track: ConversationTrack) -> str:
        return (
            "Is there any other information you want to add? You can say `job`, `class`, or `race`, "
            "or really anything at all! If you’ve entered everything you want, say `done`."
        )

    async def process_info(self, track: ConversationTrack, message: Any, engine: WalkthroughEngine):
        if is_skip(message):
            await engine.say(track, "Okay! Skipping this for now.")
            return self._after_info(track)
        if is_skip(message, "done"):
            await engine.say(track, "Alright, done with info.")
            return self._after_info(track)

        field_name = self._clean(track, message).lower()
        if not field_name:
            return False
        if field_name in ("name", "owner", "template", "stats", "image", "retired"):
            raise StepError(f"I’ll take care of `{field_name}` myself. Try something else, like `race` or `class`.")
        track.data["pending_info"] = field_name
        return True

    def open_info_value(self, track: ConversationTrack) -> str:
        return f"Okay! What should I put down for {track.data.get('pending_info')}?"

    async def process_info_value(self, track: ConversationTrack, message: Any, engine: WalkthroughEngine):
        field_name = track.data.pop("pending_info", None)
        if is_skip(message):
            await engine.say(track, "Got it! Next!")
            return self._after_info(track)
        if field_name:
            track.draft[field_name] = self._clean(track, message)
        await engine.say(track, "Good! Noted.")
        return "info"

    # ------------------------------------------------------------------
    # stat
    # ------------------------------------------------------------------

    def _stat_label(self, track: ConversationTrack) -> str:
        template = get_template(track.draft.get("template"))
        stat = template.stats[track.data["stats"][0]]
        return ("**base** " if stat.calc else "") + stat.name.lower()

    def open_stat(self, track: ConversationTrack) -> str:
        template = get_template(track.draft.get("template"))
        return (
            f"Ok! Since we’re setting up a {template.game} character, I need some stats! "
            f"What is their {self._stat_label(track)}?"
        )

    def repeat_stat(self, track: ConversationTrack) -> str:
        return f"Okay, and what is their {self._stat_label(track)}?"

    async def process_stat(self, track: ConversationTrack, message: Any, engine: WalkthroughEngine):
        remaining = track.data.get("stats") or []
        if not remaining:
            return self.finish

        key = remaining[0]
        if is_skip(message):
            remaining.pop(0)
            await engine.say(track, "Okay. You can set that later.")
            return "stat" if remaining else self.finish

        template = get_template(track.draft.get("template"))
        stat = template.stats[key]
        value = self._clean(track, message)
        if not value:
            return False

        track.draft.setdefault("stats", {})[key] = value
        if stat.calc:
            modifier = stat.calc(value)
            if modifier is None:
                track.draft["stats"].pop(key)
                raise StepError(f"{stat.name} should be a number.")
            await engine.say(track, f"Okay. {stat.name} is {value} which is {format_modifier(modifier)}")
        else:
            await engine.say(track, f"Okay. {stat.name} is {value}")

        remaining.pop(0)
        return "stat" if remaining else self.finish

    # ------------------------------------------------------------------
    # emergency_name / completion
    # ------------------------------------------------------------------

    async def process_emergency_name(self, track: ConversationTrack, message: Any, engine: WalkthroughEngine):
        if is_skip(message):
            raise StepError("Sorry, this is the one thing I can’t skip.")
        name = self._clean(track, message)
        await self._check_name(track, name)
        track.draft["name"] = name
        await engine.say(track, f"Nice to meet you, {name}!")
        return self.finish

    async def complete(self, track: ConversationTrack, engine: WalkthroughEngine):
        character = {**track.draft, "owner": str(track.user_id)}
        stored = await self.store.create_character(track.guild_id, character)
        await engine.say(
            track,
            f"All done! {stored['name']} is ready to play, and is now your current character.",
        )
