"""
Walkthrough — Guided multi-step conversations held in direct messages.

Pure Python + asyncio. No Discord imports; users and messages are opaque
objects with `.id`, `.send()` and `.content`.

A walkthrough is an ordered list of Steps. Each step renders a question
(`open`, or `repeat` when re-entering a step that already completed once)
and processes the answer. `process` returns:
    True         advance to the next step
    "step_name"  jump to the named step
    int          jump to that index; an index >= len(steps) completes
    falsy        the answer was not accepted, ask again
or raises StepError, whose message is shown before asking again.

Each user has at most one track. Starting a new walkthrough replaces the
previous one. `ABORT` cancels immediately; a step still running on an
aborted or replaced track finishes without effect. A track that sees no
activity for `timeout_seconds` is dropped silently.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Type, Union

from tools.errors import StepError

logger = logging.getLogger("Walkthrough")

ABORT_WORD = "ABORT"
DEFAULT_TIMEOUT_SECONDS = 6 * 60 * 60

Prompt = Union[str, Callable[["ConversationTrack"], str]]
StepResult = Union[bool, str, int, None]


@dataclass
class Step:
    """One question in a walkthrough."""

    name: str
    open: Prompt
    process: Callable[["ConversationTrack", Any, "WalkthroughEngine"], Awaitable[StepResult]]
    repeat: Optional[Prompt] = None


@dataclass
class ConversationTrack:
    """Per-user walkthrough state."""

    user_id: int
    guild_id: Optional[int]
    user: Any  # discord.User, opaque to this module
    member: Any = None  # discord.Member in the originating guild
    guild: Any = None
    step_index: int = 0
    completed: Set[int] = field(default_factory=set)
    draft: Dict[str, Any] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)  # step-owned scratch fields
    ready: bool = True
    expires_at: float = 0.0
    timeout_task: Optional[asyncio.Task] = None


class WalkthroughEngine:
    """Drives tracks through an ordered list of steps.

    Usage:
        engine = WalkthroughEngine(steps, on_complete=save_character,
                                   recovery_step="emergency_name",
                                   recoverable=(ExistingCharacterError,))
        await engine.start(message.author, guild=message.guild)

        # As a passive handler for direct messages:
        handled = await engine.handle_message(message)
    """

    def __init__(
        self,
        steps: List[Step],
        on_complete: Optional[Callable[[ConversationTrack, "WalkthroughEngine"], Awaitable[Any]]] = None,
        recovery_step: Optional[str] = None,
        recoverable: Tuple[Type[BaseException], ...] = (),
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        delay: float = 0.5,
        apologies: Optional[List[str]] = None,
    ):
        if not steps:
            raise ValueError("A walkthrough needs at least one step")
        self.steps = steps
        self._index: Dict[str, int] = {step.name: i for i, step in enumerate(steps)}
        if recovery_step is not None and recovery_step not in self._index:
            raise ValueError(f"Unknown recovery step '{recovery_step}'")

        self.on_complete = on_complete
        self.recovery_step = recovery_step
        self.recoverable = recoverable
        self.timeout_seconds = timeout_seconds
        self.delay = delay
        self.apology = (apologies or ["Oh dear… something went wrong on my end."])[0]
        self._tracks: Dict[int, ConversationTrack] = {}

    # ------------------------------------------------------------------
    # Track bookkeeping
    # ------------------------------------------------------------------

    @property
    def step_count(self) -> int:
        return len(self.steps)

    def index_of(self, name: str) -> int:
        if name not in self._index:
            raise KeyError(f"No walkthrough step named '{name}'")
        return self._index[name]

    def get_track(self, user_id: int) -> Optional[ConversationTrack]:
        return self._tracks.get(user_id)

    def is_active(self, user_id: int) -> bool:
        return user_id in self._tracks

    @property
    def active_count(self) -> int:
        return len(self._tracks)

    def _is_current(self, track: ConversationTrack) -> bool:
        return self._tracks.get(track.user_id) is track

    def _discard(self, track: ConversationTrack):
        if track.timeout_task and not track.timeout_task.done():
            track.timeout_task.cancel()
        track.timeout_task = None
        if self._tracks.get(track.user_id) is track:
            del self._tracks[track.user_id]

    def _touch(self, track: ConversationTrack):
        """Restart the inactivity timer."""
        if track.timeout_task and not track.timeout_task.done():
            track.timeout_task.cancel()
        track.expires_at = time.time() + self.timeout_seconds
        track.timeout_task = asyncio.create_task(self._expire(track))

    async def _expire(self, track: ConversationTrack):
        try:
            await asyncio.sleep(self.timeout_seconds)
        except asyncio.CancelledError:
            return
        if self._tracks.get(track.user_id) is track:
            del self._tracks[track.user_id]
            logger.info(f"Walkthrough for user {track.user_id} timed out")

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def say(self, track: ConversationTrack, text: str):
        """Send a paced direct message to the track's user."""
        if self.delay:
            await asyncio.sleep(self.delay)
        await track.user.send(text)

    def _prompt_for(self, track: ConversationTrack) -> str:
        step = self.steps[track.step_index]
        prompt = step.open
        if track.step_index in track.completed and step.repeat is not None:
            prompt = step.repeat
        return prompt(track) if callable(prompt) else prompt

    async def _present(self, track: ConversationTrack):
        await self.say(track, self._prompt_for(track))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(
        self,
        user: Any,
        guild: Any = None,
        member: Any = None,
        draft: Optional[Dict[str, Any]] = None,
        intro: Optional[str] = None,
    ) -> ConversationTrack:
        """Begin a walkthrough for `user`, replacing any track they already have."""
        previous = self._tracks.get(user.id)
        if previous is not None:
            logger.info(f"Replacing active walkthrough for user {user.id}")
            self._discard(previous)

        track = ConversationTrack(
            user_id=user.id,
            guild_id=getattr(guild, "id", None),
            user=user,
            member=member,
            guild=guild,
            draft=dict(draft or {}),
        )
        self._tracks[user.id] = track
        self._touch(track)

        track.ready = False
        try:
            if intro:
                await self.say(track, intro)
            await self._present(track)
        except Exception:
            self._discard(track)
            raise
        finally:
            track.ready = True
        return track

    async def abort(self, user_id: int, notify: bool = True) -> bool:
        """Cancel a user's track. Returns False when there was none."""
        track = self._tracks.get(user_id)
        if track is None:
            return False
        self._discard(track)
        logger.info(f"Walkthrough aborted by user {user_id}")
        if notify:
            await track.user.send("Okay, I’ve cancelled that. Nothing was saved.")
        return True

    async def handle_message(self, message: Any) -> bool:
        """Passive handler. Returns True when the message belonged to a walkthrough."""
        if getattr(message, "guild", None) is not None:
            return False

        user_id = message.author.id
        content = (message.content or "").strip()

        if content == ABORT_WORD:
            return await self.abort(user_id)

        track = self._tracks.get(user_id)
        if track is None:
            return False

        if not track.ready:
            logger.debug(f"Dropping message from user {user_id}: step in progress")
            return True

        track.ready = False
        self._touch(track)
        try:
            await self._run_step(track, message)
        finally:
            track.ready = True
        return True

    async def _run_step(self, track: ConversationTrack, message: Any):
        step = self.steps[track.step_index]
        try:
            result = await step.process(track, message, self)
        except StepError as e:
            if not self._is_current(track):
                return
            await self.say(track, str(e))
            await self._present(track)
            return
        except Exception as e:
            logger.error(f"Walkthrough step '{step.name}' failed for user {track.user_id}: {e}", exc_info=True)
            if not self._is_current(track):
                return
            await self.say(track, self.apology)
            await self._present(track)
            return

        # Aborted or replaced while the step was running.
        if not self._is_current(track):
            return
        await self.advance(track, result)

    async def advance(self, track: ConversationTrack, result: StepResult):
        """Move the track according to a step result, then prompt or complete."""
        if result is True:
            next_index = track.step_index + 1
        elif isinstance(result, str) and result:
            next_index = self.index_of(result)
        elif isinstance(result, int) and not isinstance(result, bool):
            next_index = result
        else:
            await self._present(track)
            return

        track.completed.add(track.step_index)
        if next_index >= self.step_count:
            await self._complete(track)
            return

        track.step_index = max(next_index, 0)
        await self._present(track)

    async def _complete(self, track: ConversationTrack):
        if not self._is_current(track):
            return
        if self.on_complete is None:
            self._discard(track)
            return

        try:
            await self.on_complete(track, self)
        except self.recoverable as e:
            if self.recovery_step is None:
                raise
            logger.info(f"Walkthrough for user {track.user_id} needs recovery: {e}")
            track.data["conflict"] = e
            track.step_index = self.index_of(self.recovery_step)
            if str(e):
                await self.say(track, str(e))
            await self._present(track)
            return
        except Exception as e:
            logger.error(f"Walkthrough completion failed for user {track.user_id}: {e}", exc_info=True)
            self._discard(track)
            await self.say(track, self.apology)
            return

        self._discard(track)
