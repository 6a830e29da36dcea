"""
Dispatcher — Routes every inbound Discord event to feature handlers.

One Dispatcher instance per process holds all mutable routing state:
the command registry, phrase triggers, passive handlers ordered by
priority, event fan-out lists, and the per-guild audit flag. Feature
modules populate it at startup through their `setup(dispatcher)`.

Message pipeline (first branch that handles the message wins):
    1. ignore the bot's own messages
    2. resolve guild settings (cached)
    3. refresh the guild's log-everything flag
    4. `<@bot> help` shortcut
    5. registered commands, in registration order
    6. phrase triggers, in registration order
    7. passive handlers by ascending priority until one returns True

Command failures never escape: they are logged and turned into a
user-facing reply.
"""

import asyncio
import importlib
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from models.settings import DEFAULT_FAIL_MESSAGES, DEFAULT_PREFIX, is_enabled
from tools.command_registry import Command, CommandRegistry, DispatchMatch
from tools.errors import BadArgumentError, NotFoundError, UnauthorizedError
from tools.permissions import is_admin
from tools.settings_store import SettingsStore
from tools.text_utils import normalize_quotes
from tools.tokenizer import ParsedArgs, parse_string

logger = logging.getLogger("Dispatcher")
audit_logger = logging.getLogger("Audit")

# Feature modules, loaded in this order. Registration order is match order.
FEATURE_MODULES = [
    "bot.features.core",
    "bot.features.character",
    "bot.features.dice",
    "bot.features.responder",
    "bot.features.jabberwocky",
    "bot.features.moderation",
    "bot.features.welcome",
    "bot.features.log",
    "bot.features.vote",
    "bot.features.rss",
]

EVENTS = ("member_join", "member_remove", "reaction_add", "message_delete", "ready")

PassiveHandler = Callable[[Any], Awaitable[Any]]


@dataclass
class Phrase:
    """A static trigger bound directly to a handler, no prefix involved."""

    trigger: Union[str, re.Pattern]
    handler: Callable[[Any], Awaitable[Any]]
    name: str = ""

    def matches(self, text: str) -> bool:
        if isinstance(self.trigger, str):
            return self.trigger in text
        return self.trigger.search(text) is not None


@dataclass
class PassiveEntry:
    priority: int
    order: int
    name: str
    handler: PassiveHandler


class Dispatcher:
    """The message-dispatch and command-routing core."""

    def __init__(
        self,
        client: Any = None,
        store: Optional[SettingsStore] = None,
        default_prefix: str = DEFAULT_PREFIX,
        dev_prefix: Optional[str] = None,
        reply_delay: float = 0.5,
    ):
        self.client = client
        self.store = store
        self.default_prefix = default_prefix
        self.dev_prefix = dev_prefix or ""
        self.reply_delay = reply_delay

        self.registry = CommandRegistry()
        self.phrases: List[Phrase] = []
        self._passive: List[PassiveEntry] = []
        self._events: Dict[str, List[Callable[..., Awaitable[Any]]]] = {e: [] for e in EVENTS}

        # Feature instances by name, so features can reach each other (e.g. dice -> character).
        self.features: Dict[str, Any] = {}
        self.log_everything: Dict[Any, bool] = {}

    # ------------------------------------------------------------------
    # Identity & prefixes
    # ------------------------------------------------------------------

    @property
    def bot_user(self) -> Any:
        return getattr(self.client, "user", None) if self.client is not None else None

    @property
    def bot_id(self) -> Optional[int]:
        user = self.bot_user
        return getattr(user, "id", None) if user is not None else None

    def decorate_prefix(self, prefix: str) -> str:
        """Apply the development-mode marker, if any."""
        return f"{self.dev_prefix}{prefix}"

    def prefixes_for(self, settings: Dict[str, Any]) -> tuple:
        """(guild prefix, default prefix), both decorated."""
        guild_prefix = settings.get("prefix") or self.default_prefix
        return self.decorate_prefix(guild_prefix), self.decorate_prefix(self.default_prefix)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_command(self, name: str, handler: Callable[[ParsedArgs, Any], Awaitable[Any]], **metadata) -> Command:
        return self.registry.register(name, handler, **metadata)

    def add_phrase(self, trigger: Union[str, re.Pattern], handler: Callable[[Any], Awaitable[Any]], name: str = ""):
        if not callable(handler):
            raise ValueError(f"Phrase handler for {trigger!r} is not callable")
        self.phrases.append(Phrase(trigger=trigger, handler=handler, name=name or str(trigger)))

    def add_passive_handler(self, handler: PassiveHandler, priority: int = 100, name: str = ""):
        """Register a fallback handler. Lower priority runs earlier."""
        if not callable(handler):
            raise ValueError("Passive handler is not callable")
        entry = PassiveEntry(priority, len(self._passive), name or getattr(handler, "__name__", "handler"), handler)
        self._passive.append(entry)
        self._passive.sort(key=lambda e: (e.priority, e.order))

    @property
    def passive_handlers(self) -> List[PassiveEntry]:
        return list(self._passive)

    def add_event_handler(self, event: str, handler: Callable[..., Awaitable[Any]]):
        if event not in self._events:
            raise ValueError(f"Unknown event '{event}'")
        self._events[event].append(handler)

    # ------------------------------------------------------------------
    # Settings helpers
    # ------------------------------------------------------------------

    async def settings_for(self, message: Any) -> Dict[str, Any]:
        return await self.guild_settings(getattr(message, "guild", None))

    async def guild_settings(self, guild: Any) -> Dict[str, Any]:
        return await self.store.get_guild_settings(getattr(guild, "id", None))

    async def is_admin(self, message: Any, settings: Optional[Dict[str, Any]] = None) -> bool:
        if settings is None:
            settings = await self.settings_for(message)
        return is_admin(message, settings)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def pause(self):
        if self.reply_delay:
            await asyncio.sleep(self.reply_delay)

    async def reply(self, message: Any, content: Optional[str] = None, **kwargs) -> Any:
        """Send to the message's channel after the reply delay."""
        await self.pause()
        return await message.channel.send(content, **kwargs)

    async def send_dm(self, user: Any, content: Optional[str] = None, **kwargs) -> Any:
        await self.pause()
        return await user.send(content, **kwargs)

    async def fail(self, message: Any, settings: Optional[Dict[str, Any]] = None) -> Any:
        """The generic "I didn't understand" reply, picked from the guild's fail messages."""
        try:
            if settings is None:
                settings = await self.settings_for(message)
            choices = settings.get("fail_messages") or DEFAULT_FAIL_MESSAGES
            if isinstance(choices, str):
                choices = [choices]
            return await self.reply(message, random.choice(choices))
        except Exception as e:
            logger.error(f"Could not send fail reply: {e}", exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_message(self, message: Any) -> Optional[str]:
        """Run one message through the pipeline. Returns the branch that handled it."""
        author = getattr(message, "author", None)
        if author is None or (self.bot_id is not None and author.id == self.bot_id):
            return None

        guild = getattr(message, "guild", None)
        try:
            settings = await self.store.get_guild_settings(getattr(guild, "id", None))
        except Exception as e:
            logger.error(f"Could not load settings for guild {getattr(guild, 'id', None)}: {e}", exc_info=True)
            return None

        if guild is not None:
            self.log_everything[guild.id] = is_enabled(settings.get("log_everything"))
            if self.log_everything[guild.id]:
                audit_logger.info(
                    f"[{guild.name}#{getattr(message.channel, 'name', '?')}] {author}: {message.content}"
                )

        text = normalize_quotes(message.content)
        prefix, default_prefix = self.prefixes_for(settings)

        match = self.registry.resolve_help_shortcut(text, self.bot_id)
        if match:
            await self.invoke(match, message, settings)
            return "help"

        match = self.registry.resolve(text, prefix, default_prefix, self.bot_id)
        if match:
            await self.invoke(match, message, settings)
            return "command"

        for phrase in self.phrases:
            if phrase.matches(text):
                try:
                    await phrase.handler(message)
                except Exception as e:
                    logger.error(f"Phrase '{phrase.name}' failed: {e}", exc_info=True)
                return "phrase"

        for entry in list(self._passive):
            try:
                handled = await entry.handler(message)
            except Exception as e:
                logger.error(f"Passive handler '{entry.name}' failed: {e}", exc_info=True)
                continue
            if handled is True:
                return "passive"

        return None

    async def invoke(self, match: DispatchMatch, message: Any, settings: Dict[str, Any]) -> Any:
        """Run a matched command, containing every failure."""
        command = match.command
        if command.admin_only and not is_admin(message, settings):
            logger.info(f"Denied admin command '{command.name}' to {message.author}")
            return await self.fail(message, settings)

        args = parse_string(match.remainder, command.max_args)
        try:
            return await command.handler(args, message)
        except UnauthorizedError:
            logger.info(f"Unauthorized use of '{command.name}' by {message.author}")
            return await self.fail(message, settings)
        except BadArgumentError as e:
            return await self._safe_reply(message, str(e) or "I’m sorry, I don’t understand.")
        except NotFoundError as e:
            return await self._safe_reply(message, str(e) or "I’m sorry, I couldn’t find that.")
        except Exception as e:
            logger.error(f"Command '{command.name}' failed: {e}", exc_info=True)
            return await self.fail(message, settings)

    async def _safe_reply(self, message: Any, content: str) -> Any:
        try:
            return await self.reply(message, content)
        except Exception as e:
            logger.error(f"Could not send reply: {e}", exc_info=True)
            return None

    async def dispatch_event(self, event: str, *args) -> None:
        """Fan an event out to every registered handler, isolating failures."""
        for handler in self._events.get(event, []):
            try:
                await handler(*args)
            except Exception as e:
                logger.error(f"Handler for '{event}' failed: {e}", exc_info=True)


def load_features(dispatcher: Dispatcher, modules: Optional[List[str]] = None) -> Dispatcher:
    """Import each feature module and run its `setup(dispatcher)`, in order."""
    for module_name in modules if modules is not None else FEATURE_MODULES:
        module = importlib.import_module(module_name)
        module.setup(dispatcher)
        logger.debug(f"Loaded feature {module_name}")
    logger.info(f"Loaded {len(dispatcher.features)} feature(s), {len(dispatcher.registry)} command(s).")
    return dispatcher
