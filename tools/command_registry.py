"""
Command Registry — Maps command names to handlers and builds the help listing.

Pure Python. No Discord imports.

Commands are registered once at startup by feature modules and are
immutable afterwards. Handlers are resolved at registration time: a
non-callable handler or a duplicate name is a startup error, never a
silent no-op at dispatch time.

Matching (per inbound message, first match wins, registration order):
    <@bot_id> name            mention form
    <prefix>name              followed by whitespace or end of text
Commands flagged `ignore_prefix` always match against the default
prefix, so meta commands stay reachable with a broken guild prefix.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger("CommandRegistry")

HELP_PAGE_LIMIT = 1500

# Invisible separator keeps Discord from collapsing the blank line between entries.
_ENTRY_SEPARATOR = "\n⁣\n"

Handler = Callable[[Any, Any], Awaitable[Any]]


@dataclass(frozen=True)
class HelpEntry:
    """One rendered line group of the help listing."""

    name: str
    args: Tuple[str, ...] = ()
    help_text: str = ""
    sort: Optional[int] = None
    admin_only: bool = False
    ignore_prefix: bool = False


@dataclass(frozen=True)
class Command:
    """Static registry entry."""

    name: str
    handler: Handler
    args: Tuple[str, ...] = ()
    help_text: str = ""
    admin_only: bool = False
    ignore_prefix: bool = False
    sort: Optional[int] = None
    help_shortcut: bool = False
    max_args: Optional[int] = None

    def help_entry(self) -> HelpEntry:
        return HelpEntry(
            name=self.name,
            args=self.args,
            help_text=self.help_text,
            sort=self.sort,
            admin_only=self.admin_only,
            ignore_prefix=self.ignore_prefix,
        )


@dataclass
class DispatchMatch:
    """Result of matching one message against one command."""

    command: Command
    matched_text: str
    remainder: str = ""


HelpGenerator = Callable[[bool], Iterable[HelpEntry]]


def sort_help_entries(entries: Iterable[HelpEntry]) -> List[HelpEntry]:
    """Weighted entries first (ascending), then the rest alphabetically."""
    return sorted(
        entries,
        key=lambda e: (e.sort is None, e.sort if e.sort is not None else 0, e.name.lower()),
    )


def render_help_entry(entry: HelpEntry, prefix: str, default_prefix: str) -> str:
    name = f"{default_prefix if entry.ignore_prefix else prefix}{entry.name}"
    line = f"• `{name}`"
    if entry.args:
        line += " " + " ".join(f"`{a}`" for a in entry.args)
    if entry.help_text:
        line += "\n\t" + entry.help_text.replace("{prefix}", prefix)
    return line + _ENTRY_SEPARATOR


def paginate(chunks: Iterable[str], limit: int = HELP_PAGE_LIMIT, header: str = "") -> List[str]:
    """Pack chunks into pages of at most `limit` characters.

    A chunk is never split; a single oversized chunk gets a page of its own.
    """
    pages: List[str] = []
    current = header
    for chunk in chunks:
        if current and len(current) + len(chunk) > limit:
            pages.append(current)
            current = ""
        current += chunk
    if current:
        pages.append(current)
    return pages


class CommandRegistry:
    """Ordered mapping of command name to Command."""

    def __init__(self):
        self._commands: Dict[str, Command] = {}
        self._help_generators: List[HelpGenerator] = []

    def __contains__(self, name: str) -> bool:
        return name in self._commands

    def __iter__(self):
        return iter(self._commands.values())

    def __len__(self) -> int:
        return len(self._commands)

    def get(self, name: str) -> Optional[Command]:
        return self._commands.get(name)

    def register(self, name: str, handler: Handler, **metadata) -> Command:
        """Register a command. Raises ValueError on bad or duplicate entries."""
        if not name or re.search(r"\s", name):
            raise ValueError(f"Invalid command name: {name!r}")
        if name in self._commands:
            raise ValueError(f"Command '{name}' is already registered")
        if not callable(handler):
            raise ValueError(f"Handler for command '{name}' is not callable")

        args = metadata.pop("args", ())
        command = Command(name=name, handler=handler, args=tuple(args), **metadata)
        self._commands[name] = command
        logger.debug(f"Registered command '{name}'")
        return command

    def add_help_generator(self, generator: HelpGenerator):
        """Let a feature contribute extra help entries: generator(is_admin) -> entries."""
        self._help_generators.append(generator)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    @staticmethod
    def _mention_pattern(bot_id: Any, name: str) -> re.Pattern:
        return re.compile(rf"^<@!?{re.escape(str(bot_id))}>\s*{re.escape(name)}(?:\s|$)", re.IGNORECASE)

    @staticmethod
    def _prefix_pattern(prefix: str, name: str) -> re.Pattern:
        return re.compile(rf"^{re.escape(prefix + name)}(?:\s|$)", re.IGNORECASE)

    def match_command(
        self,
        command: Command,
        text: str,
        prefix: str,
        default_prefix: str,
        bot_id: Any = None,
    ) -> Optional[DispatchMatch]:
        patterns = []
        if bot_id is not None:
            patterns.append(self._mention_pattern(bot_id, command.name))
        patterns.append(self._prefix_pattern(default_prefix if command.ignore_prefix else prefix, command.name))

        for pattern in patterns:
            match = pattern.match(text)
            if match:
                matched = match.group(0)
                return DispatchMatch(command=command, matched_text=matched, remainder=text[len(matched):])
        return None

    def resolve(
        self,
        text: str,
        prefix: str,
        default_prefix: Optional[str] = None,
        bot_id: Any = None,
    ) -> Optional[DispatchMatch]:
        """First command (in registration order) whose prefix or mention form matches."""
        default_prefix = prefix if default_prefix is None else default_prefix
        for command in self._commands.values():
            match = self.match_command(command, text, prefix, default_prefix, bot_id)
            if match:
                return match
        return None

    def resolve_help_shortcut(self, text: str, bot_id: Any) -> Optional[DispatchMatch]:
        """Bare `<@bot_id> help` addressed to the bot."""
        if bot_id is None:
            return None
        if not re.match(rf"^<@!?{re.escape(str(bot_id))}>\s*help\s*$", text.strip(), re.IGNORECASE):
            return None
        for command in self._commands.values():
            if command.help_shortcut:
                return DispatchMatch(command=command, matched_text=text.strip(), remainder="")
        return None

    # ------------------------------------------------------------------
    # Help
    # ------------------------------------------------------------------

    def help_entries(self, is_admin: bool = False) -> List[HelpEntry]:
        entries = [c.help_entry() for c in self._commands.values()]
        for generator in self._help_generators:
            entries.extend(generator(is_admin))
        entries = [e for e in entries if is_admin or not e.admin_only]
        return sort_help_entries(entries)

    def render_help(
        self,
        prefix: str,
        default_prefix: Optional[str] = None,
        is_admin: bool = False,
        header: str = "",
        limit: int = HELP_PAGE_LIMIT,
    ) -> List[str]:
        """Help listing split into pages of at most `limit` characters."""
        default_prefix = prefix if default_prefix is None else default_prefix
        chunks = [render_help_entry(e, prefix, default_prefix) for e in self.help_entries(is_admin)]
        return paginate(chunks, limit=limit, header=header)
