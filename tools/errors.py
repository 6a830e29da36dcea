"""
Bot Error Types — Structured exception hierarchy for command handling.

Handlers raise these so the dispatcher and feature modules can tell a
polite "I don't understand" apart from a generic failure reply, and so the
walkthrough engine can recover from naming conflicts instead of aborting.
"""

from typing import Any, Optional


class BotError(Exception):
    """Base class for all bot errors.

    `result` optionally describes what was attempted (key, method, value)
    so the caller can report it back to the user.
    """

    def __init__(self, message: str = "", result: Optional[Any] = None):
        super().__init__(message)
        self.result = result


class BadArgumentError(BotError):
    """A config/command key is unrecognized. Reply politely, never fatal."""
    pass


class BadCommandError(BotError):
    """The operation is structurally invalid for its target (e.g. add on a string setting)."""
    pass


class NotFoundError(BotError):
    """The referenced item (list entry, user, character) does not exist."""
    pass


class UnauthorizedError(BotError):
    """Permission check failed. Never leak internal state to the caller."""
    pass


class ExistingCharacterError(BotError):
    """A character name is too similar to an existing, non-retired character."""

    def __init__(self, message: str = "", character: Optional[dict] = None):
        super().__init__(message, result=character)
        self.character = character or {}


class StepError(BotError):
    """A walkthrough step rejected an answer. The message is shown to the user verbatim."""
    pass
