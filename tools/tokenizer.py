"""
Tokenizer — Splits a raw command line into arguments and flags.

Pure Python. No Discord imports.

Whitespace separates tokens unless inside matching quotes. A backslash
escapes the next quote, whitespace or backslash; any other escaped
character keeps its backslash. Malformed quoting never raises: an
unterminated quote simply runs to the end of the input.

Flag contract (applies to every command):
    --key=value     flags["key"] = "value"
    --key value     flags["key"] = "value"  (next token is not a flag)
    --key           flags["key"] = True     (followed by a flag or nothing)
    --              ends flag parsing; everything after is positional
Single-dash tokens are positional, so "-2" stays a number.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

QUOTES = ("\"", "'")

_FLAG_WITH_VALUE_RE = re.compile(r"^--([^=\s]+)=(.*)$", re.DOTALL)
_FLAG_RE = re.compile(r"^--(\S+)$")


@dataclass
class ParsedArgs:
    """Arguments handed to every command handler."""

    raw: str
    positional: List[str] = field(default_factory=list)
    flags: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.positional)

    def __getitem__(self, index):
        return self.positional[index]

    def get(self, index: int, default: Optional[str] = None) -> Optional[str]:
        """Positional argument at `index`, or `default` if missing."""
        if 0 <= index < len(self.positional):
            return self.positional[index]
        return default


def tokenize_string(arg_string: Optional[str], max_args: Optional[int] = None) -> List[str]:
    """Split `arg_string` into tokens.

    If `max_args` is given, at most that many tokens are produced: once
    `max_args - 1` tokens exist, the trimmed remainder of the input becomes
    the final token verbatim.

        tokenize_string('a "b c" d')      -> ['a', 'b c', 'd']
        tokenize_string('a\\ b c')        -> ['a b', 'c']
        tokenize_string('a b c d', 2)     -> ['a', 'b c d']
    """
    if not arg_string or not arg_string.strip():
        return []

    text = arg_string.strip()
    if max_args is not None and max_args <= 1:
        return [text]

    quote = None
    escaped = False
    arg = ""
    args: List[str] = []

    for i, c in enumerate(text):
        if not escaped and quote is None and arg and (c.isspace() or c in QUOTES):
            args.append(arg)
            arg = ""

            if max_args is not None and len(args) == max_args - 1:
                rest = text[i:].strip()
                if rest:
                    args.append(rest)
                return args

        if escaped:
            if c == "\\" or c in QUOTES or c.isspace():
                arg += c
            else:
                arg += "\\" + c
            escaped = False
        elif c == "\\":
            escaped = True
        elif c == quote:
            quote = None
        elif c in QUOTES and quote is None:
            quote = c
        elif not c.isspace() or quote:
            arg += c

    if escaped:
        arg += "\\"
    if arg:
        args.append(arg)

    return args


def extract_flags(tokens: List[str]) -> ParsedArgs:
    """Lift `--flag` tokens out of a token list. `raw` is left empty."""
    result = ParsedArgs(raw="")
    pending: Optional[str] = None
    flags_done = False

    for token in tokens:
        if flags_done:
            result.positional.append(token)
            continue

        if token == "--":
            pending = None
            flags_done = True
            continue

        match = _FLAG_WITH_VALUE_RE.match(token)
        if match:
            result.flags[match.group(1)] = match.group(2)
            pending = None
            continue

        match = _FLAG_RE.match(token)
        if match:
            result.flags[match.group(1)] = True
            pending = match.group(1)
            continue

        if pending is not None:
            result.flags[pending] = token
            pending = None
        else:
            result.positional.append(token)

    return result


def parse_string(arg_string: Optional[str], max_args: Optional[int] = None) -> ParsedArgs:
    """Tokenize then extract flags. Flags are always extracted after tokenizing."""
    parsed = extract_flags(tokenize_string(arg_string, max_args))
    parsed.raw = arg_string or ""
    return parsed
