"""
Text helpers shared by the dispatcher and feature modules.

Pure Python. No Discord imports.
"""

import difflib
import re
import unicodedata
from typing import Iterable, Optional, Tuple

_CURLY_QUOTES = str.maketrans({
    "‘": "'",
    "’": "'",
    "‚": "'",
    "‛": "'",
    "“": "\"",
    "”": "\"",
    "„": "\"",
    "‟": "\"",
})

_MENTION_RE = re.compile(r"<(@[!&]?|#)(\d+)>")
_MASS_MENTION_RE = re.compile(r"@(everyone|here)")


def normalize_quotes(text: Optional[str]) -> str:
    """Replace curly quotes with straight quotes."""
    return (text or "").translate(_CURLY_QUOTES)


def escape_regex(text: str) -> str:
    return re.escape(text)


def capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]


def string_normalize(text: str, remove_digits: bool = True) -> str:
    """Strip accents, lowercase, and drop everything but letters (and digits)."""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c)).lower()
    pattern = r"[^a-z]" if remove_digits else r"[^a-z0-9]"
    return re.sub(pattern, "", stripped)


def sanitize(text: str, guild=None) -> str:
    """Make user-entered text safe to echo back.

    Resolves user/role/channel mentions to plain names when a guild is
    available and defuses @everyone/@here.
    """
    text = (text or "").strip()

    def _replace(match):
        kind, ident = match.group(1), int(match.group(2))
        name = None
        if guild is not None:
            if kind.startswith("@&"):
                role = guild.get_role(ident)
                name = f"@{role.name}" if role else None
            elif kind == "#":
                channel = guild.get_channel(ident)
                name = f"#{channel.name}" if channel else None
            else:
                member = guild.get_member(ident)
                name = f"@{member.display_name}" if member else None
        return name or ""

    text = _MENTION_RE.sub(_replace, text)
    text = _MASS_MENTION_RE.sub(lambda m: "@\u200b" + m.group(1), text)
    return text.strip()


def similarity(a: str, b: str) -> float:
    """Case-insensitive similarity ratio between two strings, 0..1."""
    return difflib.SequenceMatcher(None, a.lower().strip(), b.lower().strip()).ratio()


def fuzzy_find(needle: str, haystack: Iterable[str], minimum: float = 0.0) -> Tuple[Optional[str], float]:
    """Best match for `needle` in `haystack` at or above `minimum` similarity.

    Returns (match, score), or (None, 0.0) when nothing qualifies.
    """
    best, best_score = None, 0.0
    for candidate in haystack:
        score = similarity(needle, candidate)
        if score > best_score:
            best, best_score = candidate, score
    if best is None or best_score < minimum:
        return None, 0.0
    return best, best_score
