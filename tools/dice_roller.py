"""
Dice Roller — Pure Python dice parser and roller.

Handles several dice groups in one formula, each with optional modifiers:
    '1d20+5'           roll 1d20, add 5
    '2d6+3 1d4-1'      two groups, each with its own modifier
    '1d20 + str'       modifier taken from the roller's character stats
    'd20'              count defaults to 1

Stat-name modifiers are resolved by the caller (they need storage) and
passed in as a {name: value} mapping; unknown names count as 0.
"""

import random
import re
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from tools.errors import BadArgumentError

logger = logging.getLogger("DiceRoller")

MAX_DICE = 200
MAX_FACES = 10000

_GROUP_RE = re.compile(r"(?P<count>\d*)d(?P<faces>\d+)", re.IGNORECASE)
_MODIFIER_RE = re.compile(r"\s?(?P<sign>[+-])\s?(?P<value>[^\s+-]+)")


class DiceError(BadArgumentError):
    """The formula could not be parsed or exceeds the roller's limits."""
    pass


def parse_dice(formula: str) -> List[Dict[str, Any]]:
    """Split a formula into dice groups.

    Each group: {"count": int, "faces": int, "modifiers": [(sign, value), ...]}
    where value is the raw modifier text (a number or a stat name).
    """
    formula = (formula or "").strip()
    matches = list(_GROUP_RE.finditer(formula))
    if not matches:
        raise DiceError(f"Unable to parse the dice: {formula}")

    groups = []
    for i, match in enumerate(matches):
        count = int(match.group("count") or "1")
        faces = int(match.group("faces"))
        if count < 1 or faces < 1 or count > MAX_DICE or faces > MAX_FACES:
            raise DiceError(f"Unable to parse the dice: {match.group(0)}")

        end = matches[i + 1].start() if i + 1 < len(matches) else len(formula)
        tail = formula[match.end():end]
        modifiers = [(m.group("sign"), m.group("value")) for m in _MODIFIER_RE.finditer(tail)]
        groups.append({"count": count, "faces": faces, "modifiers": modifiers})
    return groups


def stat_names(groups: Iterable[Dict[str, Any]]) -> Set[str]:
    """Modifier names that are not plain numbers."""
    names = set()
    for group in groups:
        for _, value in group["modifiers"]:
            if not value.lstrip("-").isdigit():
                names.add(value.lower())
    return names


def _modifier_value(sign: str, value: str, stats: Dict[str, int]) -> int:
    if value.isdigit():
        number = int(value)
    else:
        number = stats.get(value.lower()) or 0
    return -number if sign == "-" else number


def roll_dice(
    groups: List[Dict[str, Any]],
    stats: Optional[Dict[str, int]] = None,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """Roll parsed groups.

    Returns:
        {
            "dice": [{"count", "faces", "results", "total", "modifier", "final_total"}],
            "total": int,            # sum of all dice, no modifiers
            "modifier_total": int,
            "final_total": int,      # never below 0
            "is_critical": bool,     # single die rolled its maximum
            "is_fumble": bool,       # single die rolled a 1
        }
    """
    rng = rng or random
    stats = stats or {}
    dice = []
    for group in groups:
        results = [rng.randint(1, group["faces"]) for _ in range(group["count"])]
        total = sum(results)
        modifier = sum(_modifier_value(sign, value, stats) for sign, value in group["modifiers"])
        dice.append({
            "count": group["count"],
            "faces": group["faces"],
            "results": results,
            "total": total,
            "modifier": modifier,
            "final_total": max(0, total + modifier),
        })

    total = sum(d["total"] for d in dice)
    modifier_total = sum(d["modifier"] for d in dice)
    single = dice[0] if len(dice) == 1 and dice[0]["count"] == 1 else None
    return {
        "dice": dice,
        "total": total,
        "modifier_total": modifier_total,
        "final_total": max(0, total + modifier_total),
        "is_critical": bool(single and single["faces"] > 1 and single["total"] == single["faces"]),
        "is_fumble": bool(single and single["faces"] > 1 and single["total"] == 1),
    }


def parse_and_roll(formula: str, stats: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    """Parse a formula and roll it in one go."""
    return roll_dice(parse_dice(formula), stats)


def _modifier_str(modifier: int) -> str:
    return f"+{modifier}" if modifier > 0 else f"-{abs(modifier)}"


def format_roll(result: Dict[str, Any]) -> str:
    """Human-readable roll summary.

    Example: 'Rolled 2d6: 4, 2 (with +3) = **9**'
    """
    dice = result["dice"]

    if result["is_critical"] or result["is_fumble"]:
        die = dice[0]
        if result["is_critical"]:
            text = f"Rolled 1d{die['faces']}: **{die['total']}**! CRITICAL HIT! :tada: :confetti_ball:"
        else:
            text = f"Rolled 1d{die['faces']}: **1** …critical failure :confounded:"
        if die["modifier"]:
            text += f"\n{die['total']} with {_modifier_str(die['modifier'])} = **{die['final_total']}**"
        return text

    lines = []
    for die in dice:
        line = f"Rolled {die['count']}d{die['faces']}: {', '.join(str(r) for r in die['results'])}"
        if die["modifier"]:
            line += f" (with {_modifier_str(die['modifier'])}) = **{die['final_total']}**"
        elif die["count"] > 1:
            line += f" = **{die['total']}**"
        lines.append(line)

    if len(dice) > 1:
        if result["modifier_total"]:
            lines.append(
                f"Final total: **{result['final_total']}** (**{result['total']}** without modifiers)"
            )
        else:
            lines.append(f"Final total: **{result['total']}**")

    return "\n".join(lines)
