"""
Unit tests for tools/dice_roller.py — Pure Python dice parser/roller.

No Discord mocks needed. A stub rng pins every die to its max or its min.
"""

import random
from unittest.mock import MagicMock

import pytest

from tools.dice_roller import (
    MAX_DICE,
    MAX_FACES,
    DiceError,
    format_roll,
    parse_and_roll,
    parse_dice,
    roll_dice,
    stat_names,
)
from tools.errors import BadArgumentError


def fixed_rng(high=True):
    rng = MagicMock()
    rng.randint.side_effect = (lambda a, b: b) if high else (lambda a, b: a)
    return rng


class TestParseDice:
    """Test the formula parser."""

    def test_simple(self):
        assert parse_dice("2d6+3") == [{"count": 2, "faces": 6, "modifiers": [("+", "3")]}]

    def test_implicit_count(self):
        """d20 without leading number should default to 1 die."""
        assert parse_dice("d20")[0]["count"] == 1

    def test_several_groups_keep_own_modifiers(self):
        groups = parse_dice("1d20+5 2d6-1")
        assert [(g["count"], g["faces"]) for g in groups] == [(1, 20), (2, 6)]
        assert groups[0]["modifiers"] == [("+", "5")]
        assert groups[1]["modifiers"] == [("-", "1")]

    def test_stat_modifier_with_spaces(self):
        groups = parse_dice("1d20 + str")
        assert groups[0]["modifiers"] == [("+", "str")]
        assert stat_names(groups) == {"str"}

    def test_several_modifiers(self):
        assert parse_dice("1d20+2-dex")[0]["modifiers"] == [("+", "2"), ("-", "dex")]

    @pytest.mark.parametrize("formula", [
        "hello",
        "",
        "0d6",
        "1d0",
        f"{MAX_DICE + 1}d6",
        f"1d{MAX_FACES + 1}",
    ])
    def test_rejected(self, formula):
        with pytest.raises(DiceError):
            parse_dice(formula)

    def test_limits_accepted(self):
        assert parse_dice(f"{MAX_DICE}d{MAX_FACES}")[0]["count"] == MAX_DICE

    def test_dice_error_is_bad_argument(self):
        assert issubclass(DiceError, BadArgumentError)


class TestRollDice:
    """Test rolling parsed groups."""

    def test_totals(self):
        result = roll_dice(parse_dice("2d6+3"), rng=random.Random(42))
        die = result["dice"][0]
        assert len(die["results"]) == 2
        assert all(1 <= r <= 6 for r in die["results"])
        assert die["total"] == sum(die["results"])
        assert die["final_total"] == die["total"] + 3
        assert result["final_total"] == result["total"] + result["modifier_total"]

    def test_stat_modifier(self):
        assert roll_dice(parse_dice("1d1+str"), {"str": 3})["final_total"] == 4

    def test_unknown_stat_counts_zero(self):
        assert roll_dice(parse_dice("1d1+dex"), {})["final_total"] == 1

    def test_negative_stat_modifier(self):
        assert roll_dice(parse_dice("1d1+2-str"), {"str": 1})["final_total"] == 2

    def test_never_below_zero(self):
        assert parse_and_roll("1d1-5")["final_total"] == 0

    def test_critical(self):
        result = roll_dice(parse_dice("1d20"), rng=fixed_rng(high=True))
        assert result["is_critical"] is True
        assert result["is_fumble"] is False

    def test_fumble(self):
        result = roll_dice(parse_dice("1d20"), rng=fixed_rng(high=False))
        assert result["is_fumble"] is True
        assert result["is_critical"] is False

    def test_several_dice_never_critical(self):
        result = roll_dice(parse_dice("2d20"), rng=fixed_rng(high=True))
        assert result["is_critical"] is False

    def test_one_sided_die_is_not_critical(self):
        result = parse_and_roll("1d1")
        assert result["is_critical"] is False
        assert result["is_fumble"] is False


class TestFormatRoll:
    def test_single_die(self):
        assert format_roll(parse_and_roll("1d1")) == "Rolled 1d1: 1"

    def test_several_dice(self):
        text = format_roll(roll_dice(parse_dice("3d6"), rng=fixed_rng()))
        assert text == "Rolled 3d6: 6, 6, 6 = **18**"

    def test_with_modifier(self):
        text = format_roll(roll_dice(parse_dice("2d4+1"), rng=fixed_rng()))
        assert text == "Rolled 2d4: 4, 4 (with +1) = **9**"

    def test_critical_hit_message(self):
        text = format_roll(roll_dice(parse_dice("1d20+2"), rng=fixed_rng()))
        assert "CRITICAL HIT" in text
        assert text.endswith("20 with +2 = **22**")

    def test_critical_failure_message(self):
        text = format_roll(roll_dice(parse_dice("1d20"), rng=fixed_rng(high=False)))
        assert "critical failure" in text

    def test_final_total_for_several_groups(self):
        text = format_roll(roll_dice(parse_dice("1d4+1 1d6"), rng=fixed_rng()))
        assert text.splitlines()[-1] == "Final total: **11** (**10** without modifiers)"

    def test_final_total_without_modifiers(self):
        text = format_roll(roll_dice(parse_dice("1d4 1d6"), rng=fixed_rng()))
        assert text.splitlines()[-1] == "Final total: **10**"
