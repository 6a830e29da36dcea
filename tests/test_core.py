"""
Tests for bot/features/core.py — the `cfg` argument parser and typed setting editor.
"""

import pytest

from bot.features.core import edit_setting, parse_cfg
from tools.errors import BadArgumentError, BadCommandError, NotFoundError


class TestParseCfg:
    @pytest.mark.parametrize("raw, expected", [
        ("prefix !", ("prefix", "set", "!")),
        ("prefix", ("prefix", "show", None)),
        ("PREFIX", ("prefix", "show", None)),
        ("admin_group add Moderators", ("admin_group", "add", "Moderators")),
        ("admin_group list", ("admin_group", "list", None)),
        ("prefix reset", ("prefix", "reset", None)),
        ("prefix settle", ("prefix", "set", "settle")),
        ("welcome_message set Hello {user}, welcome!", ("welcome_message", "set", "Hello {user}, welcome!")),
    ])
    def test_parse(self, raw, expected):
        assert parse_cfg(raw) == expected

    def test_unparseable(self):
        with pytest.raises(BadCommandError):
            parse_cfg("")


class TestEditSetting:
    def test_unknown_key(self):
        with pytest.raises(BadArgumentError) as exc:
            edit_setting({}, "bogus", "set", "x")
        assert exc.value.result["key"] == "bogus"

    def test_set_string(self):
        result = edit_setting({"prefix": "?"}, "prefix", "set", "!")
        assert result == {"key": "prefix", "method": "set", "value": "!", "modified": True}

    def test_set_list_replaces(self):
        result = edit_setting({"admin_group": ["A", "B"]}, "admin_group", "set", "C")
        assert result["value"] == ["C"]

    def test_add_to_list(self):
        result = edit_setting({"admin_group": ["Mods"]}, "admin_group", "add", "Queens")
        assert result["value"] == ["Mods", "Queens"]

    def test_scalar_upgraded_to_list(self):
        result = edit_setting({"admin_group": "Mods"}, "admin_group", "add", "Queens")
        assert result["value"] == ["Mods", "Queens"]

    def test_add_to_string_rejected(self):
        with pytest.raises(BadCommandError):
            edit_setting({}, "prefix", "add", "!")

    def test_remove_from_list(self):
        result = edit_setting({"admin_group": ["Mods", "Queens"]}, "admin_group", "remove", "Mods")
        assert result["value"] == ["Queens"]

    def test_remove_missing_entry(self):
        with pytest.raises(NotFoundError):
            edit_setting({"admin_group": ["Mods"]}, "admin_group", "remove", "Queens")

    def test_reset_to_default(self):
        assert edit_setting({"prefix": "!"}, "prefix", "reset", None)["value"] == "?"
        assert edit_setting({"admin_group": ["Mods"]}, "admin_group", "reset", None)["value"] is None

    def test_show_is_not_a_modification(self):
        result = edit_setting({"admin_group": ["Mods"]}, "admin_group", "show", None)
        assert result["modified"] is False
        assert result["value"] == ["Mods"]

    def test_show_falls_back_to_default(self):
        assert edit_setting({}, "log_everything", "show", None)["value"] == "off"

    def test_set_without_value(self):
        with pytest.raises(BadCommandError):
            edit_setting({}, "prefix", "set", None)
