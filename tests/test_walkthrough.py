"""
Tests for tools/walkthrough.py — the generic guided-conversation engine.

Uses a three-step toy walkthrough and a zero pacing delay.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tools.errors import StepError
from tools.walkthrough import ABORT_WORD, Step, WalkthroughEngine


class NameTaken(Exception):
    pass


async def ask_name(track, message, engine):
    if not message.content.strip():
        return False
    track.draft["name"] = message.content.strip()
    return True


async def ask_color(track, message, engine):
    if message.content == "bad":
        raise StepError("That is not a color.")
    if message.content == "boom":
        raise RuntimeError("kaboom")
    track.draft["color"] = message.content
    return engine.step_count


async def rename(track, message, engine):
    track.draft["name"] = message.content
    return engine.step_count


def make_engine(saved, taken=(), timeout_seconds=60):
    async def save(track, engine):
        if track.draft.get("name") in taken:
            raise NameTaken(f"{track.draft['name']} is taken.")
        saved.append(dict(track.draft))

    steps = [
        Step("name", "Name?", ask_name, repeat="Another name?"),
        Step("color", "Color?", ask_color),
        Step("rename", "New name?", rename),
    ]
    return WalkthroughEngine(
        steps,
        on_complete=save,
        recovery_step="rename",
        recoverable=(NameTaken,),
        timeout_seconds=timeout_seconds,
        delay=0,
        apologies=["Oops."],
    )


def make_user(user_id=1):
    user = MagicMock()
    user.id = user_id
    user.send = AsyncMock()
    return user


def dm(user, content):
    message = MagicMock()
    message.author = user
    message.guild = None
    message.content = content
    return message


def sent(user):
    return [c.args[0] for c in user.send.await_args_list]


class TestConstruction:
    def test_needs_steps(self):
        with pytest.raises(ValueError):
            WalkthroughEngine([])

    def test_unknown_recovery_step(self):
        with pytest.raises(ValueError):
            WalkthroughEngine([Step("a", "A?", ask_name)], recovery_step="nope")


class TestFlow:
    """Happy path and step results."""

    def test_start_sends_intro_then_prompt(self):
        engine = make_engine([])
        user = make_user()

        async def run():
            await engine.start(user, intro="Hello!")
            assert sent(user) == ["Hello!", "Name?"]
            assert engine.is_active(1)

        asyncio.run(run())

    def test_complete_walkthrough(self):
        saved = []
        engine = make_engine(saved)
        user = make_user()

        async def run():
            await engine.start(user)
            assert await engine.handle_message(dm(user, "Alice")) is True
            assert sent(user)[-1] == "Color?"
            assert await engine.handle_message(dm(user, "red")) is True
            assert saved == [{"name": "Alice", "color": "red"}]
            assert not engine.is_active(1)

        asyncio.run(run())

    def test_falsy_result_asks_again(self):
        engine = make_engine([])
        user = make_user()

        async def run():
            await engine.start(user)
            await engine.handle_message(dm(user, "   "))
            assert engine.get_track(1).step_index == 0
            assert sent(user) == ["Name?", "Name?"]

        asyncio.run(run())

    def test_step_error_message_then_prompt(self):
        engine = make_engine([])
        user = make_user()

        async def run():
            await engine.start(user)
            await engine.handle_message(dm(user, "Alice"))
            await engine.handle_message(dm(user, "bad"))
            assert sent(user)[-2:] == ["That is not a color.", "Color?"]
            assert engine.get_track(1).step_index == 1

        asyncio.run(run())

    def test_unexpected_error_apologises_and_keeps_track(self):
        engine = make_engine([])
        user = make_user()

        async def run():
            await engine.start(user)
            await engine.handle_message(dm(user, "Alice"))
            await engine.handle_message(dm(user, "boom"))
            assert sent(user)[-2:] == ["Oops.", "Color?"]
            assert engine.is_active(1)

        asyncio.run(run())

    def test_repeat_prompt_on_reentry(self):
        engine = make_engine([])
        user = make_user()

        async def run():
            track = await engine.start(user)
            await engine.handle_message(dm(user, "Alice"))
            await engine.advance(track, "name")
            assert sent(user)[-1] == "Another name?"
            assert track.step_index == 0

        asyncio.run(run())


class TestTracks:
    """One track per user, ABORT, filtering and timeouts."""

    def test_new_walkthrough_replaces_old(self):
        engine = make_engine([])
        user = make_user()

        async def run():
            first = await engine.start(user)
            second = await engine.start(user)
            assert engine.active_count == 1
            assert engine.get_track(1) is second
            assert first is not second

        asyncio.run(run())

    def test_abort_cancels_track(self):
        engine = make_engine([])
        user = make_user()

        async def run():
            await engine.start(user)
            assert await engine.handle_message(dm(user, ABORT_WORD)) is True
            assert not engine.is_active(1)
            assert sent(user)[-1] == "Okay, I’ve cancelled that. Nothing was saved."

        asyncio.run(run())

    def test_abort_without_track_is_not_handled(self):
        engine = make_engine([])
        user = make_user()

        async def run():
            assert await engine.handle_message(dm(user, ABORT_WORD)) is False
            user.send.assert_not_awaited()

        asyncio.run(run())

    def test_guild_messages_ignored(self):
        engine = make_engine([])
        user = make_user()

        async def run():
            await engine.start(user)
            message = dm(user, "Alice")
            message.guild = MagicMock()
            assert await engine.handle_message(message) is False
            assert engine.get_track(1).step_index == 0

        asyncio.run(run())

    def test_messages_without_track_not_handled(self):
        engine = make_engine([])

        async def run():
            assert await engine.handle_message(dm(make_user(), "hello")) is False

        asyncio.run(run())

    def test_busy_track_drops_message(self):
        engine = make_engine([])
        user = make_user()

        async def run():
            track = await engine.start(user)
            track.ready = False
            assert await engine.handle_message(dm(user, "Alice")) is True
            assert "name" not in track.draft

        asyncio.run(run())

    def test_abort_during_step_saves_nothing(self):
        async def run():
            saved = []
            release = asyncio.Event()

            async def slow_color(track, message, engine):
                await release.wait()
                track.draft["color"] = message.content
                return engine.step_count

            engine = make_engine(saved)
            engine.steps[1] = Step("color", "Color?", slow_color)
            user = make_user()

            await engine.start(user)
            await engine.handle_message(dm(user, "Alice"))
            pending = asyncio.ensure_future(engine.handle_message(dm(user, "red")))
            await asyncio.sleep(0)

            assert await engine.handle_message(dm(user, ABORT_WORD)) is True
            release.set()
            await pending

            assert saved == []
            assert not engine.is_active(1)
            assert sent(user)[-1] == "Okay, I’ve cancelled that. Nothing was saved."

        asyncio.run(run())

    def test_restart_during_step_keeps_new_track(self):
        async def run():
            release = asyncio.Event()

            async def slow_name(track, message, engine):
                await release.wait()
                track.draft["name"] = message.content
                return True

            engine = make_engine([])
            engine.steps[0] = Step("name", "Name?", slow_name)
            user = make_user()

            await engine.start(user)
            pending = asyncio.ensure_future(engine.handle_message(dm(user, "Alice")))
            await asyncio.sleep(0)

            fresh = await engine.start(user)
            release.set()
            await pending

            assert engine.get_track(1) is fresh
            assert fresh.step_index == 0
            assert "Color?" not in sent(user)

        asyncio.run(run())

    def test_failed_start_leaves_no_track(self):
        engine = make_engine([])
        user = make_user()
        user.send.side_effect = RuntimeError("Cannot send messages to this user")

        async def run():
            with pytest.raises(RuntimeError):
                await engine.start(user, intro="Hello!")
            assert not engine.is_active(1)
            assert await engine.handle_message(dm(user, "hello there")) is False

        asyncio.run(run())

    def test_inactive_track_expires(self):
        engine = make_engine([], timeout_seconds=0.01)
        user = make_user()

        async def run():
            await engine.start(user)
            await asyncio.sleep(0.05)
            assert not engine.is_active(1)

        asyncio.run(run())


class TestRecovery:
    """A recoverable completion error routes to the recovery step, keeping the draft."""

    def test_conflict_jumps_to_recovery_step(self):
        saved = []
        engine = make_engine(saved, taken={"Alice"})
        user = make_user()

        async def run():
            await engine.start(user)
            await engine.handle_message(dm(user, "Alice"))
            await engine.handle_message(dm(user, "red"))

            track = engine.get_track(1)
            assert track is not None
            assert track.step_index == engine.index_of("rename")
            assert isinstance(track.data["conflict"], NameTaken)
            assert track.draft == {"name": "Alice", "color": "red"}
            assert sent(user)[-2:] == ["Alice is taken.", "New name?"]
            assert saved == []

            await engine.handle_message(dm(user, "Bob"))
            assert saved == [{"name": "Bob", "color": "red"}]
            assert not engine.is_active(1)

        asyncio.run(run())

    def test_unrecoverable_completion_error_discards(self):
        async def explode(track, engine):
            raise RuntimeError("disk full")

        engine = WalkthroughEngine([Step("name", "Name?", ask_name)], on_complete=explode, delay=0)
        user = make_user()

        async def run():
            await engine.start(user)
            await engine.handle_message(dm(user, "Alice"))
            assert not engine.is_active(1)
            assert "wrong" in sent(user)[-1]

        asyncio.run(run())
