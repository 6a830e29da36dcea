"""
Tests for the smaller features — characters, vote, moderation, welcome and log.

Commands run through the fully loaded dispatcher (`bot` fixture); event
handlers are called directly on the feature objects.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from bot.features.log import CHUNK_SIZE, format_deleted
from bot.features.moderation import MAX_BEHEAD, ModerationFeature


def replies(message):
    return [c.args[0] for c in message.channel.send.await_args_list]


@pytest.fixture
def player(make_member):
    return make_member(user_id=7, name="carroll")


@pytest.fixture
def admin(make_member):
    return make_member(user_id=1, name="queen", administrator=True)


@pytest.fixture
def guild(make_guild, player, admin):
    return make_guild(members=[player, admin])


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

class TestCharacterCommands:
    def test_create_stat_and_roll(self, bot, make_message, player, guild):
        async def run():
            create = make_message("?character create Alice --type d&d5e", author=player, guild=guild)
            await bot.handle_message(create)
            assert replies(create) == [
                "Nice to meet you, Alice! I’ll keep track of your Dungeons & Dragons 5th Edition stats."
            ]

            stat = make_message("?character stat str 15", author=player, guild=guild)
            await bot.handle_message(stat)
            assert replies(stat) == ["Great! Alice’s Strength is now +2 (15)"]

            roll = make_message("?roll 1d1+str", author=player, guild=guild)
            await bot.handle_message(roll)
            assert "**3**" in replies(roll)[0]

        asyncio.run(run())

    def test_free_form_stats(self, bot, make_message, player, guild):
        async def run():
            await bot.handle_message(make_message("?character create Dodo", author=player, guild=guild))
            await bot.handle_message(make_message("?character stat luck 3", author=player, guild=guild))

            show = make_message("?character stat luck", author=player, guild=guild)
            await bot.handle_message(show)
            assert replies(show) == ["Dodo’s luck is currently 3"]

            forget = make_message("?character stat luck delete", author=player, guild=guild)
            await bot.handle_message(forget)
            assert replies(forget) == ["I’ve forgotten Dodo’s luck"]

        asyncio.run(run())

    def test_similar_name_rejected(self, bot, make_message, make_member, player, guild):
        other = make_member(user_id=8, name="hatter")
        guild.members.append(other)

        async def run():
            await bot.handle_message(make_message("?character create Alice", author=player, guild=guild))
            clash = make_message("?character create Alicee", author=other, guild=guild)
            await bot.handle_message(clash)
            assert replies(clash)[0].startswith("That’s very similar to")
            assert "\"Alice\"" in replies(clash)[0]

        asyncio.run(run())

    def test_stat_without_character(self, bot, make_message, player, guild):
        async def run():
            stat = make_message("?character stat str 15", author=player, guild=guild)
            await bot.handle_message(stat)
            assert replies(stat) == [
                "You’re not currently playing a character. Please create or select a character first."
            ]

        asyncio.run(run())

    def test_whois_and_playas(self, bot, make_message, player, guild):
        async def run():
            await bot.handle_message(make_message("?character create Alice", author=player, guild=guild))
            await bot.handle_message(make_message("?character create Bill", author=player, guild=guild))

            switch = make_message("?playas alice", author=player, guild=guild)
            await bot.handle_message(switch)
            assert replies(switch) == ["Ok. You’re currently Alice."]

            whois = make_message("?whois", author=player, guild=guild)
            await bot.handle_message(whois)
            assert replies(whois) == [
                "You are currently playing as **Alice**.\nOther characters played by you: Bill."
            ]

            stop = make_message("?playas", author=player, guild=guild)
            await bot.handle_message(stop)
            assert replies(stop) == ["Ok. You’re not currently playing as anyone."]

        asyncio.run(run())

    def test_whoplays(self, bot, make_message, admin, player, guild):
        async def run():
            await bot.handle_message(make_message("?character create Alice", author=player, guild=guild))
            ask = make_message("?whoplays alice", author=admin, guild=guild)
            await bot.handle_message(ask)
            assert replies(ask) == ["Alice is played by **Carroll**"]

        asyncio.run(run())

    def test_sheet_embed(self, bot, make_message, player, guild):
        async def run():
            await bot.handle_message(make_message("?character create Alice --type d&d5e", author=player, guild=guild))
            await bot.handle_message(make_message("?character info race Human", author=player, guild=guild))

            sheet = make_message("?character sheet", author=player, guild=guild)
            await bot.handle_message(sheet)
            embed = sheet.channel.send.await_args.kwargs["embed"]
            assert embed.title == "Alice"
            assert embed.footer.text == "A Dungeons & Dragons 5th Edition character - Played by Carroll"
            fields = {f.name: f.value for f in embed.fields}
            assert fields["Race"] == "Human"
            assert fields["STR"] == "Not Set"

        asyncio.run(run())

    def test_delete(self, bot, make_message, player, guild):
        async def run():
            await bot.handle_message(make_message("?character create Alice", author=player, guild=guild))
            delete = make_message("?character delete Alice", author=player, guild=guild)
            await bot.handle_message(delete)
            assert replies(delete) == ["Goodbye Alice! It was nice knowing you."]

            whois = make_message("?whois me", author=player, guild=guild)
            await bot.handle_message(whois)
            assert replies(whois) == ["You are not currently playing as anyone."]

        asyncio.run(run())


# ---------------------------------------------------------------------------
# Vote
# ---------------------------------------------------------------------------

def _reaction(emoji, message):
    reaction = MagicMock()
    reaction.emoji = emoji
    reaction.message = message
    reaction.remove = AsyncMock()
    return reaction


class TestVote:
    def test_poll_gets_reactions(self, bot, make_message, player, guild):
        message = make_message("?vote Is it tea time?", author=player, guild=guild)

        async def run():
            await bot.handle_message(message)
            assert replies(message) == ["**Carroll asks:** Is it tea time?"]
            poll = message.channel.send.return_value
            assert [c.args[0] for c in poll.add_reaction.await_args_list] == ["👍", "👎"]
            assert poll.id in bot.features["vote"].polls

        asyncio.run(run())

    def test_one_vote_per_user(self, bot, player):
        poll = MagicMock()
        poll.id = 1234
        up, down = _reaction("👍", poll), _reaction("👎", poll)
        poll.reactions = [up, down]
        feature = bot.features["vote"]
        feature.polls.append(poll.id)

        async def run():
            await feature.on_reaction_add(down, player)
            up.remove.assert_awaited_once_with(player)
            down.remove.assert_not_awaited()

        asyncio.run(run())

    def test_untracked_message_ignored(self, bot, player):
        message = MagicMock()
        message.id = 5678
        up, down = _reaction("👍", message), _reaction("👎", message)
        message.reactions = [up, down]

        async def run():
            await bot.features["vote"].on_reaction_add(down, player)
            up.remove.assert_not_awaited()

        asyncio.run(run())


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------

class TestBehead:
    def test_too_many(self, bot, make_message, admin, guild):
        message = make_message(f"?behead {MAX_BEHEAD + 1}", author=admin, guild=guild)

        async def run():
            await bot.handle_message(message)
            assert replies(message)[0].startswith("Oh my!")
            message.channel.purge.assert_not_called()

        asyncio.run(run())

    def test_purges_count_plus_command(self, bot, make_message, admin, guild):
        message = make_message("?behead 5", author=admin, guild=guild)
        message.channel.purge = AsyncMock(return_value=[MagicMock()] * 6)

        async def run():
            await bot.handle_message(message)
            message.channel.purge.assert_awaited_once_with(limit=6)

        asyncio.run(run())

    def test_players_cannot_behead(self, bot, make_message, player, guild):
        message = make_message("?behead 5", author=player, guild=guild)
        message.channel.purge = AsyncMock()

        async def run():
            await bot.handle_message(message)
            message.channel.purge.assert_not_awaited()

        asyncio.run(run())


class TestBegone:
    def test_matching_begone(self):
        settings = {"begones": [{"pattern": "spam.*bot", "ban": True}, {"pattern": "[", "ban": False}]}
        assert ModerationFeature.matching_begone(settings, "SpamTheBot")["ban"] is True
        assert ModerationFeature.matching_begone(settings, "alice") is None

    def test_add_and_delete(self, bot, store, make_message, admin, guild):
        async def run():
            add = make_message('?begone "spam.*bot" --ban', author=admin, guild=guild)
            await bot.handle_message(add)
            assert replies(add) == ["\"spam.*bot\" has been banished forever."]
            assert (await store.get_guild_settings(guild.id))["begones"] == [{"pattern": "spam.*bot", "ban": True}]

            again = make_message('?begone "spam.*bot"', author=admin, guild=guild)
            await bot.handle_message(again)
            assert replies(again) == ["\"spam.*bot\" is already banished."]

            delete = make_message('?begone "spam.*bot" delete', author=admin, guild=guild)
            await bot.handle_message(delete)
            assert replies(delete) == ["I’ve rescinded \"spam.*bot\"’s banishment"]
            assert (await store.get_guild_settings(guild.id))["begones"] == []

        asyncio.run(run())

    def test_join_kicks_matching_member(self, bot, store, make_member, guild):
        member = make_member(user_id=66, name="spambot3000")
        member.guild = guild
        member.kick = AsyncMock()
        member.ban = AsyncMock()

        async def run():
            await store.save_guild_settings(guild.id, {"begones": [{"pattern": "^spambot", "ban": False}]})
            assert await bot.features["moderation"].on_member_join(member) is True
            member.kick.assert_awaited_once()
            member.ban.assert_not_awaited()

        asyncio.run(run())


# ---------------------------------------------------------------------------
# Welcome
# ---------------------------------------------------------------------------

class TestWelcome:
    def test_roles_and_message(self, bot, store, make_member, make_guild, make_channel):
        lobby = make_channel(channel_id=77, name="lobby")
        guild = make_guild(channels=[lobby])
        guest = MagicMock()
        guest.name = "Guests"
        guild.roles = [guest]
        member = make_member(user_id=12, name="mouse")
        member.guild = guild
        member.add_roles = AsyncMock()

        async def run():
            await store.save_guild_settings(guild.id, {
                "default_roles": ["Guests", "Nobody"],
                "welcome_message": "Welcome to the party, {user}!",
                "welcome_channel": "lobby",
            })
            await bot.features["welcome"].on_member_join(member)
            assert member.add_roles.await_args.args == (guest,)
            lobby.send.assert_awaited_once_with("Welcome to the party, <@12>!")

        asyncio.run(run())

    def test_no_welcome_message(self, bot, make_member, make_guild, make_channel):
        lobby = make_channel(channel_id=77, name="lobby")
        guild = make_guild(channels=[lobby])
        guild.system_channel = lobby
        member = make_member(user_id=12, name="mouse")
        member.guild = guild
        member.add_roles = AsyncMock()

        async def run():
            await bot.features["welcome"].on_member_join(member)
            lobby.send.assert_not_awaited()
            member.add_roles.assert_not_awaited()

        asyncio.run(run())


# ---------------------------------------------------------------------------
# Log
# ---------------------------------------------------------------------------

class TestLog:
    def test_short_message_single_post(self, make_message, make_member, make_channel):
        message = make_message("off with their heads", author=make_member(name="queen"), channel=make_channel(42))
        posts = format_deleted(message)
        assert posts == ["**[δ] Channel:** <#42> — **queen** deleted:\noff with their heads"]

    def test_long_message_split(self, make_message):
        message = make_message("x" * (CHUNK_SIZE * 2 + 10))
        posts = format_deleted(message)
        assert len(posts) == 3
        assert posts[1] == "_ _\n" + "x" * CHUNK_SIZE
        assert posts[2] == "_ _\n" + "x" * 10

    def test_deleted_message_logged(self, bot, store, make_message, make_member, make_guild, make_channel):
        log = make_channel(channel_id=88, name="mod-log")
        guild = make_guild(channels=[log])
        message = make_message("I never said that", author=make_member(name="cat"), guild=guild)

        async def run():
            await store.save_guild_settings(guild.id, {"log_channel": "mod-log"})
            await bot.dispatch_event("message_delete", message)
            assert "I never said that" in log.send.await_args.args[0]

        asyncio.run(run())

    def test_member_left(self, bot, store, make_member, make_guild, make_channel):
        log = make_channel(channel_id=88, name="mod-log")
        guild = make_guild(channels=[log])
        member = make_member(user_id=13, name="dormouse")
        member.guild = guild

        async def run():
            await store.save_guild_settings(guild.id, {"log_channel": "#mod-log"})
            await bot.features["log"].on_member_remove(member)
            log.send.assert_awaited_once_with("**[←] dormouse** (Dormouse) has left the server.")

        asyncio.run(run())

    def test_no_log_channel(self, bot, make_message, make_guild):
        guild = make_guild()
        message = make_message("gone", guild=guild)

        async def run():
            await bot.features["log"].on_message_delete(message)

        asyncio.run(run())
