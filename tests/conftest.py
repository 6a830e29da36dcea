"""
Shared pytest fixtures for the White Rabbit test suite.

Discord objects are MagicMocks with just enough shape for the code under
test: ids, names, roles, permissions and AsyncMock `send` methods.
Storage is the in-memory key-value backend.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from bot.dispatcher import Dispatcher, load_features
from tools.kv_store import MemoryKeyValueStore
from tools.settings_store import SettingsStore

BOT_ID = 999
GUILD_ID = 100


# ---------------------------------------------------------------------------
# Discord object builders
# ---------------------------------------------------------------------------

def _role(name):
    role = MagicMock()
    role.name = name
    return role


def _member(user_id=1, name="alice", roles=(), administrator=False, display_name=None):
    member = MagicMock()
    member.id = user_id
    member.name = name
    member.nick = None
    member.display_name = display_name or name.capitalize()
    member.mention = f"<@{user_id}>"
    member.bot = False
    member.roles = [_role(r) for r in roles]
    member.guild_permissions.administrator = administrator
    member.send = AsyncMock()
    member.__str__.return_value = name
    return member


def _channel(channel_id=500, name="general"):
    channel = MagicMock()
    channel.id = channel_id
    channel.name = name
    sent = MagicMock()
    sent.id = channel_id * 10
    sent.add_reaction = AsyncMock()
    channel.send = AsyncMock(return_value=sent)
    return channel


def _guild(guild_id=GUILD_ID, owner_id=0, members=(), channels=()):
    guild = MagicMock()
    guild.id = guild_id
    guild.name = "Wonderland"
    guild.owner_id = owner_id
    guild.members = list(members)
    guild.text_channels = list(channels)
    guild.roles = []
    guild.system_channel = None
    by_id = {m.id: m for m in members}
    guild.get_member.side_effect = lambda i: by_id.get(i)
    channels_by_id = {c.id: c for c in channels}
    guild.get_channel.side_effect = lambda i: channels_by_id.get(i)
    return guild


def _message(content, author=None, guild=None, channel=None, attachments=None):
    message = MagicMock()
    message.content = content
    message.author = author or _member()
    message.guild = guild
    message.channel = channel or _channel()
    message.attachments = attachments or []
    return message


@pytest.fixture
def make_member():
    return _member


@pytest.fixture
def make_guild():
    return _guild


@pytest.fixture
def make_channel():
    return _channel


@pytest.fixture
def make_message():
    return _message


# ---------------------------------------------------------------------------
# Storage & dispatcher
# ---------------------------------------------------------------------------

@pytest.fixture
def backend():
    return MemoryKeyValueStore()


@pytest.fixture
def store(backend):
    return SettingsStore(backend)


@pytest.fixture
def mock_client():
    """MagicMock discord.Client with a bot user and no guilds."""
    client = MagicMock()
    client.user.id = BOT_ID
    client.guilds = []
    client.wait_until_ready = AsyncMock()
    return client


@pytest.fixture
def dispatcher(mock_client, store):
    """A bare Dispatcher with no features loaded and no reply delay."""
    return Dispatcher(client=mock_client, store=store, reply_delay=0)


@pytest.fixture
def bot(dispatcher):
    """A Dispatcher with every feature module loaded."""
    return load_features(dispatcher)
