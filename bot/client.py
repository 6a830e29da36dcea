"""
White Rabbit — Discord Bot Client

Process setup, gateway events, and the hand-off into the Dispatcher.
All commands, phrases and passive handlers live in feature modules
(bot/features/), registered through their `setup(dispatcher)`.
"""

import os
import asyncio
import logging
import discord
from dotenv import load_dotenv

from bot.dispatcher import Dispatcher, load_features
from tools.kv_store import MemoryKeyValueStore, MongoKeyValueStore
from tools.settings_store import SettingsStore

logger = logging.getLogger("WhiteRabbit")

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
load_dotenv()
DISCORD_TOKEN = os.getenv("DISCORD_BOT_TOKEN")
BOT_ENV = os.getenv("BOT_ENV", "production").lower()
DEV_MODE = BOT_ENV == "dev"
DEV_PREFIX = os.getenv("DEV_PREFIX", "dev") if DEV_MODE else ""
BOT_NICKNAME = os.getenv("BOT_NICKNAME", "White Rabbit")
REPLY_DELAY = float(os.getenv("REPLY_DELAY", "0.5"))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
if not os.path.exists("logs"):
    os.makedirs("logs")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.FileHandler("logs/whiterabbit.log", encoding="utf-8"),
        logging.StreamHandler(),
    ],
)

# ---------------------------------------------------------------------------
# Storage (async connect happens in on_ready)
# ---------------------------------------------------------------------------
kv_backend = MongoKeyValueStore()
settings_store = SettingsStore(kv_backend)

# ---------------------------------------------------------------------------
# Discord Client & Dispatcher
# ---------------------------------------------------------------------------
intents = discord.Intents.default()
intents.message_content = True
intents.members = True
client = discord.Client(intents=intents)

dispatcher = Dispatcher(
    client=client,
    store=settings_store,
    dev_prefix=DEV_PREFIX,
    reply_delay=REPLY_DELAY,
)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
@client.event
async def on_ready():
    logger.info(f"Logged in as {client.user.name} ({client.user.id})")
    logger.info(f"Mode: {'development' if DEV_MODE else 'production'}")

    # Connect MongoDB here; without it settings live in memory only
    if not kv_backend.is_connected:
        if await kv_backend.connect():
            logger.info("Settings store connected — MongoDB-backed settings active.")
        else:
            logger.warning("MongoDB unavailable — settings will not survive a restart.")
            settings_store.backend = MemoryKeyValueStore()

    prefix = dispatcher.decorate_prefix(dispatcher.default_prefix)
    await client.change_presence(activity=discord.Game(name=f"{prefix}help"))

    if not DEV_MODE:
        for guild in client.guilds:
            try:
                await guild.me.edit(nick=BOT_NICKNAME)
            except discord.HTTPException as e:
                logger.warning(f"Could not set nickname in {guild.name}: {e}")

    await dispatcher.dispatch_event("ready")
    print(f"White Rabbit online in {len(client.guilds)} server(s).")


@client.event
async def on_message(message):
    await dispatcher.handle_message(message)


@client.event
async def on_member_join(member):
    await dispatcher.dispatch_event("member_join", member)


@client.event
async def on_member_remove(member):
    await dispatcher.dispatch_event("member_remove", member)


@client.event
async def on_reaction_add(reaction, user):
    await dispatcher.dispatch_event("reaction_add", reaction, user)


@client.event
async def on_message_delete(message):
    await dispatcher.dispatch_event("message_delete", message)


# ---------------------------------------------------------------------------
# Feature Loading & Entry Point
# ---------------------------------------------------------------------------
async def main():
    """Async entry point — load features then start the client."""
    load_features(dispatcher)
    try:
        async with client:
            await client.start(DISCORD_TOKEN)
    finally:
        rss = dispatcher.features.get("rss")
        if rss:
            await rss.close()
        await kv_backend.close()


def run():
    """Synchronous entry point for scripts."""
    if not DISCORD_TOKEN:
        print("Error: DISCORD_BOT_TOKEN not found via os.getenv")
        return
    asyncio.run(main())


if __name__ == "__main__":
    run()
