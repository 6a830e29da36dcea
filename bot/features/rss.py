"""
RSS Feature — watch feeds and post new items to a channel, hourly.

Feeds live in the guild settings under `rss`:
    [{"channel": "<channel id>", "url": "...", "seen": ["<item id>", ...]}]
A feed's first check only records what is already there, so adding a
feed never floods the channel with its back catalogue.
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import aiohttp
import discord
from discord.ext import tasks

from bot.features.welcome import find_channel
from tools.errors import BadCommandError

logger = logging.getLogger("RssFeature")

ATOM_NS = "{http://www.w3.org/2005/Atom}"
MAX_SEEN = 50
FETCH_TIMEOUT = 30
POST_PAUSE = 1.0


def parse_feed(xml_text: str) -> Tuple[Optional[str], List[Dict[str, str]]]:
    """Parse RSS 2.0 or Atom. Returns (feed title, [{"id", "link", "title"}]), newest first as published."""
    root = ET.fromstring(xml_text)
    items: List[Dict[str, str]] = []

    channel = root.find("channel")
    if channel is not None:
        title = (channel.findtext("title") or "").strip() or None
        for item in channel.findall("item"):
            link = (item.findtext("link") or "").strip()
            ident = (item.findtext("guid") or "").strip() or link
            if ident:
                items.append({"id": ident, "link": link, "title": (item.findtext("title") or "").strip()})
        return title, items

    if root.tag == f"{ATOM_NS}feed":
        title = (root.findtext(f"{ATOM_NS}title") or "").strip() or None
        for entry in root.findall(f"{ATOM_NS}entry"):
            link_el = entry.find(f"{ATOM_NS}link[@rel='alternate']")
            if link_el is None:
                link_el = entry.find(f"{ATOM_NS}link")
            link = link_el.get("href", "").strip() if link_el is not None else ""
            ident = (entry.findtext(f"{ATOM_NS}id") or "").strip() or link
            if ident:
                items.append({"id": ident, "link": link, "title": (entry.findtext(f"{ATOM_NS}title") or "").strip()})
        return title, items

    raise ValueError(f"Unrecognised feed format: <{root.tag}>")


def valid_url(url: str) -> bool:
    parsed = urlparse(url or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class RssFeature:
    def __init__(self, dispatcher):
        self.dispatcher = dispatcher
        self._session: Optional[aiohttp.ClientSession] = None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def rssadd(self, args, message):
        if message.guild is None or len(args) < 2:
            raise BadCommandError("rssadd needs a channel and a URL")
        channel_name, url = args[0], args[1]
        if not valid_url(url):
            return await self.dispatcher.reply(message, "That URL did not seem to be valid.")

        channel = find_channel(message.guild, channel_name)
        if channel is None:
            return await self.dispatcher.reply(message, "I couldn’t find a channel with that name.")

        settings = await self.dispatcher.settings_for(message)
        feeds = list(settings.get("rss") or [])
        existing = next((f for f in feeds if f.get("url") == url), None)
        if existing:
            existing["channel"] = str(channel.id)
            await self.dispatcher.store.save_guild_settings(message.guild.id, {"rss": feeds})
            return await self.dispatcher.reply(
                message, f"I already found an RSS feed with that URL. I’ve set the channel to #{channel.name}"
            )

        feeds.append({"channel": str(channel.id), "url": url, "seen": None})
        await self.dispatcher.store.save_guild_settings(message.guild.id, {"rss": feeds})
        return await self.dispatcher.reply(
            message, f"Great. I’ll keep an eye on that feed, and post updates in #{channel.name}"
        )

    async def rsslist(self, args, message):
        settings = await self.dispatcher.settings_for(message)
        feeds = settings.get("rss") or []
        if not feeds:
            return await self.dispatcher.reply(message, "There are no RSS feeds configured on this server.")

        by_channel: Dict[str, List[str]] = {}
        for feed in feeds:
            by_channel.setdefault(feed.get("channel"), []).append(feed.get("url"))

        blocks = []
        for channel_id, urls in by_channel.items():
            channel = message.guild.get_channel(int(channel_id)) if channel_id else None
            heading = f"#{channel.name}" if channel else "(deleted channel)"
            listing = "".join(f" - {u}\n" for u in urls)
            blocks.append(f"``` {heading}\n{listing}```")
        return await self.dispatcher.reply(message, "\n".join(blocks))

    async def rssdelete(self, args, message):
        if len(args) < 1:
            raise BadCommandError("rssdelete needs a URL")
        settings = await self.dispatcher.settings_for(message)
        feeds = list(settings.get("rss") or [])
        if not feeds:
            return await self.dispatcher.reply(message, "There are no RSS feeds configured on this server.")

        remaining = [f for f in feeds if f.get("url") != args[0]]
        if len(remaining) == len(feeds):
            return await self.dispatcher.reply(message, "I couldn’t find a feed with that URL.")
        await self.dispatcher.store.save_guild_settings(message.guild.id, {"rss": remaining})
        return await self.dispatcher.reply(message, "Okay, I’ll stop monitoring that feed.")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def fetch(self, url: str) -> str:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        timeout = aiohttp.ClientTimeout(total=FETCH_TIMEOUT)
        async with self._session.get(url, timeout=timeout) as resp:
            resp.raise_for_status()
            return await resp.text()

    async def check_feed(self, feed: Dict[str, Any], channel: Any) -> bool:
        """Post unseen items of one feed. Returns True if the feed record changed."""
        try:
            title, items = parse_feed(await self.fetch(feed["url"]))
        except (aiohttp.ClientError, asyncio.TimeoutError, ET.ParseError, ValueError) as e:
            logger.warning(f"Error loading feed {feed.get('url')}: {e}")
            return False

        ids = [item["id"] for item in items]
        seen = feed.get("seen")
        if seen is None:
            feed["seen"] = ids[:MAX_SEEN]
            return True

        new_items = [item for item in items if item["id"] not in seen]
        if not new_items:
            return False

        source = title or urlparse(feed["url"]).hostname
        for item in reversed(new_items):
            try:
                await channel.send(f"New post from {source}!\n{item['link'] or item['title']}")
            except discord.HTTPException as e:
                logger.warning(f"Unable to send RSS item to #{getattr(channel, 'name', '?')}: {e}")
            await asyncio.sleep(POST_PAUSE)

        feed["seen"] = (ids + [i for i in seen if i not in ids])[:MAX_SEEN]
        return True

    async def check_guild(self, guild: Any):
        settings = await self.dispatcher.guild_settings(guild)
        feeds = [dict(f) for f in settings.get("rss") or []]
        changed = False
        for feed in feeds:
            channel = guild.get_channel(int(feed["channel"])) if feed.get("channel") else None
            if channel is None:
                continue
            changed = await self.check_feed(feed, channel) or changed
        if changed:
            await self.dispatcher.store.save_guild_settings(guild.id, {"rss": feeds})

    @tasks.loop(hours=1)
    async def poll_feeds(self):
        for guild in list(getattr(self.dispatcher.client, "guilds", [])):
            try:
                await self.check_guild(guild)
            except Exception as e:
                logger.error(f"RSS check failed for guild {guild.id}: {e}", exc_info=True)

    @poll_feeds.before_loop
    async def _before_poll(self):
        await self.dispatcher.client.wait_until_ready()

    async def on_ready(self):
        if not self.poll_feeds.is_running():
            self.poll_feeds.start()
            logger.info("RSS polling started.")

    async def close(self):
        self.poll_feeds.cancel()
        if self._session and not self._session.closed:
            await self._session.close()


def setup(dispatcher):
    feature = RssFeature(dispatcher)
    dispatcher.register_command(
        "rssadd", feature.rssadd, args=("channel", "url"),
        help_text="Monitor an RSS feed and post updates in a particular channel (updates hourly)",
        admin_only=True, sort=4000,
    )
    dispatcher.register_command(
        "rsslist", feature.rsslist,
        help_text="Lists monitored RSS feeds",
        admin_only=True, sort=4001,
    )
    dispatcher.register_command(
        "rssdelete", feature.rssdelete, args=("url",),
        help_text="Remove an RSS feed from the list of monitored feeds",
        admin_only=True, sort=4002,
    )
    dispatcher.add_event_handler("ready", feature.on_ready)
    dispatcher.features["rss"] = feature
    return feature
