from __future__ import annotations

import asyncio
import datetime as _dt
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import discord
import pytz
from discord.ext import commands

from bot_core.bootstrap import _log_secret_present
from bot_core.logging_setup import LoggingMixin
from service.config import Settings, get_settings

__all__ = ["StreamBot", "EXTENSIONS"]

EXTENSIONS: List[str] = ["cogs.stream_notifications"]


class StreamBot(LoggingMixin, commands.AutoShardedBot):
    """
    Stream Notification Bot:
     - AutoShardedBot mit konfigurierten shard_ids/shard_count
     - lädt die Stream-Cog als Extension
     - geordnetes Shutdown mit Timeouts
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True

        shard_kwargs = {}
        if self.settings.sharded:
            shard_kwargs = {"shard_ids": self.settings.shard_ids, "shard_count": self.settings.shard_count}

        super().__init__(
            command_prefix=self.settings.command_prefix,
            intents=intents,
            description="Stream Notifications - Go-Live Meldungen für Twitch, YouTube und Mixer",
            owner_id=self.settings.owner_id or None,
            case_insensitive=True,
            chunk_guilds_at_startup=False,
            max_messages=1000,
            **shard_kwargs,
        )

        self.root_dir = Path(__file__).resolve().parent.parent
        self.setup_logging(
            self.settings.log_level, shard_ids=self.settings.shard_ids if self.settings.sharded else ()
        )

        self.cog_status: Dict[str, str] = {}
        tz = pytz.timezone("Europe/Berlin")
        self.startup_time = _dt.datetime.now(tz=tz)

        try:
            self.per_cog_unload_timeout = float(os.getenv("PER_COG_UNLOAD_TIMEOUT", "5.0"))
        except ValueError:
            self.per_cog_unload_timeout = 5.0

    async def setup_hook(self):
        logging.info("Stream Bot setup starting...")

        secret_mode = (os.getenv("SECRET_LOG_MODE") or "off").lower()
        _log_secret_present("Twitch Client Credentials", ["TWITCH_CLIENT_ID", "TWITCH_CLIENT_SECRET"], mode=secret_mode)
        _log_secret_present("YouTube API Key", ["YOUTUBE_API_KEY"], mode=secret_mode)
        _log_secret_present("Discord Token", ["DISCORD_TOKEN"], mode="off")

        for ext in EXTENSIONS:
            await self.load_cog(ext)

        try:
            synced = await self.tree.sync()
            logging.info("Synced %d slash commands", len(synced))
        except Exception as e:
            logging.error("Failed to sync slash commands: %s", e)

        logging.info("Stream Bot setup completed")

    async def on_ready(self):
        logging.info("Bot logged in as %s (ID: %s)", self.user, self.user.id if self.user else "?")
        logging.info("Connected to %d guilds on shards %s/%s", len(self.guilds), self.shard_ids, self.shard_count)
        try:
            activity = discord.Activity(type=discord.ActivityType.watching, name="Streams | /streams")
            await self.change_presence(activity=activity)
        except Exception as exc:
            logging.exception("Konnte Presence nicht aktualisieren: %s", exc)

    # --------------------- Extensions ---------------------------------
    async def load_cog(self, name: str) -> bool:
        try:
            await self.load_extension(name)
            self.cog_status[name] = "loaded"
            logging.info("✅ Loaded cog: %s", name)
            return True
        except Exception as e:
            self.cog_status[name] = f"error: {str(e)[:100]}"
            logging.exception("❌ Failed to load cog %s", name)
            return False

    async def reload_cog(self, name: str) -> Tuple[bool, str]:
        try:
            await self.reload_extension(name)
        except commands.ExtensionNotLoaded:
            ok = await self.load_cog(name)
            return ok, (f"✅ Loaded {name} (was not loaded before)" if ok else f"❌ Failed to load {name}")
        except Exception as e:
            self.cog_status[name] = f"error: {str(e)[:100]}"
            logging.exception("Reload von %s fehlgeschlagen", name)
            return False, f"❌ Failed to reload {name}: {str(e)[:200]}"
        self.cog_status[name] = "loaded"
        logging.info("Reloaded %s", name)
        return True, f"✅ Successfully reloaded {name}"

    async def _unload_with_timeout(self, name: str) -> None:
        try:
            await asyncio.wait_for(self.unload_extension(name), timeout=self.per_cog_unload_timeout)
            logging.info("Unloaded extension: %s", name)
        except asyncio.TimeoutError:
            logging.error("Unload von %s nach %.1fs abgebrochen", name, self.per_cog_unload_timeout)
        except Exception as e:
            logging.error("Error unloading extension %s: %s", name, e)

    async def close(self):
        logging.info("Stream Bot shutting down...")

        for ext in [e for e in list(self.extensions.keys()) if e.startswith("cogs.")]:
            await self._unload_with_timeout(ext)

        try:
            timeout = float(os.getenv("DISCORD_CLOSE_TIMEOUT", "5"))
        except ValueError:
            timeout = 5.0
        try:
            await asyncio.wait_for(super().close(), timeout=timeout)
            logging.info("discord.Client.close() returned")
        except asyncio.TimeoutError:
            logging.error("discord.Client.close() timed out after %.1fs; continuing shutdown", timeout)
        except Exception as e:
            logging.error("Error in discord.Client.close(): %s", e)

        logging.info("Stream Bot shutdown complete")
