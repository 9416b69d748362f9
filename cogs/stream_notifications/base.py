"""Lifecycle of the stream notification cog: wiring, start-up and graceful shutdown."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Dict, Optional

import aiosqlite
from discord.ext import commands

from service import db
from service.config import Settings, get_settings

from .cleanup import CleanupSweeper
from .constants import PLATFORM_MIXER, PLATFORM_TWITCH, PLATFORM_YOUTUBE, SCOPE_GUILD, SCOPE_USER
from .dispatcher import NotificationDispatcher
from .events import StreamEventQueue
from .logger import log
from .messaging import DiscordMessenger
from .providers import (
    MixerClient,
    MixerProvider,
    StreamProvider,
    TwitchHelixClient,
    TwitchProvider,
    TwitchWebhookProvider,
    YouTubeClient,
    YouTubeProvider,
)
from .sharding import FreeMessage, PushMessage, ShardBridge, TrackMessage, parse_peers
from .storage import StreamStore
from .subscriptions import SubscriptionService
from .webhooks import WebhookEndpoint


def _secret(value) -> str:
    return value.get_secret_value() if value is not None else ""


class StreamNotificationsBase(commands.Cog):
    """Handle shared initialisation, shutdown and utility helpers."""

    def __init__(self, bot: commands.Bot, *, settings: Optional[Settings] = None):
        super().__init__()
        self.bot = bot
        self.settings = settings or get_settings()
        self.queue = StreamEventQueue()
        self.conn: Optional[aiosqlite.Connection] = None
        self.store: Optional[StreamStore] = None
        self.providers: Dict[str, StreamProvider] = {}
        self.endpoint: Optional[WebhookEndpoint] = None
        self.bridge: Optional[ShardBridge] = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.sweeper: Optional[CleanupSweeper] = None
        self.subscriptions: Optional[SubscriptionService] = None

    @property
    def is_lead(self) -> bool:
        return self.bridge is None or self.bridge.is_lead

    # -------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------
    async def cog_load(self) -> None:
        cfg = self.settings
        self.conn = await db.connect(cfg.streams_db_path)
        self.store = StreamStore(self.conn)
        self.bridge = self._build_bridge()
        self.providers = self._build_providers()
        if not self.providers:
            log.error("Keine Streaming-Plattform konfiguriert; Benachrichtigungen inaktiv")

        self.dispatcher = NotificationDispatcher(
            self.store,
            DiscordMessenger(self.bot),
            self.providers,
            queue=self.queue,
            bridge=self.bridge,
        )
        self.subscriptions = SubscriptionService(self.store, self.providers, bridge=self.bridge)
        self.sweeper = CleanupSweeper(
            self.store,
            retention=timedelta(hours=cfg.retention_hours),
            interval_hours=cfg.sweep_interval_hours,
        )

        if self.bridge is not None:
            self.bridge.on(PushMessage.type, self._on_bridge_push)
            self.bridge.on(FreeMessage.type, self._on_bridge_free)
            self.bridge.on(TrackMessage.type, self._on_bridge_track)
            await self.bridge.start()

        if not self.is_lead:
            log.info("Follower-Shard: Polling/Webhooks laufen auf dem Lead")
            return

        await self.subscriptions.resync()
        if self.endpoint is not None:
            await self.endpoint.start()
        for provider in self.providers.values():
            await provider.start()
        await self.dispatcher.start()
        self.sweeper.start()
        log.info("Stream-Benachrichtigungen aktiv: %s", ", ".join(sorted(self.providers)) or "-")

    async def cog_unload(self) -> None:
        """Ensure background resources are torn down when the cog is removed."""
        if self.sweeper is not None and self.is_lead:
            try:
                self.sweeper.stop()
            except Exception:
                log.exception("Cleanup-Loop konnte nicht gestoppt werden")

        if self.dispatcher is not None and self.dispatcher.running:
            try:
                await self.dispatcher.stop()
            except Exception:
                log.exception("Dispatcher-Shutdown fehlgeschlagen")

        for provider in self.providers.values():
            if not provider.running:
                await provider.aclose()
                continue
            try:
                await provider.stop()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Provider %s konnte nicht gestoppt werden", provider.platform)

        # Follower haben den Endpunkt nie gestartet und dürfen die Leases des Leads nicht überschreiben
        if self.endpoint is not None and self.is_lead:
            try:
                await self.endpoint.stop()
            except Exception:
                log.exception("Webhook-Endpunkt konnte nicht gestoppt werden")

        if self.bridge is not None:
            try:
                await self.bridge.stop()
            except Exception:
                log.exception("Shard-Bridge konnte nicht gestoppt werden")

        if self.conn is not None:
            try:
                await self.conn.close()
            except Exception:
                log.exception("DB-Verbindung konnte nicht geschlossen werden")
            self.conn = None

    # -------------------------------------------------------
    # Wiring
    # -------------------------------------------------------
    def _build_bridge(self) -> Optional[ShardBridge]:
        cfg = self.settings
        if not cfg.sharded:
            return None
        return ShardBridge(
            shard_ids=cfg.shard_ids,
            shard_count=cfg.shard_count,
            peers=parse_peers(cfg.shard_peers),
            secret=_secret(cfg.bridge_secret),
            host=cfg.bridge_host,
            port=cfg.bridge_port,
        )

    def _build_providers(self) -> Dict[str, StreamProvider]:
        cfg = self.settings
        enabled = cfg.enabled_providers
        providers: Dict[str, StreamProvider] = {}

        if PLATFORM_TWITCH in enabled:
            client_secret = _secret(cfg.twitch_client_secret)
            if not cfg.twitch_client_id or not client_secret:
                log.error("TWITCH_CLIENT_ID/SECRET not configured; twitch disabled")
            else:
                api = TwitchHelixClient(cfg.twitch_client_id, client_secret)
                if cfg.twitch_use_webhooks:
                    self.endpoint = WebhookEndpoint(
                        domain=cfg.webhook_domain,
                        path=cfg.webhook_path,
                        host=cfg.webhook_host,
                        port=cfg.webhook_port,
                        secure=cfg.webhook_secure,
                        lease_seconds=cfg.webhook_lease_seconds,
                        store=self.store,
                    )
                    providers[PLATFORM_TWITCH] = TwitchWebhookProvider(self.queue, api, self.endpoint)
                else:
                    providers[PLATFORM_TWITCH] = TwitchProvider(self.queue, api, poll_interval=cfg.twitch_poll_seconds)

        if PLATFORM_YOUTUBE in enabled:
            key = _secret(cfg.youtube_api_key)
            if not key:
                log.error("YOUTUBE_API_KEY not configured; youtube disabled")
            else:
                providers[PLATFORM_YOUTUBE] = YouTubeProvider(
                    self.queue, YouTubeClient(key), poll_interval=cfg.youtube_poll_seconds
                )

        if PLATFORM_MIXER in enabled:
            providers[PLATFORM_MIXER] = MixerProvider(
                self.queue, MixerClient(cfg.mixer_client_id or ""), poll_interval=cfg.mixer_poll_seconds
            )

        return providers

    # -------------------------------------------------------
    # Bridge-Handler
    # -------------------------------------------------------
    async def _on_bridge_push(self, message: PushMessage) -> dict:
        assert self.dispatcher is not None
        ok = await self.dispatcher.deliver_safely(message.subscription, message.status)
        return {"delivered": ok}

    async def _on_bridge_free(self, message: FreeMessage) -> dict:
        assert self.subscriptions is not None
        return await self.subscriptions.handle_free(message)

    async def _on_bridge_track(self, message: TrackMessage) -> dict:
        assert self.subscriptions is not None
        return await self.subscriptions.handle_track(message)

    # -------------------------------------------------------
    # Helpers
    # -------------------------------------------------------
    @staticmethod
    def _scope_of(ctx: commands.Context):
        if ctx.guild is None:
            return SCOPE_USER, str(ctx.author.id)
        return SCOPE_GUILD, str(ctx.guild.id)
