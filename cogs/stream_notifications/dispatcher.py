"""Turns stream status events into Discord messages, one live message per subscription."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional, Tuple

from .constants import MATURE_BANNER, MATURE_IGNORE
from .embeds import build_content, build_embed
from .errors import AlreadyRunning, DeliveryFailed, NotRunning
from .events import StreamEventQueue
from .logger import log
from .models import (
    STATE_OFFLINE,
    STATE_ONLINE,
    STATE_UPDATED,
    NotificationRecord,
    StreamStatus,
    SubscriberSettings,
    Subscription,
    utcnow,
)
from .providers.base import StreamProvider
from .sharding import ShardBridge
from .storage import StreamStore


class NotificationDispatcher:
    """
    Consumer of the event queue.

    * ``online``  -> send + create record (existing record: handled as update)
    * ``updated`` -> edit in place; missing record or stale message: send fresh
    * ``offline`` -> edit to the closing rendering, drop the record

    Subscribers of one event are processed sequentially; a failure for one
    subscriber is logged and counted, the others still get their message.
    """

    def __init__(
        self,
        store: StreamStore,
        messenger,
        providers: Mapping[str, StreamProvider],
        *,
        queue: Optional[StreamEventQueue] = None,
        bridge: Optional[ShardBridge] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._messenger = messenger
        self._providers = providers
        self._queue = queue
        self._bridge = bridge
        self._clock = clock
        self._settings: Dict[Tuple[str, str], SubscriberSettings] = {}
        self._task: Optional[asyncio.Task] = None
        self.failures = 0
        self.delivered = 0

    # -------------------------------------------------------
    # Settings-Cache (kein TTL, nur explizite Invalidierung)
    # -------------------------------------------------------
    async def settings_for(self, scope: str, subscriber_id: str) -> SubscriberSettings:
        key = (scope, subscriber_id)
        cached = self._settings.get(key)
        if cached is None:
            cached = await self._store.get_settings(scope, subscriber_id)
            self._settings[key] = cached
        return cached

    def invalidate_settings(self, scope: str, subscriber_id: str) -> None:
        self._settings.pop((scope, subscriber_id), None)

    # -------------------------------------------------------
    # Consumer-Task
    # -------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._queue is None:
            raise NotRunning("dispatcher has no event queue")
        if self.running:
            raise AlreadyRunning("dispatcher already running")
        self._task = asyncio.create_task(self._run(), name="stream-dispatcher")

    async def stop(self) -> None:
        if self._task is None:
            raise NotRunning("dispatcher not running")
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            status = await self._queue.get()
            try:
                await self.handle(status)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Event %s %s:%s konnte nicht verarbeitet werden", status.state, status.platform, status.external_id)
            finally:
                self._queue.task_done()

    # -------------------------------------------------------
    # Verarbeitung
    # -------------------------------------------------------
    async def handle(self, status: StreamStatus) -> None:
        await self._refresh_display_name(status)
        subs = await self._store.subscriptions_for_streamer(status.platform, status.external_id)
        if not subs:
            log.debug("Keine Abonnenten für %s:%s", status.platform, status.external_id)
            return
        for sub in subs:
            if sub.is_guild and self._bridge is not None and not self._messenger.has_guild(sub.subscriber_id):
                # Guild hängt an einem anderen Shard
                if not await self._bridge.forward(sub, status):
                    self.failures += 1
                continue
            await self.deliver_safely(sub, status)

    async def deliver_safely(self, sub: Subscription, status: StreamStatus) -> bool:
        try:
            await self.deliver(sub, status)
        except DeliveryFailed as exc:
            self.failures += 1
            log.warning(
                "Zustellung an %s:%s für %s:%s fehlgeschlagen: %s",
                sub.subscriber_scope, sub.subscriber_id, status.platform, status.external_id, exc,
            )
            return False
        except Exception:
            self.failures += 1
            log.exception("Unerwarteter Fehler bei Zustellung an %s:%s", sub.subscriber_scope, sub.subscriber_id)
            return False
        return True

    async def deliver(self, sub: Subscription, status: StreamStatus) -> None:
        settings = await self.settings_for(sub.subscriber_scope, sub.subscriber_id)
        if status.state == STATE_ONLINE:
            await self._online(sub, settings, status)
        elif status.state == STATE_UPDATED:
            await self._updated(sub, settings, status)
        elif status.state == STATE_OFFLINE:
            await self._offline(sub, settings, status)

    async def _record_for(self, sub: Subscription) -> Optional[NotificationRecord]:
        return await self._store.get_notification(sub.subscriber_scope, sub.subscriber_id, sub.platform, sub.external_id)

    async def _online(self, sub: Subscription, settings: SubscriberSettings, status: StreamStatus) -> None:
        if await self._record_for(sub) is not None:
            # nie ein zweiter Record für dasselbe Tripel
            await self._updated(sub, settings, status)
            return
        await self._send_fresh(sub, settings, status)

    async def _updated(self, sub: Subscription, settings: SubscriberSettings, status: StreamStatus) -> None:
        record = await self._record_for(sub)
        if record is None:
            await self._send_fresh(sub, settings, status)
            return

        content, embed = self._render(sub, settings, status)
        try:
            await self._messenger.edit_message(record.channel_id, record.message_id, content, embed)
        except DeliveryFailed as exc:
            if not exc.stale:
                raise
            log.info("Nachricht %s ist weg, sende neu an %s:%s", record.message_id, sub.subscriber_scope, sub.subscriber_id)
            await self._store.delete_notification(*record.key)
            await self._send_fresh(sub, settings, status)
            return

        record.stream_id = status.stream_id
        record.sent_at = self._clock()
        record.payload = status.payload.to_dict()
        await self._store.upsert_notification(record)
        self.delivered += 1

    async def _offline(self, sub: Subscription, settings: SubscriberSettings, status: StreamStatus) -> None:
        record = await self._record_for(sub)
        if record is None:
            return
        content, embed = self._render(sub, settings, status)
        try:
            await self._messenger.edit_message(record.channel_id, record.message_id, content, embed)
        except DeliveryFailed as exc:
            await self._store.delete_notification(*record.key)
            if exc.stale:
                log.debug("Offline-Edit übersprungen, Nachricht %s existiert nicht mehr", record.message_id)
                return
            raise
        await self._store.delete_notification(*record.key)
        self.delivered += 1

    async def _send_fresh(self, sub: Subscription, settings: SubscriberSettings, status: StreamStatus) -> None:
        if status.payload.mature and settings.mature_behavior == MATURE_IGNORE:
            log.debug("18+-Stream %s für %s:%s ignoriert", status.external_id, sub.subscriber_scope, sub.subscriber_id)
            return
        channel_id = await self._target_channel(sub, settings)
        content, embed = self._render(sub, settings, replace(status, state=STATE_ONLINE))
        message_id = await self._messenger.send_message(channel_id, content, embed)
        await self._store.upsert_notification(
            NotificationRecord(
                subscriber_scope=sub.subscriber_scope,
                subscriber_id=sub.subscriber_id,
                platform=sub.platform,
                external_id=sub.external_id,
                stream_id=status.stream_id,
                channel_id=channel_id,
                message_id=message_id,
                sent_at=self._clock(),
                payload=status.payload.to_dict(),
            )
        )
        self.delivered += 1

    async def _target_channel(self, sub: Subscription, settings: SubscriberSettings) -> str:
        if sub.is_guild:
            if not settings.channel_id:
                raise DeliveryFailed(f"guild {sub.subscriber_id} has no notification channel")
            return settings.channel_id
        if settings.channel_id:
            return settings.channel_id
        return await self._messenger.open_dm(sub.subscriber_id)

    def _render(self, sub: Subscription, settings: SubscriberSettings, status: StreamStatus):
        provider = self._providers.get(status.platform)
        if provider is None:
            raise DeliveryFailed(f"no renderer for platform {status.platform}")
        fields = provider.render_status(status, settings.locale)
        everyone = settings.mentions_everyone(sub.platform, sub.external_id) and not status.no_everyone
        banner = status.payload.mature and settings.mature_behavior == MATURE_BANNER
        content = build_content(sub, status, fields, settings.locale, everyone=everyone, mature_banner=banner)
        return content, build_embed(fields, status.state, settings.locale)

    async def _refresh_display_name(self, status: StreamStatus) -> None:
        name = status.streamer.display_name
        if not name:
            return
        changed = await self._store.rename_streamer(status.platform, status.external_id, name)
        if changed:
            log.info("Anzeigename von %s:%s auf %s aktualisiert", status.platform, status.external_id, name)
