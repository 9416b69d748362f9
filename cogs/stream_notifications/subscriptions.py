"""Follow/unfollow logic that keeps provider tracking in line with demand.

A streamer is tracked by its adapter exactly while at least one subscription
for it exists. On follower shards the lead is told via the bridge instead.
"""

from __future__ import annotations

from typing import Mapping, Optional

from .errors import AlreadySubscribed, InvalidInput, NotSubscribed, NotTracked
from .logger import log
from .models import StreamerRef, Subscription
from .providers.base import StreamProvider
from .sharding import FreeMessage, ShardBridge, TrackMessage
from .storage import StreamStore


class SubscriptionService:
    def __init__(
        self,
        store: StreamStore,
        providers: Mapping[str, StreamProvider],
        *,
        bridge: Optional[ShardBridge] = None,
    ):
        self._store = store
        self._providers = providers
        self._bridge = bridge

    @property
    def is_lead(self) -> bool:
        return self._bridge is None or self._bridge.is_lead

    def provider(self, platform: str) -> StreamProvider:
        provider = self._providers.get((platform or "").lower())
        if provider is None:
            raise InvalidInput(f"unknown platform {platform!r}")
        return provider

    async def follow(
        self,
        platform: str,
        query: str,
        scope: str,
        subscriber_id: str,
        *,
        message_text: Optional[str] = None,
    ) -> Subscription:
        provider = self.provider(platform)
        ref = await provider.get_streamer(query)
        existing = await self._store.get_subscription(ref.platform, ref.external_id, scope, subscriber_id)
        if existing is not None:
            raise AlreadySubscribed(f"{scope}:{subscriber_id} -> {ref.platform}:{ref.external_id}")

        sub = Subscription(
            platform=ref.platform,
            external_id=ref.external_id,
            subscriber_scope=scope,
            subscriber_id=subscriber_id,
            display_name=ref.display_name,
            message_text=message_text,
        )
        if not await self._store.add_subscription(sub):
            raise AlreadySubscribed(f"{scope}:{subscriber_id} -> {ref.platform}:{ref.external_id}")
        log.info("%s:%s folgt jetzt %s:%s (%s)", scope, subscriber_id, ref.platform, ref.external_id, ref.display_name)
        await self._ensure_tracked(ref)
        return sub

    async def unfollow(self, platform: str, external_id: str, scope: str, subscriber_id: str) -> Subscription:
        sub = await self._store.get_subscription(platform, external_id, scope, subscriber_id)
        if sub is None:
            raise NotSubscribed(f"{scope}:{subscriber_id} -> {platform}:{external_id}")
        await self._store.delete_subscription(platform, external_id, scope, subscriber_id)
        await self._store.delete_notification(scope, subscriber_id, platform, external_id)
        log.info("%s:%s folgt %s:%s nicht mehr", scope, subscriber_id, platform, external_id)

        if await self._store.count_subscribers(platform, external_id) == 0:
            await self.free(platform, external_id)
        return sub

    async def find(self, platform: str, query: str, scope: str, subscriber_id: str) -> Subscription:
        """Resolve a user-entered name or id against the subscriber's own list."""
        needle = (query or "").strip().lower()
        for sub in await self._store.subscriptions_for_subscriber(scope, subscriber_id, platform):
            if needle in (sub.external_id.lower(), sub.display_name.lower()):
                return sub
        raise NotSubscribed(f"{scope}:{subscriber_id} -> {platform}:{query}")

    # -------------------------------------------------------
    # Tracking
    # -------------------------------------------------------
    async def _ensure_tracked(self, ref: StreamerRef) -> None:
        if not self.is_lead:
            assert self._bridge is not None
            await self._bridge.notify_lead(TrackMessage(ref.platform, ref.external_id, ref.display_name))
            return
        provider = self.provider(ref.platform)
        if not provider.is_subscribed(ref.external_id):
            await provider.add_subscription(ref)

    async def free(self, platform: str, external_id: str) -> None:
        if not self.is_lead:
            assert self._bridge is not None
            await self._bridge.notify_lead(FreeMessage(platform, external_id))
            return
        try:
            await self.provider(platform).remove_subscription(external_id)
        except NotTracked:
            log.debug("%s:%s war nicht getrackt", platform, external_id)

    async def resync(self) -> int:
        """Track every streamer that has subscriptions (lead start-up)."""
        added = 0
        for ref in await self._store.tracked_streamers():
            provider = self._providers.get(ref.platform)
            if provider is None:
                log.warning("Abos für %s:%s, aber Plattform ist deaktiviert", ref.platform, ref.external_id)
                continue
            if not provider.is_subscribed(ref.external_id):
                await provider.add_subscription(ref)
                added += 1
        log.info("Resync: %d Streamer getrackt", added)
        return added

    # -------------------------------------------------------
    # Bridge-Handler (nur auf dem Lead)
    # -------------------------------------------------------
    async def handle_track(self, message: TrackMessage) -> dict:
        provider = self.provider(message.platform)
        if not provider.is_subscribed(message.external_id):
            await provider.add_subscription(StreamerRef(message.platform, message.external_id, message.display_name))
        return {"tracked": True}

    async def handle_free(self, message: FreeMessage) -> dict:
        # Zwischenzeitlich neu abonniert? Dann weiter tracken.
        if await self._store.count_subscribers(message.platform, message.external_id) > 0:
            return {"freed": False}
        provider = self.provider(message.platform)
        if provider.is_subscribed(message.external_id):
            await provider.remove_subscription(message.external_id)
        return {"freed": True}
