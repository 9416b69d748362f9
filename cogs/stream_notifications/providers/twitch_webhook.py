"""Twitch adapter driven by WebSub pushes instead of (or in addition to) polling."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..errors import UpstreamUnavailable
from ..events import StreamEventQueue
from ..models import RegisteredHook, StreamerRef
from ..webhooks import HubClient, WebhookEndpoint
from .twitch import TWITCH_API_BASE, TwitchHelixClient, TwitchProvider

TWITCH_HUB_URL = f"{TWITCH_API_BASE}/webhooks/hub"


class TwitchHubClient(HubClient):
    """Subscribe/unsubscribe against the Twitch WebSub hub."""

    def __init__(self, api: TwitchHelixClient):
        self.api = api

    @staticmethod
    def topic(streamer_id: str) -> str:
        return f"{TWITCH_API_BASE}/streams?user_id={streamer_id}"

    async def _post(self, body: Dict[str, Any]) -> None:
        status = await self.api.request("POST", TWITCH_HUB_URL, json=body, expect_json=False)
        if status not in (200, 202, 204):
            raise UpstreamUnavailable(f"twitch hub answered {status}", status=status)

    async def subscribe(self, streamer_id: str, callback_url: str, lease_seconds: int, secret: str) -> None:
        await self._post({
            "hub.callback": callback_url,
            "hub.mode": "subscribe",
            "hub.topic": self.topic(streamer_id),
            "hub.lease_seconds": int(lease_seconds),
            "hub.secret": secret,
        })

    async def unsubscribe(self, streamer_id: str, callback_url: str) -> None:
        await self._post({
            "hub.callback": callback_url,
            "hub.mode": "unsubscribe",
            "hub.topic": self.topic(streamer_id),
        })


class TwitchWebhookProvider(TwitchProvider):
    """
    Wie ``TwitchProvider``, aber Statuswechsel kommen per Push.

    Beim Start wird einmal gepollt (Ausgangszustand), danach hält jeder
    getrackte Streamer genau einen aktiven Hook. Optional läuft zusätzlich ein
    langsamer Poll als Fallback.
    """

    def __init__(
        self,
        queue: StreamEventQueue,
        api: TwitchHelixClient,
        endpoint: WebhookEndpoint,
        *,
        hub: Optional[HubClient] = None,
        poll_interval: Optional[float] = None,
        **kwargs,
    ):
        super().__init__(queue, api, poll_interval=poll_interval, **kwargs)
        self.endpoint = endpoint
        self.hub = hub or TwitchHubClient(api)
        self.pushes = 0

    async def _on_start(self) -> None:
        self.endpoint.attach(self.platform, self.hub, self.handle_push)
        for hook in await self.endpoint.restore(self.platform):
            if not self.is_subscribed(hook.streamer_id):
                await self.endpoint.unregister_streamer(self.platform, hook.streamer_id)
        try:
            await self.poll_once()
        except Exception:
            self.log.exception("Initialer Twitch-Fetch fehlgeschlagen")
        for ref in self.tracked():
            if not self.endpoint.has_hook(self.platform, ref.external_id):
                await self.endpoint.register_hook(self.platform, ref.external_id)

    async def _on_tracked(self, ref: StreamerRef) -> None:
        if self.running:
            await self.endpoint.register_hook(self.platform, ref.external_id)

    async def _on_untracked(self, ref: StreamerRef) -> None:
        await super()._on_untracked(ref)
        if self.running:
            await self.endpoint.unregister_streamer(self.platform, ref.external_id)

    async def handle_push(self, hook: RegisteredHook, body: Dict[str, Any]) -> None:
        """Feed a verified hub notification into the change detector."""
        self.pushes += 1
        records = body.get("data") or []
        if not records:
            # leeres data-Array = offline
            self.ingest(hook.streamer_id, None)
            return
        for stream in records:
            user_id = str(stream.get("user_id") or hook.streamer_id)
            if user_id != hook.streamer_id:
                self.log.warning("Push für %s über Hook von %s ignoriert", user_id, hook.streamer_id)
                continue
            try:
                await self._refresh_profiles([stream])
            except UpstreamUnavailable as exc:
                self.log.debug("Profil für %s nicht aktualisiert: %s", user_id, exc)
            self.ingest(user_id, self.build_payload(stream))


__all__ = ["TwitchHubClient", "TwitchWebhookProvider"]
