"""WebSub webhook endpoint – Handshake, HMAC-Verifikation, Lease-Erneuerung.

Lebenszyklus eines Hooks::

    Pending --(GET hub.mode=subscribe)--> Active --(90% der Lease)--> Renewing
       |                                    |                            |
       +--(Subscribe fehlgeschlagen)--> weg  +--(denied/unsubscribe)--> weg
                                                                         v
                                                  neuer Hook bestätigt -> alter Hook weg

Schlägt die Erneuerung fehl, läuft die Lease aus (Expired): POSTs werden dann
mit 400 abgelehnt, der Hook verworfen, und ``has_hook`` meldet ihn nicht mehr.

Jede Erneuerung erzeugt eine frische Hook-ID und ein frisches Secret, der alte
Hook wird verworfen sobald der neue bestätigt ist.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
from aiohttp import web

from .constants import (
    WEBHOOK_DEFAULT_LEASE_SECONDS,
    WEBHOOK_HUB_DEATH_SECONDS,
    WEBHOOK_RENEW_AT_FRACTION,
    WEBHOOK_SIGNATURE_ALGORITHMS,
)
from .errors import InvalidInput, StreamNotificationError
from .models import RegisteredHook, utcnow
from .storage import StreamStore

PayloadHandler = Callable[[RegisteredHook, Dict[str, Any]], Awaitable[None]]

_LOCAL_HOSTS = {"127.0.0.1", "localhost", "::1"}


class HubClient:
    """What the endpoint needs from a platform hub."""

    async def subscribe(self, streamer_id: str, callback_url: str, lease_seconds: int, secret: str) -> None:
        raise NotImplementedError

    async def unsubscribe(self, streamer_id: str, callback_url: str) -> None:
        raise NotImplementedError


@dataclass
class _Attachment:
    hub: HubClient
    handler: PayloadHandler


def verify_signature(secret: str, body: bytes, header: Optional[str]) -> bool:
    """Check ``X-Hub-Signature: <algo>=<hexdigest>`` in constant time."""
    if not header or "=" not in header:
        return False
    algo, _, digest = header.partition("=")
    algo = algo.strip().lower()
    if algo not in WEBHOOK_SIGNATURE_ALGORITHMS or not digest:
        return False
    try:
        expected = bytes.fromhex(digest.strip())
    except ValueError:
        return False
    computed = hmac.new(secret.encode("utf-8"), body, getattr(hashlib, algo)).digest()
    return hmac.compare_digest(computed, expected)


class WebhookEndpoint:
    """
    Öffentlicher HTTP-Endpunkt für Push-Benachrichtigungen.

    ``GET  {path}/{hook_id}`` – Handshake (subscribe / denied / unsubscribe)
    ``POST {path}/{hook_id}`` – signierte Payload-Zustellung
    """

    def __init__(
        self,
        *,
        domain: str,
        path: str = "/webhooks",
        host: str = "0.0.0.0",
        port: int = 8790,
        secure: bool = True,
        lease_seconds: int = WEBHOOK_DEFAULT_LEASE_SECONDS,
        store: Optional[StreamStore] = None,
        clock: Callable[[], datetime] = utcnow,
        renew_fraction: float = WEBHOOK_RENEW_AT_FRACTION,
    ):
        self.domain = domain.strip().rstrip("/")
        self.path = "/" + path.strip("/") if path.strip("/") else ""
        self.host = host
        self.port = int(port)
        self.secure = secure
        self.lease_seconds = int(lease_seconds)
        self.store = store
        self._clock = clock
        self._renew_fraction = renew_fraction
        self.hooks: Dict[str, RegisteredHook] = {}
        self._renewals: Dict[str, asyncio.Task] = {}
        self._platforms: Dict[str, _Attachment] = {}
        self._runner: Optional[web.AppRunner] = None
        self.rejected = 0
        self.log = logging.getLogger("StreamNotifications.Webhooks")

    # -------------------------------------------------------
    # Setup
    # -------------------------------------------------------
    def attach(self, platform: str, hub: HubClient, handler: PayloadHandler) -> None:
        self._platforms[platform] = _Attachment(hub, handler)

    def callback_url(self, hook_id: str) -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.domain}{self.path}/{hook_id}"

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(f"{self.path}/{{hook_id}}", self.handle_get)
        app.router.add_post(f"{self.path}/{{hook_id}}", self.handle_post)
        return app

    async def start(self) -> None:
        if self._runner is not None:
            return
        runner = web.AppRunner(self.make_app())
        await runner.setup()
        site = web.TCPSite(runner, host=self.host, port=self.port)
        await site.start()
        self._runner = runner
        self.log.info("Webhook-Endpunkt läuft auf %s:%s (öffentlich: %s)", self.host, self.port, self.callback_url("<id>"))

    async def stop(self) -> None:
        for task in self._renewals.values():
            task.cancel()
        self._renewals.clear()

        active = [h for h in self.hooks.values() if not h.pending]
        if self.store is not None:
            by_platform: Dict[str, List[RegisteredHook]] = {}
            for hook in active:
                by_platform.setdefault(hook.platform, []).append(hook)
            for platform in set(by_platform) | set(self._platforms):
                try:
                    await self.store.save_hooks(platform, by_platform.get(platform, []), self._clock())
                except Exception:
                    self.log.exception("Konnte Webhooks für %s nicht speichern", platform)
            self.log.info("%d aktive Webhooks gespeichert", len(active))
        else:
            for hook in active:
                await self._send_unsubscribe(hook)
        self.hooks.clear()

        if self._runner is not None:
            try:
                await self._runner.cleanup()
            finally:
                self._runner = None

    # -------------------------------------------------------
    # Registration
    # -------------------------------------------------------
    async def register_hook(self, platform: str, streamer_id: str) -> Optional[RegisteredHook]:
        attachment = self._platforms.get(platform)
        if attachment is None:
            raise InvalidInput(f"no hub attached for {platform}")
        hook = RegisteredHook(
            hook_id=secrets.token_hex(16),
            platform=platform,
            streamer_id=streamer_id,
            secret=secrets.token_hex(32),
            lease_seconds=self.lease_seconds,
        )
        self.hooks[hook.hook_id] = hook
        try:
            await attachment.hub.subscribe(streamer_id, self.callback_url(hook.hook_id), hook.lease_seconds, hook.secret)
        except (StreamNotificationError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self.hooks.pop(hook.hook_id, None)
            self.log.warning("Subscribe für %s:%s fehlgeschlagen: %r", platform, streamer_id, exc)
            return None
        self.log.debug("Hook %s für %s:%s angefragt (pending)", hook.hook_id, platform, streamer_id)
        return hook

    async def unregister_streamer(self, platform: str, streamer_id: str) -> int:
        hooks = [h for h in self.hooks.values() if h.platform == platform and h.streamer_id == streamer_id]
        for hook in hooks:
            self._drop(hook.hook_id)
            if not hook.pending and not hook.is_expired(self._clock()):
                await self._send_unsubscribe(hook)
        return len(hooks)

    def hooks_for(self, platform: str, streamer_id: str, *, include_pending: bool = False) -> List[RegisteredHook]:
        # abgelaufene Hooks (Expired) zählen nicht, damit neu registriert werden kann
        now = self._clock()
        return [
            h
            for h in self.hooks.values()
            if h.platform == platform
            and h.streamer_id == streamer_id
            and (include_pending or not h.pending)
            and not h.is_expired(now)
        ]

    def has_hook(self, platform: str, streamer_id: str) -> bool:
        return bool(self.hooks_for(platform, streamer_id, include_pending=True))

    async def restore(self, platform: str) -> List[RegisteredHook]:
        """Reinstall leases saved by ``stop``; expired or dead ones are unsubscribed."""
        if self.store is None:
            return []
        now = self._clock()
        restored: List[RegisteredHook] = []
        for hook, saved_at in await self.store.take_hooks(platform):
            dead = (now - saved_at).total_seconds() > WEBHOOK_HUB_DEATH_SECONDS
            if hook.pending or hook.is_expired(now) or dead:
                self.log.info("Gespeicherter Hook %s (%s) ist abgelaufen, wird verworfen", hook.hook_id, hook.streamer_id)
                if not hook.pending and not hook.is_expired(now):
                    await self._send_unsubscribe(hook)
                continue
            self.hooks[hook.hook_id] = hook
            self._schedule_renewal(hook)
            restored.append(hook)
        if restored:
            self.log.info("%d Webhooks für %s wiederhergestellt", len(restored), platform)
        return restored

    async def _send_unsubscribe(self, hook: RegisteredHook) -> None:
        attachment = self._platforms.get(hook.platform)
        if attachment is None:
            return
        try:
            await attachment.hub.unsubscribe(hook.streamer_id, self.callback_url(hook.hook_id))
        except (StreamNotificationError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self.log.warning("Unsubscribe für Hook %s fehlgeschlagen: %r", hook.hook_id, exc)

    def _drop(self, hook_id: str) -> Optional[RegisteredHook]:
        task = self._renewals.pop(hook_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        return self.hooks.pop(hook_id, None)

    # -------------------------------------------------------
    # Renewal
    # -------------------------------------------------------
    def renewal_delay(self, hook: RegisteredHook) -> float:
        if hook.registered_at is None:
            return 0.0
        due = hook.registered_at + timedelta(seconds=hook.lease_seconds * self._renew_fraction)
        return max(0.0, (due - self._clock()).total_seconds())

    def _schedule_renewal(self, hook: RegisteredHook) -> None:
        old = self._renewals.pop(hook.hook_id, None)
        if old is not None:
            old.cancel()
        delay = self.renewal_delay(hook)
        self._renewals[hook.hook_id] = asyncio.create_task(self._renew_later(hook.hook_id, delay))
        self.log.debug("Erneuerung für Hook %s in %.0fs geplant", hook.hook_id, delay)

    async def _renew_later(self, hook_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self._renewals.pop(hook_id, None)
        hook = self.hooks.get(hook_id)
        if hook is None:
            return
        self.log.info("Erneuere Lease für %s:%s", hook.platform, hook.streamer_id)
        try:
            await self.register_hook(hook.platform, hook.streamer_id)
        except Exception:
            self.log.exception("Erneuerung für Hook %s fehlgeschlagen", hook_id)

    def _supersede(self, confirmed: RegisteredHook) -> None:
        for other in list(self.hooks.values()):
            if other.platform != confirmed.platform or other.streamer_id != confirmed.streamer_id:
                continue
            if other.hook_id != confirmed.hook_id and not other.pending:
                self._drop(other.hook_id)
                self.log.debug("Hook %s durch %s ersetzt", other.hook_id, confirmed.hook_id)

    # -------------------------------------------------------
    # HTTP
    # -------------------------------------------------------
    def _host_allowed(self, request: web.Request) -> bool:
        raw = (request.headers.get("Host") or request.host or "").strip().lower()
        hostname = raw.rsplit(":", 1)[0] if raw.count(":") == 1 else raw
        allowed = {self.domain.split(":")[0].lower(), self.host.lower()}
        if self.host in ("0.0.0.0", "127.0.0.1", "localhost"):
            allowed |= _LOCAL_HOSTS
        return hostname in allowed

    async def handle_get(self, request: web.Request) -> web.Response:
        if not self._host_allowed(request):
            self.log.warning("Webhook GET mit fremdem Host %r von %s abgelehnt", request.host, request.remote)
            return web.Response(status=400)

        hook_id = request.match_info.get("hook_id", "")
        hook = self.hooks.get(hook_id)
        if hook is None:
            self.log.debug("Handshake für unbekannten Hook %s", hook_id)
            return web.Response(status=400)

        mode = request.query.get("hub.mode", "")
        if mode == "subscribe":
            try:
                hook.lease_seconds = int(request.query.get("hub.lease_seconds") or hook.lease_seconds)
            except ValueError:
                self.log.debug("Ungültige hub.lease_seconds für Hook %s, nutze %s", hook_id, hook.lease_seconds)
            hook.registered_at = self._clock()
            self._supersede(hook)
            self._schedule_renewal(hook)
            self.log.info("Hook %s für %s:%s aktiv (Lease %ss)", hook_id, hook.platform, hook.streamer_id, hook.lease_seconds)
            return web.Response(text=request.query.get("hub.challenge", ""), status=200)

        if mode in ("denied", "unsubscribe"):
            self._drop(hook_id)
            if mode == "denied":
                self.log.warning(
                    "Hub hat Hook %s für %s:%s abgelehnt: %s",
                    hook_id, hook.platform, hook.streamer_id, request.query.get("hub.reason", "-"),
                )
            else:
                self.log.info("Hook %s abgemeldet", hook_id)
            return web.Response(status=200)

        return web.Response(status=400)

    async def handle_post(self, request: web.Request) -> web.Response:
        if not self._host_allowed(request):
            self.log.warning("Webhook POST mit fremdem Host %r von %s abgelehnt", request.host, request.remote)
            return web.Response(status=400)

        hook = self.hooks.get(request.match_info.get("hook_id", ""))
        if hook is None or hook.pending:
            return web.Response(status=400)
        if hook.is_expired(self._clock()):
            self._drop(hook.hook_id)
            self.log.warning("Webhook: Hook %s für %s:%s ist abgelaufen, POST von %s abgelehnt", hook.hook_id, hook.platform, hook.streamer_id, request.remote)
            return web.Response(status=400)

        try:
            body = await request.read()
        except Exception:
            self.log.warning("Webhook: Konnte Body nicht lesen")
            return web.Response(status=400)

        if not verify_signature(hook.secret, body, request.headers.get("X-Hub-Signature")):
            self.rejected += 1
            self.log.warning("Webhook: Signatur ungültig für Hook %s von %s", hook.hook_id, request.remote)
            return web.Response(status=400)

        try:
            data = json.loads(body or b"{}")
        except ValueError:
            self.log.warning("Webhook: Body von %s ist kein JSON", request.remote)
            return web.Response(status=400)
        if not isinstance(data, dict):
            return web.Response(status=400)

        attachment = self._platforms.get(hook.platform)
        if attachment is not None:
            try:
                await attachment.handler(hook, data)
            except Exception:
                self.log.exception("Webhook-Handler für %s fehlgeschlagen", hook.platform)
        return web.Response(status=200)
