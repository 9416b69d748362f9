"""Twitch Helix adapter (polling)."""

from __future__ import annotations

import asyncio
import re
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import aiohttp

from ..constants import (
    PLATFORM_TWITCH,
    TWITCH_BATCH_SIZE,
    TWITCH_BRAND_COLOR_HEX,
    TWITCH_ICON_URL,
    TWITCH_LOGIN_PATTERN,
    TWITCH_POLL_INTERVAL_SECONDS,
)
from ..errors import InvalidInput, NotFound, UpstreamUnavailable
from ..events import StreamEventQueue
from ..i18n import t
from ..models import PlatformPayload, RenderableFields, StreamerRef, StreamStatus, TwitchPayload, from_iso
from .base import StreamProvider
from .http import JsonApiClient

TWITCH_TOKEN_URL = "https://id.twitch.tv/oauth2/token"
TWITCH_API_BASE = "https://api.twitch.tv/helix"

_LOGIN_RE = re.compile(TWITCH_LOGIN_PATTERN)


def _chunks(items: Sequence[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield list(items[i:i + size])


class TwitchHelixClient(JsonApiClient):
    """
    Async Wrapper für Twitch Helix mit App-Access-Token.

    Users via /users, Streams via /streams, Kategorien via /games.
    """

    name = "twitch"

    def __init__(self, client_id: str, client_secret: str, session: Optional[aiohttp.ClientSession] = None, **kwargs):
        super().__init__(session, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self._token: Optional[str] = None
        self._token_expiry: float = 0.0
        self._lock = asyncio.Lock()

    # ---- OAuth -------------------------------------------------------------
    async def _ensure_token(self) -> None:
        session = self._ensure_session()
        async with self._lock:
            if self._token and time.time() < self._token_expiry - 60:
                return
            data = {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            }
            try:
                async with session.post(TWITCH_TOKEN_URL, data=data) as r:
                    if r.status != 200:
                        txt = await r.text()
                        self._log.error("twitch token exchange failed: HTTP %s: %s", r.status, txt[:300].replace("\n", " "))
                        raise UpstreamUnavailable(f"twitch token HTTP {r.status}", status=r.status)
                    js = await r.json()
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise UpstreamUnavailable(f"twitch token exchange failed: {exc!r}") from exc
            self._token = js.get("access_token")
            self._token_expiry = time.time() + float(js.get("expires_in", 3600))

    async def _auth_headers(self) -> Dict[str, str]:
        await self._ensure_token()
        return {"Client-ID": self.client_id, "Authorization": f"Bearer {self._token}"}

    def _on_unauthorized(self) -> None:
        # widerrufenes App-Token: beim nächsten Request neu holen
        if self._token:
            self._log.warning("twitch: 401, App-Token wird verworfen")
        self._token = None
        self._token_expiry = 0.0

    # ---- Users & Streams ---------------------------------------------------
    async def get_users(self, *, ids: Sequence[str] = (), logins: Sequence[str] = ()) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for key, values in (("id", list(ids)), ("login", list(logins))):
            for chunk in _chunks(values, TWITCH_BATCH_SIZE):
                js = await self.get(f"{TWITCH_API_BASE}/users", params=[(key, x) for x in chunk])
                out.extend((js or {}).get("data") or [])
        return out

    async def get_streams(self, user_ids: Sequence[str]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for chunk in _chunks(list(user_ids), TWITCH_BATCH_SIZE):
            params = [("user_id", x) for x in chunk]
            params.append(("first", str(TWITCH_BATCH_SIZE)))
            js = await self.get(f"{TWITCH_API_BASE}/streams", params=params)
            out.extend((js or {}).get("data") or [])
        return out

    async def get_games(self, ids: Sequence[str]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for chunk in _chunks(list(ids), TWITCH_BATCH_SIZE):
            js = await self.get(f"{TWITCH_API_BASE}/games", params=[("id", x) for x in chunk])
            out.extend((js or {}).get("data") or [])
        return out


class TwitchProvider(StreamProvider):
    platform = PLATFORM_TWITCH
    url_hosts = ("twitch.tv",)

    def __init__(
        self,
        queue: StreamEventQueue,
        api: TwitchHelixClient,
        *,
        poll_interval: Optional[float] = TWITCH_POLL_INTERVAL_SECONDS,
        **kwargs,
    ):
        super().__init__(queue, poll_interval=poll_interval, **kwargs)
        self.api = api
        self._users: Dict[str, Dict[str, Any]] = {}
        self._games: Dict[str, str] = {}

    # ---- Lookup ------------------------------------------------------------
    def _normalize_query(self, query: str) -> str:
        q = query.strip().lower().lstrip("@")
        if q.isdigit():
            return q
        if not _LOGIN_RE.match(q):
            raise InvalidInput(f"invalid twitch login {query!r}")
        return q

    async def _lookup(self, query: str) -> StreamerRef:
        users: List[Dict[str, Any]] = []
        if query.isdigit():
            users = await self.api.get_users(ids=[query])
        if not users and _LOGIN_RE.match(query):
            users = await self.api.get_users(logins=[query])
        if not users:
            raise NotFound(f"twitch user {query!r}")
        user = users[0]
        self._users[str(user["id"])] = user
        return StreamerRef(self.platform, str(user["id"]), user.get("display_name") or user.get("login") or query)

    # ---- Polling -----------------------------------------------------------
    def _batches(self, ids: List[str]) -> Iterable[List[str]]:
        return _chunks(ids, TWITCH_BATCH_SIZE)

    async def _fetch_live(self, external_ids: List[str]) -> Mapping[str, Optional[PlatformPayload]]:
        streams = await self.api.get_streams(external_ids)
        by_user = {str(s.get("user_id")): s for s in streams}
        await self._refresh_profiles(streams)
        out: Dict[str, Optional[PlatformPayload]] = {}
        for external_id in external_ids:
            stream = by_user.get(external_id)
            out[external_id] = self.build_payload(stream) if stream else None
        return out

    async def _refresh_profiles(self, streams: Sequence[Mapping[str, Any]]) -> None:
        if not streams:
            return
        # Profile immer frisch holen, Avatar-/Namenswechsel sind ein Update
        user_ids = [str(s.get("user_id")) for s in streams]
        for user in await self.api.get_users(ids=user_ids):
            self._users[str(user["id"])] = user
        missing = sorted({
            str(s["game_id"])
            for s in streams
            if s.get("game_id") and not s.get("game_name") and str(s["game_id"]) not in self._games
        })
        if missing:
            for game in await self.api.get_games(missing):
                self._games[str(game["id"])] = game.get("name") or ""

    def build_payload(self, stream: Mapping[str, Any]) -> TwitchPayload:
        user_id = str(stream.get("user_id"))
        user = self._users.get(user_id) or {}
        game_id = str(stream.get("game_id") or "") or None
        return TwitchPayload(
            session_id=str(stream.get("id")),
            title=stream.get("title") or "",
            category_id=game_id,
            mature=bool(stream.get("is_mature")),
            broadcaster_name=user.get("display_name") or stream.get("user_name") or "",
            avatar_url=user.get("profile_image_url"),
            login=user.get("login") or stream.get("user_login") or "",
            stream_type=stream.get("type") or "live",
            category_name=(stream.get("game_name") or self._games.get(game_id or "")) or None,
            thumbnail_url=stream.get("thumbnail_url"),
            viewer_count=int(stream.get("viewer_count") or 0),
            started_at=stream.get("started_at"),
            language=stream.get("language"),
        )

    def suppress_everyone(self, payload: PlatformPayload) -> bool:
        return isinstance(payload, TwitchPayload) and payload.is_rerun

    async def _on_untracked(self, ref: StreamerRef) -> None:
        self._users.pop(ref.external_id, None)

    async def _on_stop(self) -> None:
        self._users.clear()
        self._games.clear()

    async def aclose(self) -> None:
        if self.api is not None:
            await self.api.aclose()

    # ---- Rendering ---------------------------------------------------------
    def render_status(self, status: StreamStatus, locale: str) -> RenderableFields:
        payload = status.payload
        assert isinstance(payload, TwitchPayload)
        login = payload.login or status.streamer.display_name.lower()
        image = None
        if payload.thumbnail_url:
            image = payload.thumbnail_url.replace("{width}", "1280").replace("{height}", "720")
            image = f"{image}?t={int(time.time())}"
        fields = [
            (t(locale, "stream.category"), payload.category_name or t(locale, "stream.no_category"), True),
            (t(locale, "stream.viewers"), str(payload.viewer_count), True),
        ]
        if payload.is_rerun:
            fields.append((t(locale, "stream.rerun"), "✓", True))
        return RenderableFields(
            title=payload.title or status.streamer.display_name,
            url=f"https://twitch.tv/{login}",
            author_name=payload.broadcaster_name or status.streamer.display_name,
            description=t(locale, "stream.description", username=payload.broadcaster_name or status.streamer.display_name),
            category=payload.category_name,
            image_url=image,
            thumbnail_url=payload.avatar_url,
            avatar_url=payload.avatar_url,
            mature=payload.mature,
            color=TWITCH_BRAND_COLOR_HEX,
            footer_text="Twitch",
            footer_icon_url=TWITCH_ICON_URL,
            timestamp=from_iso(payload.started_at),
            fields=fields,
        )
