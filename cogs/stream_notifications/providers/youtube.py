"""YouTube adapter (Data API v3 search for live broadcasts)."""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

import aiohttp

from ..constants import (
    PLATFORM_YOUTUBE,
    YOUTUBE_BRAND_COLOR_HEX,
    YOUTUBE_CHANNEL_CACHE_SECONDS,
    YOUTUBE_CHANNEL_PATTERN,
    YOUTUBE_ICON_URL,
    YOUTUBE_MIN_FETCH_GAP_SECONDS,
    YOUTUBE_POLL_INTERVAL_SECONDS,
    YOUTUBE_USERNAME_PATTERN,
)
from ..errors import InvalidInput, NotFound, UpstreamUnavailable
from ..events import StreamEventQueue
from ..i18n import t
from ..models import PlatformPayload, RenderableFields, StreamerRef, StreamStatus, YouTubePayload, from_iso
from .base import StreamProvider
from .http import JsonApiClient

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"

_CHANNEL_RE = re.compile(YOUTUBE_CHANNEL_PATTERN)
_USERNAME_RE = re.compile(YOUTUBE_USERNAME_PATTERN)


class YouTubeClient(JsonApiClient):
    name = "youtube"

    def __init__(self, api_key: str, session: Optional[aiohttp.ClientSession] = None, **kwargs):
        super().__init__(session, **kwargs)
        self.api_key = api_key

    async def get_channel(self, *, channel_id: Optional[str] = None, username: Optional[str] = None) -> Optional[Dict[str, Any]]:
        params = {"part": "snippet", "key": self.api_key}
        if channel_id:
            params["id"] = channel_id
        else:
            params["forUsername"] = username or ""
        js = await self.get(f"{YOUTUBE_API_BASE}/channels", params=params)
        items = (js or {}).get("items") or []
        return items[0] if items else None

    async def search_live(self, channel_id: str) -> List[Dict[str, Any]]:
        js = await self.get(
            f"{YOUTUBE_API_BASE}/search",
            params={
                "part": "snippet",
                "channelId": channel_id,
                "eventType": "live",
                "type": "video",
                "key": self.api_key,
            },
        )
        return list((js or {}).get("items") or [])


class YouTubeProvider(StreamProvider):
    """
    Sucht pro Kanal nach laufenden Live-Videos.

    Die Search-API ist teuer (Quota): zwischen zwei Durchläufen liegen
    mindestens ``min_fetch_gap`` Sekunden, auch bei manuellem ``poll_once``.
    """

    platform = PLATFORM_YOUTUBE
    url_hosts = ("youtube.com",)

    def __init__(
        self,
        queue: StreamEventQueue,
        api: YouTubeClient,
        *,
        poll_interval: Optional[float] = YOUTUBE_POLL_INTERVAL_SECONDS,
        min_fetch_gap: float = YOUTUBE_MIN_FETCH_GAP_SECONDS,
        **kwargs,
    ):
        super().__init__(queue, poll_interval=poll_interval, **kwargs)
        self.api = api
        self.min_fetch_gap = timedelta(seconds=min_fetch_gap)
        self._last_fetch: Optional[datetime] = None
        self._channels: Dict[str, Tuple[Dict[str, Any], datetime]] = {}

    def _normalize_query(self, query: str) -> str:
        q = query.strip()
        if q.lower().startswith("channel/"):
            q = q[len("channel/"):]
            if not _CHANNEL_RE.match(q):
                raise InvalidInput(f"invalid youtube channel id {query!r}")
            return f"id:{q}"
        if q.lower().startswith("user/"):
            q = q[len("user/"):]
        if _CHANNEL_RE.match(q):
            return f"id:{q}"
        if not _USERNAME_RE.match(q):
            raise InvalidInput(f"invalid youtube username {query!r}")
        return f"user:{q}"

    async def _lookup(self, query: str) -> StreamerRef:
        kind, _, value = query.partition(":")
        if kind == "id":
            channel = await self.api.get_channel(channel_id=value)
        else:
            channel = await self.api.get_channel(username=value)
        if not channel:
            raise NotFound(f"youtube channel {value!r}")
        channel_id = str(channel["id"])
        self._channels[channel_id] = (channel, self._clock())
        title = (channel.get("snippet") or {}).get("title") or channel_id
        return StreamerRef(self.platform, channel_id, title)

    async def _channel(self, channel_id: str) -> Optional[Dict[str, Any]]:
        cached = self._channels.get(channel_id)
        now = self._clock()
        if cached and (now - cached[1]).total_seconds() < YOUTUBE_CHANNEL_CACHE_SECONDS:
            return cached[0]
        channel = await self.api.get_channel(channel_id=channel_id)
        if channel:
            self._channels[channel_id] = (channel, now)
        return channel

    async def _fetch_live(self, external_ids: List[str]) -> Mapping[str, Optional[PlatformPayload]]:
        now = self._clock()
        if self._last_fetch is not None and now - self._last_fetch < self.min_fetch_gap:
            self.log.debug("YouTube-Fetch übersprungen (Quota-Schutz)")
            return {}
        self._last_fetch = now

        out: Dict[str, Optional[PlatformPayload]] = {}
        for channel_id in external_ids:
            try:
                items = await self.api.search_live(channel_id)
            except UpstreamUnavailable as exc:
                # nur dieser Kanal bleibt "unbekannt"
                self.log.warning("YouTube-Suche für %s fehlgeschlagen: %s", channel_id, exc)
                continue
            if not items:
                out[channel_id] = None
                continue
            try:
                channel = await self._channel(channel_id)
            except UpstreamUnavailable:
                channel = None
            out[channel_id] = self.build_payload(items[0], channel)
        return out

    def build_payload(self, item: Mapping[str, Any], channel: Optional[Mapping[str, Any]] = None) -> YouTubePayload:
        snippet = item.get("snippet") or {}
        thumbs = snippet.get("thumbnails") or {}
        channel_snippet = (channel or {}).get("snippet") or {}
        avatar = ((channel_snippet.get("thumbnails") or {}).get("default") or {}).get("url")
        return YouTubePayload(
            session_id=str((item.get("id") or {}).get("videoId") or ""),
            title=snippet.get("title") or "",
            category_id=None,
            mature=False,
            broadcaster_name=snippet.get("channelTitle") or channel_snippet.get("title") or "",
            avatar_url=avatar,
            channel_id=str(snippet.get("channelId") or (channel or {}).get("id") or ""),
            description=snippet.get("description") or "",
            thumbnail_url=(thumbs.get("high") or thumbs.get("default") or {}).get("url"),
            published_at=snippet.get("publishedAt"),
        )

    async def _on_untracked(self, ref: StreamerRef) -> None:
        self._channels.pop(ref.external_id, None)

    async def _on_stop(self) -> None:
        self._channels.clear()
        self._last_fetch = None

    async def aclose(self) -> None:
        await self.api.aclose()

    def render_status(self, status: StreamStatus, locale: str) -> RenderableFields:
        payload = status.payload
        assert isinstance(payload, YouTubePayload)
        name = payload.broadcaster_name or status.streamer.display_name
        return RenderableFields(
            title=payload.title or name,
            url=f"https://youtu.be/{payload.session_id}",
            author_name=name,
            description=(payload.description or t(locale, "stream.description", username=name))[:300],
            image_url=payload.thumbnail_url,
            thumbnail_url=payload.avatar_url or YOUTUBE_ICON_URL,
            avatar_url=payload.avatar_url,
            mature=payload.mature,
            color=YOUTUBE_BRAND_COLOR_HEX,
            footer_text="YouTube",
            footer_icon_url=YOUTUBE_ICON_URL,
            timestamp=from_iso(payload.published_at),
        )
