"""Mixer adapter (polling the channels endpoint)."""

from __future__ import annotations

import re
import time
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional

import aiohttp

from ..constants import (
    MIXER_BATCH_SIZE,
    MIXER_BRAND_COLOR_HEX,
    MIXER_ICON_URL,
    MIXER_NAME_PATTERN,
    MIXER_POLL_INTERVAL_SECONDS,
    PLATFORM_MIXER,
)
from ..errors import InvalidInput, NotFound
from ..events import StreamEventQueue
from ..i18n import t
from ..models import MixerPayload, PlatformPayload, RenderableFields, StreamerRef, StreamStatus, from_iso
from .base import StreamProvider
from .http import JsonApiClient

MIXER_API_BASE = "https://mixer.com/api/v1"

_NAME_RE = re.compile(MIXER_NAME_PATTERN)


class MixerClient(JsonApiClient):
    name = "mixer"

    def __init__(self, client_id: str = "", session: Optional[aiohttp.ClientSession] = None, **kwargs):
        super().__init__(session, **kwargs)
        self.client_id = client_id

    async def _auth_headers(self) -> Dict[str, str]:
        return {"Client-ID": self.client_id} if self.client_id else {}

    async def get_channel(self, token_or_id: str) -> Optional[Dict[str, Any]]:
        return await self.get(f"{MIXER_API_BASE}/channels/{token_or_id}")

    async def get_online_channels(self, channel_ids: List[str]) -> List[Dict[str, Any]]:
        if not channel_ids:
            return []
        where = "online:eq:true,id:in:" + ";".join(channel_ids)
        js = await self.get(f"{MIXER_API_BASE}/channels", params={"where": where, "limit": str(len(channel_ids))})
        return list(js or [])


def session_id_for(channel: Mapping[str, Any]) -> str:
    """Mixer liefert keine Stream-ID; wir leiten eine stabile aus Token + Titel ab."""
    key = f"mixer::{channel.get('token', '')}::{{{channel.get('name', '')}}}"
    return str(uuid.uuid5(uuid.NAMESPACE_URL, key))


class MixerProvider(StreamProvider):
    platform = PLATFORM_MIXER
    url_hosts = ("mixer.com", "beam.pro")

    def __init__(
        self,
        queue: StreamEventQueue,
        api: MixerClient,
        *,
        poll_interval: Optional[float] = MIXER_POLL_INTERVAL_SECONDS,
        **kwargs,
    ):
        super().__init__(queue, poll_interval=poll_interval, **kwargs)
        self.api = api

    def _normalize_query(self, query: str) -> str:
        q = query.strip().lstrip("@")
        if not _NAME_RE.match(q):
            raise InvalidInput(f"invalid mixer channel {query!r}")
        return q

    async def _lookup(self, query: str) -> StreamerRef:
        channel = await self.api.get_channel(query)
        if not channel:
            raise NotFound(f"mixer channel {query!r}")
        return StreamerRef(self.platform, str(channel["id"]), channel.get("token") or query)

    def _batches(self, ids: List[str]) -> Iterable[List[str]]:
        for i in range(0, len(ids), MIXER_BATCH_SIZE):
            yield ids[i:i + MIXER_BATCH_SIZE]

    async def _fetch_live(self, external_ids: List[str]) -> Mapping[str, Optional[PlatformPayload]]:
        online = {str(c.get("id")): c for c in await self.api.get_online_channels(external_ids)}
        return {
            external_id: self.build_payload(online[external_id]) if external_id in online else None
            for external_id in external_ids
        }

    def build_payload(self, channel: Mapping[str, Any]) -> MixerPayload:
        user = channel.get("user") or {}
        category = channel.get("type") or {}
        return MixerPayload(
            session_id=session_id_for(channel),
            title=channel.get("name") or "",
            category_id=str(category["id"]) if category.get("id") is not None else None,
            mature=channel.get("audience") == "18+",
            broadcaster_name=user.get("username") or channel.get("token") or "",
            avatar_url=user.get("avatarUrl"),
            token=channel.get("token") or "",
            channel_id=str(channel.get("id")),
            audience=channel.get("audience") or "family",
            category_name=category.get("name"),
            viewer_count=int(channel.get("viewersCurrent") or 0),
            updated_at=channel.get("updatedAt"),
        )

    async def aclose(self) -> None:
        await self.api.aclose()

    def render_status(self, status: StreamStatus, locale: str) -> RenderableFields:
        payload = status.payload
        assert isinstance(payload, MixerPayload)
        name = payload.broadcaster_name or status.streamer.display_name
        return RenderableFields(
            title=payload.title or name,
            url=f"https://mixer.com/{payload.token or name}",
            author_name=name,
            description=t(locale, "stream.description", username=name),
            category=payload.category_name,
            image_url=f"https://thumbs.mixer.com/channel/{payload.channel_id}.big.jpg?ts={int(time.time())}",
            thumbnail_url=payload.avatar_url or MIXER_ICON_URL,
            avatar_url=payload.avatar_url,
            mature=payload.mature,
            color=MIXER_BRAND_COLOR_HEX,
            footer_text="Mixer",
            footer_icon_url=MIXER_ICON_URL,
            timestamp=from_iso(payload.updated_at),
            fields=[
                (t(locale, "stream.viewers"), str(payload.viewer_count), True),
                (t(locale, "stream.mature"), payload.audience, True),
            ],
        )
