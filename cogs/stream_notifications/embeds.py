"""Build message content and embeds from provider render output."""

from __future__ import annotations

from typing import Optional

import discord

from .constants import OFFLINE_COLOR_HEX
from .i18n import t
from .models import STATE_OFFLINE, STATE_UPDATED, RenderableFields, StreamStatus, Subscription

PLATFORM_LABELS = {"twitch": "Twitch", "mixer": "Mixer", "youtube": "YouTube"}


def _escape(text: str) -> str:
    return discord.utils.escape_markdown(text or "")


def build_embed(fields: RenderableFields, state: str, locale: str) -> discord.Embed:
    offline = state == STATE_OFFLINE
    title = t(locale, "stream.offline_title", title=fields.title) if offline else fields.title
    embed = discord.Embed(
        title=title[:256],
        url=fields.url,
        description=fields.description[:4096] if fields.description else None,
        color=OFFLINE_COLOR_HEX if offline else fields.color,
        timestamp=fields.timestamp,
    )
    embed.set_author(name=fields.author_name[:256], url=fields.url, icon_url=fields.avatar_url)
    if fields.thumbnail_url:
        embed.set_thumbnail(url=fields.thumbnail_url)
    # Offline-Embeds ohne Live-Vorschau
    if fields.image_url and not offline:
        embed.set_image(url=fields.image_url)
    for name, value, inline in fields.fields[:25]:
        embed.add_field(name=name, value=value or "-", inline=inline)
    if fields.footer_text:
        embed.set_footer(text=fields.footer_text, icon_url=fields.footer_icon_url)
    return embed


def build_content(
    sub: Subscription,
    status: StreamStatus,
    fields: RenderableFields,
    locale: str,
    *,
    everyone: bool,
    mature_banner: bool,
) -> Optional[str]:
    platform = PLATFORM_LABELS.get(status.platform, status.platform)
    username = _escape(status.streamer.display_name or sub.display_name)
    if status.state == STATE_OFFLINE:
        return t(locale, "stream.offline", username=username, platform=platform)

    mention = "@everyone " if everyone else ""
    if sub.message_text:
        try:
            text = sub.message_text.format(username=username, url=fields.url, everyone=mention, platform=platform)
        except (KeyError, IndexError, ValueError):
            text = sub.message_text
        if everyone and "@everyone" not in text:
            text = mention + text
    else:
        key = "stream.updated" if status.state == STATE_UPDATED else "stream.online"
        text = t(locale, key, everyone=mention, username=username, platform=platform)

    if mature_banner:
        text = f"{t(locale, 'stream.mature_banner')}\n{text}"
    return text[:2000]
