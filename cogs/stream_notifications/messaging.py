"""Discord side of the dispatcher: send/edit/delete with a uniform error model."""

from __future__ import annotations

from typing import Optional

import discord
from discord.ext import commands

from .errors import DeliveryFailed
from .logger import log


class DiscordMessenger:
    """
    Wraps the bot for the dispatcher.

    Every Discord error is turned into ``DeliveryFailed``; ``NotFound``
    (message, channel or user gone) sets ``stale=True``.
    """

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    def has_guild(self, guild_id: str) -> bool:
        try:
            return self.bot.get_guild(int(guild_id)) is not None
        except (TypeError, ValueError):
            return False

    async def _channel(self, channel_id: str) -> discord.abc.Messageable:
        try:
            cid = int(channel_id)
        except (TypeError, ValueError):
            raise DeliveryFailed(f"invalid channel id {channel_id!r}", stale=True)
        channel = self.bot.get_channel(cid)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(cid)
            except discord.NotFound:
                raise DeliveryFailed(f"channel {cid} not found", stale=True)
            except discord.HTTPException as exc:
                raise DeliveryFailed(f"channel {cid}: {exc}")
        if not isinstance(channel, discord.abc.Messageable):
            raise DeliveryFailed(f"channel {cid} is not messageable", stale=True)
        return channel

    async def send_message(self, channel_id: str, content: Optional[str], embed: Optional[discord.Embed]) -> str:
        channel = await self._channel(channel_id)
        try:
            message = await channel.send(
                content=content or None,
                embed=embed,
                allowed_mentions=discord.AllowedMentions(everyone=True, roles=False, users=False),
            )
        except discord.NotFound as exc:
            raise DeliveryFailed(str(exc), stale=True)
        except discord.HTTPException as exc:
            raise DeliveryFailed(str(exc))
        return str(message.id)

    async def edit_message(
        self, channel_id: str, message_id: str, content: Optional[str], embed: Optional[discord.Embed]
    ) -> None:
        channel = await self._channel(channel_id)
        partial = getattr(channel, "get_partial_message", None)
        if partial is None:
            raise DeliveryFailed(f"channel {channel_id} has no messages", stale=True)
        try:
            await partial(int(message_id)).edit(content=content or None, embed=embed)
        except discord.NotFound as exc:
            raise DeliveryFailed(str(exc), stale=True)
        except discord.HTTPException as exc:
            raise DeliveryFailed(str(exc))

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        channel = await self._channel(channel_id)
        partial = getattr(channel, "get_partial_message", None)
        if partial is None:
            return
        try:
            await partial(int(message_id)).delete()
        except discord.NotFound:
            log.debug("Nachricht %s war bereits gelöscht", message_id)
        except discord.HTTPException as exc:
            raise DeliveryFailed(str(exc))

    async def open_dm(self, user_id: str) -> str:
        try:
            uid = int(user_id)
        except (TypeError, ValueError):
            raise DeliveryFailed(f"invalid user id {user_id!r}", stale=True)
        user = self.bot.get_user(uid)
        try:
            if user is None:
                user = await self.bot.fetch_user(uid)
            dm = user.dm_channel or await user.create_dm()
        except discord.NotFound as exc:
            raise DeliveryFailed(str(exc), stale=True)
        except discord.HTTPException as exc:
            raise DeliveryFailed(str(exc))
        return str(dm.id)
