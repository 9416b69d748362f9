"""Hybrid command group /streams [...] for guild admins and DM users."""

from __future__ import annotations

import math
from typing import List, Optional, Tuple

import discord
from discord.ext import commands

from .constants import LIST_PAGE_SIZE, MATURE_BEHAVIORS, SCOPE_GUILD
from .errors import InvalidInput, StreamNotificationError
from .i18n import t
from .logger import log
from .models import SubscriberSettings, Subscription


def manage_guild_or_dm():
    """In Guilds ``manage_guild`` verlangen, in DMs gilt der User-Scope."""

    async def predicate(ctx: commands.Context) -> bool:
        if ctx.guild is None:
            return True
        perms = getattr(ctx.author, "guild_permissions", None)
        if perms is not None and perms.manage_guild:
            return True
        raise commands.MissingPermissions(["manage_guild"])

    return commands.check(predicate)


def paginate(items: List[Subscription], page: int, size: int = LIST_PAGE_SIZE) -> Tuple[List[Subscription], int]:
    pages = max(1, math.ceil(len(items) / size))
    if page < 1 or page > pages:
        raise InvalidInput(f"page {page} out of range", page=page, pages=pages)
    start = (page - 1) * size
    return items[start:start + size], pages


class StreamAdminMixin:
    """Commands, die Abos und Einstellungen pro Guild bzw. User verwalten."""

    @commands.hybrid_group(name="streams", with_app_command=True)
    @manage_guild_or_dm()
    async def streams_group(self, ctx: commands.Context):
        if ctx.invoked_subcommand is None:
            settings = await self._settings(ctx)
            await ctx.send(t(settings.locale, "cmd.subcommands"))

    @streams_group.command(name="add")
    @manage_guild_or_dm()
    async def streams_add(self, ctx: commands.Context, platform: str, name: str):
        scope, sid = self._scope_of(ctx)
        settings = await self._settings(ctx)
        if not self._known_platform(platform):
            await ctx.reply(self._unknown_platform(settings, platform))
            return
        try:
            sub = await self.subscriptions.follow(platform, name, scope, sid)
        except StreamNotificationError as exc:
            await ctx.reply(t(settings.locale, exc.string_key))
            return
        except Exception:
            log.exception("streams add fehlgeschlagen")
            await ctx.reply(t(settings.locale, "error.generic"))
            return

        reply = t(settings.locale, "cmd.added", username=sub.display_name, platform=sub.platform)
        if scope == SCOPE_GUILD and not settings.channel_id:
            reply += "\n" + t(settings.locale, "cmd.channel_missing")
        await ctx.reply(reply)

    @streams_group.command(name="remove")
    @manage_guild_or_dm()
    async def streams_remove(self, ctx: commands.Context, platform: str, streamer: str):
        scope, sid = self._scope_of(ctx)
        settings = await self._settings(ctx)
        try:
            sub = await self.subscriptions.find(platform.lower(), streamer, scope, sid)
            await self.subscriptions.unfollow(sub.platform, sub.external_id, scope, sid)
            if (sub.platform, sub.external_id) in settings.everyone:
                settings.everyone.discard((sub.platform, sub.external_id))
                await self._save_settings(settings)
        except StreamNotificationError as exc:
            await ctx.reply(t(settings.locale, exc.string_key))
            return
        except Exception:
            log.exception("streams remove fehlgeschlagen")
            await ctx.reply(t(settings.locale, "error.generic"))
            return
        await ctx.reply(t(settings.locale, "cmd.removed", username=sub.display_name, platform=sub.platform))

    @streams_group.command(name="channel")
    @manage_guild_or_dm()
    async def streams_channel(
        self, ctx: commands.Context, channel: Optional[discord.TextChannel] = None, clear: bool = False
    ):
        settings = await self._settings(ctx)
        try:
            if clear:
                settings.channel_id = None
                await self._save_settings(settings)
                await ctx.reply(t(settings.locale, "cmd.channel_cleared"))
                return
            target = channel or ctx.channel
            settings.channel_id = str(target.id)
            await self._save_settings(settings)
        except Exception:
            log.exception("Konnte Benachrichtigungskanal nicht speichern")
            await ctx.reply(t(settings.locale, "error.generic"))
            return
        mention = getattr(target, "mention", f"<#{target.id}>")
        await ctx.reply(t(settings.locale, "cmd.channel_set", channel=mention))

    @streams_group.command(name="mention")
    @manage_guild_or_dm()
    async def streams_mention(self, ctx: commands.Context, platform: str, streamer: str, enabled: bool):
        scope, sid = self._scope_of(ctx)
        settings = await self._settings(ctx)
        try:
            sub = await self.subscriptions.find(platform.lower(), streamer, scope, sid)
        except StreamNotificationError as exc:
            await ctx.reply(t(settings.locale, exc.string_key))
            return

        key = (sub.platform, sub.external_id)
        if enabled:
            settings.everyone.add(key)
        else:
            settings.everyone.discard(key)
        try:
            await self._save_settings(settings)
        except Exception:
            log.exception("Konnte @everyone-Einstellung nicht speichern")
            await ctx.reply(t(settings.locale, "error.generic"))
            return
        await ctx.reply(t(settings.locale, "cmd.mention_on" if enabled else "cmd.mention_off", username=sub.display_name))

    @streams_group.command(name="mature")
    @manage_guild_or_dm()
    async def streams_mature(self, ctx: commands.Context, behavior: str):
        settings = await self._settings(ctx)
        behavior = behavior.strip().lower()
        if behavior not in MATURE_BEHAVIORS:
            await ctx.reply(t(settings.locale, "cmd.mature_invalid", allowed=", ".join(MATURE_BEHAVIORS)))
            return
        settings.mature_behavior = behavior
        try:
            await self._save_settings(settings)
        except Exception:
            log.exception("Konnte 18+-Verhalten nicht speichern")
            await ctx.reply(t(settings.locale, "error.generic"))
            return
        await ctx.reply(t(settings.locale, "cmd.mature_set", behavior=behavior))

    @streams_group.command(name="message")
    @manage_guild_or_dm()
    async def streams_message(self, ctx: commands.Context, platform: str, streamer: str, *, text: Optional[str] = None):
        scope, sid = self._scope_of(ctx)
        settings = await self._settings(ctx)
        text = (text or "").strip() or None
        try:
            sub = await self.subscriptions.find(platform.lower(), streamer, scope, sid)
            await self.store.set_message_text(sub.platform, sub.external_id, scope, sid, text)
        except StreamNotificationError as exc:
            await ctx.reply(t(settings.locale, exc.string_key))
            return
        except Exception:
            log.exception("streams message fehlgeschlagen")
            await ctx.reply(t(settings.locale, "error.generic"))
            return
        key = "cmd.message_set" if text else "cmd.message_cleared"
        await ctx.reply(t(settings.locale, key, username=sub.display_name))

    @streams_group.command(name="list")
    @manage_guild_or_dm()
    async def streams_list(self, ctx: commands.Context, platform: Optional[str] = None, page: int = 1):
        scope, sid = self._scope_of(ctx)
        settings = await self._settings(ctx)
        try:
            subs = await self.store.subscriptions_for_subscriber(scope, sid, platform.lower() if platform else None)
        except Exception:
            log.exception("Konnte Abo-Liste aus DB lesen")
            await ctx.reply(t(settings.locale, "error.generic"))
            return

        if not subs:
            await ctx.reply(t(settings.locale, "cmd.list_empty"))
            return
        try:
            chunk, pages = paginate(subs, page)
        except InvalidInput as exc:
            await ctx.reply(t(settings.locale, "cmd.list_page_invalid", page=page, pages=exc.details["pages"]))
            return

        def _fmt(sub: Subscription) -> str:
            tail = " 📣" if (sub.platform, sub.external_id) in settings.everyone else ""
            return f"- **{sub.display_name}** ({sub.platform}, `{sub.external_id}`){tail}"

        lines = [t(settings.locale, "cmd.list_header", page=page, pages=pages)]
        lines.extend(_fmt(s) for s in chunk)
        await ctx.reply("\n".join(lines)[:1900])

    # -------------------------------------------------------
    # Helpers
    # -------------------------------------------------------
    async def _settings(self, ctx: commands.Context) -> SubscriberSettings:
        scope, sid = self._scope_of(ctx)
        return await self.store.get_settings(scope, sid)

    async def _save_settings(self, settings: SubscriberSettings) -> None:
        await self.store.save_settings(settings)
        self.dispatcher.invalidate_settings(settings.subscriber_scope, settings.subscriber_id)

    def _known_platform(self, platform: str) -> bool:
        return (platform or "").lower() in self.providers

    def _unknown_platform(self, settings: SubscriberSettings, platform: str) -> str:
        available = ", ".join(sorted(self.providers)) or "-"
        return t(settings.locale, "cmd.unknown_platform", platform=platform, available=available)
