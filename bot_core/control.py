from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

if TYPE_CHECKING:
    from bot_core.master_bot import StreamBot

__all__ = ["BotControlCog", "is_bot_owner"]

STREAM_COG_NAME = "StreamNotificationsCog"


def is_bot_owner():
    async def predicate(ctx):
        return await ctx.bot.is_owner(ctx.author)

    return commands.check(predicate)


class BotControlCog(commands.Cog):
    """Owner-Kommandos für Betrieb und Diagnose"""

    def __init__(self, bot: StreamBot):
        self.bot = bot

    def _stream_cog(self):
        return self.bot.get_cog(STREAM_COG_NAME)

    @commands.group(name="botctl", invoke_without_command=True, aliases=["ctl"])
    @is_bot_owner()
    async def botctl(self, ctx):
        p = self.bot.settings.command_prefix
        embed = discord.Embed(
            title="🤖 Bot Kontrolle",
            description="Betrieb der Stream-Benachrichtigungen",
            color=0x0099FF,
        )
        embed.add_field(
            name="📋 Commands",
            value=(
                f"`{p}botctl status` - Status von Providern, Dispatcher, Webhooks\n"
                f"`{p}botctl poll` - Alle Provider sofort abfragen\n"
                f"`{p}botctl sweep` - Alte Benachrichtigungen jetzt aufräumen\n"
                f"`{p}botctl reload` - Stream-Cog neu laden\n"
                f"`{p}botctl shutdown` - Bot beenden"
            ),
            inline=False,
        )
        await ctx.send(embed=embed)

    @botctl.command(name="status", aliases=["s"])
    @is_bot_owner()
    async def botctl_status(self, ctx):
        embed = discord.Embed(
            title="📊 Bot Status",
            description=f"Bot läuft seit: {self.bot.startup_time.strftime('%d.%m.%Y %H:%M:%S')}",
            color=0x00FF00,
        )
        embed.add_field(
            name="🔧 System",
            value=(
                f"Guilds: {len(self.bot.guilds)}\n"
                f"Shards: {self.bot.shard_ids or [0]} / {self.bot.shard_count or 1}"
            ),
            inline=True,
        )

        cog = self._stream_cog()
        if cog is None:
            embed.color = 0xFF0000
            embed.add_field(name="⚠️ Streams", value="Cog nicht geladen", inline=False)
            await ctx.send(embed=embed)
            return

        providers = [
            f"{'✅' if p.running else '⏸️'} {name}: {len(p.tracked())} Streamer"
            for name, p in sorted(cog.providers.items())
        ]
        embed.add_field(name="📡 Provider", value="\n".join(providers) or "keine", inline=True)

        if cog.dispatcher is not None:
            embed.add_field(
                name="📨 Dispatcher",
                value=(
                    f"Läuft: {'ja' if cog.dispatcher.running else 'nein'}\n"
                    f"Zugestellt: {cog.dispatcher.delivered}\n"
                    f"Fehler: {cog.dispatcher.failures}\n"
                    f"Queue: {cog.queue.qsize()}"
                ),
                inline=True,
            )
        if cog.endpoint is not None:
            embed.add_field(
                name="🪝 Webhooks",
                value=f"Hooks: {len(cog.endpoint.hooks)}\nAbgelehnt: {cog.endpoint.rejected}",
                inline=True,
            )
        if cog.bridge is not None:
            embed.add_field(
                name="🔀 Bridge",
                value=f"Lead: {'ja' if cog.bridge.is_lead else 'nein'}\nWeitergeleitet: {cog.bridge.forwarded}",
                inline=True,
            )
        await ctx.send(embed=embed)

    @botctl.command(name="poll")
    @is_bot_owner()
    async def botctl_poll(self, ctx):
        cog = self._stream_cog()
        if cog is None or not cog.is_lead:
            await ctx.send("❌ Polling läuft nur auf dem Lead-Shard.")
            return
        await ctx.send("Prüfe jetzt…")
        lines = []
        for name, provider in sorted(cog.providers.items()):
            try:
                emitted = await provider.poll_once()
                lines.append(f"✅ {name}: {emitted} Events")
            except Exception as exc:
                logging.exception("Forcepoll für %s fehlgeschlagen", name)
                lines.append(f"❌ {name}: {str(exc)[:80]}")
        await ctx.send("\n".join(lines) or "Keine Provider aktiv.")

    @botctl.command(name="sweep")
    @is_bot_owner()
    async def botctl_sweep(self, ctx):
        cog = self._stream_cog()
        if cog is None or cog.sweeper is None:
            await ctx.send("❌ Stream-Cog nicht geladen.")
            return
        try:
            removed = await cog.sweeper.sweep()
        except Exception:
            logging.exception("Manueller Cleanup fehlgeschlagen")
            await ctx.send("❌ Cleanup fehlgeschlagen.")
            return
        await ctx.send(f"🧹 {removed} Benachrichtigungen entfernt.")

    @botctl.command(name="reload", aliases=["rl"])
    @is_bot_owner()
    async def botctl_reload(self, ctx):
        ok, msg = await self.bot.reload_cog("cogs.stream_notifications")
        embed = discord.Embed(title="🔄 Cog Reload", description=msg, color=0x00FF00 if ok else 0xFF0000)
        await ctx.send(embed=embed)

    @botctl.command(name="shutdown", aliases=["stop", "quit"])
    @is_bot_owner()
    async def botctl_shutdown(self, ctx):
        embed = discord.Embed(title="🛑 Bot wird beendet", description="Bot fährt herunter...", color=0xFF0000)
        await ctx.send(embed=embed)
        logging.info("Shutdown initiated by %s", ctx.author)
        await self.bot.close()
