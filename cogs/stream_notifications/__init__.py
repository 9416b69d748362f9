"""Package entry point for the stream notification cog."""

from .cog import StreamNotificationsCog
from .logger import log


async def setup(bot):
    """Add the stream notification cog to the bot."""

    existing = bot.get_command("streams")
    if existing is not None:
        # Stale Command-Objekt nach fehlgeschlagenem Reload entfernen,
        # sonst schlägt add_cog mit CommandRegistrationError fehl.
        bot.remove_command(existing.name)
        log.info("Removed pre-existing streams command before adding cog")

    await bot.add_cog(StreamNotificationsCog(bot))
