# main_bot.py
# Stream Notification Bot – Bootstrap, Signal-Handling, Start

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from bot_core import BotControlCog, StreamBot, bootstrap_runtime, graceful_shutdown
from service.config import get_settings


async def main() -> int:
    bootstrap_runtime()
    settings = get_settings()

    token = settings.discord_token.get_secret_value() if settings.discord_token else ""
    if not token:
        logging.critical("DISCORD_TOKEN fehlt in ENV/.env/Tresor")
        return 1

    bot = StreamBot(settings)
    await bot.add_cog(BotControlCog(bot))

    main_task = asyncio.current_task()
    loop = asyncio.get_running_loop()

    def _on_signal(signame: str) -> None:
        logging.info("Received %s, shutting down gracefully...", signame)
        loop.create_task(graceful_shutdown(bot, reason=signame, keep=[main_task]))

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig.name)
        except (NotImplementedError, RuntimeError):
            # Windows: kein add_signal_handler, Ctrl+C kommt als KeyboardInterrupt
            logging.debug("Signal-Handler für %s nicht verfügbar", sig.name)

    try:
        await bot.start(token)
    except Exception:
        logging.exception("Bot crashed")
        return 1
    finally:
        if not bot.is_closed():
            await bot.close()
    return 0


def run() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Keyboard interrupt received, exiting")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
