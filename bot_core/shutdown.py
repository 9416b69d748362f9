from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from bot_core.master_bot import StreamBot

__all__ = ["graceful_shutdown"]

_shutdown_started = False


async def graceful_shutdown(
    bot: StreamBot,
    reason: str = "signal",
    timeout_close: float = 8.0,
    timeout_total: float = 10.0,
    keep: Iterable[asyncio.Task] = (),
) -> None:
    global _shutdown_started
    if _shutdown_started:
        return
    _shutdown_started = True

    logging.info("Graceful shutdown initiated (%s) ...", reason)

    # 1) Bot sauber schließen (Cog-Unload persistiert Webhooks, stoppt Loops)
    try:
        await asyncio.wait_for(bot.close(), timeout=timeout_close)
        logging.info("bot.close() returned")
    except asyncio.TimeoutError:
        logging.error("bot.close() timed out after %.1fs", timeout_close)
    except Exception as e:
        logging.error("Error during bot.close(): %s", e)

    # 2) Übrige Tasks abbrechen (außer dieser und den explizit behaltenen)
    skip = {asyncio.current_task(), *keep}
    pending = [t for t in asyncio.all_tasks() if t not in skip and not t.done()]
    for t in pending:
        t.cancel()
    if pending:
        done, still_pending = await asyncio.wait(pending, timeout=max(0.1, timeout_total - timeout_close))
        if still_pending:
            logging.warning("%d Tasks haben den Abbruch nicht rechtzeitig quittiert", len(still_pending))
