from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import List, Sequence

from bot_core.bootstrap import REDACT_KEYS, _RedactSecretsFilter

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024

# Bibliotheken, die auf INFO/DEBUG zu gesprächig sind
QUIET_LOGGERS = {
    "discord": logging.WARNING,
    "discord.http": logging.WARNING,
    "discord.gateway": logging.WARNING,
    "aiohttp": logging.INFO,
    "aiohttp.access": logging.WARNING,
    "aiosqlite": logging.INFO,
}


def _rotating(path: Path, level: int, backups: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=backups, encoding="utf-8")
    handler.setLevel(level)
    return handler


class LoggingMixin:
    """Logging-Setup inkl. Secret-Filter.

    ``logs/stream_bot.log`` (INFO), ``logs/stream_bot.debug.log`` (DEBUG),
    ``logs/webhooks.log`` (nur Webhook-Endpunkt: Handshakes, abgelehnte
    Signaturen) und stdout mit ``level``.
    """

    def setup_logging(self, level: str = "INFO", shard_ids: Sequence[int] = ()):
        log_dir = self.root_dir / "logs"
        log_dir.mkdir(exist_ok=True)
        console_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

        fmt = LOG_FORMAT
        if shard_ids:
            # mehrere Prozesse schreiben in dieselben Dateien
            fmt = LOG_FORMAT.replace("%(name)s", f"[shard {','.join(map(str, shard_ids))}] %(name)s")

        handlers: List[logging.Handler] = [
            _rotating(log_dir / "stream_bot.log", logging.INFO, backups=5),
            _rotating(log_dir / "stream_bot.debug.log", logging.DEBUG, backups=3),
        ]
        stream = logging.StreamHandler(sys.stdout)
        stream.setLevel(console_level)
        handlers.append(stream)

        logging.getLogger().handlers.clear()
        logging.basicConfig(level=logging.DEBUG, handlers=handlers, format=fmt)

        webhook_file = _rotating(log_dir / "webhooks.log", logging.DEBUG, backups=3)
        webhook_file.setFormatter(logging.Formatter(fmt))
        logging.getLogger("StreamNotifications.Webhooks").addHandler(webhook_file)

        for name, lvl in QUIET_LOGGERS.items():
            logging.getLogger(name).setLevel(lvl)

        flt = _RedactSecretsFilter(REDACT_KEYS)
        for h in [*logging.getLogger().handlers, webhook_file]:
            h.addFilter(flt)

        logging.info("Stream Bot logging initialized (console=%s)", logging.getLevelName(console_level))
