from __future__ import annotations

# Re-exported helpers for convenience
from .bootstrap import (
    _RedactSecretsFilter,
    _load_env_robust,
    _log_secret_present,
    bootstrap_runtime,
)
from .control import BotControlCog, is_bot_owner
from .master_bot import EXTENSIONS, StreamBot
from .shutdown import graceful_shutdown

__all__ = [
    "BotControlCog",
    "EXTENSIONS",
    "StreamBot",
    "graceful_shutdown",
    "_RedactSecretsFilter",
    "_load_env_robust",
    "_log_secret_present",
    "bootstrap_runtime",
    "is_bot_owner",
]
