from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import List

import keyring
from dotenv import load_dotenv
from keyring.errors import KeyringError

from service.config import VAULT_KEYS, VAULT_SERVICE_NAME, reload_settings

# Werte dieser Keys tauchen nie im Log auf
REDACT_KEYS = [
    "DISCORD_TOKEN",
    "TWITCH_CLIENT_SECRET",
    "YOUTUBE_API_KEY",
    "SHARD_BRIDGE_SECRET",
]


def _load_secrets_from_keyring() -> None:
    """
    Lädt Secrets aus dem OS-Tresor (keyring) und injiziert sie in os.environ.
    Service Name: 'StreamNotifyBot'
    """
    loaded_keys = []
    for key in VAULT_KEYS:
        try:
            # Variante 1: Adresse=StreamNotifyBot, Benutzer=KEY
            val = keyring.get_password(VAULT_SERVICE_NAME, key)
            # Variante 2: Adresse=KEY@StreamNotifyBot, Benutzer=KEY
            if not val:
                val = keyring.get_password(f"{key}@{VAULT_SERVICE_NAME}", key)
        except KeyringError as exc:
            logging.getLogger().debug("Tresor-Lookup für %s fehlgeschlagen: %r", key, exc)
            continue
        if val:
            os.environ[key] = val
            loaded_keys.append(key)

    if loaded_keys:
        logging.getLogger().info(
            "🔐 %d Secrets aus Tresor (%s) geladen: %s", len(loaded_keys), VAULT_SERVICE_NAME, ", ".join(loaded_keys)
        )


def _load_env_robust() -> str | None:
    """Load the first .env found (DOTENV_PATH, repo root, ~/Documents), then the vault."""
    candidates: List[Path] = []
    custom = os.getenv("DOTENV_PATH")
    if custom:
        candidates.append(Path(custom))

    here = Path(__file__).resolve()
    candidates.append(here.parent.parent / ".env")
    candidates.append(Path.home() / "Documents" / ".env")

    loaded = None
    for path in candidates:
        try:
            if path.exists():
                load_dotenv(dotenv_path=str(path), override=False)
                logging.getLogger().info(".env geladen: %s", path)
                loaded = str(path)
                break
        except OSError as exc:
            logging.getLogger().debug("Konnte .env nicht laden (%s): %r", path, exc)

    # NACH dem Laden der Datei: Tresor checken und ggf. überschreiben
    _load_secrets_from_keyring()
    return loaded


def _mask_tail(secret: str, keep: int = 4) -> str:
    if not secret:
        return ""
    text = str(secret)
    if len(text) <= keep:
        return "*" * len(text)
    return "*" * (len(text) - keep) + text[-keep:]


def _log_secret_present(name: str, env_keys: List[str], mode: str = "off") -> None:
    try:
        value = None
        for key in env_keys:
            env_val = os.getenv(key)
            if env_val:
                value = env_val
                break
        if mode == "off":
            return
        if not value:
            logging.warning("%s: fehlt", name)
            return
        if mode == "masked":
            logging.info("%s: %s", name, _mask_tail(value))
        else:
            logging.info("%s: vorhanden (Wert wird nicht geloggt)", name)
    except Exception as exc:
        logging.getLogger().debug("Secret-Check fehlgeschlagen (%s): %r", name, exc)


class _RedactSecretsFilter(logging.Filter):
    def __init__(self, keys: List[str]):
        super().__init__()
        self.secrets = [os.getenv(k) for k in keys if os.getenv(k)]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        try:
            msg = str(record.getMessage())
            redacted = msg
            for secret in self.secrets:
                if secret and secret in redacted:
                    redacted = redacted.replace(secret, "***REDACTED***")
            # getMessage() hat args bereits eingesetzt, daher args leeren,
            # sonst formatiert der Formatter ein zweites Mal.
            record.msg = redacted
            record.args = ()
        except Exception:
            # NIEMALS im Filter loggen -> Endlosschleife!
            pass
        return True


def _configure_root_logging() -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(level=logging.INFO, handlers=[logging.StreamHandler(sys.stdout)])


def _log_runtime_info() -> None:
    logging.getLogger().info("PYTHON exe=%s", sys.executable)
    logging.getLogger().info("CWD=%s", os.getcwd())


def bootstrap_runtime() -> None:
    """
    Early process bootstrap: basic logging, .env and keyring secrets.
    """
    _configure_root_logging()
    _load_env_robust()
    # Settings wurden beim Import schon gebaut, jetzt mit .env/Tresor neu einlesen
    reload_settings()
    _log_runtime_info()


__all__ = [
    "REDACT_KEYS",
    "_RedactSecretsFilter",
    "_load_env_robust",
    "_log_secret_present",
    "_mask_tail",
    "bootstrap_runtime",
]
