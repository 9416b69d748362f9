import logging
import os
from typing import List, Optional

import keyring
from keyring.errors import KeyringError
from pydantic import Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)

VAULT_SERVICE_NAME = "StreamNotifyBot"
VAULT_KEYS = [
    "DISCORD_TOKEN",
    "TWITCH_CLIENT_ID",
    "TWITCH_CLIENT_SECRET",
    "YOUTUBE_API_KEY",
    "MIXER_CLIENT_ID",
    "SHARD_BRIDGE_SECRET",
]


def _load_vault_secrets():
    """Injiziert Secrets aus dem OS-Tresor (keyring) in os.environ."""
    try:
        for key in VAULT_KEYS:
            val = keyring.get_password(VAULT_SERVICE_NAME, key)
            if val:
                os.environ[key] = val
    except KeyringError as e:
        log.warning("Fehler beim Laden aus Tresor: %s", e)


# Vor der Klassen-Definition aufrufen!
_load_vault_secrets()


class Settings(BaseSettings):
    # --- Bot Core ---
    discord_token: Optional[SecretStr] = Field(None, alias="DISCORD_TOKEN")
    owner_id: int = Field(0, alias="OWNER_ID")
    command_prefix: str = Field("!", alias="COMMAND_PREFIX")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    default_locale: str = Field("de", alias="STREAMS_DEFAULT_LOCALE")

    # --- Database ---
    streams_db_path: Optional[str] = Field(None, alias="STREAMS_DB_PATH")

    # --- Plattformen ---
    providers: str = Field("twitch,youtube", alias="STREAMS_PROVIDERS")
    twitch_client_id: Optional[str] = Field(None, alias="TWITCH_CLIENT_ID")
    twitch_client_secret: Optional[SecretStr] = Field(None, alias="TWITCH_CLIENT_SECRET")
    twitch_use_webhooks: bool = Field(False, alias="STREAMS_TWITCH_WEBHOOKS")
    twitch_poll_seconds: float = Field(150.0, alias="STREAMS_TWITCH_POLL_SECONDS")
    youtube_api_key: Optional[SecretStr] = Field(None, alias="YOUTUBE_API_KEY")
    youtube_poll_seconds: float = Field(180.0, alias="STREAMS_YOUTUBE_POLL_SECONDS")
    mixer_client_id: Optional[str] = Field(None, alias="MIXER_CLIENT_ID")
    mixer_poll_seconds: float = Field(150.0, alias="STREAMS_MIXER_POLL_SECONDS")

    # --- Webhooks (WebSub) ---
    webhook_host: str = Field("0.0.0.0", alias="STREAMS_WEBHOOK_HOST")
    webhook_port: int = Field(8790, alias="STREAMS_WEBHOOK_PORT")
    webhook_domain: str = Field("localhost", alias="STREAMS_WEBHOOK_DOMAIN")
    webhook_path: str = Field("/webhooks", alias="STREAMS_WEBHOOK_PATH")
    webhook_secure: bool = Field(True, alias="STREAMS_WEBHOOK_SECURE")
    webhook_lease_seconds: int = Field(864000, alias="STREAMS_WEBHOOK_LEASE_SECONDS")

    # --- Cleanup ---
    retention_hours: float = Field(24.0, alias="STREAMS_RETENTION_HOURS")
    sweep_interval_hours: float = Field(24.0, alias="STREAMS_SWEEP_INTERVAL_HOURS")

    # --- Sharding ---
    shard_count: int = Field(1, alias="SHARD_COUNT")
    shard_ids_raw: str = Field("", alias="SHARD_IDS")
    bridge_host: str = Field("127.0.0.1", alias="SHARD_BRIDGE_HOST")
    bridge_port: int = Field(45680, alias="SHARD_BRIDGE_PORT")
    bridge_secret: Optional[SecretStr] = Field(None, alias="SHARD_BRIDGE_SECRET")
    shard_peers: str = Field("", alias="SHARD_PEERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars
        populate_by_name=True,
    )

    @property
    def enabled_providers(self) -> List[str]:
        return [p.strip().lower() for p in self.providers.split(",") if p.strip()]

    @property
    def shard_ids(self) -> List[int]:
        """``SHARD_IDS="0,1"``; leer = alle Shards in diesem Prozess."""
        raw = [p.strip() for p in self.shard_ids_raw.split(",") if p.strip()]
        if not raw:
            return list(range(max(1, self.shard_count)))
        return [int(p) for p in raw]

    @property
    def sharded(self) -> bool:
        return self.shard_count > 1


def _build_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        # Fallback für kaputte ENV-Werte: Defaults statt Import-Fehler
        log.warning("Config loading warning: %s", e)
        return Settings.model_construct()


# Singleton instance
settings = _build_settings()


def get_settings() -> Settings:
    """Return the shared settings instance used across the bot."""
    return settings


def reload_settings() -> Settings:
    """Neu einlesen, nachdem bootstrap .env und Tresor geladen hat."""
    global settings
    settings = _build_settings()
    return settings


__all__ = ["Settings", "settings", "get_settings", "reload_settings"]
