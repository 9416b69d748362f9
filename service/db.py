# =========================================
# StreamNotify – Zentrale SQLite-DB (aiosqlite)
# =========================================
# - Eine SQLite-Datei für alle Shards eines Clusters.
# - Konfiguration:
#     STREAMS_DB_PATH  -> kompletter Dateipfad (höchste Priorität)
#     STREAMS_DB_DIR   -> Verzeichnis; Datei heißt dann streams.sqlite3
# - WAL, FOREIGN_KEYS, Busy-Timeout aktiviert.
# - Schema idempotent (CREATE TABLE IF NOT EXISTS), keine Migrations-Engine.
# =========================================

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import aiosqlite

log = logging.getLogger(__name__)

ENV_DB_PATH = "STREAMS_DB_PATH"
ENV_DB_DIR = "STREAMS_DB_DIR"
DB_NAME = "streams.sqlite3"
MEMORY = ":memory:"

DB_BUSY_TIMEOUT_MS = int(os.environ.get("STREAMS_DB_BUSY_TIMEOUT_MS", "15000"))


def _default_dir() -> str:
    # Windows: %USERPROFILE%\Documents\StreamNotify
    up = os.environ.get("USERPROFILE")
    if up:
        return str(Path(up) / "Documents" / "StreamNotify")
    return str(Path.home() / "Documents" / "StreamNotify")


def resolve_db_path(explicit: Optional[str] = None) -> str:
    """
    Ermittelt den DB-Pfad.
    Prio:
      1) explizit übergeben (z. B. aus Settings)
      2) STREAMS_DB_PATH
      3) STREAMS_DB_DIR + DB_NAME
      4) Default-Verzeichnis + DB_NAME
    """
    if explicit:
        return str(explicit)
    p = os.environ.get(ENV_DB_PATH)
    if p:
        return str(Path(p))
    d = os.environ.get(ENV_DB_DIR) or _default_dir()
    return str(Path(d) / DB_NAME)


async def connect(path: Optional[str] = None) -> aiosqlite.Connection:
    """Open a connection, apply PRAGMAs and make sure the schema exists."""
    target = resolve_db_path(path)
    if target != MEMORY:
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(target)
    conn.row_factory = aiosqlite.Row
    if target != MEMORY:
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA synchronous=NORMAL;")
    await conn.execute("PRAGMA foreign_keys=ON;")
    await conn.execute(f"PRAGMA busy_timeout={DB_BUSY_TIMEOUT_MS};")
    await init_schema(conn)
    log.info("Stream-DB verbunden: %s", target)
    return conn


async def init_schema(conn: aiosqlite.Connection) -> None:
    await conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS schema_version(
          version INTEGER NOT NULL
        );
        INSERT INTO schema_version(version)
          SELECT 1 WHERE NOT EXISTS(SELECT 1 FROM schema_version);

        -- eine Zeile pro (Streamer, Abonnent)
        CREATE TABLE IF NOT EXISTS stream_subscriptions(
          platform         TEXT NOT NULL,
          external_id      TEXT NOT NULL,
          subscriber_scope TEXT NOT NULL,
          subscriber_id    TEXT NOT NULL,
          display_name     TEXT NOT NULL,
          message_text     TEXT,
          created_at       TEXT NOT NULL DEFAULT (datetime('now')),
          PRIMARY KEY(platform, external_id, subscriber_scope, subscriber_id)
        );
        CREATE INDEX IF NOT EXISTS idx_stream_subscriptions_subscriber
          ON stream_subscriptions(subscriber_scope, subscriber_id);

        -- Kanal, 18+-Verhalten, Sprache pro Guild/User
        CREATE TABLE IF NOT EXISTS stream_subscriber_settings(
          subscriber_scope TEXT NOT NULL,
          subscriber_id    TEXT NOT NULL,
          channel_id       TEXT,
          mature_behavior  TEXT NOT NULL DEFAULT 'nothing',
          locale           TEXT NOT NULL DEFAULT 'de',
          PRIMARY KEY(subscriber_scope, subscriber_id)
        );

        -- Streamer, für die @everyone aktiv ist
        CREATE TABLE IF NOT EXISTS stream_everyone(
          subscriber_scope TEXT NOT NULL,
          subscriber_id    TEXT NOT NULL,
          platform         TEXT NOT NULL,
          external_id      TEXT NOT NULL,
          PRIMARY KEY(subscriber_scope, subscriber_id, platform, external_id)
        );

        -- höchstens eine Live-Nachricht pro (Abonnent, Streamer)
        CREATE TABLE IF NOT EXISTS stream_notifications(
          subscriber_scope TEXT NOT NULL,
          subscriber_id    TEXT NOT NULL,
          platform         TEXT NOT NULL,
          external_id      TEXT NOT NULL,
          stream_id        TEXT NOT NULL,
          channel_id       TEXT NOT NULL,
          message_id       TEXT NOT NULL,
          sent_at          TEXT NOT NULL,
          payload_json     TEXT,
          PRIMARY KEY(subscriber_scope, subscriber_id, platform, external_id)
        );
        CREATE INDEX IF NOT EXISTS idx_stream_notifications_streamer
          ON stream_notifications(platform, external_id);

        -- WebSub-Leases über Neustarts hinweg
        CREATE TABLE IF NOT EXISTS stream_webhooks(
          hook_id       TEXT PRIMARY KEY,
          platform      TEXT NOT NULL,
          streamer_id   TEXT NOT NULL,
          secret        TEXT NOT NULL,
          lease_seconds INTEGER NOT NULL,
          registered_at TEXT,
          saved_at      TEXT NOT NULL
        );
        """
    )
    await conn.commit()


__all__ = ["DB_NAME", "MEMORY", "connect", "init_schema", "resolve_db_path"]
