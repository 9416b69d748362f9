"""Keyed CRUD for subscriptions, settings, notification records and webhook leases."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import aiosqlite

from .models import (
    NotificationRecord,
    RegisteredHook,
    StreamerRef,
    SubscriberSettings,
    Subscription,
    dumps_payload,
    from_iso,
    loads_payload,
    to_iso,
    utcnow,
)


class StreamStore:
    """Thin async wrapper around the shared aiosqlite connection.

    Every write is a single statement (or one short batch) followed by a
    commit; nothing here relies on multi-row transactions.
    """

    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn

    # ---------- Subscriptions ----------
    async def add_subscription(self, sub: Subscription) -> bool:
        cur = await self.conn.execute(
            """
            INSERT OR IGNORE INTO stream_subscriptions
              (platform, external_id, subscriber_scope, subscriber_id, display_name, message_text)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                sub.platform,
                sub.external_id,
                sub.subscriber_scope,
                sub.subscriber_id,
                sub.display_name,
                sub.message_text,
            ),
        )
        await self.conn.commit()
        return cur.rowcount > 0

    async def get_subscription(
        self, platform: str, external_id: str, scope: str, subscriber_id: str
    ) -> Optional[Subscription]:
        cur = await self.conn.execute(
            """
            SELECT * FROM stream_subscriptions
            WHERE platform = ? AND external_id = ? AND subscriber_scope = ? AND subscriber_id = ?
            """,
            (platform, external_id, scope, subscriber_id),
        )
        row = await cur.fetchone()
        await cur.close()
        return _row_to_subscription(row) if row else None

    async def delete_subscription(
        self, platform: str, external_id: str, scope: str, subscriber_id: str
    ) -> bool:
        cur = await self.conn.execute(
            """
            DELETE FROM stream_subscriptions
            WHERE platform = ? AND external_id = ? AND subscriber_scope = ? AND subscriber_id = ?
            """,
            (platform, external_id, scope, subscriber_id),
        )
        await self.conn.commit()
        return cur.rowcount > 0

    async def subscriptions_for_streamer(self, platform: str, external_id: str) -> List[Subscription]:
        cur = await self.conn.execute(
            """
            SELECT * FROM stream_subscriptions
            WHERE platform = ? AND external_id = ?
            ORDER BY created_at, subscriber_scope, subscriber_id
            """,
            (platform, external_id),
        )
        rows = await cur.fetchall()
        await cur.close()
        return [_row_to_subscription(r) for r in rows]

    async def subscriptions_for_subscriber(
        self, scope: str, subscriber_id: str, platform: Optional[str] = None
    ) -> List[Subscription]:
        sql = "SELECT * FROM stream_subscriptions WHERE subscriber_scope = ? AND subscriber_id = ?"
        params: Tuple = (scope, subscriber_id)
        if platform:
            sql += " AND platform = ?"
            params += (platform,)
        sql += " ORDER BY platform, lower(display_name)"
        cur = await self.conn.execute(sql, params)
        rows = await cur.fetchall()
        await cur.close()
        return [_row_to_subscription(r) for r in rows]

    async def count_subscribers(self, platform: str, external_id: str) -> int:
        cur = await self.conn.execute(
            "SELECT COUNT(*) FROM stream_subscriptions WHERE platform = ? AND external_id = ?",
            (platform, external_id),
        )
        row = await cur.fetchone()
        await cur.close()
        return int(row[0]) if row else 0

    async def tracked_streamers(self, platform: Optional[str] = None) -> List[StreamerRef]:
        sql = "SELECT platform, external_id, MAX(display_name) AS display_name FROM stream_subscriptions"
        params: Tuple = ()
        if platform:
            sql += " WHERE platform = ?"
            params = (platform,)
        sql += " GROUP BY platform, external_id ORDER BY platform, external_id"
        cur = await self.conn.execute(sql, params)
        rows = await cur.fetchall()
        await cur.close()
        return [StreamerRef(r["platform"], r["external_id"], r["display_name"]) for r in rows]

    async def rename_streamer(self, platform: str, external_id: str, display_name: str) -> int:
        cur = await self.conn.execute(
            """
            UPDATE stream_subscriptions SET display_name = ?
            WHERE platform = ? AND external_id = ? AND display_name != ?
            """,
            (display_name, platform, external_id, display_name),
        )
        await self.conn.commit()
        return cur.rowcount

    async def set_message_text(
        self, platform: str, external_id: str, scope: str, subscriber_id: str, text: Optional[str]
    ) -> bool:
        cur = await self.conn.execute(
            """
            UPDATE stream_subscriptions SET message_text = ?
            WHERE platform = ? AND external_id = ? AND subscriber_scope = ? AND subscriber_id = ?
            """,
            (text, platform, external_id, scope, subscriber_id),
        )
        await self.conn.commit()
        return cur.rowcount > 0

    # ---------- Settings ----------
    async def get_settings(self, scope: str, subscriber_id: str) -> SubscriberSettings:
        cur = await self.conn.execute(
            "SELECT * FROM stream_subscriber_settings WHERE subscriber_scope = ? AND subscriber_id = ?",
            (scope, subscriber_id),
        )
        row = await cur.fetchone()
        await cur.close()

        settings = SubscriberSettings(subscriber_scope=scope, subscriber_id=subscriber_id)
        if row:
            settings.channel_id = row["channel_id"]
            settings.mature_behavior = row["mature_behavior"]
            settings.locale = row["locale"]

        cur = await self.conn.execute(
            "SELECT platform, external_id FROM stream_everyone WHERE subscriber_scope = ? AND subscriber_id = ?",
            (scope, subscriber_id),
        )
        rows = await cur.fetchall()
        await cur.close()
        settings.everyone = {(r["platform"], r["external_id"]) for r in rows}
        return settings

    async def save_settings(self, settings: SubscriberSettings) -> None:
        scope, sid = settings.subscriber_scope, settings.subscriber_id
        await self.conn.execute(
            """
            INSERT INTO stream_subscriber_settings (subscriber_scope, subscriber_id, channel_id, mature_behavior, locale)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(subscriber_scope, subscriber_id) DO UPDATE
            SET channel_id = excluded.channel_id,
                mature_behavior = excluded.mature_behavior,
                locale = excluded.locale
            """,
            (scope, sid, settings.channel_id, settings.mature_behavior, settings.locale),
        )
        await self.conn.execute(
            "DELETE FROM stream_everyone WHERE subscriber_scope = ? AND subscriber_id = ?",
            (scope, sid),
        )
        await self.conn.executemany(
            """
            INSERT OR IGNORE INTO stream_everyone (subscriber_scope, subscriber_id, platform, external_id)
            VALUES (?, ?, ?, ?)
            """,
            [(scope, sid, platform, ext) for platform, ext in sorted(settings.everyone)],
        )
        await self.conn.commit()

    # ---------- Notifications ----------
    async def get_notification(
        self, scope: str, subscriber_id: str, platform: str, external_id: str
    ) -> Optional[NotificationRecord]:
        cur = await self.conn.execute(
            """
            SELECT * FROM stream_notifications
            WHERE subscriber_scope = ? AND subscriber_id = ? AND platform = ? AND external_id = ?
            """,
            (scope, subscriber_id, platform, external_id),
        )
        row = await cur.fetchone()
        await cur.close()
        return _row_to_record(row) if row else None

    async def upsert_notification(self, record: NotificationRecord) -> None:
        await self.conn.execute(
            """
            INSERT INTO stream_notifications
              (subscriber_scope, subscriber_id, platform, external_id,
               stream_id, channel_id, message_id, sent_at, payload_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(subscriber_scope, subscriber_id, platform, external_id) DO UPDATE
            SET stream_id = excluded.stream_id,
                channel_id = excluded.channel_id,
                message_id = excluded.message_id,
                sent_at = excluded.sent_at,
                payload_json = excluded.payload_json
            """,
            (
                record.subscriber_scope,
                record.subscriber_id,
                record.platform,
                record.external_id,
                record.stream_id,
                record.channel_id,
                record.message_id,
                to_iso(record.sent_at),
                dumps_payload(record.payload),
            ),
        )
        await self.conn.commit()

    async def delete_notification(
        self, scope: str, subscriber_id: str, platform: str, external_id: str
    ) -> bool:
        cur = await self.conn.execute(
            """
            DELETE FROM stream_notifications
            WHERE subscriber_scope = ? AND subscriber_id = ? AND platform = ? AND external_id = ?
            """,
            (scope, subscriber_id, platform, external_id),
        )
        await self.conn.commit()
        return cur.rowcount > 0

    async def all_notifications(self) -> List[NotificationRecord]:
        cur = await self.conn.execute("SELECT * FROM stream_notifications ORDER BY sent_at")
        rows = await cur.fetchall()
        await cur.close()
        return [_row_to_record(r) for r in rows]

    async def notifications_for_streamer(self, platform: str, external_id: str) -> List[NotificationRecord]:
        cur = await self.conn.execute(
            "SELECT * FROM stream_notifications WHERE platform = ? AND external_id = ?",
            (platform, external_id),
        )
        rows = await cur.fetchall()
        await cur.close()
        return [_row_to_record(r) for r in rows]

    # ---------- Webhooks ----------
    async def save_hooks(self, platform: str, hooks: Sequence[RegisteredHook], saved_at: Optional[datetime] = None) -> None:
        stamp = to_iso(saved_at or utcnow())
        await self.conn.execute("DELETE FROM stream_webhooks WHERE platform = ?", (platform,))
        await self.conn.executemany(
            """
            INSERT INTO stream_webhooks
              (hook_id, platform, streamer_id, secret, lease_seconds, registered_at, saved_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (h.hook_id, h.platform, h.streamer_id, h.secret, int(h.lease_seconds), to_iso(h.registered_at), stamp)
                for h in hooks
            ],
        )
        await self.conn.commit()

    async def take_hooks(self, platform: str) -> List[Tuple[RegisteredHook, datetime]]:
        """Load and delete the saved leases of one platform."""
        cur = await self.conn.execute("SELECT * FROM stream_webhooks WHERE platform = ?", (platform,))
        rows = await cur.fetchall()
        await cur.close()
        await self.conn.execute("DELETE FROM stream_webhooks WHERE platform = ?", (platform,))
        await self.conn.commit()
        out: List[Tuple[RegisteredHook, datetime]] = []
        for r in rows:
            hook = RegisteredHook(
                hook_id=r["hook_id"],
                platform=r["platform"],
                streamer_id=r["streamer_id"],
                secret=r["secret"],
                lease_seconds=int(r["lease_seconds"]),
                registered_at=from_iso(r["registered_at"]),
            )
            out.append((hook, from_iso(r["saved_at"]) or utcnow()))
        return out


def _row_to_subscription(row: aiosqlite.Row) -> Subscription:
    return Subscription(
        platform=row["platform"],
        external_id=row["external_id"],
        subscriber_scope=row["subscriber_scope"],
        subscriber_id=row["subscriber_id"],
        display_name=row["display_name"],
        message_text=row["message_text"],
    )


def _row_to_record(row: aiosqlite.Row) -> NotificationRecord:
    return NotificationRecord(
        subscriber_scope=row["subscriber_scope"],
        subscriber_id=row["subscriber_id"],
        platform=row["platform"],
        external_id=row["external_id"],
        stream_id=row["stream_id"],
        channel_id=row["channel_id"],
        message_id=row["message_id"],
        sent_at=from_iso(row["sent_at"]) or utcnow(),
        payload=loads_payload(row["payload_json"]),
    )
