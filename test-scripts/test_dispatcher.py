import asyncio
import sys
from pathlib import Path

# Add root to sys.path
root = Path(__file__).parent.parent
sys.path.insert(0, str(root))

from cogs.stream_notifications.constants import MATURE_BANNER, MATURE_IGNORE
from cogs.stream_notifications.dispatcher import NotificationDispatcher
from cogs.stream_notifications.errors import DeliveryFailed
from cogs.stream_notifications.events import StreamEventQueue
from cogs.stream_notifications.models import (
    STATE_OFFLINE,
    STATE_ONLINE,
    STATE_UPDATED,
    StreamerRef,
    StreamStatus,
    Subscription,
    TwitchPayload,
)
from cogs.stream_notifications.providers.twitch import TwitchProvider
from cogs.stream_notifications.storage import StreamStore
from service import db


class FakeMessenger:
    def __init__(self):
        self.sent = []
        self.edits = []
        self.stale = set()
        self.broken_channels = set()
        self._next = 0

    def has_guild(self, guild_id):
        return True

    async def send_message(self, channel_id, content, embed):
        if channel_id in self.broken_channels:
            raise DeliveryFailed(f"no access to {channel_id}")
        self._next += 1
        message_id = f"m{self._next}"
        self.sent.append((channel_id, message_id, content, embed))
        return message_id

    async def edit_message(self, channel_id, message_id, content, embed):
        if message_id in self.stale:
            raise DeliveryFailed("unknown message", stale=True)
        self.edits.append((channel_id, message_id, content, embed))

    async def delete_message(self, channel_id, message_id):
        pass

    async def open_dm(self, user_id):
        return f"dm-{user_id}"


def _status(state, title="Ranked grind", session="s1", mature=False, stream_type="live"):
    payload = TwitchPayload(
        session_id=session,
        title=title,
        broadcaster_name="Streamer",
        login="streamer",
        mature=mature,
        stream_type=stream_type,
    )
    return StreamStatus(
        platform="twitch",
        external_id="42",
        state=state,
        stream_id=session,
        payload=payload,
        streamer=StreamerRef("twitch", "42", "Streamer"),
        no_everyone=payload.is_rerun,
    )


async def _setup(*, guild_channel="c-100", everyone=False, mature_behavior=None, messenger=None, bridge=None):
    conn = await db.connect(db.MEMORY)
    store = StreamStore(conn)
    await store.add_subscription(Subscription("twitch", "42", "guild", "100", "Streamer"))
    await store.add_subscription(Subscription("twitch", "42", "user", "u7", "Streamer"))

    settings = await store.get_settings("guild", "100")
    settings.channel_id = guild_channel
    if everyone:
        settings.everyone.add(("twitch", "42"))
    if mature_behavior:
        settings.mature_behavior = mature_behavior
    await store.save_settings(settings)

    queue = StreamEventQueue()
    messenger = messenger or FakeMessenger()
    dispatcher = NotificationDispatcher(
        store, messenger, {"twitch": TwitchProvider(queue, None)}, queue=queue, bridge=bridge
    )
    return conn, store, messenger, dispatcher


def test_online_update_offline_lifecycle():
    async def scenario():
        conn, store, messenger, dispatcher = await _setup(everyone=True)
        seen = {}

        await dispatcher.handle(_status(STATE_ONLINE))
        seen["online_sent"] = [(c, text) for c, _, text, _ in messenger.sent]
        seen["online_ids"] = [(c, m) for c, m, _, _ in messenger.sent]
        seen["online_records"] = len(await store.all_notifications())

        await dispatcher.handle(_status(STATE_UPDATED, title="Ranked grind, part 2"))
        seen["update_edits"] = [(c, m) for c, m, _, _ in messenger.edits]
        seen["update_titles"] = [e.title for _, _, _, e in messenger.edits]
        seen["sent_after_update"] = len(messenger.sent)

        await dispatcher.handle(_status(STATE_OFFLINE, title="Ranked grind, part 2"))
        seen["total_edits"] = len(messenger.edits)
        seen["offline_text"] = messenger.edits[-1][2]
        seen["records_after_offline"] = len(await store.all_notifications())
        seen["delivered"] = dispatcher.delivered
        seen["failures"] = dispatcher.failures
        await conn.close()
        return seen

    seen = asyncio.run(scenario())
    channels = sorted(c for c, _ in seen["online_sent"])
    assert channels == ["c-100", "dm-u7"]
    guild_text = dict(seen["online_sent"])["c-100"]
    dm_text = dict(seen["online_sent"])["dm-u7"]
    assert guild_text.startswith("@everyone ")
    # @everyone nie in DMs
    assert "@everyone" not in dm_text
    assert seen["online_records"] == 2

    # Edits landen in den Nachrichten, die bei "online" gesendet wurden
    sent_ids = {c: m for c, m in seen["online_ids"]}
    assert sorted(seen["update_edits"]) == sorted(sent_ids.items())
    assert seen["update_titles"] == ["Ranked grind, part 2", "Ranked grind, part 2"]
    assert seen["sent_after_update"] == 2

    assert seen["total_edits"] == 4
    assert "Streamer" in seen["offline_text"]
    assert seen["records_after_offline"] == 0
    assert seen["delivered"] == 6
    assert seen["failures"] == 0


def test_repeated_online_never_creates_second_record():
    async def scenario():
        conn, store, messenger, dispatcher = await _setup()
        await dispatcher.handle(_status(STATE_ONLINE))
        await dispatcher.handle(_status(STATE_ONLINE))
        records = await store.all_notifications()
        await conn.close()
        return len(messenger.sent), len(messenger.edits), len(records)

    sent, edits, records = asyncio.run(scenario())
    assert sent == 2
    assert edits == 2
    assert records == 2


def test_stale_message_is_replaced_by_fresh_send():
    async def scenario():
        conn, store, messenger, dispatcher = await _setup()
        await dispatcher.handle(_status(STATE_ONLINE))
        guild_record = await store.get_notification("guild", "100", "twitch", "42")
        messenger.stale.add(guild_record.message_id)

        await dispatcher.handle(_status(STATE_UPDATED, title="new"))
        replaced = await store.get_notification("guild", "100", "twitch", "42")
        result = guild_record.message_id, replaced.message_id, len(messenger.sent), dispatcher.failures
        await conn.close()
        return result

    old_id, new_id, sent, failures = asyncio.run(scenario())
    assert new_id != old_id
    assert sent == 3
    assert failures == 0


def test_offline_with_vanished_message_still_drops_record():
    async def scenario():
        conn, store, messenger, dispatcher = await _setup()
        await dispatcher.handle(_status(STATE_ONLINE))
        for _, message_id, _, _ in messenger.sent:
            messenger.stale.add(message_id)
        await dispatcher.handle(_status(STATE_OFFLINE))
        records = await store.all_notifications()
        await conn.close()
        return records, len(messenger.sent)

    records, sent = asyncio.run(scenario())
    assert records == []
    assert sent == 2


def test_guild_without_channel_fails_but_user_is_served():
    async def scenario():
        conn, store, messenger, dispatcher = await _setup(guild_channel=None)
        await dispatcher.handle(_status(STATE_ONLINE))
        records = await store.all_notifications()
        await conn.close()
        return [c for c, _, _, _ in messenger.sent], [r.subscriber_id for r in records], dispatcher.failures

    channels, owners, failures = asyncio.run(scenario())
    assert channels == ["dm-u7"]
    assert owners == ["u7"]
    assert failures == 1


def test_mature_ignore_skips_guild():
    async def scenario():
        conn, store, messenger, dispatcher = await _setup(mature_behavior=MATURE_IGNORE)
        await dispatcher.handle(_status(STATE_ONLINE, mature=True))
        records = await store.all_notifications()
        await conn.close()
        return [c for c, _, _, _ in messenger.sent], [r.subscriber_id for r in records]

    channels, owners = asyncio.run(scenario())
    assert channels == ["dm-u7"]
    assert owners == ["u7"]


def test_mature_banner_prefixes_content():
    async def scenario():
        conn, store, messenger, dispatcher = await _setup(mature_behavior=MATURE_BANNER)
        await dispatcher.handle(_status(STATE_ONLINE, mature=True))
        await conn.close()
        return {c: text for c, _, text, _ in messenger.sent}

    texts = asyncio.run(scenario())
    assert "18+" in texts["c-100"].splitlines()[0]
    assert "18+" not in texts["dm-u7"]


def test_rerun_never_pings_everyone():
    async def scenario():
        conn, store, messenger, dispatcher = await _setup(everyone=True)
        await dispatcher.handle(_status(STATE_ONLINE, stream_type="vodcast"))
        await conn.close()
        return {c: text for c, _, text, _ in messenger.sent}

    texts = asyncio.run(scenario())
    assert "@everyone" not in texts["c-100"]


def test_custom_message_text_is_used():
    async def scenario():
        conn, store, messenger, dispatcher = await _setup()
        await store.set_message_text("twitch", "42", "guild", "100", "{username} ist da: {url}")
        await dispatcher.handle(_status(STATE_ONLINE))
        await conn.close()
        return {c: text for c, _, text, _ in messenger.sent}

    texts = asyncio.run(scenario())
    assert texts["c-100"] == "Streamer ist da: https://twitch.tv/streamer"


def test_settings_cache_needs_invalidation():
    async def scenario():
        conn, store, messenger, dispatcher = await _setup()
        await dispatcher.settings_for("guild", "100")

        settings = await store.get_settings("guild", "100")
        settings.channel_id = "c-200"
        await store.save_settings(settings)
        cached = (await dispatcher.settings_for("guild", "100")).channel_id

        dispatcher.invalidate_settings("guild", "100")
        fresh = (await dispatcher.settings_for("guild", "100")).channel_id
        await conn.close()
        return cached, fresh

    assert asyncio.run(scenario()) == ("c-100", "c-200")


def test_consumer_task_drains_queue():
    async def scenario():
        conn, store, messenger, dispatcher = await _setup()
        queue = dispatcher._queue
        await dispatcher.start()
        queue.publish(_status(STATE_ONLINE))
        queue.publish(_status(STATE_OFFLINE))
        await asyncio.wait_for(queue.join(), timeout=5)
        await dispatcher.stop()
        records = await store.all_notifications()
        await conn.close()
        return len(messenger.sent), len(messenger.edits), records, dispatcher.running

    sent, edits, records, running = asyncio.run(scenario())
    assert sent == 2
    assert edits == 2
    assert records == []
    assert running is False


class ForeignGuildMessenger(FakeMessenger):
    """Guild 100 hängt an einem anderen Shard."""

    def has_guild(self, guild_id):
        return guild_id != "100"


class RecordingBridge:
    def __init__(self, ok=True):
        self.ok = ok
        self.forwarded = []

    async def forward(self, subscription, status):
        self.forwarded.append((subscription.subscriber_id, status.state))
        return self.ok


def test_foreign_guild_goes_over_the_bridge():
    async def scenario(ok):
        bridge = RecordingBridge(ok)
        conn, store, messenger, dispatcher = await _setup(messenger=ForeignGuildMessenger(), bridge=bridge)
        await dispatcher.handle(_status(STATE_ONLINE))
        result = (
            bridge.forwarded,
            [c for c, _, _, _ in messenger.sent],
            [(r.subscriber_scope, r.subscriber_id) for r in await store.all_notifications()],
            dispatcher.failures,
        )
        await conn.close()
        return result

    forwarded, channels, records, failures = asyncio.run(scenario(True))
    assert forwarded == [("100", STATE_ONLINE)]
    # kein lokaler Send für die fremde Guild, der User bekommt seine DM
    assert channels == ["dm-u7"]
    assert records == [("user", "u7")]
    assert failures == 0

    _, channels, _, failures = asyncio.run(scenario(False))
    assert channels == ["dm-u7"]
    assert failures == 1
