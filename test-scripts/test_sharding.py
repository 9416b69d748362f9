import asyncio
import sys
from pathlib import Path

import pytest

# Add root to sys.path
root = Path(__file__).parent.parent
sys.path.insert(0, str(root))

from cogs.stream_notifications.errors import InvalidInput
from cogs.stream_notifications.models import STATE_ONLINE, StreamerRef, StreamStatus, Subscription, TwitchPayload
from cogs.stream_notifications.sharding import (
    FreeMessage,
    PushMessage,
    ShardBridge,
    TrackMessage,
    decode,
    encode,
    parse_peers,
    shard_for_guild,
)

GUILD_ON_SHARD_1 = str(1 << 22)


def _status():
    return StreamStatus(
        platform="twitch",
        external_id="42",
        state=STATE_ONLINE,
        stream_id="s1",
        payload=TwitchPayload(session_id="s1", title="Hello", broadcaster_name="Streamer", login="streamer"),
        streamer=StreamerRef("twitch", "42", "Streamer"),
    )


def _subscription(guild_id=GUILD_ON_SHARD_1):
    return Subscription("twitch", "42", "guild", guild_id, "Streamer")


def test_push_message_survives_the_wire_format():
    msg = PushMessage(GUILD_ON_SHARD_1, _subscription(), _status())
    back = decode(encode(msg))
    assert isinstance(back, PushMessage)
    assert back.subscription == msg.subscription
    assert isinstance(back.status.payload, TwitchPayload)
    assert back.status.payload.title == "Hello"
    assert back.status.state == STATE_ONLINE


def test_decode_rejects_unknown_type():
    with pytest.raises(InvalidInput):
        decode({"type": "streams:explode", "payload": {}})


def test_decode_rejects_missing_fields():
    with pytest.raises(InvalidInput):
        decode({"type": "streams:free", "payload": {"platform": "twitch"}})


def test_decode_rejects_bad_state():
    raw = encode(PushMessage(GUILD_ON_SHARD_1, _subscription(), _status()))
    raw["payload"]["status"]["state"] = "exploded"
    with pytest.raises(InvalidInput):
        decode(raw)


def test_decode_rejects_non_object_payload():
    with pytest.raises(InvalidInput):
        decode({"type": "streams:track", "payload": ["twitch", "42"]})


def test_shard_for_guild():
    assert shard_for_guild(GUILD_ON_SHARD_1, 2) == 1
    assert shard_for_guild("81384788765712384", 1) == 0
    assert shard_for_guild(0, 4) == 0


def test_parse_peers():
    peers = parse_peers("0=127.0.0.1:45680, 1=10.0.0.2:45681")
    assert peers == {0: ("127.0.0.1", 45680), 1: ("10.0.0.2", 45681)}
    assert parse_peers("") == {}
    with pytest.raises(InvalidInput):
        parse_peers("0=host:notaport")


def test_lead_forwards_push_to_owning_shard():
    async def scenario():
        received = []
        follower = ShardBridge(shard_ids=[1], shard_count=2, peers={}, secret="s3cret", port=0)

        async def on_push(message):
            received.append(message)
            return {"delivered": True}

        follower.on(PushMessage.type, on_push)
        await follower.start()
        try:
            lead = ShardBridge(
                shard_ids=[0],
                shard_count=2,
                peers={1: ("127.0.0.1", follower.bound_port)},
                secret="s3cret",
            )
            assert lead.is_lead and not follower.is_lead
            assert not lead.owns_guild(GUILD_ON_SHARD_1)
            ok = await lead.forward(_subscription(), _status())
            return ok, lead.forwarded, received
        finally:
            await follower.stop()

    ok, forwarded, received = asyncio.run(scenario())
    assert ok is True
    assert forwarded == 1
    assert len(received) == 1
    assert received[0].target_guild_id == GUILD_ON_SHARD_1
    assert received[0].status.stream_id == "s1"


def test_wrong_secret_is_refused():
    async def scenario():
        lead = ShardBridge(shard_ids=[0], shard_count=2, peers={}, secret="right", port=0)
        calls = []

        async def on_free(message):
            calls.append(message)

        lead.on(FreeMessage.type, on_free)
        await lead.start()
        try:
            follower = ShardBridge(
                shard_ids=[1],
                shard_count=2,
                peers={0: ("127.0.0.1", lead.bound_port)},
                secret="wrong",
            )
            ok = await follower.notify_lead(FreeMessage("twitch", "42"))
            return ok, calls
        finally:
            await lead.stop()

    ok, calls = asyncio.run(scenario())
    assert ok is False
    assert calls == []


def test_missing_peer_is_not_delivered():
    async def scenario():
        follower = ShardBridge(shard_ids=[1], shard_count=2, peers={}, secret="x")
        return await follower.notify_lead(TrackMessage("twitch", "42", "Streamer"))

    assert asyncio.run(scenario()) is False
