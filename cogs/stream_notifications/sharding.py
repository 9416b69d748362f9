"""Shard bridge: typed IPC messages between the lead process and follower shards.

Lead process: polling, webhooks, sweeper and dispatcher. Followers only own
guild connections. Three message kinds cross the process boundary:

* ``streams:push``  lead -> owner of a guild: deliver one status to one subscription
* ``streams:free``  follower -> lead: last subscriber of a streamer is gone
* ``streams:track`` follower -> lead: first subscriber of a streamer was added
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, ClassVar, Dict, Mapping, Optional, Sequence, Tuple, Type, Union

from shared.socket_bus import SocketClient, SocketServer

from .constants import BRIDGE_TIMEOUT_SECONDS, SHARD_LEAD_ID
from .errors import InvalidInput
from .models import StreamStatus, Subscription

log = logging.getLogger("StreamNotifications.Bridge")

Peer = Tuple[str, int]


@dataclass(frozen=True)
class PushMessage:
    type: ClassVar[str] = "streams:push"

    target_guild_id: str
    subscription: Subscription
    status: StreamStatus

    def to_payload(self) -> Dict[str, Any]:
        return {
            "target_guild_id": self.target_guild_id,
            "subscription": self.subscription.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PushMessage":
        return cls(
            target_guild_id=str(payload["target_guild_id"]),
            subscription=Subscription.from_dict(payload["subscription"]),
            status=StreamStatus.from_dict(payload["status"]),
        )


@dataclass(frozen=True)
class FreeMessage:
    type: ClassVar[str] = "streams:free"

    platform: str
    external_id: str

    def to_payload(self) -> Dict[str, Any]:
        return {"platform": self.platform, "external_id": self.external_id}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "FreeMessage":
        return cls(platform=str(payload["platform"]), external_id=str(payload["external_id"]))


@dataclass(frozen=True)
class TrackMessage:
    type: ClassVar[str] = "streams:track"

    platform: str
    external_id: str
    display_name: str

    def to_payload(self) -> Dict[str, Any]:
        return {"platform": self.platform, "external_id": self.external_id, "display_name": self.display_name}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TrackMessage":
        return cls(
            platform=str(payload["platform"]),
            external_id=str(payload["external_id"]),
            display_name=str(payload.get("display_name") or payload["external_id"]),
        )


BridgeMessage = Union[PushMessage, FreeMessage, TrackMessage]
MESSAGE_TYPES: Dict[str, Type[Any]] = {cls.type: cls for cls in (PushMessage, FreeMessage, TrackMessage)}

MessageHandler = Callable[[Any], Awaitable[Any]]


def encode(message: BridgeMessage) -> Dict[str, Any]:
    return {"type": message.type, "payload": message.to_payload()}


def decode(raw: Mapping[str, Any]) -> BridgeMessage:
    """Validate an envelope and build the matching message; raises ``InvalidInput``."""
    if not isinstance(raw, Mapping):
        raise InvalidInput("bridge message must be an object")
    msg_type = raw.get("type")
    cls = MESSAGE_TYPES.get(msg_type) if isinstance(msg_type, str) else None
    if cls is None:
        raise InvalidInput(f"unknown bridge message type {raw.get('type')!r}")
    payload = raw.get("payload")
    if not isinstance(payload, Mapping):
        raise InvalidInput(f"{cls.type}: payload must be an object")
    try:
        return cls.from_payload(payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidInput(f"{cls.type}: malformed payload ({exc!r})") from exc


def shard_for_guild(guild_id: Union[int, str], shard_count: int) -> int:
    return (int(guild_id) >> 22) % max(1, int(shard_count))


def parse_peers(raw: str) -> Dict[int, Peer]:
    """``"0=127.0.0.1:45680,1=10.0.0.2:45680"`` -> ``{0: ("127.0.0.1", 45680), ...}``"""
    peers: Dict[int, Peer] = {}
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        shard, _, address = part.partition("=")
        host, _, port = address.rpartition(":")
        try:
            peers[int(shard)] = (host or "127.0.0.1", int(port))
        except ValueError:
            raise InvalidInput(f"invalid shard peer {part!r}")
    return peers


class ShardBridge:
    def __init__(
        self,
        *,
        shard_ids: Sequence[int],
        shard_count: int,
        peers: Mapping[int, Peer],
        secret: str,
        host: str = "127.0.0.1",
        port: int = 45680,
        lead_shard: int = SHARD_LEAD_ID,
        timeout: float = BRIDGE_TIMEOUT_SECONDS,
    ):
        self.shard_ids = sorted(set(int(s) for s in shard_ids))
        self.shard_count = max(1, int(shard_count))
        self.peers = dict(peers)
        self.secret = secret
        self.host = host
        self.port = int(port)
        self.lead_shard = lead_shard
        self.timeout = timeout
        self._server: Optional[SocketServer] = None
        self._handlers: Dict[str, MessageHandler] = {}
        self.forwarded = 0

    @property
    def is_lead(self) -> bool:
        return self.lead_shard in self.shard_ids

    @property
    def bound_port(self) -> Optional[int]:
        return self._server.bound_port if self._server is not None else None

    def owns_guild(self, guild_id: Union[int, str]) -> bool:
        return shard_for_guild(guild_id, self.shard_count) in self.shard_ids

    def on(self, msg_type: str, handler: MessageHandler) -> None:
        if msg_type not in MESSAGE_TYPES:
            raise InvalidInput(f"unknown bridge message type {msg_type!r}")
        self._handlers[msg_type] = handler

    async def start(self) -> None:
        if self._server is not None:
            return
        server = SocketServer(self.host, self.port, self.secret)
        for msg_type in MESSAGE_TYPES:
            server.add_handler(msg_type, self._make_handler(msg_type))
        await server.start()
        self._server = server
        log.info("Shard-Bridge aktiv (Shards %s von %s, lead=%s)", self.shard_ids, self.shard_count, self.is_lead)

    async def stop(self) -> None:
        if self._server is not None:
            await self._server.stop()
            self._server = None

    def _make_handler(self, msg_type: str):
        async def _handle(payload: Dict[str, Any]) -> Dict[str, Any]:
            message = decode({"type": msg_type, "payload": payload})
            handler = self._handlers.get(msg_type)
            if handler is None:
                raise InvalidInput(f"no local handler for {msg_type}")
            result = await handler(message)
            return result if isinstance(result, dict) else {}

        return _handle

    async def send_to_shard(self, shard_id: int, message: BridgeMessage) -> bool:
        peer = self.peers.get(shard_id)
        if peer is None:
            log.warning("Kein Peer für Shard %s konfiguriert, %s verworfen", shard_id, message.type)
            return False
        client = SocketClient(peer[0], peer[1], self.secret)
        try:
            resp = await client.send(message.type, message.to_payload(), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            log.warning("Bridge: %s an Shard %s (%s:%s) fehlgeschlagen: %r", message.type, shard_id, peer[0], peer[1], exc)
            return False
        if not resp.get("ok"):
            log.warning("Bridge: Shard %s lehnt %s ab: %s", shard_id, message.type, resp.get("error"))
            return False
        return True

    async def forward(self, subscription: Subscription, status: StreamStatus) -> bool:
        """Hand one guild delivery to the shard that owns the guild (at-least-once)."""
        target = shard_for_guild(subscription.subscriber_id, self.shard_count)
        ok = await self.send_to_shard(target, PushMessage(subscription.subscriber_id, subscription, status))
        if ok:
            self.forwarded += 1
        return ok

    async def notify_lead(self, message: BridgeMessage) -> bool:
        return await self.send_to_shard(self.lead_shard, message)
