"""Domain records shared by providers, dispatcher, storage and the shard bridge."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Set, Tuple, Type

from .constants import DEFAULT_LOCALE, MATURE_NOTHING, SCOPE_GUILD, SCOPE_USER
from .errors import InvalidInput

STATE_ONLINE = "online"
STATE_UPDATED = "updated"
STATE_OFFLINE = "offline"
STATES = (STATE_ONLINE, STATE_UPDATED, STATE_OFFLINE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---------------------------------------------------------------------------
# Streamer / Subscription / Settings
# ---------------------------------------------------------------------------


@dataclass
class StreamerRef:
    platform: str
    external_id: str
    display_name: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StreamerRef":
        return cls(
            platform=str(data["platform"]),
            external_id=str(data["external_id"]),
            display_name=str(data.get("display_name") or data["external_id"]),
        )


@dataclass
class Subscription:
    platform: str
    external_id: str
    subscriber_scope: str
    subscriber_id: str
    display_name: str
    message_text: Optional[str] = None

    def __post_init__(self) -> None:
        if self.subscriber_scope not in (SCOPE_GUILD, SCOPE_USER):
            raise InvalidInput(f"unknown subscriber scope {self.subscriber_scope!r}")

    @property
    def is_guild(self) -> bool:
        return self.subscriber_scope == SCOPE_GUILD

    @property
    def streamer(self) -> StreamerRef:
        return StreamerRef(self.platform, self.external_id, self.display_name)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Subscription":
        return cls(
            platform=str(data["platform"]),
            external_id=str(data["external_id"]),
            subscriber_scope=str(data["subscriber_scope"]),
            subscriber_id=str(data["subscriber_id"]),
            display_name=str(data.get("display_name") or data["external_id"]),
            message_text=data.get("message_text"),
        )


@dataclass
class SubscriberSettings:
    subscriber_scope: str
    subscriber_id: str
    channel_id: Optional[str] = None
    everyone: Set[Tuple[str, str]] = field(default_factory=set)
    mature_behavior: str = MATURE_NOTHING
    locale: str = DEFAULT_LOCALE

    def mentions_everyone(self, platform: str, external_id: str) -> bool:
        # @everyone gibt es nur in Guilds
        if self.subscriber_scope != SCOPE_GUILD:
            return False
        return (platform, external_id) in self.everyone


@dataclass
class NotificationRecord:
    subscriber_scope: str
    subscriber_id: str
    platform: str
    external_id: str
    stream_id: str
    channel_id: str
    message_id: str
    sent_at: datetime
    payload: Optional[Dict[str, Any]] = None

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return (self.subscriber_scope, self.subscriber_id, self.platform, self.external_id)

    def is_older_than(self, age: timedelta, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) - self.sent_at > age


# ---------------------------------------------------------------------------
# Platform payloads (tagged union)
# ---------------------------------------------------------------------------

_PAYLOAD_KINDS: Dict[str, Type["PlatformPayload"]] = {}


@dataclass
class PlatformPayload:
    """Common shape every platform variant fills in.

    ``comparable_fields`` is what the change detector diffs; two payloads with
    equal tuples describe the same visible stream state.
    """

    kind: ClassVar[str] = ""

    session_id: str
    title: str
    category_id: Optional[str] = None
    mature: bool = False
    broadcaster_name: str = ""
    avatar_url: Optional[str] = None

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if cls.kind:
            _PAYLOAD_KINDS[cls.kind] = cls

    def comparable_fields(self) -> Tuple[Any, ...]:
        return (
            self.session_id,
            self.title,
            self.category_id,
            self.mature,
            self.broadcaster_name,
            self.avatar_url,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind
        return data

    def with_changes(self, **changes: Any) -> "PlatformPayload":
        return replace(self, **changes)


@dataclass
class TwitchPayload(PlatformPayload):
    kind: ClassVar[str] = "twitch"

    login: str = ""
    stream_type: str = "live"
    category_name: Optional[str] = None
    thumbnail_url: Optional[str] = None
    viewer_count: int = 0
    started_at: Optional[str] = None
    language: Optional[str] = None

    def comparable_fields(self) -> Tuple[Any, ...]:
        # Rerun (vodcast) <-> live ist ebenfalls ein Update
        return super().comparable_fields() + (self.stream_type,)

    @property
    def is_rerun(self) -> bool:
        return self.stream_type == "vodcast"


@dataclass
class MixerPayload(PlatformPayload):
    kind: ClassVar[str] = "mixer"

    token: str = ""
    channel_id: str = ""
    audience: str = "family"
    category_name: Optional[str] = None
    viewer_count: int = 0
    updated_at: Optional[str] = None


@dataclass
class YouTubePayload(PlatformPayload):
    kind: ClassVar[str] = "youtube"

    channel_id: str = ""
    description: str = ""
    thumbnail_url: Optional[str] = None
    published_at: Optional[str] = None


def payload_from_dict(data: Optional[Mapping[str, Any]]) -> Optional[PlatformPayload]:
    if not data:
        return None
    kind = data.get("kind")
    cls = _PAYLOAD_KINDS.get(str(kind))
    if cls is None:
        raise InvalidInput(f"unknown payload kind {kind!r}")
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


# ---------------------------------------------------------------------------
# StreamStatus / Render output
# ---------------------------------------------------------------------------


@dataclass
class StreamStatus:
    platform: str
    external_id: str
    state: str
    stream_id: str
    payload: PlatformPayload
    streamer: StreamerRef
    previous_stream_id: Optional[str] = None
    no_everyone: bool = False

    def __post_init__(self) -> None:
        if self.state not in STATES:
            raise InvalidInput(f"unknown stream state {self.state!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "external_id": self.external_id,
            "state": self.state,
            "stream_id": self.stream_id,
            "previous_stream_id": self.previous_stream_id,
            "no_everyone": self.no_everyone,
            "payload": self.payload.to_dict(),
            "streamer": self.streamer.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StreamStatus":
        payload = payload_from_dict(data.get("payload"))
        if payload is None:
            raise InvalidInput("stream status without payload")
        return cls(
            platform=str(data["platform"]),
            external_id=str(data["external_id"]),
            state=str(data["state"]),
            stream_id=str(data["stream_id"]),
            previous_stream_id=data.get("previous_stream_id"),
            no_everyone=bool(data.get("no_everyone", False)),
            payload=payload,
            streamer=StreamerRef.from_dict(data["streamer"]),
        )


@dataclass
class RenderableFields:
    """Platform-flavoured display data, turned into an embed by ``embeds.py``."""

    title: str
    url: str
    author_name: str
    description: str = ""
    category: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    avatar_url: Optional[str] = None
    mature: bool = False
    color: int = 0
    footer_text: str = ""
    footer_icon_url: Optional[str] = None
    timestamp: Optional[datetime] = None
    fields: List[Tuple[str, str, bool]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Webhook lease bookkeeping
# ---------------------------------------------------------------------------


@dataclass
class RegisteredHook:
    hook_id: str
    platform: str
    streamer_id: str
    secret: str
    lease_seconds: int
    registered_at: Optional[datetime] = None

    @property
    def pending(self) -> bool:
        return self.registered_at is None

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.registered_at is None:
            return None
        return self.registered_at + timedelta(seconds=self.lease_seconds)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        expires = self.expires_at
        return expires is not None and (now or utcnow()) >= expires


def dumps_payload(payload: Optional[Mapping[str, Any]]) -> Optional[str]:
    return json.dumps(payload, ensure_ascii=False) if payload is not None else None


def loads_payload(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    return json.loads(raw)
