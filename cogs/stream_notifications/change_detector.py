"""Tri-state change detection shared by every provider.

A provider feeds each fetch/push result for a streamer into ``observe``:

* payload, nothing cached           -> ``online``
* payload, cached, fields differ    -> ``updated`` (carries the old session id)
* payload, cached, fields equal     -> nothing
* no payload, cached                -> ``offline`` (with the cached payload)
* no payload, nothing cached        -> nothing

A failed fetch must not reach the detector at all.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Generic, Iterator, Optional, TypeVar

from .models import STATE_OFFLINE, STATE_ONLINE, STATE_UPDATED, PlatformPayload, utcnow

P = TypeVar("P", bound=PlatformPayload)


@dataclass
class CachedPayload(Generic[P]):
    payload: P
    fetched_at: datetime


@dataclass
class Transition(Generic[P]):
    state: str
    payload: P
    previous_session_id: Optional[str] = None


class ChangeDetector(Generic[P]):
    """Owns the last-known payload per streamer of exactly one provider."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._cache: Dict[str, CachedPayload[P]] = {}

    def observe(self, external_id: str, payload: Optional[P]) -> Optional[Transition[P]]:
        cached = self._cache.get(external_id)

        if payload is None:
            if cached is None:
                return None
            del self._cache[external_id]
            return Transition(STATE_OFFLINE, cached.payload, cached.payload.session_id)

        now = self._clock()
        if cached is None:
            self._cache[external_id] = CachedPayload(payload, now)
            return Transition(STATE_ONLINE, payload)

        previous = cached.payload
        # Neue Session-ID ohne sichtbare Änderung zählt trotzdem als Update
        if previous.comparable_fields() != payload.comparable_fields():
            self._cache[external_id] = CachedPayload(payload, now)
            return Transition(STATE_UPDATED, payload, previous.session_id)

        cached.fetched_at = now
        return None

    def cached(self, external_id: str) -> Optional[P]:
        entry = self._cache.get(external_id)
        return entry.payload if entry else None

    def fetched_at(self, external_id: str) -> Optional[datetime]:
        entry = self._cache.get(external_id)
        return entry.fetched_at if entry else None

    def forget(self, external_id: str) -> None:
        self._cache.pop(external_id, None)

    def clear(self) -> None:
        self._cache.clear()

    def __contains__(self, external_id: object) -> bool:
        return external_id in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._cache))
