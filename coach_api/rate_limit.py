"""Per-user hourly quotas for expensive analysis calls.

Counters are keyed by (resource class, user id, UTC hour) so each quota resets
on the wall-clock hour boundary rather than on a rolling window.

A request reserves its slot up front with an atomic increment-with-ceiling,
then either commits it (downstream call succeeded) or releases it (anything
failed), so only successful analyses consume quota and concurrent requests
from one user cannot both squeeze past the ceiling.
"""
from __future__ import annotations

import abc
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from coach_api.auth import Principal
from coach_api.errors import RateLimited

HOUR_SECONDS = 3600

logger = logging.getLogger("teacher_coach.rate_limit")


class ResourceClass(str, Enum):
    TEXT = "text"
    VIDEO = "video"


def hour_bucket(now: float) -> str:
    return datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%dT%H")


def seconds_until_next_hour(now: float) -> int:
    """Whole seconds until the next UTC hour boundary, always in [0, 3600)."""
    remaining = int(HOUR_SECONDS - (now % HOUR_SECONDS))
    return min(remaining, HOUR_SECONDS - 1)


class CounterStore(abc.ABC):
    """Shared counter storage for rate buckets."""

    @abc.abstractmethod
    async def get(self, key: str) -> int:
        ...

    @abc.abstractmethod
    async def increment_with_ceiling(self, key: str, ceiling: int, ttl_seconds: int) -> Tuple[bool, int]:
        """Atomically add one unless the count already reached `ceiling`.

        Returns (incremented, count after the call).
        """
        ...

    @abc.abstractmethod
    async def decrement(self, key: str) -> int:
        ...


class InMemoryCounterStore(CounterStore):
    """Single-process store; counts are lost on restart."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = asyncio.Lock()
        self._entries: Dict[str, Tuple[int, float]] = {}

    def _live_count(self, key: str) -> int:
        entry = self._entries.get(key)
        if entry is None:
            return 0
        count, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return 0
        return count

    async def get(self, key: str) -> int:
        async with self._lock:
            return self._live_count(key)

    async def increment_with_ceiling(self, key: str, ceiling: int, ttl_seconds: int) -> Tuple[bool, int]:
        async with self._lock:
            count = self._live_count(key)
            if count >= ceiling:
                return False, count
            count += 1
            self._entries[key] = (count, self._clock() + ttl_seconds)
            return True, count

    async def decrement(self, key: str) -> int:
        async with self._lock:
            count = self._live_count(key)
            if count <= 0:
                return 0
            _, expires_at = self._entries[key]
            self._entries[key] = (count - 1, expires_at)
            return count - 1


_INCR_WITH_CEILING_LUA = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
  return {0, current}
end
current = redis.call('INCR', KEYS[1])
redis.call('EXPIRE', KEYS[1], ARGV[2])
return {1, current}
"""

_DECR_FLOOR_LUA = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current <= 0 then
  return 0
end
return redis.call('DECR', KEYS[1])
"""


class RedisCounterStore(CounterStore):
    """Redis-backed store shared by every API instance."""

    def __init__(self, redis_url: str, client=None):
        if client is None:
            import redis.asyncio as redis_asyncio

            client = redis_asyncio.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
            )
        self.client = client
        self._incr = self.client.register_script(_INCR_WITH_CEILING_LUA)
        self._decr = self.client.register_script(_DECR_FLOOR_LUA)

    async def get(self, key: str) -> int:
        raw = await self.client.get(key)
        return int(raw) if raw else 0

    async def increment_with_ceiling(self, key: str, ceiling: int, ttl_seconds: int) -> Tuple[bool, int]:
        allowed, count = await self._incr(keys=[key], args=[ceiling, ttl_seconds])
        return bool(int(allowed)), int(count)

    async def decrement(self, key: str) -> int:
        return int(await self._decr(keys=[key]))


@dataclass
class Reservation:
    key: str
    count: int
    resource: ResourceClass
    committed: bool = False
    released: bool = False


@dataclass
class RateStatus:
    used: int
    limit: int
    remaining: int
    resets_in: int

    def to_dict(self) -> Dict[str, int]:
        return {"used": self.used, "limit": self.limit, "remaining": self.remaining, "resets_in": self.resets_in}


class RateAccountant:
    def __init__(self, store: CounterStore, clock: Callable[[], float] = time.time):
        self.store = store
        self._clock = clock

    def key_for(self, principal: Principal, resource: ResourceClass, now: Optional[float] = None) -> str:
        ts = self._clock() if now is None else now
        return f"rate:{ResourceClass(resource).value}:{principal.user_id}:{hour_bucket(ts)}"

    async def check_and_reserve(self, principal: Principal, resource: ResourceClass, limit: int) -> Reservation:
        """Reserve one slot in the current hour bucket or raise RateLimited."""
        now = self._clock()
        key = self.key_for(principal, resource, now)
        allowed, count = await self.store.increment_with_ceiling(key, max(0, int(limit)), HOUR_SECONDS)
        if not allowed:
            retry_after = seconds_until_next_hour(now)
            logger.info(json.dumps({
                "event": "rate_limited",
                "resource": ResourceClass(resource).value,
                "userId": principal.user_id,
                "count": count,
                "limit": limit,
                "retryAfter": retry_after,
            }))
            raise RateLimited(limit=limit, retry_after=retry_after, resource=ResourceClass(resource).value)
        return Reservation(key=key, count=count, resource=ResourceClass(resource))

    async def commit(self, reservation: Reservation) -> int:
        reservation.committed = True
        return reservation.count

    async def release(self, reservation: Reservation) -> None:
        """Give back a reserved slot; a no-op once committed or released."""
        if reservation.committed or reservation.released:
            return
        reservation.released = True
        await self.store.decrement(reservation.key)

    async def status(self, principal: Principal, resource: ResourceClass, limit: int) -> RateStatus:
        now = self._clock()
        used = await self.store.get(self.key_for(principal, resource, now))
        return RateStatus(
            used=used,
            limit=limit,
            remaining=max(0, limit - used),
            resets_in=seconds_until_next_hour(now),
        )
