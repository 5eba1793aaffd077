import asyncio
from datetime import datetime, timezone

import pytest

from coach_api.auth import Principal
from coach_api.errors import RateLimited
from coach_api.rate_limit import (
    InMemoryCounterStore,
    RateAccountant,
    RedisCounterStore,
    ResourceClass,
    hour_bucket,
    seconds_until_next_hour,
)
from conftest import FakeClock

P = Principal(user_id="teacher-1", email="t@example.org", expires_at=0)


def _accountant(start: float):
    clock = FakeClock(start)
    return RateAccountant(InMemoryCounterStore(clock=clock), clock=clock), clock


def _ts(*args) -> float:
    return datetime(*args, tzinfo=timezone.utc).timestamp()


def test_hour_bucket_truncates_to_utc_hour():
    assert hour_bucket(_ts(2024, 5, 1, 14, 59, 59)) == "2024-05-01T14"
    assert hour_bucket(_ts(2024, 5, 1, 15, 0, 0)) == "2024-05-01T15"


@pytest.mark.parametrize("offset", [0, 0.5, 1, 1799, 3599, 3599.9])
def test_retry_after_always_within_hour(offset):
    value = seconds_until_next_hour(_ts(2024, 5, 1, 14) + offset)
    assert 0 <= value < 3600


@pytest.mark.asyncio
async def test_sixth_request_in_hour_is_denied_with_retry_after():
    start = _ts(2024, 5, 1, 14, 20, 0)
    accountant, clock = _accountant(start)
    for _ in range(5):
        r = await accountant.check_and_reserve(P, ResourceClass.VIDEO, 5)
        await accountant.commit(r)

    with pytest.raises(RateLimited) as exc:
        await accountant.check_and_reserve(P, ResourceClass.VIDEO, 5)
    # 14:20:00 -> 40 minutes until 15:00
    assert exc.value.retry_after == 2400
    assert exc.value.to_body()["retry_after"] == 2400


@pytest.mark.asyncio
async def test_quota_resets_on_hour_boundary():
    accountant, clock = _accountant(_ts(2024, 5, 1, 14, 59, 0))
    for _ in range(2):
        await accountant.commit(await accountant.check_and_reserve(P, ResourceClass.VIDEO, 2))
    with pytest.raises(RateLimited):
        await accountant.check_and_reserve(P, ResourceClass.VIDEO, 2)

    clock.now = _ts(2024, 5, 1, 15, 0, 1)
    r = await accountant.check_and_reserve(P, ResourceClass.VIDEO, 2)
    assert r.count == 1


@pytest.mark.asyncio
async def test_released_reservation_does_not_consume_quota():
    accountant, _ = _accountant(_ts(2024, 5, 1, 9, 0, 0))
    r = await accountant.check_and_reserve(P, ResourceClass.VIDEO, 1)
    await accountant.release(r)
    # Releasing twice is a no-op
    await accountant.release(r)

    status = await accountant.status(P, ResourceClass.VIDEO, 1)
    assert status.used == 0
    r2 = await accountant.check_and_reserve(P, ResourceClass.VIDEO, 1)
    await accountant.commit(r2)
    await accountant.release(r2)  # committed: stays counted
    assert (await accountant.status(P, ResourceClass.VIDEO, 1)).used == 1


@pytest.mark.asyncio
async def test_resource_classes_are_independent():
    accountant, _ = _accountant(_ts(2024, 5, 1, 9, 0, 0))
    await accountant.commit(await accountant.check_and_reserve(P, ResourceClass.VIDEO, 1))
    with pytest.raises(RateLimited):
        await accountant.check_and_reserve(P, ResourceClass.VIDEO, 1)
    r = await accountant.check_and_reserve(P, ResourceClass.TEXT, 1)
    assert r.count == 1


@pytest.mark.asyncio
async def test_concurrent_reservations_never_exceed_limit():
    accountant, _ = _accountant(_ts(2024, 5, 1, 9, 0, 0))

    async def attempt():
        try:
            await accountant.check_and_reserve(P, ResourceClass.VIDEO, 3)
            return True
        except RateLimited:
            return False

    results = await asyncio.gather(*(attempt() for _ in range(10)))
    assert sum(results) == 3


@pytest.mark.asyncio
async def test_status_reports_remaining_and_reset():
    accountant, _ = _accountant(_ts(2024, 5, 1, 9, 45, 0))
    await accountant.commit(await accountant.check_and_reserve(P, ResourceClass.VIDEO, 5))
    status = await accountant.status(P, ResourceClass.VIDEO, 5)
    assert status.to_dict() == {"used": 1, "limit": 5, "remaining": 4, "resets_in": 900}


@pytest.mark.asyncio
async def test_in_memory_entries_expire_one_hour_after_write():
    clock = FakeClock(100.0)
    store = InMemoryCounterStore(clock=clock)
    assert await store.increment_with_ceiling("k", 5, 3600) == (True, 1)
    clock.now += 3599
    assert await store.get("k") == 1
    clock.now += 1
    assert await store.get("k") == 0


class FakeScript:
    def __init__(self, fn):
        self.fn = fn

    async def __call__(self, keys=None, args=None):
        return self.fn(keys, args)


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.expiries = {}

    def register_script(self, source):
        if "INCR" in source:
            return FakeScript(self._incr)
        return FakeScript(self._decr)

    def _incr(self, keys, args):
        key = keys[0]
        ceiling, ttl = int(args[0]), int(args[1])
        current = int(self.data.get(key, 0))
        if current >= ceiling:
            return [0, current]
        self.data[key] = current + 1
        self.expiries[key] = ttl
        return [1, current + 1]

    def _decr(self, keys, args):
        key = keys[0]
        current = int(self.data.get(key, 0))
        if current <= 0:
            return 0
        self.data[key] = current - 1
        return current - 1

    async def get(self, key):
        val = self.data.get(key)
        return None if val is None else str(val)


@pytest.mark.asyncio
async def test_redis_store_uses_atomic_scripts():
    fake = FakeRedis()
    store = RedisCounterStore("redis://unused", client=fake)
    accountant = RateAccountant(store, clock=lambda: _ts(2024, 5, 1, 9, 0, 0))

    r = await accountant.check_and_reserve(P, ResourceClass.VIDEO, 1)
    assert r.key == "rate:video:teacher-1:2024-05-01T09"
    assert fake.expiries[r.key] == 3600
    with pytest.raises(RateLimited):
        await accountant.check_and_reserve(P, ResourceClass.VIDEO, 1)
    await accountant.release(r)
    assert await store.get(r.key) == 0
