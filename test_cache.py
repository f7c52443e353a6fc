"""
Unit tests for the response cache: fingerprinting, TTL, size bound,
single-flight and per-agent invalidation.
"""
import asyncio

import pytest

from agentcore.cache import ResponseCache, canonical_json, make_fingerprint, prefix_of


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# ─────────────────────────────────────────────
# Fingerprints
# ─────────────────────────────────────────────

def test_canonical_json_sorts_keys_and_drops_none():
    a = canonical_json({"b": 1, "a": {"y": None, "x": [1, {"k": None, "j": 2}]}})
    b = canonical_json({"a": {"x": [1, {"j": 2}]}, "b": 1})
    assert a == b == '{"a":{"x":[1,{"j":2}]},"b":1}'


def test_fingerprint_is_prefixed_and_stable():
    fp1 = make_fingerprint("productRecommendation", {"q": "pottery", "t": 0.7})
    fp2 = make_fingerprint("productRecommendation", {"t": 0.7, "q": "pottery"})
    assert fp1 == fp2
    assert prefix_of(fp1) == "productRecommendation"
    assert len(fp1.split(":", 1)[1]) == 64


def test_fingerprint_changes_with_any_part():
    base = {"modelId": "m", "temperature": 0.7, "maxTokens": 100, "operation": "query"}
    fp = make_fingerprint("a", base)
    assert make_fingerprint("a", {**base, "temperature": 0.8}) != fp
    assert make_fingerprint("a", {**base, "maxTokens": 101}) != fp
    assert make_fingerprint("a", {**base, "operation": "other"}) != fp


# ─────────────────────────────────────────────
# Storage
# ─────────────────────────────────────────────

def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = ResponseCache(ttl=10, clock=clock)
    cache.put("a:1", "v")
    clock.now += 9.9
    assert cache.get("a:1") == "v"
    clock.now += 0.1
    assert cache.get("a:1") is None
    assert len(cache) == 0


def test_size_bound_evicts_oldest():
    cache = ResponseCache(ttl=60, max_entries=2)
    cache.put("a:1", 1)
    cache.put("a:2", 2)
    cache.put("a:3", 3)
    assert cache.get("a:1") is None
    assert cache.get("a:2") == 2
    assert cache.get("a:3") == 3


def test_invalidate_by_prefix_only_touches_that_agent():
    cache = ResponseCache(ttl=60)
    cache.put("alpha:1", 1)
    cache.put("alpha:2", 2)
    cache.put("alphabet:1", 3)
    assert cache.invalidate_by_prefix("alpha") == 2
    assert cache.count("alpha") == 0
    assert cache.count("alphabet") == 1


def test_purge_expired():
    clock = FakeClock()
    cache = ResponseCache(ttl=5, clock=clock)
    cache.put("a:1", 1)
    clock.now += 3
    cache.put("a:2", 2)
    clock.now += 3
    assert cache.purge_expired() == 1
    assert cache.count() == 1


# ─────────────────────────────────────────────
# Single-flight
# ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_miss_then_hit():
    cache = ResponseCache(ttl=60)
    calls = 0

    async def loader():
        nonlocal calls
        calls += 1
        return "R1"

    first = await cache.fetch("a:1", loader)
    second = await cache.fetch("a:1", loader)
    assert (first.value, first.hit) == ("R1", False)
    assert (second.value, second.hit) == ("R1", True)
    assert calls == 1


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_load():
    cache = ResponseCache(ttl=60)
    calls = 0
    gate = asyncio.Event()

    async def loader():
        nonlocal calls
        calls += 1
        await gate.wait()
        return {"answer": 42}

    tasks = [asyncio.create_task(cache.fetch("a:1", loader)) for _ in range(5)]
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*tasks)
    assert calls == 1
    assert all(r.value == {"answer": 42} for r in results)
    assert sum(1 for r in results if not r.hit) == 1


@pytest.mark.asyncio
async def test_failed_load_is_not_cached_and_propagates_to_all_waiters():
    cache = ResponseCache(ttl=60)
    gate = asyncio.Event()

    async def loader():
        await gate.wait()
        raise RuntimeError("boom")

    tasks = [asyncio.create_task(cache.fetch("a:1", loader)) for _ in range(3)]
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    assert all(isinstance(r, RuntimeError) for r in results)
    assert cache.get("a:1") is None
    assert cache.stats()["pending"] == 0


@pytest.mark.asyncio
async def test_skip_read_bypasses_lookup_but_stores():
    cache = ResponseCache(ttl=60)
    cache.put("a:1", "old")

    async def loader():
        return "new"

    result = await cache.fetch("a:1", loader, skip_read=True)
    assert (result.value, result.hit) == ("new", False)
    assert cache.get("a:1") == "new"


@pytest.mark.asyncio
async def test_abandoned_caller_does_not_cancel_the_load():
    cache = ResponseCache(ttl=60)
    gate = asyncio.Event()

    async def loader():
        await gate.wait()
        return "late"

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(cache.fetch("a:1", loader), timeout=0.01)
    gate.set()
    for _ in range(5):
        await asyncio.sleep(0)
    assert cache.get("a:1") == "late"


@pytest.mark.asyncio
async def test_invalidation_during_flight_discards_stale_value():
    cache = ResponseCache(ttl=60)
    gate = asyncio.Event()

    async def loader():
        await gate.wait()
        return "stale"

    task = asyncio.create_task(cache.fetch("a:1", loader))
    await asyncio.sleep(0)
    cache.invalidate_by_prefix("a")
    gate.set()
    result = await task
    assert result.value == "stale"
    assert cache.get("a:1") is None
