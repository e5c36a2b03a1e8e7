"""
응답 캐시 테스트 (TTL / 용량 / 저하 응답 거부 / 청소)
"""
import asyncio
import contextlib

import pytest

from service.cache_service import ResponseCache, is_cacheable, make_cache_key
from service.provider_service import FRAGMENT_PLACEHOLDER

PAYLOAD = {"text": "Drink water and rest.", "suggest_appointment": False}


def test_저장후_조회(clock):
    cache = ResponseCache(clock=clock)

    async def scenario():
        assert await cache.put("user-1", "I have a cold", PAYLOAD) is True
        return await cache.get("user-1", "I have a cold")

    assert asyncio.run(scenario()) == PAYLOAD


def test_메시지는_정규화해서_같은_키():
    assert make_cache_key("u", "  Hello ") == make_cache_key("u", "hello")
    assert make_cache_key(None, "hello").startswith("cache:guest:")


def test_id가_guest인_유저와_비로그인_방문자는_캐시_분리(clock):
    cache = ResponseCache(clock=clock)
    assert make_cache_key("guest", "hello") != make_cache_key(None, "hello")

    async def scenario():
        await cache.put("guest", "hello", PAYLOAD)
        return await cache.get(None, "hello")

    assert asyncio.run(scenario()) is None


def test_다른_유저는_캐시_공유_안함(clock):
    cache = ResponseCache(clock=clock)

    async def scenario():
        await cache.put("user-1", "hello", PAYLOAD)
        return await cache.get("user-2", "hello")

    assert asyncio.run(scenario()) is None


def test_일부_조각이_실패한_응답은_저장_거부(clock):
    cache = ResponseCache(clock=clock)
    partial = {**PAYLOAD, "text": f"Rest and drink water. {FRAGMENT_PLACEHOLDER}"}

    async def scenario():
        stored = await cache.put("user-1", "hello", partial)
        return stored, await cache.get("user-1", "hello")

    assert is_cacheable(partial) is False
    assert asyncio.run(scenario()) == (False, None)


@pytest.mark.parametrize("flag", ["is_error", "quota_exceeded", "using_fallback"])
def test_저하된_응답은_저장_거부(clock, flag):
    cache = ResponseCache(clock=clock)

    async def scenario():
        stored = await cache.put("user-1", "hello", {**PAYLOAD, flag: True})
        return stored, await cache.get("user-1", "hello")

    assert asyncio.run(scenario()) == (False, None)
    assert len(cache) == 0


def test_TTL_지나면_미스_그리고_삭제(clock):
    cache = ResponseCache(clock=clock)

    async def scenario():
        await cache.put("user-1", "hello", PAYLOAD)
        clock.advance(3601)
        return await cache.get("user-1", "hello")

    assert asyncio.run(scenario()) is None
    assert len(cache) == 0


def test_청소는_만료된_것만_삭제(clock):
    cache = ResponseCache(clock=clock)

    async def scenario():
        for i in range(3):
            await cache.put("user-1", f"old {i}", PAYLOAD)
        clock.advance(1800)
        await cache.put("user-1", "fresh", PAYLOAD)
        clock.advance(1801)
        return await cache.sweep_expired()

    assert asyncio.run(scenario()) == 3
    assert len(cache) == 1


def test_용량_초과시_오래된_것부터_삭제(clock):
    cache = ResponseCache(max_entries=10, evict_count=2, clock=clock)

    async def scenario():
        for i in range(11):
            await cache.put("user-1", f"m{i}", PAYLOAD)
        return [await cache.get("user-1", f"m{i}") is not None for i in range(11)]

    present = asyncio.run(scenario())
    assert len(cache) == 9
    assert present[:2] == [False, False]
    assert all(present[2:])


def test_기본_용량_1001개면_200개_삭제(clock):
    cache = ResponseCache(clock=clock)

    async def scenario():
        for i in range(1001):
            await cache.put("user-1", f"message {i}", PAYLOAD)

    asyncio.run(scenario())
    assert len(cache) == 801


def test_재삽입은_가장_최근으로_이동(clock):
    cache = ResponseCache(max_entries=3, evict_count=1, clock=clock)

    async def scenario():
        for key in ("a", "b", "c", "a", "d"):
            await cache.put("user-1", key, PAYLOAD)
        return {key: await cache.get("user-1", key) is not None for key in ("a", "b", "c", "d")}

    assert asyncio.run(scenario()) == {"a": True, "b": False, "c": True, "d": True}


def test_동시_저장(clock):
    cache = ResponseCache(clock=clock)

    async def scenario():
        await asyncio.gather(*(cache.put(f"user-{i}", "hello", PAYLOAD) for i in range(50)))

    asyncio.run(scenario())
    assert len(cache) == 50


def test_백그라운드_청소_태스크(clock):
    cache = ResponseCache(clock=clock)

    async def scenario():
        await cache.put("user-1", "hello", PAYLOAD)
        clock.advance(3601)
        task = asyncio.create_task(cache.run_sweeper(0))
        for _ in range(5):
            await asyncio.sleep(0)
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert len(cache) == 0
